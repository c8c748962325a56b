from decimal import Decimal
from typing import Annotated, Generic, Optional, TypeVar

from pydantic import BaseModel, PlainSerializer

from splitledger.core.utils import qround

T = TypeVar("T")

# money leaves the API as a decimal string with two places
MoneyOut = Annotated[Decimal, PlainSerializer(lambda v: str(qround(v)), return_type=str, when_used="json")]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: str = ""
    pagination: Optional[Pagination] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
