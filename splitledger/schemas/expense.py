from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from splitledger.models.expense import SplitType
from splitledger.schemas.common import MoneyOut


class SplitInput(BaseModel):
    user_id: int
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    percentage: Optional[Decimal] = Field(None, ge=0, le=100, max_digits=5, decimal_places=2)
    shares: Optional[int] = Field(None, gt=0)


class ExpenseCreate(BaseModel):
    group_id: int
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    total_amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    paid_by: Optional[int] = None
    split_type: SplitType = SplitType.EQUAL
    category: str = Field("Other", min_length=1, max_length=50)
    date: Optional[datetime] = None
    splits: Optional[List[SplitInput]] = None


class ExpenseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    total_amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    paid_by: Optional[int] = None
    split_type: Optional[SplitType] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    date: Optional[datetime] = None
    splits: Optional[List[SplitInput]] = None


class ExpenseSplitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    amount: MoneyOut
    percentage: Optional[Decimal] = None
    shares: Optional[int] = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    title: str
    description: Optional[str] = None
    total_amount: MoneyOut
    currency: str
    paid_by: int
    split_type: SplitType
    category: str
    date: Optional[datetime] = None
    created_by: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    splits: List[ExpenseSplitOut] = []


class ExpenseDeleted(BaseModel):
    id: int
