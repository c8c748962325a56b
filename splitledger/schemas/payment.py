from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from splitledger.models.payment import PaymentStatus
from splitledger.schemas.common import MoneyOut


class PaymentCreate(BaseModel):
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=r"^[A-Z]{3}$")
    description: Optional[str] = Field(None, max_length=500)


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    from_user_id: int
    to_user_id: int
    amount: MoneyOut
    currency: str
    description: Optional[str] = None
    status: PaymentStatus
    created_by: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class PaymentDeleted(BaseModel):
    id: int


class PaymentStatsOut(BaseModel):
    total_payments: int
    pending_payments: int
    completed_payments: int
    cancelled_payments: int
    total_amount: MoneyOut
    pending_amount: MoneyOut
