from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from splitledger.schemas.common import MoneyOut


class GroupMemberBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    user_name: Optional[str] = None
    group_id: int
    balance: MoneyOut
    updated_at: Optional[datetime] = None


class UserGroupBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    group_id: int
    group_name: Optional[str] = None
    balance: MoneyOut
    updated_at: Optional[datetime] = None


class NetBalanceOut(BaseModel):
    total_owed: MoneyOut
    total_owing: MoneyOut
    net_balance: MoneyOut


class SettlementOut(BaseModel):
    from_user_id: int
    from_name: Optional[str] = None
    to_user_id: int
    to_name: Optional[str] = None
    amount: MoneyOut


class GroupBalanceSummaryOut(BaseModel):
    total_expenses: MoneyOut
    expense_count: int
    total_members: int
    total_owed: MoneyOut
    total_owing: MoneyOut
    balances: List[GroupMemberBalanceOut]
    simplified_debts: List[SettlementOut]


class BalanceConsistencyOut(BaseModel):
    is_valid: bool
    total_balance: MoneyOut
    issues: List[str]
