from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from splitledger.db.session import get_db
from splitledger.core.dependencies import get_current_user
from splitledger.schemas.balances import (
    BalanceConsistencyOut,
    GroupBalanceSummaryOut,
    GroupMemberBalanceOut,
    NetBalanceOut,
    SettlementOut,
    UserGroupBalanceOut,
)
from splitledger.schemas.common import ApiResponse
from splitledger.services.balance_services import (
    get_group_balance_summary,
    get_group_balances,
    get_simplified_debts,
    get_user_balances,
    get_user_net_balance,
    recalculate_group_balances,
    validate_group_balance_consistency,
)

router = APIRouter()

@router.get("/group/{group_id}", response_model=ApiResponse[List[GroupMemberBalanceOut]])
async def group_balances(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_group_balances(db, group_id, current_user.id)}


@router.get("/group/{group_id}/simplified-debts", response_model=ApiResponse[List[SettlementOut]])
async def simplified_debts(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_simplified_debts(db, group_id, current_user.id)}


@router.get("/group/{group_id}/summary", response_model=ApiResponse[GroupBalanceSummaryOut])
async def group_summary(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_group_balance_summary(db, group_id, current_user.id)}


@router.get("/group/{group_id}/validate", response_model=ApiResponse[BalanceConsistencyOut])
async def validate_group(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await validate_group_balance_consistency(db, group_id, current_user.id)}


@router.get("/user", response_model=ApiResponse[List[UserGroupBalanceOut]])
async def my_balances(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_user_balances(db, current_user.id)}


@router.get("/user/net", response_model=ApiResponse[NetBalanceOut])
async def my_net_balance(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_user_net_balance(db, current_user.id)}


@router.post("/group/{group_id}/recalculate", response_model=ApiResponse[List[GroupMemberBalanceOut]])
async def recalculate_group(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    balances = await recalculate_group_balances(db, group_id, current_user.id)
    return {"data": balances, "message": "Group balances recalculated"}
