from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from splitledger.db.session import get_db
from splitledger.schemas.common import ApiResponse
from splitledger.schemas.expense import ExpenseCreate, ExpenseDeleted, ExpenseOut, ExpenseUpdate
from splitledger.services.expense_services import (
    create_expense,
    delete_expense,
    get_expense_by_id,
    get_expense_categories,
    list_group_expenses,
    list_user_expenses,
    update_expense,
)
from splitledger.services.notification_service import NotificationGateway, get_notification_gateway
from splitledger.core.dependencies import get_current_user

router = APIRouter()

@router.post("/", status_code=201, response_model=ApiResponse[ExpenseOut])
async def add_expense(
    data: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
    notifier: NotificationGateway = Depends(get_notification_gateway),
):
    expense = await create_expense(db, data, current_user.id, notifier=notifier)
    return {"data": expense, "message": "Expense created successfully"}

@router.get("/group/{group_id}", response_model=ApiResponse[List[ExpenseOut]])
async def group_expenses(
    group_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    expenses, pagination = await list_group_expenses(db, group_id, current_user.id, page=page, limit=limit)
    return {"data": expenses, "pagination": pagination}

@router.get("/user", response_model=ApiResponse[List[ExpenseOut]])
async def my_expenses(
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await list_user_expenses(db, current_user.id)}

@router.get("/categories/list", response_model=ApiResponse[List[str]])
async def categories():
    return {"data": get_expense_categories()}

@router.get("/{expense_id}", response_model=ApiResponse[ExpenseOut])
async def fetch(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_expense_by_id(db, expense_id=expense_id, user_id=current_user.id)}

@router.put("/{expense_id}", response_model=ApiResponse[ExpenseOut])
async def edit(
    expense_id: int,
    data: ExpenseUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    expense = await update_expense(db, expense_id=expense_id, data=data, user_id=current_user.id)
    return {"data": expense, "message": "Expense updated successfully"}

@router.delete("/{expense_id}", response_model=ApiResponse[ExpenseDeleted])
async def del_expense(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    deleted = await delete_expense(db, expense_id=expense_id, user_id=current_user.id)
    return {"data": deleted, "message": "Expense deleted successfully"}
