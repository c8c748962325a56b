from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from splitledger.db.session import get_db
from splitledger.core.dependencies import get_current_user
from splitledger.schemas.common import ApiResponse
from splitledger.models.payment import PaymentStatus
from splitledger.schemas.payment import PaymentCreate, PaymentDeleted, PaymentOut, PaymentStatsOut, PaymentStatusUpdate
from splitledger.services.payment_services import (
    create_payment,
    delete_payment,
    get_group_payment_stats,
    list_group_payments,
    list_user_payments,
    update_payment_status,
)

router = APIRouter()

@router.post("/", status_code=201, response_model=ApiResponse[PaymentOut])
async def record_payment(
    data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    payment = await create_payment(db, data, current_user.id)
    return {"data": payment, "message": "Payment recorded successfully"}

@router.get("/group/{group_id}", response_model=ApiResponse[List[PaymentOut]])
async def group_payments(
    group_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    payments, pagination = await list_group_payments(db, group_id, current_user.id, page=page, limit=limit)
    return {"data": payments, "pagination": pagination}

@router.get("/user", response_model=ApiResponse[List[PaymentOut]])
async def my_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[PaymentStatus] = None,
    direction: Optional[str] = Query(None, pattern="^(sent|received)$"),
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    payments, pagination = await list_user_payments(
        db, current_user.id, page=page, limit=limit, status=status, direction=direction
    )
    return {"data": payments, "pagination": pagination}

@router.get("/stats/group/{group_id}", response_model=ApiResponse[PaymentStatsOut])
async def group_payment_stats(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await get_group_payment_stats(db, group_id, current_user.id)}

@router.put("/{payment_id}/status", response_model=ApiResponse[PaymentOut])
async def change_status(
    payment_id: int,
    data: PaymentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    payment = await update_payment_status(db, payment_id, data.status, current_user.id)
    return {"data": payment, "message": f"Payment {payment.status.value}"}

@router.delete("/{payment_id}", response_model=ApiResponse[PaymentDeleted])
async def remove_payment(
    payment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user),
):
    return {"data": await delete_payment(db, payment_id, current_user.id), "message": "Payment deleted"}
