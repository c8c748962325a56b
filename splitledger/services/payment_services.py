"""Settle-up payments between two members of a group.

A payment is recorded as pending and only reaches the ledger when one of
the two parties marks it completed.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.config import settings
from splitledger.core.exceptions import ForbiddenError, NotFoundError, ValidationError, wrap_errors
from splitledger.core.logging_utils import get_logger
from splitledger.core.utils import TOLERANCE, ZERO, money
from splitledger.db.session import unit_of_work
from splitledger.models.payment import Payment, PaymentStatus
from splitledger.schemas.common import Pagination
from splitledger.schemas.payment import PaymentCreate
from splitledger.services import balance_store
from splitledger.services.group_services import get_group, is_active_member, require_member

LOGGER = get_logger(__name__)


def payment_deltas(payment) -> Dict[int, Decimal]:
    # the payer's debt shrinks, the receiver is owed less
    amount = money(payment.amount)
    return {payment.from_user_id: amount, payment.to_user_id: -amount}


def _require_party(payment: Payment, user_id: int) -> None:
    if user_id not in (payment.from_user_id, payment.to_user_id):
        raise ForbiddenError("Only the payer or the receiver can change this payment")


async def _lock_payment(db: AsyncSession, payment_id: int) -> Payment:
    res = await db.execute(select(Payment).where(Payment.id == payment_id).with_for_update())
    payment = res.scalar_one_or_none()

    if not payment:
        raise NotFoundError("Payment")

    return payment


async def create_payment(db: AsyncSession, data: PaymentCreate, created_by: int) -> Payment:
    async with unit_of_work(db, "Failed to create payment"):
        group = await get_group(db, data.group_id)
        await require_member(db, group.id, created_by)

        if data.from_user_id == data.to_user_id:
            raise ValidationError("Cannot record a payment to yourself")

        for uid in (data.from_user_id, data.to_user_id):
            if not await is_active_member(db, group.id, uid):
                raise ValidationError(f"User {uid} is not a group member")

        amount = money(data.amount)
        from_balance = await balance_store.get_balance(db, data.from_user_id, group.id)
        to_balance = await balance_store.get_balance(db, data.to_user_id, group.id)

        if from_balance >= 0 or to_balance <= 0:
            raise ValidationError("There is no outstanding debt between these users")
        if amount > min(-from_balance, to_balance) + TOLERANCE:
            raise ValidationError("Payment amount exceeds the outstanding debt")

        payment = Payment(
            group_id=group.id,
            from_user_id=data.from_user_id,
            to_user_id=data.to_user_id,
            amount=amount,
            currency=data.currency or group.currency or settings.DEFAULT_CURRENCY,
            description=data.description,
            status=PaymentStatus.PENDING,
            created_by=created_by,
        )
        db.add(payment)
        await db.flush()

    LOGGER.info("Payment %s recorded in group %s: %s -> %s %s",
                payment.id, payment.group_id, payment.from_user_id, payment.to_user_id, amount)
    return payment


async def update_payment_status(db: AsyncSession, payment_id: int, status: PaymentStatus, user_id: int) -> Payment:
    async with unit_of_work(db, "Failed to update payment"):
        payment = await _lock_payment(db, payment_id)
        _require_party(payment, user_id)

        if payment.status != PaymentStatus.PENDING:
            raise ValidationError(f"Payment is already {payment.status.value}")
        if status == PaymentStatus.PENDING:
            raise ValidationError("Payment is already pending")

        payment.status = status
        if status == PaymentStatus.COMPLETED:
            payment.completed_at = datetime.now(timezone.utc)
            await balance_store.apply_deltas(db, payment.group_id, payment_deltas(payment))

        await db.flush()
        await db.refresh(payment)

    LOGGER.info("Payment %s marked %s by user %s", payment.id, status.value, user_id)
    return payment


async def delete_payment(db: AsyncSession, payment_id: int, user_id: int) -> Dict:
    async with unit_of_work(db, "Failed to delete payment"):
        payment = await _lock_payment(db, payment_id)
        _require_party(payment, user_id)

        if payment.status != PaymentStatus.PENDING:
            raise ValidationError("Only pending payments can be deleted")

        await db.delete(payment)

    return {"id": payment_id}


@wrap_errors("Failed to fetch payments")
async def list_group_payments(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Payment], Pagination]:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    count_res = await db.execute(select(func.count(Payment.id)).where(Payment.group_id == group_id))
    total = count_res.scalar_one()

    res = await db.execute(
        select(Payment)
        .where(Payment.group_id == group_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
    return list(res.scalars().all()), pagination


@wrap_errors("Failed to fetch user payments")
async def list_user_payments(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    limit: int = 20,
    status: Optional[PaymentStatus] = None,
    direction: Optional[str] = None,
) -> Tuple[List[Payment], Pagination]:
    """Payments the user sent or received across all groups, newest first.

    ``direction`` narrows to ``"sent"`` or ``"received"``.
    """
    if direction == "sent":
        conditions = [Payment.from_user_id == user_id]
    elif direction == "received":
        conditions = [Payment.to_user_id == user_id]
    else:
        conditions = [or_(Payment.from_user_id == user_id, Payment.to_user_id == user_id)]

    if status is not None:
        conditions.append(Payment.status == status)

    count_res = await db.execute(select(func.count(Payment.id)).where(*conditions))
    total = count_res.scalar_one()

    res = await db.execute(
        select(Payment)
        .where(*conditions)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
    return list(res.scalars().all()), pagination


@wrap_errors("Failed to fetch payment statistics")
async def get_group_payment_stats(db: AsyncSession, group_id: int, user_id: int) -> Dict:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    res = await db.execute(
        select(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.group_id == group_id)
        .group_by(Payment.status)
    )

    counts = {status: 0 for status in PaymentStatus}
    amounts = {status: ZERO for status in PaymentStatus}
    for status, count, amount in res.all():
        counts[PaymentStatus(status)] = count
        amounts[PaymentStatus(status)] = money(amount)

    return {
        "total_payments": sum(counts.values()),
        "pending_payments": counts[PaymentStatus.PENDING],
        "completed_payments": counts[PaymentStatus.COMPLETED],
        "cancelled_payments": counts[PaymentStatus.CANCELLED],
        "total_amount": amounts[PaymentStatus.COMPLETED],
        "pending_amount": amounts[PaymentStatus.PENDING],
    }
