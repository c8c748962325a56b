"""Expense lifecycle: validate, persist, update the ledger, then notify.

Each write runs in one ``unit_of_work`` so the expense rows and the
balance changes commit or roll back together. Notifications go out only
after the commit and can never fail the request.
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.config import settings
from splitledger.core.exceptions import NotFoundError, ValidationError, wrap_errors
from splitledger.core.logging_utils import get_logger
from splitledger.core.utils import money
from splitledger.db.session import unit_of_work
from splitledger.models.expense import Expense, SplitType
from splitledger.models.expense_split import ExpenseSplit
from splitledger.schemas.common import Pagination
from splitledger.schemas.expense import ExpenseCreate, ExpenseUpdate, SplitInput
from splitledger.services.group_services import get_group, is_active_member, list_active_members, require_member
from splitledger.services.ledger import apply_expense, compute_balance_deltas, replace_expense, reverse_expense
from splitledger.services.notification_service import NotificationGateway, get_notification_gateway, send_expense_notifications
from splitledger.services.split_validator import (
    SplitLine,
    absorb_residual,
    equal_splits,
    resolve_split_amounts,
    validate_splits,
)

LOGGER = get_logger(__name__)

EXPENSE_CATEGORIES = [
    "Food & Dining",
    "Transportation",
    "Entertainment",
    "Shopping",
    "Bills & Utilities",
    "Healthcare",
    "Travel",
    "Education",
    "Other",
]


def _lines_from_input(splits: Sequence[SplitInput]) -> List[SplitLine]:
    return [
        SplitLine(user_id=s.user_id, amount=s.amount, percentage=s.percentage, shares=s.shares)
        for s in splits
    ]


def _lines_from_rows(split_type: SplitType, rows: Sequence[ExpenseSplit]) -> List[SplitLine]:
    # amounts left out so they are re-derived for the new total
    if split_type == SplitType.EXACT:
        raise ValidationError("Splits are required when changing the amount of an exact split")
    return [SplitLine(user_id=r.user_id, percentage=r.percentage, shares=r.shares) for r in rows]


async def _prepare_splits(
    db: AsyncSession,
    group_id: int,
    total,
    split_type: SplitType,
    lines: Optional[List[SplitLine]],
) -> List[SplitLine]:
    member_ids = await list_active_members(db, group_id)

    if lines is None:
        if split_type != SplitType.EQUAL:
            raise ValidationError(f"Splits are required for {split_type.value} splits")
        lines = equal_splits(total, member_ids)
    else:
        lines = resolve_split_amounts(total, split_type, lines)

    validate_splits(total, split_type, lines, member_ids)
    return absorb_residual(total, lines)


def _add_split_rows(db: AsyncSession, expense_id: int, lines: Sequence[SplitLine]) -> List[ExpenseSplit]:
    rows = [
        ExpenseSplit(
            expense_id=expense_id,
            user_id=line.user_id,
            amount=line.amount,
            percentage=line.percentage,
            shares=line.shares,
        )
        for line in sorted(lines, key=lambda l: l.user_id)
    ]
    db.add_all(rows)
    return rows


async def _load_splits(db: AsyncSession, expense_id: int) -> List[ExpenseSplit]:
    q = (
        select(ExpenseSplit)
        .where(ExpenseSplit.expense_id == expense_id)
        .order_by(ExpenseSplit.user_id)
    )
    res = await db.execute(q)
    return list(res.scalars().all())


async def _lock_expense(db: AsyncSession, expense_id: int) -> Expense:
    res = await db.execute(select(Expense).where(Expense.id == expense_id).with_for_update())
    expense = res.scalar_one_or_none()

    if not expense:
        raise NotFoundError("Expense")

    return expense


def _expense_payload(expense: Expense, splits: Sequence[ExpenseSplit]) -> Dict:
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "title": expense.title,
        "description": expense.description,
        "total_amount": money(expense.total_amount),
        "currency": expense.currency,
        "paid_by": expense.paid_by,
        "split_type": expense.split_type,
        "category": expense.category,
        "date": expense.date,
        "created_by": expense.created_by,
        "created_at": expense.created_at,
        "updated_at": expense.updated_at,
        "splits": [
            {
                "user_id": s.user_id,
                "amount": money(s.amount),
                "percentage": s.percentage,
                "shares": s.shares,
            }
            for s in sorted(splits, key=lambda s: s.user_id)
        ],
    }


async def create_expense(
    db: AsyncSession,
    data: ExpenseCreate,
    created_by: int,
    notifier: Optional[NotificationGateway] = None,
):
    async with unit_of_work(db, "Failed to create expense"):
        group = await get_group(db, data.group_id)
        await require_member(db, group.id, created_by)

        paid_by = data.paid_by if data.paid_by is not None else created_by
        if not await is_active_member(db, group.id, paid_by):
            raise ValidationError("The person who paid must be a group member")

        total = money(data.total_amount)
        lines = None if data.splits is None else _lines_from_input(data.splits)
        lines = await _prepare_splits(db, group.id, total, data.split_type, lines)

        expense = Expense(
            group_id=group.id,
            title=data.title,
            description=data.description,
            total_amount=total,
            currency=data.currency or group.currency or settings.DEFAULT_CURRENCY,
            paid_by=paid_by,
            split_type=data.split_type,
            category=data.category,
            date=data.date or datetime.now(timezone.utc),
            created_by=created_by,
        )
        db.add(expense)
        await db.flush()  # gives expense.id

        splits = _add_split_rows(db, expense.id, lines)
        await db.flush()

        await apply_expense(db, expense, splits)

    LOGGER.info("Expense %s created in group %s by user %s", expense.id, expense.group_id, created_by)

    await send_expense_notifications(db, notifier or get_notification_gateway(), expense, splits)

    return _expense_payload(expense, splits)


async def update_expense(db: AsyncSession, expense_id: int, data: ExpenseUpdate, user_id: int):
    async with unit_of_work(db, "Failed to update expense"):
        expense = await _lock_expense(db, expense_id)
        await require_member(db, expense.group_id, user_id)

        old_splits = await _load_splits(db, expense.id)
        old_total = money(expense.total_amount)

        new_total = money(data.total_amount) if data.total_amount is not None else old_total
        new_type = data.split_type or expense.split_type
        new_payer = data.paid_by if data.paid_by is not None else expense.paid_by

        if new_payer != expense.paid_by and not await is_active_member(db, expense.group_id, new_payer):
            raise ValidationError("The person who paid must be a group member")

        if data.splits is not None:
            lines = await _prepare_splits(db, expense.group_id, new_total, new_type, _lines_from_input(data.splits))
        elif new_total != old_total or new_type != expense.split_type:
            lines = await _prepare_splits(db, expense.group_id, new_total, new_type, _lines_from_rows(new_type, old_splits))
        else:
            lines = None

        # what the old version put into the ledger, captured before anything changes
        previous = compute_balance_deltas(expense, old_splits)

        changes = data.model_dump(exclude_unset=True, exclude={"splits", "total_amount", "split_type", "paid_by"})
        for field, value in changes.items():
            if value is None and field != "description":
                continue
            setattr(expense, field, value)

        expense.total_amount = new_total
        expense.split_type = new_type
        expense.paid_by = new_payer

        if lines is not None:
            for s in old_splits:
                await db.delete(s)
            await db.flush()
            splits = _add_split_rows(db, expense.id, lines)
        else:
            splits = old_splits

        await db.flush()
        await replace_expense(db, previous, expense, splits)
        await db.refresh(expense)

    LOGGER.info("Expense %s updated by user %s", expense.id, user_id)
    return _expense_payload(expense, splits)


async def delete_expense(db: AsyncSession, expense_id: int, user_id: int):
    async with unit_of_work(db, "Failed to delete expense"):
        expense = await _lock_expense(db, expense_id)
        await require_member(db, expense.group_id, user_id)

        splits = await _load_splits(db, expense.id)
        await reverse_expense(db, expense, splits)

        for s in splits:
            await db.delete(s)
        await db.flush()
        await db.delete(expense)

    LOGGER.info("Expense %s deleted by user %s", expense_id, user_id)
    return {"id": expense_id}


@wrap_errors("Failed to fetch expense")
async def get_expense_by_id(db: AsyncSession, expense_id: int, user_id: int):
    res = await db.execute(select(Expense).where(Expense.id == expense_id))
    expense = res.scalar_one_or_none()

    if not expense:
        raise NotFoundError("Expense")

    await require_member(db, expense.group_id, user_id)

    return _expense_payload(expense, await _load_splits(db, expense.id))


async def _with_splits(db: AsyncSession, expenses: Sequence[Expense]) -> List[Dict]:
    if not expenses:
        return []

    q = (
        select(ExpenseSplit)
        .where(ExpenseSplit.expense_id.in_([e.id for e in expenses]))
        .order_by(ExpenseSplit.user_id)
    )
    res = await db.execute(q)

    splits_map: Dict[int, List[ExpenseSplit]] = {}
    for split in res.scalars().all():
        splits_map.setdefault(split.expense_id, []).append(split)

    return [_expense_payload(e, splits_map.get(e.id, [])) for e in expenses]


@wrap_errors("Failed to fetch group expenses")
async def list_group_expenses(
    db: AsyncSession,
    group_id: int,
    user_id: int,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict], Pagination]:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    count_res = await db.execute(select(func.count(Expense.id)).where(Expense.group_id == group_id))
    total = count_res.scalar_one()

    q = (
        select(Expense)
        .where(Expense.group_id == group_id)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    res = await db.execute(q)
    expenses = res.scalars().all()

    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
    return await _with_splits(db, expenses), pagination


@wrap_errors("Failed to fetch user expenses")
async def list_user_expenses(db: AsyncSession, user_id: int) -> List[Dict]:
    """Expenses the user paid for or takes part in, newest first."""
    q = (
        select(Expense)
        .outerjoin(ExpenseSplit, Expense.id == ExpenseSplit.expense_id)
        .where(
            (Expense.paid_by == user_id) |
            (ExpenseSplit.user_id == user_id)
        )
        .order_by(Expense.date.desc(), Expense.id.desc())
        .distinct()
    )

    res = await db.execute(q)
    return await _with_splits(db, res.scalars().all())


def get_expense_categories() -> List[str]:
    return list(EXPENSE_CATEGORIES)
