from collections import defaultdict
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.exceptions import wrap_errors
from splitledger.core.logging_utils import get_logger
from splitledger.core.utils import TOLERANCE, ZERO, money, simplify_debts
from splitledger.db.session import unit_of_work
from splitledger.models.expense import Expense
from splitledger.models.expense_split import ExpenseSplit
from splitledger.models.payment import Payment, PaymentStatus
from splitledger.services import balance_store
from splitledger.services.group_services import get_group, get_users, list_active_members, require_admin, require_member
from splitledger.services.ledger import compute_balance_deltas
from splitledger.services.payment_services import payment_deltas

LOGGER = get_logger(__name__)


def _balance_row(row) -> Dict:
    return {
        "user_id": row.user_id,
        "user_name": row.user_name,
        "group_id": row.group_id,
        "balance": money(row.balance),
        "updated_at": row.updated_at,
    }


async def _settlements(db: AsyncSession, group_id: int) -> List[Dict]:
    transfers = simplify_debts(await balance_store.group_snapshot(db, group_id))
    if not transfers:
        return []

    users = await get_users(db, {u for t in transfers for u in (t.from_user_id, t.to_user_id)})

    def name(uid):
        user = users.get(uid)
        return user.name if user else None

    return [
        {
            "from_user_id": t.from_user_id,
            "from_name": name(t.from_user_id),
            "to_user_id": t.to_user_id,
            "to_name": name(t.to_user_id),
            "amount": t.amount,
        }
        for t in transfers
    ]


@wrap_errors("Failed to fetch group balances")
async def get_group_balances(db: AsyncSession, group_id: int, user_id: int) -> List[Dict]:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    return [_balance_row(row) for row in await balance_store.list_by_group(db, group_id)]


@wrap_errors("Failed to calculate simplified debts")
async def get_simplified_debts(db: AsyncSession, group_id: int, user_id: int) -> List[Dict]:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    return await _settlements(db, group_id)


@wrap_errors("Failed to fetch group balance summary")
async def get_group_balance_summary(db: AsyncSession, group_id: int, user_id: int) -> Dict:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    res = await db.execute(
        select(func.coalesce(func.sum(Expense.total_amount), 0), func.count(Expense.id))
        .where(Expense.group_id == group_id)
    )
    total_expenses, expense_count = res.one()

    balances = [_balance_row(row) for row in await balance_store.list_by_group(db, group_id)]
    total_owed = sum((b["balance"] for b in balances if b["balance"] > 0), ZERO)
    total_owing = sum((-b["balance"] for b in balances if b["balance"] < 0), ZERO)

    return {
        "total_expenses": money(total_expenses),
        "expense_count": expense_count,
        "total_members": len(await list_active_members(db, group_id)),
        "total_owed": total_owed,
        "total_owing": total_owing,
        "balances": balances,
        "simplified_debts": await _settlements(db, group_id),
    }


@wrap_errors("Failed to fetch user balances")
async def get_user_balances(db: AsyncSession, user_id: int) -> List[Dict]:
    return [
        {
            "user_id": row.user_id,
            "group_id": row.group_id,
            "group_name": row.group_name,
            "balance": money(row.balance),
            "updated_at": row.updated_at,
        }
        for row in await balance_store.list_by_user(db, user_id)
    ]


@wrap_errors("Failed to calculate net balance")
async def get_user_net_balance(db: AsyncSession, user_id: int) -> Dict:
    net = await balance_store.net_for_user(db, user_id)
    return {
        "total_owed": net.total_owed,
        "total_owing": net.total_owing,
        "net_balance": net.net,
    }


async def _expected_balances(db: AsyncSession, group_id: int) -> Dict[int, Decimal]:
    """Balances rebuilt from scratch out of expenses and completed payments."""
    expected: Dict[int, Decimal] = defaultdict(lambda: ZERO)

    exp_res = await db.execute(select(Expense).where(Expense.group_id == group_id))
    expenses = exp_res.scalars().all()

    split_res = await db.execute(
        select(ExpenseSplit)
        .join(Expense, Expense.id == ExpenseSplit.expense_id)
        .where(Expense.group_id == group_id)
    )
    splits_map = defaultdict(list)
    for split in split_res.scalars().all():
        splits_map[split.expense_id].append(split)

    for expense in expenses:
        for uid, delta in compute_balance_deltas(expense, splits_map[expense.id]).items():
            expected[uid] += delta

    pay_res = await db.execute(
        select(Payment).where(Payment.group_id == group_id, Payment.status == PaymentStatus.COMPLETED)
    )
    for payment in pay_res.scalars().all():
        for uid, delta in payment_deltas(payment).items():
            expected[uid] += delta

    return dict(expected)


@wrap_errors("Failed to validate group balances")
async def validate_group_balance_consistency(db: AsyncSession, group_id: int, user_id: int) -> Dict:
    await get_group(db, group_id)
    await require_member(db, group_id, user_id)

    stored = await balance_store.group_snapshot(db, group_id)
    expected = await _expected_balances(db, group_id)

    issues = []
    total_balance = sum(stored.values(), ZERO)
    if abs(total_balance) > TOLERANCE:
        issues.append(f"Group balances do not sum to zero: {total_balance}")

    for uid in sorted(set(stored) | set(expected)):
        have = stored.get(uid, ZERO)
        want = money(expected.get(uid, ZERO))
        if abs(have - want) > TOLERANCE:
            issues.append(f"User {uid} balance is {have}, expected {want}")

    if issues:
        LOGGER.warning("Balance check failed for group %s: %s", group_id, issues)

    return {
        "is_valid": not issues,
        "total_balance": total_balance,
        "issues": issues,
    }


async def recalculate_group_balances(db: AsyncSession, group_id: int, user_id: int) -> List[Dict]:
    """Rebuild every stored balance of the group from its expenses and completed payments."""
    async with unit_of_work(db, "Failed to recalculate group balances"):
        await get_group(db, group_id)
        await require_admin(db, group_id, user_id)

        stored = await balance_store.group_snapshot(db, group_id)
        expected = await _expected_balances(db, group_id)
        rebuilt = {uid: money(expected.get(uid, ZERO)) for uid in set(stored) | set(expected)}

        await balance_store.set_balances(db, group_id, rebuilt)
        rows = [_balance_row(row) for row in await balance_store.list_by_group(db, group_id)]

    changed = sorted(uid for uid, bal in rebuilt.items() if stored.get(uid) != bal)
    LOGGER.info("Recalculated balances of group %s by user %s, changed users: %s", group_id, user_id, changed)
    return rows
