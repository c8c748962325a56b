from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.logging_utils import get_logger
from splitledger.core.utils import ZERO, money
from splitledger.services.balance_store import apply_deltas

LOGGER = get_logger(__name__)


def compute_balance_deltas(expense, splits: Iterable) -> Dict[int, Decimal]:
    """Balance change implied by one expense.

    The payer is credited ``total - own share`` and every other participant
    is debited their share. A payer who is not a participant has a share of
    0. Depends only on the arguments, so applying and then reversing the
    same pair is an exact no-op.
    """
    deltas: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    deltas[expense.paid_by] += money(expense.total_amount)

    for split in splits:
        deltas[split.user_id] -= money(split.amount)

    return dict(deltas)


async def apply_expense(db: AsyncSession, expense, splits: Iterable) -> Dict[int, Decimal]:
    deltas = compute_balance_deltas(expense, splits)
    balances = await apply_deltas(db, expense.group_id, deltas)
    LOGGER.debug("Applied expense %s to group %s: %s", expense.id, expense.group_id, deltas)
    return balances


async def reverse_expense(db: AsyncSession, expense, splits: Iterable) -> Dict[int, Decimal]:
    deltas = {uid: -delta for uid, delta in compute_balance_deltas(expense, splits).items()}
    balances = await apply_deltas(db, expense.group_id, deltas)
    LOGGER.debug("Reversed expense %s in group %s: %s", expense.id, expense.group_id, deltas)
    return balances


async def replace_expense(
    db: AsyncSession,
    previous: Mapping[int, Decimal],
    expense,
    splits: Iterable,
) -> Dict[int, Decimal]:
    """Swap an applied version of an expense for its new state.

    ``previous`` holds the deltas the old version applied. Reversal and the
    new deltas are merged so every touched row is locked once, in ascending
    user id order.
    """
    deltas: Dict[int, Decimal] = defaultdict(lambda: ZERO)
    for uid, delta in previous.items():
        deltas[uid] -= delta
    for uid, delta in compute_balance_deltas(expense, splits).items():
        deltas[uid] += delta

    balances = await apply_deltas(db, expense.group_id, dict(deltas))
    LOGGER.debug("Replaced expense %s in group %s: %s", expense.id, expense.group_id, dict(deltas))
    return balances
