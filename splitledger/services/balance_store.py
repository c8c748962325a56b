"""Persisted per-(user, group) running balances.

Writes go through ``apply_delta`` (or ``set_balances`` when rebuilding a
group). Both lock the rows they touch, so callers must run inside a single
transaction (see ``unit_of_work``).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Mapping

from sqlalchemy import insert, select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.utils import ZERO, money, qround, to_decimal
from splitledger.models.group import Group
from splitledger.models.user import User
from splitledger.models.user_balance import UserBalance


@dataclass(frozen=True)
class NetBalance:
    total_owed: Decimal
    total_owing: Decimal
    net: Decimal


def _row_filter(user_id: int, group_id: int):
    return (UserBalance.user_id == user_id, UserBalance.group_id == group_id)


async def get_balance(db: AsyncSession, user_id: int, group_id: int) -> Decimal:
    q = select(UserBalance.balance).where(*_row_filter(user_id, group_id))
    res = await db.execute(q)
    return money(res.scalar_one_or_none())


async def _ensure_row(db: AsyncSession, user_id: int, group_id: int) -> None:
    values = {"user_id": user_id, "group_id": group_id, "balance": ZERO}
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = pg_insert(UserBalance).values(**values).on_conflict_do_nothing(
            index_elements=["user_id", "group_id"]
        )
    elif dialect == "sqlite":
        stmt = sqlite_insert(UserBalance).values(**values).on_conflict_do_nothing(
            index_elements=["user_id", "group_id"]
        )
    else:
        existing = await db.execute(select(UserBalance.id).where(*_row_filter(user_id, group_id)))
        if existing.scalar_one_or_none() is not None:
            return
        stmt = insert(UserBalance).values(**values)

    await db.execute(stmt)


async def _lock_row(db: AsyncSession, user_id: int, group_id: int) -> Decimal:
    await _ensure_row(db, user_id, group_id)

    locked = await db.execute(
        select(UserBalance.balance)
        .where(*_row_filter(user_id, group_id))
        .with_for_update()
    )
    return money(locked.scalar_one())


async def _write(db: AsyncSession, user_id: int, group_id: int, balance: Decimal) -> None:
    await db.execute(
        update(UserBalance)
        .where(*_row_filter(user_id, group_id))
        .values(balance=balance, updated_at=func.now())
    )


async def apply_delta(db: AsyncSession, user_id: int, group_id: int, delta: Decimal) -> Decimal:
    """Add ``delta`` to the balance, creating the row at 0 if needed. Returns the new balance."""
    new_balance = qround(await _lock_row(db, user_id, group_id) + to_decimal(delta))
    await _write(db, user_id, group_id, new_balance)
    return new_balance


async def set_balances(db: AsyncSession, group_id: int, balances: Mapping[int, Decimal]) -> None:
    """Overwrite balances outright, locking rows in ascending user id order."""
    for uid in sorted(balances):
        await _lock_row(db, uid, group_id)
        await _write(db, uid, group_id, money(balances[uid]))


async def apply_deltas(db: AsyncSession, group_id: int, deltas: Mapping[int, Decimal]) -> Dict[int, Decimal]:
    # fixed lock order across transactions
    return {
        uid: await apply_delta(db, uid, group_id, deltas[uid])
        for uid in sorted(deltas)
    }


async def list_by_group(db: AsyncSession, group_id: int) -> List:
    q = (
        select(
            UserBalance.user_id,
            UserBalance.group_id,
            UserBalance.balance,
            UserBalance.updated_at,
            User.name.label("user_name"),
        )
        .join(User, User.id == UserBalance.user_id)
        .where(UserBalance.group_id == group_id)
        .order_by(UserBalance.balance.desc(), UserBalance.user_id)
    )
    res = await db.execute(q)
    return res.all()


async def list_by_user(db: AsyncSession, user_id: int) -> List:
    q = (
        select(
            UserBalance.user_id,
            UserBalance.group_id,
            UserBalance.balance,
            UserBalance.updated_at,
            Group.name.label("group_name"),
        )
        .join(Group, Group.id == UserBalance.group_id)
        .where(UserBalance.user_id == user_id)
        .order_by(UserBalance.group_id)
    )
    res = await db.execute(q)
    return res.all()


async def net_for_user(db: AsyncSession, user_id: int) -> NetBalance:
    total_owed = ZERO
    total_owing = ZERO

    for row in await list_by_user(db, user_id):
        amount = money(row.balance)
        if amount > 0:
            total_owed += amount
        else:
            total_owing += abs(amount)

    return NetBalance(total_owed=total_owed, total_owing=total_owing, net=total_owed - total_owing)


async def group_snapshot(db: AsyncSession, group_id: int) -> Dict[int, Decimal]:
    res = await db.execute(
        select(UserBalance.user_id, UserBalance.balance).where(UserBalance.group_id == group_id)
    )
    return {uid: money(bal) for uid, bal in res.all()}


async def group_total(db: AsyncSession, group_id: int) -> Decimal:
    return sum((await group_snapshot(db, group_id)).values(), ZERO)
