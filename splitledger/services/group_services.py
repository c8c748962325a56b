"""Read-only view of groups and memberships.

Membership itself is managed elsewhere; the ledger only asks who is an
active member of a group.
"""

from typing import Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from splitledger.core.exceptions import ForbiddenError, NotFoundError
from splitledger.models.group import Group
from splitledger.models.group_member import GroupMember
from splitledger.models.user import User


async def get_group(db: AsyncSession, group_id: int) -> Group:
    res = await db.execute(select(Group).where(Group.id == group_id))
    group = res.scalar_one_or_none()

    if not group:
        raise NotFoundError("Group")

    return group


async def is_active_member(db: AsyncSession, group_id: int, user_id: int) -> bool:
    q = select(GroupMember.id).where(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id,
        GroupMember.is_active.is_(True),
    )
    res = await db.execute(q)
    return res.scalar_one_or_none() is not None


async def list_active_members(db: AsyncSession, group_id: int) -> List[int]:
    q = (
        select(GroupMember.user_id)
        .where(GroupMember.group_id == group_id, GroupMember.is_active.is_(True))
        .order_by(GroupMember.user_id)
    )
    res = await db.execute(q)
    return list(res.scalars().all())


async def require_member(db: AsyncSession, group_id: int, user_id: int) -> None:
    if not await is_active_member(db, group_id, user_id):
        raise ForbiddenError("You are not a member of this group")


async def get_users(db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
    user_ids = set(user_ids)
    if not user_ids:
        return {}

    res = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {user.id: user for user in res.scalars().all()}


async def require_admin(db: AsyncSession, group_id: int, user_id: int) -> None:
    q = select(GroupMember.id).where(
        GroupMember.group_id == group_id,
        GroupMember.user_id == user_id,
        GroupMember.is_active.is_(True),
        GroupMember.role == "admin",
    )
    res = await db.execute(q)
    if res.scalar_one_or_none() is None:
        raise ForbiddenError("Only group admins can recalculate balances")
