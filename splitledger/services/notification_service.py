"""Best-effort notifications sent after an expense is committed.

Delivery itself (email, push) lives outside this service behind the
``NotificationGateway`` protocol. ``send_expense_notifications`` never
raises: failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from splitledger.core.config import settings
from splitledger.core.logging_utils import get_logger
from splitledger.core.utils import money
from splitledger.models.group import Group
from splitledger.models.user import User
from splitledger.services.group_services import get_group, get_users

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ExpenseSummary:
    id: int
    title: str
    description: Optional[str]
    total_amount: Decimal
    currency: str
    category: str
    date: Optional[datetime]


class NotificationGateway(Protocol):
    async def notify_expense_added(
        self,
        recipient: User,
        expense_summary: ExpenseSummary,
        payer: User,
        group: Group,
        their_share: Decimal,
    ) -> None: ...


class LoggingNotificationGateway:
    """Writes the notification to the log instead of delivering it."""

    async def notify_expense_added(self, recipient, expense_summary, payer, group, their_share) -> None:
        LOGGER.info(
            "Notify %s <%s>: %s added '%s' (%s %s) in %s, your share is %s",
            recipient.name,
            recipient.email,
            payer.name,
            expense_summary.title,
            expense_summary.total_amount,
            expense_summary.currency,
            group.name,
            their_share,
        )


class DisabledNotificationGateway:
    async def notify_expense_added(self, recipient, expense_summary, payer, group, their_share) -> None:
        return None


def get_notification_gateway() -> NotificationGateway:
    if settings.NOTIFICATIONS_ENABLED:
        return LoggingNotificationGateway()
    return DisabledNotificationGateway()


async def send_expense_notifications(
    db: AsyncSession,
    gateway: NotificationGateway,
    expense,
    splits: Iterable,
) -> None:
    """Notify every participant except the payer, concurrently. Never raises."""
    try:
        targets = [s for s in splits if s.user_id != expense.paid_by]
        if not targets:
            return

        group = await get_group(db, expense.group_id)
        users = await get_users(db, [expense.paid_by, *(s.user_id for s in targets)])
        payer = users.get(expense.paid_by)
        targets = [s for s in targets if s.user_id in users]

        if payer is None:
            LOGGER.error("Payer %s of expense %s not found, skipping notifications", expense.paid_by, expense.id)
            return

        # nothing below touches the database, release the read transaction
        await db.commit()

        summary = ExpenseSummary(
            id=expense.id,
            title=expense.title,
            description=expense.description,
            total_amount=money(expense.total_amount),
            currency=expense.currency,
            category=expense.category,
            date=expense.date,
        )

        results = await asyncio.gather(
            *(
                gateway.notify_expense_added(users[s.user_id], summary, payer, group, money(s.amount))
                for s in targets
            ),
            return_exceptions=True,
        )

        for split, result in zip(targets, results):
            if isinstance(result, BaseException):
                LOGGER.error(
                    "Failed to send expense notification to user %s for expense %s",
                    split.user_id,
                    expense.id,
                    exc_info=result,
                )
    except Exception:
        LOGGER.exception("Error sending notifications for expense %s", expense.id)
