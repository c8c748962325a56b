"""Shared fixtures: a file-backed SQLite ledger, a seeded group and an API client."""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List

import pytest
from httpx import ASGITransport, AsyncClient

from splitledger.core.jwt_config import create_access_token
from splitledger.db.session import Base, build_engine, build_sessionmaker, get_db
from splitledger.main import app
from splitledger.models.group import Group
from splitledger.models.group_member import GroupMember
from splitledger.models.user import User
from splitledger.services import balance_store
from splitledger.services.notification_service import get_notification_gateway


@dataclass
class SeededGroup:
    group_id: int
    alice: int
    bob: int
    carol: int
    outsider: int

    @property
    def members(self) -> List[int]:
        return [self.alice, self.bob, self.carol]


@dataclass
class RecordingNotifier:
    calls: List[dict] = field(default_factory=list)
    fail_for: set = field(default_factory=set)

    async def notify_expense_added(self, recipient, expense_summary, payer, group, their_share) -> None:
        if recipient.id in self.fail_for:
            raise RuntimeError("mail server down")
        self.calls.append(
            {
                "recipient": recipient.id,
                "payer": payer.id,
                "expense_id": expense_summary.id,
                "share": their_share,
            }
        )


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def group(session_factory) -> SeededGroup:
    async with session_factory() as session:
        users = [
            User(name=name, email=f"{name.lower()}@example.com")
            for name in ("Alice", "Bob", "Carol", "Dave")
        ]
        session.add_all(users)
        await session.flush()

        grp = Group(name="Goa trip", currency="INR", created_by=users[0].id)
        session.add(grp)
        await session.flush()

        session.add_all([
            GroupMember(group_id=grp.id, user_id=u.id, role="admin" if u is users[0] else "member")
            for u in users[:3]
        ])
        await session.commit()

        return SeededGroup(
            group_id=grp.id,
            alice=users[0].id,
            bob=users[1].id,
            carol=users[2].id,
            outsider=users[3].id,
        )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def client(session_factory, notifier):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_gateway] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def auth(user_id: int) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user_id)})}"}


async def snapshot(session_factory, group_id: int) -> Dict[int, Decimal]:
    """Balances read in a short-lived session so no lock outlives the call."""
    async with session_factory() as session:
        return await balance_store.group_snapshot(session, group_id)
