from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from splitledger.core.config import settings
from splitledger.core.exceptions import AppError, DatabaseError
from splitledger.core.logging_utils import get_logger

LOGGER = get_logger(__name__)

Base = declarative_base()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if not url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, pool_pre_ping=True)

    # SQLite has no row locks: take the write lock when the transaction
    # starts so concurrent ledger writes queue instead of interleaving.
    engine = create_async_engine(
        url,
        echo=echo,
        connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = build_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
async_session = build_sessionmaker(engine)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession, failure_message: str) -> AsyncIterator[AsyncSession]:
    """One transaction for a write operation.

    Commits when the block exits cleanly. Any failure rolls everything back;
    ``AppError`` is re-raised as is, anything else becomes ``DatabaseError``.
    """
    try:
        yield db
        await db.commit()
    except AppError:
        await db.rollback()
        raise
    except Exception as err:
        await db.rollback()
        LOGGER.exception(failure_message)
        raise DatabaseError(failure_message) from err
