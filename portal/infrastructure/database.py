"""KV Database — async engine and sessions behind the key-value table.

Invariants:
    - A session that raises is rolled back before the error leaves this module
    - SQLAlchemy failures surface as DatabaseError with the failing operation
    - SQLite URLs get no pool sizing (aiosqlite keeps its own static pool)

Design Decisions:
    - One db_manager per process, created and disposed by the FastAPI lifespan
    - expire_on_commit=False: KVStore selects plain columns, never live entities
    - The readiness check reads the kv_store table itself, so a missing
      migration shows up as not-ready rather than as 500s later
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import select
from sqlalchemy.exc import (
    DBAPIError, IntegrityError, OperationalError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession, async_sessionmaker, create_async_engine,
)

from portal.core.errors import DatabaseError
from portal.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)

# Most specific first: IntegrityError and OperationalError are DBAPIError subclasses
_ERROR_MAP: tuple[tuple[type[SQLAlchemyError], str, str], ...] = (
    (IntegrityError, "KV write violated a constraint", "commit"),
    (OperationalError, "KV store unreachable or locked", "execute"),
    (DBAPIError, "KV driver error", "query"),
    (SQLAlchemyError, "KV operation failed", "unknown"),
)


def _engine_options(database_url: str, pool_size: int, max_overflow: int) -> dict:
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def to_database_error(exc: SQLAlchemyError) -> DatabaseError:
    for exc_type, message, operation in _ERROR_MAP:
        if isinstance(exc, exc_type):
            return DatabaseError(message, operation)
    return DatabaseError("KV operation failed", "unknown")


class DatabaseSessionManager:
    """Owns the engine and hands out sessions for KVStore."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        self.engine = create_async_engine(
            database_url, **_engine_options(database_url, pool_size, max_overflow),
        )
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            await session.rollback()
            error = to_database_error(e)
            logger.error(
                f"{error.message}: {e}", extra={"error_code": error.code},
            )
            raise error from e
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """True when the kv_store table answers a read."""
        try:
            async with self.session() as db:
                await db.execute(select(KVEntry.key).limit(1))
            return True
        except (DatabaseError, OSError) as e:
            logger.error(f"KV health check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


db_manager: DatabaseSessionManager | None = None


def init_db(database_url: str, **kwargs) -> DatabaseSessionManager:
    global db_manager
    db_manager = DatabaseSessionManager(database_url, **kwargs)
    return db_manager


async def close_db() -> None:
    global db_manager
    if db_manager is not None:
        await db_manager.dispose()
        db_manager = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    if not db_manager:
        raise RuntimeError("Database not initialized")
    async with db_manager.session() as session:
        yield session
