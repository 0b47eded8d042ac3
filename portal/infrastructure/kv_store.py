"""KV Store — JSON document store over the kv_store table.

Invariants:
    - Values are JSON documents; None is rejected (use delete)
    - Every read deserializes a fresh copy, so callers may mutate results freely
    - Prefix matching is literal: '_' and '%' in keys are not wildcards
    - Each write commits; a SQLAlchemy failure rolls the session back and
      surfaces as DatabaseError, leaving the session usable for the next call

Design Decisions:
    - Core select/update/insert over ORM entities: the identity map would hand out
      shared mutable JSON values and miss in-place changes
    - Upsert as update-then-insert: portable across PostgreSQL and SQLite
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import select, update, insert, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.infrastructure.database import to_database_error
from portal.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)

_CHUNK = 500


class KVStore:
    """Async key-value access bound to one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, key: str) -> Any:
        async with self._mapped_errors(key):
            result = await self.db.execute(
                select(KVEntry.value).where(KVEntry.key == key),
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError(f"Cannot store None under '{key}'; use delete()")
        async with self._mapped_errors(key):
            await self._upsert(key, value)
            await self.db.commit()

    async def delete(self, key: str) -> None:
        async with self._mapped_errors(key):
            await self.db.execute(delete(KVEntry).where(KVEntry.key == key))
            await self.db.commit()

    async def mget(self, keys: list[str]) -> list[Any]:
        """Values in the order of keys; None for missing keys."""
        found: dict[str, Any] = {}
        unique = list(dict.fromkeys(keys))
        async with self._mapped_errors(f"{len(unique)} keys"):
            for i in range(0, len(unique), _CHUNK):
                chunk = unique[i:i + _CHUNK]
                result = await self.db.execute(
                    select(KVEntry.key, KVEntry.value).where(KVEntry.key.in_(chunk)),
                )
                found.update({row.key: row.value for row in result})
        return [found.get(k) for k in keys]

    async def mset(self, items: dict[str, Any]) -> None:
        for key, value in items.items():
            if value is None:
                raise ValueError(f"Cannot store None under '{key}'; use delete()")
        async with self._mapped_errors(f"{len(items)} keys"):
            for key, value in items.items():
                await self._upsert(key, value)
            await self.db.commit()

    async def mdel(self, keys: list[str]) -> None:
        if not keys:
            return
        async with self._mapped_errors(f"{len(keys)} keys"):
            for i in range(0, len(keys), _CHUNK):
                await self.db.execute(
                    delete(KVEntry).where(KVEntry.key.in_(keys[i:i + _CHUNK])),
                )
            await self.db.commit()

    async def get_by_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        async with self._mapped_errors(f"{prefix}*"):
            result = await self.db.execute(
                select(KVEntry.key, KVEntry.value)
                .where(KVEntry.key.startswith(prefix, autoescape=True))
                .order_by(KVEntry.key),
            )
            return [(row.key, row.value) for row in result]

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        async with self._mapped_errors(f"{prefix}*"):
            result = await self.db.execute(
                select(KVEntry.key)
                .where(KVEntry.key.startswith(prefix, autoescape=True))
                .order_by(KVEntry.key),
            )
            return list(result.scalars().all())

    async def _upsert(self, key: str, value: Any) -> None:
        result = await self.db.execute(
            update(KVEntry).where(KVEntry.key == key).values(value=value),
        )
        if result.rowcount == 0:
            await self.db.execute(insert(KVEntry).values(key=key, value=value))

    @asynccontextmanager
    async def _mapped_errors(self, target: str) -> AsyncGenerator[None, None]:
        try:
            yield
        except SQLAlchemyError as e:
            await self.db.rollback()
            error = to_database_error(e)
            logger.error(
                f"{error.message} ({target}): {e}",
                extra={"error_code": error.code},
            )
            raise error from e
