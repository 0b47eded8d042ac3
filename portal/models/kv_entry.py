"""KV Entry ORM — one row per document in the portal key-value store.

Invariants:
    - key is the primary key; keys follow the schema in core/kv_keys.py
    - value is never NULL (deleting a key removes the row)
    - updated_at refreshed on every write

Design Decisions:
    - JSON column over JSONB: same model runs on SQLite in tests
"""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base


class KVEntry(Base):
    """A single JSON document addressed by its key."""
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[object] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
