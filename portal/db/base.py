"""SQLAlchemy Declarative Base — shared base class for ORM models.

Invariants:
    - All models inherit from Base
    - Base is the single source of truth for table metadata (Alembic reads it)
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for portal ORM models."""
    pass
