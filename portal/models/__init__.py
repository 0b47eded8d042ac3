"""ORM Models — the single kv_store table backing every portal document.

Design Decisions:
    - Documents are denormalized JSON values under structured keys (core/kv_keys.py)
      instead of one table per entity
"""

from portal.models.kv_entry import KVEntry  # noqa: F401
