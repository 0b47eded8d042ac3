"""KV Store — tests for JSON document reads, writes and prefix scans.

Tests cover:
    - set/get round trip with upsert semantics
    - None is rejected on write; missing keys read as None
    - mget preserves order and repeats; mset/mdel over several keys
    - Prefix scans are literal (no LIKE wildcards) and key-ordered
    - Returned values are independent copies
    - Storage failures roll back and surface as DatabaseError
"""

import pytest
from sqlalchemy.exc import OperationalError

from portal.core.errors import DatabaseError


async def test_set_then_get(kv):
    await kv.set("user:u1", {"id": "u1", "role": "viewer"})
    assert await kv.get("user:u1") == {"id": "u1", "role": "viewer"}


async def test_set_overwrites(kv):
    await kv.set("k", [1])
    await kv.set("k", [1, 2])
    assert await kv.get("k") == [1, 2]


async def test_scalar_values(kv):
    await kv.set("team:t1:customer", "c1")
    await kv.set("flag", False)
    assert await kv.get("team:t1:customer") == "c1"
    assert await kv.get("flag") is False


async def test_missing_key_is_none(kv):
    assert await kv.get("nope") is None


async def test_none_is_rejected(kv):
    with pytest.raises(ValueError):
        await kv.set("k", None)


async def test_delete(kv):
    await kv.set("k", 1)
    await kv.delete("k")
    await kv.delete("never-existed")
    assert await kv.get("k") is None


async def test_mget_order_and_missing(kv):
    await kv.mset({"a": 1, "b": 2})
    assert await kv.mget(["b", "missing", "a", "b"]) == [2, None, 1, 2]
    assert await kv.mget([]) == []


async def test_mdel(kv):
    await kv.mset({"a": 1, "b": 2, "c": 3})
    await kv.mdel(["a", "c"])
    await kv.mdel([])
    assert await kv.mget(["a", "b", "c"]) == [None, 2, None]


async def test_prefix_scan_is_ordered(kv):
    await kv.mset({"user:b": 2, "user:a": 1, "customer:x": 3})
    assert await kv.get_by_prefix("user:") == [("user:a", 1), ("user:b", 2)]
    assert await kv.keys_with_prefix("customer:") == ["customer:x"]


async def test_prefix_scan_is_literal(kv):
    await kv.mset({"linear_teams:t1": 1, "linearXteams:t2": 2, "linear%teams:t3": 3})
    assert await kv.keys_with_prefix("linear_teams:") == ["linear_teams:t1"]


async def test_values_are_copies(kv):
    await kv.set("k", {"list": [1]})
    value = await kv.get("k")
    value["list"].append(2)
    assert await kv.get("k") == {"list": [1]}


async def test_storage_failure_becomes_database_error(kv, monkeypatch):
    await kv.set("k", 1)

    async def locked(statement, *args, **kwargs):
        raise OperationalError(str(statement), {}, Exception("database is locked"))

    monkeypatch.setattr(kv.db, "execute", locked)
    with pytest.raises(DatabaseError) as exc_info:
        await kv.set("k", 2)
    assert exc_info.value.code == "DATABASE_ERROR"
    assert exc_info.value.operation == "execute"
    assert isinstance(exc_info.value.__cause__, OperationalError)

    monkeypatch.undo()
    assert await kv.get("k") == 1
    await kv.set("k", 3)
    assert await kv.get("k") == 3
