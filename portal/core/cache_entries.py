"""Cache Entries — freshness checks for the timestamped documents cached in KV.

Invariants:
    - Timestamps are epoch milliseconds (the format every cached document uses)
    - An entry without a usable timestamp is never fresh
"""

from datetime import datetime, timezone


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def stamped(data, now: int, **extra) -> dict:
    """Wrap data as a {data, timestamp} cache document."""
    return {"data": data, "timestamp": now, **extra}


def is_fresh(entry, ttl_seconds: float, now: int) -> bool:
    """True if a {..., timestamp} entry is younger than ttl_seconds."""
    if not isinstance(entry, dict):
        return False
    ts = entry.get("timestamp")
    if not isinstance(ts, (int, float)):
        return False
    return now - ts < ttl_seconds * 1000


def age_ms(entry, now: int) -> int | None:
    if not isinstance(entry, dict) or not isinstance(entry.get("timestamp"), (int, float)):
        return None
    return int(now - entry["timestamp"])


def is_unexpired(entry, now: int) -> bool:
    """True if an {..., expiresAt} entry has not passed its expiry."""
    if not isinstance(entry, dict):
        return False
    expires = entry.get("expiresAt")
    return isinstance(expires, (int, float)) and now < expires
