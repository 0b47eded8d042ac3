"""Admin Activity — activity log entries and dashboard counters.

Invariants:
    - Activity keys are admin_activity:{iso-timestamp}:{uuid}, so key order is time order
    - list() returns newest first
    - Dashboard counts come from KV key scans only
"""

import logging
import uuid

from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.repository_protocols import KeyValueStore

logger = logging.getLogger(__name__)

_RECENT_ACTIVITY_CAP = 10


class ActivityLog:
    """Records and reads admin activity."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def record(self, action: str, actor: str | None, details: dict | None = None) -> str:
        timestamp = now_iso()
        key = f"{kv_keys.ADMIN_ACTIVITY_PREFIX}{timestamp}:{uuid.uuid4()}"
        await self.kv.set(key, {
            "action": action,
            "actor": actor,
            "details": details or {},
            "timestamp": timestamp,
        })
        logger.info(f"Admin activity: {action}", extra={"user_id": actor})
        return key

    async def list(self, limit: int = 50, offset: int = 0) -> dict:
        keys = await self.kv.keys_with_prefix(kv_keys.ADMIN_ACTIVITY_PREFIX)
        page = sorted(keys, reverse=True)[offset:offset + limit]
        values = await self.kv.mget(page)
        return {
            "logs": [v for v in values if v is not None],
            "total": len(keys),
            "limit": limit,
            "offset": offset,
        }

    async def dashboard_stats(self) -> dict:
        user_keys = await self.kv.keys_with_prefix(kv_keys.USER_PREFIX)
        customer_keys = await self.kv.keys_with_prefix(kv_keys.CUSTOMER_PREFIX)
        team_keys = await self.kv.keys_with_prefix(kv_keys.LINEAR_TEAMS_PREFIX)
        activity_keys = await self.kv.keys_with_prefix(kv_keys.ADMIN_ACTIVITY_PREFIX)
        return {
            "stats": {
                "users": sum(1 for k in user_keys if kv_keys.is_top_level_user_key(k)),
                "customers": sum(
                    1 for k in customer_keys if kv_keys.is_top_level_customer_key(k)
                ),
                "teams": sum(1 for k in team_keys if kv_keys.is_team_record_key(k)),
                "recentActivity": min(len(activity_keys), _RECENT_ACTIVITY_CAP),
                "timestamp": now_iso(),
            },
        }
