"""Superadmin Registry — KV-managed superadmin list with caching and an audit trail.

Invariants:
    - Emails are stored trimmed and lowercased
    - The list can be initialized without auth only while it is empty
    - A superadmin cannot remove themselves, and the last superadmin cannot be removed
    - Every add/remove/initialize writes an audit:superadmin:{action}:{ms}:{uuid} entry
    - Mutations clear both the list cache and the audit cache

Design Decisions:
    - get_emails() falls back to SUPERADMIN_EMAILS_FALLBACK when the KV list is
      missing, and seeds the KV list from it so later edits happen in one place
"""

import logging
import uuid

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import is_fresh, now_iso, now_ms
from portal.core.errors import (
    BusinessRuleError, ForbiddenError, InvalidInputError, ResourceNotFoundError,
)
from portal.core.repository_protocols import KeyValueStore

logger = logging.getLogger(__name__)

_AUDIT_LIMIT = 100

DEFAULT_SETTINGS = {
    "enableDynamicSuperadmins": True,
    "requireMFA": False,
    "maxSuperadmins": 10,
    "allowSelfRemoval": False,
}


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class SuperadminRegistry:
    """Reads and edits the superadmin email list."""

    def __init__(self, kv: KeyValueStore, settings: Settings | None = None):
        self.kv = kv
        self.settings = settings or get_settings()

    # ─── Lookup ──────────────────────────────────────────────────

    async def get_emails(self) -> list[str]:
        now = now_ms()
        cached = await self.kv.get(kv_keys.SUPERADMIN_CACHE)
        if is_fresh(cached, self.settings.superadmin_cache_ttl_seconds, now):
            return list(cached.get("emails") or [])

        stored = await self.kv.get(kv_keys.SUPERADMIN_EMAILS)
        if stored is None:
            emails = self.settings.superadmin_list()
            if emails:
                logger.warning(
                    "Superadmin list missing from KV; seeding from fallback setting",
                )
                await self.kv.set(kv_keys.SUPERADMIN_EMAILS, emails)
        elif isinstance(stored, list):
            emails = [normalize_email(e) for e in stored if isinstance(e, str)]
        else:
            logger.error("superadmin:emails is not a list; using fallback setting")
            emails = self.settings.superadmin_list()

        await self.kv.set(kv_keys.SUPERADMIN_CACHE, {
            "emails": emails,
            "timestamp": now,
            "ttl": self.settings.superadmin_cache_ttl_seconds * 1000,
        })
        return emails

    async def is_superadmin(self, email: str | None) -> bool:
        normalized = normalize_email(email)
        return bool(normalized) and normalized in await self.get_emails()

    async def check(self, email: str) -> dict:
        normalized = normalize_email(email)
        return {"isSuperAdmin": await self.is_superadmin(normalized), "email": normalized}

    async def list_emails(self, requester_email: str) -> dict:
        emails = await self.get_emails()
        if normalize_email(requester_email) not in emails:
            return {"superadmins": [], "count": 0, "isSuperAdmin": False}
        return {"superadmins": emails, "count": len(emails), "isSuperAdmin": True}

    # ─── Mutations ───────────────────────────────────────────────

    async def initialize(self, emails) -> dict:
        existing = await self.kv.get(kv_keys.SUPERADMIN_EMAILS)
        if isinstance(existing, list) and existing:
            raise BusinessRuleError("Superadmin list already initialized")
        if not emails or not isinstance(emails, list):
            raise InvalidInputError("Invalid email list", field="emails")

        valid = [
            normalize_email(e) for e in emails
            if isinstance(e, str) and "@" in e
        ]
        if not valid:
            raise InvalidInputError("No valid emails provided", field="emails")

        await self.kv.set(kv_keys.SUPERADMIN_EMAILS, valid)
        await self.kv.set(kv_keys.SUPERADMIN_SETTINGS, dict(DEFAULT_SETTINGS))
        await self._audit("initialize", {
            "action": "superadmin_initialized",
            "emails": valid,
            "timestamp": now_iso(),
            "count": len(valid),
        })
        await self.clear_caches()
        logger.info(f"Superadmin list initialized with {len(valid)} email(s)")
        return {"superadmins": valid, "count": len(valid)}

    async def add(
        self, email: str, actor_email: str, *, reason: str | None = None,
        ip: str | None = None, user_agent: str | None = None,
    ) -> dict:
        await self._require_superadmin(actor_email)
        if not isinstance(email, str) or "@" not in email:
            raise InvalidInputError("Invalid email address", field="email")
        normalized = normalize_email(email)

        current = await self._stored_list()
        if normalized in current:
            raise BusinessRuleError("Email already in superadmin list")

        await self.kv.set(kv_keys.SUPERADMIN_EMAILS, [*current, normalized])
        timestamp = now_iso()
        await self._audit("add", {
            "action": "superadmin_added",
            "email": normalized,
            "addedBy": actor_email,
            "timestamp": timestamp,
            "ip": ip or "unknown",
            "userAgent": user_agent,
            "reason": reason,
        })
        await self.clear_caches()
        logger.info(f"Superadmin added: {normalized}")
        return {"email": normalized, "addedBy": actor_email, "timestamp": timestamp}

    async def remove(
        self, email: str, actor_email: str, *, ip: str | None = None,
        user_agent: str | None = None,
    ) -> dict:
        await self._require_superadmin(actor_email)
        normalized = normalize_email(email)
        if normalized == normalize_email(actor_email):
            raise BusinessRuleError("Cannot remove yourself from superadmin list")

        current = await self._stored_list()
        if normalized not in current:
            raise ResourceNotFoundError(
                "Superadmin", normalized, message="Email not in superadmin list",
            )
        if len(current) == 1:
            raise BusinessRuleError("Cannot remove last superadmin")

        await self.kv.set(
            kv_keys.SUPERADMIN_EMAILS, [e for e in current if e != normalized],
        )
        timestamp = now_iso()
        await self._audit("remove", {
            "action": "superadmin_removed",
            "email": normalized,
            "removedBy": actor_email,
            "timestamp": timestamp,
            "ip": ip or "unknown",
            "userAgent": user_agent,
        })
        await self.clear_caches()
        logger.info(f"Superadmin removed: {normalized}")
        return {"email": normalized, "removedBy": actor_email, "timestamp": timestamp}

    async def audit(self, actor_email: str) -> dict:
        await self._require_superadmin(actor_email)
        now = now_ms()
        cached = await self.kv.get(kv_keys.SUPERADMIN_AUDIT_CACHE)
        if is_fresh(cached, self.settings.superadmin_audit_cache_ttl_seconds, now):
            logs = cached.get("logs") or []
            return {"logs": logs, "count": len(logs), "total": len(logs), "cached": True}

        entries = await self.kv.get_by_prefix(kv_keys.SUPERADMIN_AUDIT_PREFIX)
        logs = sorted(
            (value for _, value in entries if isinstance(value, dict)),
            key=lambda log: log.get("timestamp") or "",
            reverse=True,
        )
        recent = logs[:_AUDIT_LIMIT]
        await self.kv.set(
            kv_keys.SUPERADMIN_AUDIT_CACHE, {"logs": recent, "timestamp": now},
        )
        return {"logs": recent, "count": len(recent), "total": len(logs), "cached": False}

    # ─── Used by user management ─────────────────────────────────

    async def grant(self, email: str) -> None:
        """Ensure email is listed (role changed to superadmin)."""
        normalized = normalize_email(email)
        current = await self._stored_list()
        if normalized and normalized not in current:
            await self.kv.set(kv_keys.SUPERADMIN_EMAILS, [*current, normalized])
            await self.clear_caches()

    async def revoke(self, email: str) -> None:
        """Ensure email is not listed (role changed away from superadmin)."""
        normalized = normalize_email(email)
        current = await self._stored_list()
        if normalized in current:
            await self.kv.set(
                kv_keys.SUPERADMIN_EMAILS, [e for e in current if e != normalized],
            )
            await self.clear_caches()

    async def clear_caches(self) -> None:
        await self.kv.mdel([kv_keys.SUPERADMIN_CACHE, kv_keys.SUPERADMIN_AUDIT_CACHE])

    async def _stored_list(self) -> list[str]:
        stored = await self.kv.get(kv_keys.SUPERADMIN_EMAILS)
        return list(stored) if isinstance(stored, list) else []

    async def _require_superadmin(self, email: str) -> None:
        if not await self.is_superadmin(email):
            raise ForbiddenError("Superadmin access required")

    async def _audit(self, action: str, entry: dict) -> None:
        key = f"{kv_keys.SUPERADMIN_AUDIT_PREFIX}{action}:{now_ms()}:{uuid.uuid4()}"
        await self.kv.set(key, entry)
