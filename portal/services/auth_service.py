"""Auth Service — resolves a request identity into a portal user, role and permissions.

Invariants:
    - First contact creates user:{id} (default role by email) and an empty customer list
    - A listed superadmin always resolves to role superadmin, and the stored role is corrected
    - Pending users are activated on login; any other non-active status is rejected (401)
    - Login updates profile fields and lastLoginAt, never the stored role

Design Decisions:
    - Identity arrives already verified (trusted gateway headers); this service
      owns only the KV side of authentication
"""

import logging
from dataclasses import dataclass, field

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.domain_types import Role, UserStatus
from portal.core.errors import ErrorContext, UnauthorizedError
from portal.core.repository_protocols import KeyValueStore
from portal.core.roles import default_role_for, permissions_for
from portal.services.superadmin_registry import SuperadminRegistry, normalize_email

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Authenticated caller as seen by route handlers."""
    user_id: str
    email: str
    role: str
    is_superadmin: bool
    user: dict
    permissions: list[str] = field(default_factory=list)
    is_new: bool = False


class AuthService:
    """Creates, corrects and validates users on each authenticated request."""

    def __init__(self, kv: KeyValueStore, settings: Settings | None = None):
        self.kv = kv
        self.settings = settings or get_settings()
        self.superadmins = SuperadminRegistry(kv, self.settings)

    async def authenticate(
        self, user_id: str, email: str, name: str | None = None,
    ) -> AuthContext:
        if not user_id or not email:
            raise UnauthorizedError("Missing user identity")
        email = normalize_email(email)
        listed = await self.superadmins.get_emails()
        is_superadmin = email in listed

        user = await self.kv.get(kv_keys.user(user_id))
        is_new = user is None
        if is_new:
            user = await self._create_user(user_id, email, name, listed)
        else:
            user = await self._correct_user(user_id, user, is_superadmin)

        status = user.get("status") or UserStatus.ACTIVE.value
        if status != UserStatus.ACTIVE.value:
            raise UnauthorizedError(
                f"Account status: {status}. Please contact an administrator.",
                context=ErrorContext(user_id=user_id),
            )

        role = Role.SUPERADMIN.value if is_superadmin else (
            user.get("role") or Role.VIEWER.value
        )
        return AuthContext(
            user_id=user_id,
            email=email,
            role=role,
            is_superadmin=is_superadmin,
            user=user,
            permissions=permissions_for(role),
            is_new=is_new,
        )

    async def login(
        self, user_id: str, email: str, name: str | None = None,
        avatar_url: str | None = None,
    ) -> dict:
        """Record a login and return the portal view of the user."""
        auth = await self.authenticate(user_id, email, name)
        user = dict(auth.user)
        metadata = dict(user.get("metadata") or {})
        if name:
            metadata["name"] = name
        if avatar_url:
            metadata["avatar_url"] = avatar_url
        timestamp = now_iso()
        user.update({"metadata": metadata, "lastLoginAt": timestamp, "updatedAt": timestamp})
        await self.kv.set(kv_keys.user(user_id), user)

        return {
            "user": {
                "id": user_id,
                "email": auth.email,
                "name": metadata.get("name"),
                "avatar_url": metadata.get("avatar_url"),
                "role": auth.role,
                "status": user.get("status"),
            },
            "permission": {
                "role": auth.role,
                "status": user.get("status"),
                "customer_id": None,
            },
            "permissions": auth.permissions,
            "message": "Welcome! Access granted." if auth.is_new else "Welcome back!",
        }

    async def _create_user(
        self, user_id: str, email: str, name: str | None, listed: list[str],
    ) -> dict:
        timestamp = now_iso()
        user = {
            "id": user_id,
            "email": email,
            "role": default_role_for(email, listed, self.settings.internal_email_domains),
            "status": UserStatus.ACTIVE.value,
            "createdAt": timestamp,
            "updatedAt": timestamp,
            "metadata": {"name": name or email.split("@")[0]},
        }
        await self.kv.mset({
            kv_keys.user(user_id): user,
            kv_keys.user_customers(user_id): [],
        })
        logger.info(
            f"Created user on first login with role {user['role']}",
            extra={"user_id": user_id},
        )
        return user

    async def _correct_user(self, user_id: str, user: dict, is_superadmin: bool) -> dict:
        changed = False
        if is_superadmin and user.get("role") != Role.SUPERADMIN.value:
            user["role"] = Role.SUPERADMIN.value
            user["status"] = UserStatus.ACTIVE.value
            changed = True
        if user.get("status") == UserStatus.PENDING.value:
            user["status"] = UserStatus.ACTIVE.value
            changed = True
        if changed:
            user["updatedAt"] = now_iso()
            await self.kv.set(kv_keys.user(user_id), user)
            logger.info("Corrected stored role/status", extra={"user_id": user_id})
        return user
