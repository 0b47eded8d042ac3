"""Request Dependencies — KV store, caller identity, permission gates and Linear client.

Invariants:
    - Identity comes from the trusted gateway headers X-User-Id and X-User-Email;
      a request without them is rejected with 401
    - Permission and role gates run after authentication and raise ForbiddenError (403)
    - One LinearClient per request, closed when the request finishes

Design Decisions:
    - Dependencies are plain async functions so tests replace them through
      app.dependency_overrides
    - The Linear API key is loaded from KV only when a route actually calls Linear
"""

from typing import AsyncGenerator

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.core import kv_keys
from portal.core.domain_types import Permission, Role
from portal.core.errors import ErrorContext, ForbiddenError, UnauthorizedError
from portal.core.roles import has_permission, has_role_level
from portal.infrastructure.database import get_db
from portal.infrastructure.kv_store import KVStore
from portal.infrastructure.linear_client import LinearClient
from portal.services.auth_service import AuthContext, AuthService


async def get_kv(db: AsyncSession = Depends(get_db)) -> KVStore:
    return KVStore(db)


async def get_current_user(
    x_user_id: str | None = Header(None),
    x_user_email: str | None = Header(None),
    x_user_name: str | None = Header(None),
    kv: KVStore = Depends(get_kv),
) -> AuthContext:
    if not x_user_id or not x_user_email:
        raise UnauthorizedError("Missing authentication headers")
    return await AuthService(kv, get_settings()).authenticate(
        x_user_id, x_user_email, x_user_name,
    )


def require_permission(permission: Permission):
    """Dependency factory: caller's role must grant the permission."""

    async def checker(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not has_permission(auth.role, permission, auth.is_superadmin):
            raise ForbiddenError(
                f"Missing required permission: {permission.value}",
                context=ErrorContext(user_id=auth.user_id),
            )
        return auth

    return checker


def require_roles(*roles: str):
    """Dependency factory: caller must hold one of the roles (superadmins always pass)."""

    async def checker(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not auth.is_superadmin and auth.role not in roles:
            raise ForbiddenError(
                f"Requires one of the roles: {', '.join(roles)}",
                context=ErrorContext(user_id=auth.user_id),
            )
        return auth

    return checker


def require_role_level(required: Role):
    """Dependency factory: caller must sit at or above the role in the hierarchy."""

    async def checker(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
        if not auth.is_superadmin and not has_role_level(auth.role, required):
            raise ForbiddenError(
                f"Insufficient role level. Required: {required.value}, Current: {auth.role}",
                context=ErrorContext(user_id=auth.user_id),
            )
        return auth

    return checker


async def require_superadmin(
    auth: AuthContext = Depends(get_current_user),
) -> AuthContext:
    if not auth.is_superadmin:
        raise ForbiddenError(
            "Superadmin access required", context=ErrorContext(user_id=auth.user_id),
        )
    return auth


async def get_linear(kv: KVStore = Depends(get_kv)) -> AsyncGenerator[LinearClient, None]:
    settings = get_settings()

    async def load_key() -> str | None:
        stored = await kv.get(kv_keys.LINEAR_API_KEY)
        return stored if isinstance(stored, str) else None

    client = LinearClient(
        settings.linear_api_key,
        key_loader=load_key,
        api_url=settings.linear_api_url,
        max_retries=settings.linear_max_retries,
        base_delay_ms=settings.linear_base_delay_ms,
        max_delay_ms=settings.linear_max_delay_ms,
        timeout_seconds=settings.linear_timeout_seconds,
    )
    try:
        yield client
    finally:
        await client.aclose()


def ok(data=None, **extra) -> dict:
    """Success envelope shared by every route."""
    return {"success": True, "data": data, **extra}
