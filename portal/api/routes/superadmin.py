"""Superadmin Routes — bootstrap, membership checks, list changes and audit log.

Invariants:
    - POST /initialize needs no identity; it only works while the list is empty
    - Every list change records the caller's IP and user agent in the audit trail
"""

from fastapi import APIRouter, Depends, Request

from portal.api.dependencies import get_current_user, get_kv, ok
from portal.config import get_settings
from portal.infrastructure.kv_store import KVStore
from portal.schemas.superadmin import SuperadminAdd, SuperadminInitialize
from portal.services.auth_service import AuthContext
from portal.services.superadmin_registry import SuperadminRegistry

router = APIRouter(prefix="/api/v1/superadmin", tags=["superadmin"])


def _registry(kv: KVStore) -> SuperadminRegistry:
    return SuperadminRegistry(kv, get_settings())


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/initialize")
async def initialize(body: SuperadminInitialize, kv: KVStore = Depends(get_kv)):
    result = await _registry(kv).initialize(body.emails)
    return ok(result, message="Superadmin list initialized")


@router.get("/check")
async def check(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _registry(kv).check(auth.email))


@router.get("/list")
async def list_superadmins(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _registry(kv).list_emails(auth.email))


@router.post("/add")
async def add(
    body: SuperadminAdd,
    request: Request,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(get_current_user),
):
    result = await _registry(kv).add(
        body.email, auth.email, reason=body.reason,
        ip=_client_ip(request), user_agent=request.headers.get("user-agent"),
    )
    return ok(result, message="Superadmin added successfully")


@router.delete("/remove/{email}")
async def remove(
    email: str,
    request: Request,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(get_current_user),
):
    result = await _registry(kv).remove(
        email, auth.email,
        ip=_client_ip(request), user_agent=request.headers.get("user-agent"),
    )
    return ok(result, message="Superadmin removed successfully")


@router.get("/audit")
async def audit(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _registry(kv).audit(auth.email))
