"""System Routes — service status, superadmin KV debugging and schema migration.

Invariants:
    - /system/health and /system/status need no authentication
    - Every debug and migration endpoint requires a superadmin

Design Decisions:
    - Debug keys are taken as a path parameter, so keys containing ':' need no encoding
"""

import logging

from fastapi import APIRouter, Depends

from portal.api.dependencies import get_kv, ok, require_superadmin
from portal.config import get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.errors import PortalError, ResourceNotFoundError
from portal.infrastructure.kv_store import KVStore
from portal.schemas.system import KVValue
from portal.services.auth_service import AuthContext
from portal.services.migration_service import MigrationService
from portal.services.team_service import TeamService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/system", tags=["system"])

_ENDPOINTS = {
    "auth": "available",
    "admin": "available",
    "teams": "available",
    "issues": "available",
}


@router.get("/health")
async def system_health(kv: KVStore = Depends(get_kv)):
    settings = get_settings()
    try:
        await kv.get(kv_keys.HEALTH_PING)
        kv_state = "operational"
    except PortalError as e:
        logger.warning(f"KV health ping failed: {e.message}")
        kv_state = "degraded"
    return {
        "success": True,
        "message": "Server is healthy",
        "timestamp": now_iso(),
        "version": settings.app_version,
        "environment": settings.environment,
        "services": {
            "server": "operational",
            "kv_store": kv_state,
            "endpoints": _ENDPOINTS,
        },
    }


@router.get("/status")
async def system_status():
    return {
        "success": True,
        "status": "online",
        "version": get_settings().app_version,
        "schema": "v2.0",
        "timestamp": now_iso(),
        "endpoints": _ENDPOINTS,
    }


# ─── Debug (superadmin) ──────────────────────────────────────────

@router.get("/debug/kv/{key:path}")
async def debug_get_key(
    key: str,
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_superadmin),
):
    value = await kv.get(key)
    if value is None:
        raise ResourceNotFoundError("Key", key, message="Key not found")
    kind = "array" if isinstance(value, list) else type(value).__name__
    return ok({"key": key, "value": value, "type": kind})


@router.put("/debug/kv/{key:path}")
async def debug_put_key(
    key: str,
    body: KVValue,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(require_superadmin),
):
    await kv.set(key, body.value)
    logger.warning(f"KV key overwritten via debug endpoint: {key}", extra={"user_id": auth.user_id})
    return ok({"key": key}, message="Key updated successfully")


@router.delete("/debug/kv/{key:path}")
async def debug_delete_key(
    key: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(require_superadmin),
):
    await kv.delete(key)
    logger.warning(f"KV key deleted via debug endpoint: {key}", extra={"user_id": auth.user_id})
    return ok({"key": key}, message="Key deleted successfully")


@router.get("/debug/ownership")
async def debug_ownership(
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_superadmin),
):
    ownership = await TeamService(kv).get_ownership_map()
    return ok({"ownership": ownership, "count": len(ownership)})


@router.post("/debug/clear-ownership-cache")
async def debug_clear_ownership(
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_superadmin),
):
    await TeamService(kv).clear_ownership_cache()
    return ok(message="Ownership cache cleared")


# ─── Migration (superadmin) ──────────────────────────────────────

@router.post("/migrate/schema-v2")
async def migrate_schema_v2(
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(require_superadmin),
):
    logger.info("Schema v2 migration requested", extra={"user_id": auth.user_id})
    report = await MigrationService(kv, get_settings()).migrate_to_v2()
    return ok(report)


@router.get("/migrate/status")
async def migration_status(
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_superadmin),
):
    return ok(await MigrationService(kv, get_settings()).get_migration_status())


@router.get("/migrate/validate")
async def migration_validate(
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_superadmin),
):
    return ok(await MigrationService(kv, get_settings()).validate_schema())
