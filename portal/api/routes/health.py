"""Liveness and readiness endpoints for the portal API.

Invariants:
    - GET /health/ answers 200 while the process is up, without touching storage
    - GET /health/ready answers 503 when the kv_store table cannot be read
    - A missing Linear key is reported but never makes the service not-ready:
      superadmins can still store one through the admin API
"""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from portal.config import get_settings
from portal.core import kv_keys
from portal.core.errors import PortalError
from portal.infrastructure import database
from portal.infrastructure.kv_store import KVStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("/", status_code=status.HTTP_200_OK)
async def health_check():
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "client-portal-api",
        "version": settings.app_version,
        "environment": settings.environment,
    }


@router.get("/ready")
async def readiness_check():
    """Ready once the KV table answers a read."""
    manager = database.db_manager
    if manager is None or not await manager.health_check():
        logger.warning("Readiness check failed: kv_store unavailable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "reason": "kv_store_unavailable",
                "checks": {"database": "unavailable"},
            },
        )
    return {
        "status": "ready",
        "checks": {
            "database": "healthy",
            "linear_api_key": await _linear_key_state(manager),
        },
    }


async def _linear_key_state(manager: database.DatabaseSessionManager) -> str:
    if get_settings().linear_api_key:
        return "configured"
    try:
        async with manager.session() as db:
            stored = await KVStore(db).get(kv_keys.LINEAR_API_KEY)
    except PortalError as e:
        logger.warning(f"Could not read stored Linear key: {e.message}")
        return "unknown"
    return "configured" if stored else "not_configured"
