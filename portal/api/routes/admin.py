"""Admin Routes — dashboard counters, activity log, role catalogue and team ownership lookup.

Invariants:
    - Every endpoint requires the manage_users permission
"""

from fastapi import APIRouter, Depends, Query

from portal.api.dependencies import get_kv, ok, require_permission
from portal.core.domain_types import Permission
from portal.core.roles import describe_roles
from portal.infrastructure.kv_store import KVStore
from portal.services.admin_activity import ActivityLog
from portal.services.auth_service import AuthContext
from portal.services.team_service import TeamService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])
admin_only = require_permission(Permission.MANAGE_USERS)


@router.get("/stats")
async def dashboard_stats(
    kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await ActivityLog(kv).dashboard_stats())


@router.get("/activity")
async def activity(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(admin_only),
):
    return ok(await ActivityLog(kv).list(limit, offset))


@router.get("/roles")
async def roles(_: AuthContext = Depends(admin_only)):
    definitions = describe_roles()
    return ok({"roles": definitions, "count": len(definitions)})


@router.get("/teams/{team_id}/customer")
async def team_customer(
    team_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await TeamService(kv).get_team_customer(team_id))
