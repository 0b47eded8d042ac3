"""Team Routes — team listings, hierarchy, access checks, membership and Linear sync.

Invariants:
    - Static paths (/my-teams, /hierarchy, /cache/*) are declared before /{team_id}
    - Listing all teams and changing membership require manage_teams
    - A single team's details are visible to callers with access to that team
"""

from fastapi import APIRouter, Depends, Query, status

from portal.api.dependencies import (
    get_current_user, get_kv, get_linear, ok, require_permission, require_roles,
)
from portal.config import get_settings
from portal.core.domain_types import Permission
from portal.core.errors import ErrorContext, ForbiddenError
from portal.core.roles import ADMIN_ROLES
from portal.infrastructure.kv_store import KVStore
from portal.infrastructure.linear_client import LinearClient
from portal.services.auth_service import AuthContext
from portal.services.linear_team_sync import LinearTeamSync
from portal.services.team_service import TeamService

router = APIRouter(prefix="/api/v1/teams", tags=["teams"])
team_managers = require_permission(Permission.MANAGE_TEAMS)


def _teams(kv: KVStore) -> TeamService:
    return TeamService(kv, settings=get_settings())


async def ensure_team_access(kv: KVStore, auth: AuthContext, team_id: str) -> dict:
    """Raise ForbiddenError unless the caller may see the team."""
    access = await _teams(kv).check_user_team_access(auth.user_id, team_id, auth.is_superadmin)
    if not access["hasAccess"]:
        raise ForbiddenError(
            "Access denied to this team",
            context=ErrorContext(user_id=auth.user_id, team_id=team_id),
        )
    return access


@router.get("/my-teams")
async def my_teams(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _teams(kv).get_user_accessible_teams(auth.user_id))


@router.get("/hierarchy")
async def hierarchy(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    customers = await _teams(kv).get_team_hierarchy(auth.user_id, auth.is_superadmin)
    return ok({"customers": customers, "count": len(customers)})


@router.get("")
async def list_teams(
    include_hierarchy: bool = Query(False, alias="hierarchy"),
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(team_managers),
):
    return ok(await _teams(kv).get_all_teams(include_hierarchy))


@router.get("/cache/stats")
async def cache_stats(kv: KVStore = Depends(get_kv), _: AuthContext = Depends(team_managers)):
    return ok(await _teams(kv).get_cache_stats())


@router.post("/cache/invalidate")
async def cache_invalidate(
    kv: KVStore = Depends(get_kv), _: AuthContext = Depends(team_managers),
):
    await _teams(kv).invalidate_cache()
    return ok(message="Teams cache invalidated")


@router.post("/sync-from-linear")
async def sync_from_linear(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(require_roles(*ADMIN_ROLES)),
):
    result = await LinearTeamSync(kv, linear, get_settings()).sync_team_hierarchy()
    return ok(result, message=result["message"])


@router.get("/{team_id}")
async def get_team(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    await ensure_team_access(kv, auth, team_id)
    return ok(await _teams(kv).get_team_by_id(team_id))


@router.get("/{team_id}/access")
async def team_access(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _teams(kv).check_user_team_access(auth.user_id, team_id, auth.is_superadmin))


@router.get("/{team_id}/members")
async def team_members(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    await ensure_team_access(kv, auth, team_id)
    return ok(await _teams(kv).get_team_members(team_id))


@router.post("/{team_id}/members/{user_id}", status_code=status.HTTP_201_CREATED)
async def add_team_member(
    team_id: str,
    user_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(team_managers),
):
    return ok(await _teams(kv).assign_user_to_team(user_id, team_id, auth.user_id))


@router.delete("/{team_id}/members/{user_id}")
async def remove_team_member(
    team_id: str,
    user_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(team_managers),
):
    return ok(await _teams(kv).remove_user_from_team(user_id, team_id, auth.user_id))
