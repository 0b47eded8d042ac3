"""Linear Routes — connection test, team reads, hierarchy sync and mapping maintenance.

Invariants:
    - Sync, cache clearing and orphan cleanup are limited to admin and superadmin
    - Mapping validation needs client_manager level or above
    - Static team paths are declared before /teams/{team_id}
"""

from fastapi import APIRouter, Depends

from portal.api.dependencies import (
    get_current_user, get_kv, get_linear, ok, require_permission, require_role_level,
    require_roles,
)
from portal.config import get_settings
from portal.core.domain_types import Permission, Role
from portal.core.roles import ADMIN_ROLES
from portal.infrastructure.kv_store import KVStore
from portal.infrastructure.linear_client import LinearClient
from portal.services.auth_service import AuthContext
from portal.services.linear_maintenance import LinearMaintenance
from portal.services.linear_team_sync import LinearTeamSync

router = APIRouter(prefix="/api/v1/linear", tags=["linear"])
admins = require_roles(*ADMIN_ROLES)


def _sync(kv: KVStore, linear: LinearClient) -> LinearTeamSync:
    return LinearTeamSync(kv, linear, get_settings())


@router.get("/test")
async def test_connection(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(require_permission(Permission.ACCESS_LINEAR_TEST)),
):
    result = await _sync(kv, linear).test_connection()
    return ok(result, message=result["message"])


@router.get("/teams")
async def list_teams(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    teams = await _sync(kv, linear).list_teams()
    return ok({"teams": teams, "count": len(teams)})


@router.get("/hierarchy")
async def hierarchy(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    return ok(await _sync(kv, linear).get_hierarchy())


@router.post("/sync-hierarchy")
async def sync_hierarchy(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(admins),
):
    result = await _sync(kv, linear).sync_team_hierarchy()
    return ok(result, message=result["message"])


@router.post("/clear-cache")
async def clear_cache(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(admins),
):
    return ok(await _sync(kv, linear).clear_cache(), message="Linear cache cleared")


@router.post("/cleanup-orphaned-mappings")
async def cleanup_orphaned_mappings(
    kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admins),
):
    result = await LinearMaintenance(kv).cleanup_orphaned_mappings()
    return ok(result, message=f"Removed {result['orphanedRemoved']} orphaned team mapping(s)")


@router.get("/validate-mappings")
async def validate_mappings(
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(require_role_level(Role.CLIENT_MANAGER)),
):
    return ok(await LinearMaintenance(kv).validate_mappings())


@router.get("/teams/{team_id}")
async def get_team(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    return ok(await _sync(kv, linear).get_team(team_id))


@router.get("/teams/{team_id}/states")
async def team_states(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    states = await _sync(kv, linear).get_team_states(team_id)
    return ok({"states": states, "count": len(states)})


@router.get("/teams/{team_id}/labels")
async def team_labels(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    labels = await _sync(kv, linear).get_team_labels(team_id)
    return ok({"labels": labels, "count": len(labels)})


@router.get("/teams/{team_id}/members")
async def team_members(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(get_current_user),
):
    members = await _sync(kv, linear).get_team_members(team_id)
    return ok({"members": members, "count": len(members)})
