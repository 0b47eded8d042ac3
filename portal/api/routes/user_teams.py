"""User Team Routes — the caller's own teams, access detail and Kanban board settings."""

from fastapi import APIRouter, Body, Depends

from portal.api.dependencies import get_current_user, get_kv, ok
from portal.config import get_settings
from portal.infrastructure.kv_store import KVStore
from portal.services.auth_service import AuthContext
from portal.services.team_service import TeamService

router = APIRouter(prefix="/api/v1/user/teams", tags=["user-teams"])


def _teams(kv: KVStore) -> TeamService:
    return TeamService(kv, settings=get_settings())


@router.get("")
async def user_teams(
    kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _teams(kv).get_user_teams(auth.user_id, auth.role, auth.is_superadmin))


@router.get("/{team_id}/access")
async def user_team_access(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    detail = await _teams(kv).check_user_team_access_detail(
        auth.user_id, auth.role, auth.is_superadmin, team_id,
    )
    return ok(detail)


@router.get("/{team_id}/kanban-settings")
async def get_kanban_settings(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    return ok(await _teams(kv).get_kanban_settings(auth.user_id, team_id))


@router.put("/{team_id}/kanban-settings")
async def save_kanban_settings(
    team_id: str,
    settings: dict = Body(...),
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(get_current_user),
):
    saved = await _teams(kv).save_kanban_settings(auth.user_id, team_id, settings)
    return ok(saved, message="Kanban settings saved")


@router.delete("/{team_id}/kanban-settings")
async def delete_kanban_settings(
    team_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(get_current_user),
):
    await _teams(kv).delete_kanban_settings(auth.user_id, team_id)
    return ok(message="Kanban settings deleted")
