"""Issue Routes — team issue boards, issue detail, mutations and the detail cache.

Invariants:
    - Every team-scoped endpoint checks the caller's access to that team first
    - Static paths (/search, /create, /cache/*) are declared before /{issue_id}
    - Reads need view_issues, edits need edit_issues, creation needs create_issues
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from portal.api.dependencies import get_kv, get_linear, ok, require_permission
from portal.api.routes.teams import ensure_team_access
from portal.config import get_settings
from portal.core.domain_types import Permission
from portal.infrastructure.kv_store import KVStore
from portal.infrastructure.linear_client import LinearClient
from portal.schemas.issues import (
    CacheInvalidate, CommentCreate, IssueCreate, IssueMove, IssueStateUpdate, SubIssueCreate,
)
from portal.services.auth_service import AuthContext
from portal.services.issue_moves import IssueBoard, IssueMoveCoordinator
from portal.services.issue_service import IssueService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/issues", tags=["issues"])

viewers = require_permission(Permission.VIEW_ISSUES)
editors = require_permission(Permission.EDIT_ISSUES)
creators = require_permission(Permission.CREATE_ISSUES)


def _issues(kv: KVStore, linear: LinearClient) -> IssueService:
    return IssueService(kv, linear, get_settings())


# ─── Team boards ─────────────────────────────────────────────────

@router.get("/team/{team_id}")
async def team_issues(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(viewers),
):
    await ensure_team_access(kv, auth, team_id)
    issues = await _issues(kv, linear).get_all_team_issues(team_id)
    return ok({"issues": issues, "count": len(issues)})


@router.get("/team/{team_id}/by-state")
async def team_issues_by_state(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(viewers),
):
    await ensure_team_access(kv, auth, team_id)
    return ok(await _issues(kv, linear).get_team_issues_by_state(team_id))


@router.get("/team/{team_id}/client-board")
async def client_board(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(viewers),
):
    await ensure_team_access(kv, auth, team_id)
    return ok(await _issues(kv, linear).get_client_board(team_id))


@router.get("/team/{team_id}/statistics")
async def team_statistics(
    team_id: str,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(viewers),
):
    await ensure_team_access(kv, auth, team_id)
    return ok(await _issues(kv, linear).get_issue_statistics(team_id))


# ─── Search, creation, cache ─────────────────────────────────────

@router.get("/search")
async def search(
    q: str = Query(min_length=1),
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(viewers),
):
    issues = await _issues(kv, linear).search_issues(q)
    return ok({"issues": issues, "count": len(issues)})


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_issue(
    body: IssueCreate,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(creators),
):
    await ensure_team_access(kv, auth, body.team_id)
    issue = await _issues(kv, linear).create_issue(
        body.team_id,
        body.title,
        description=body.description,
        priority=body.priority,
        assignee_id=body.assignee_id,
        state_id=body.state_id,
        label_ids=body.label_ids,
        cycle_id=body.cycle_id,
        parent_id=body.parent_id,
    )
    return ok(issue)


@router.post("/cache/invalidate")
async def invalidate_cache(
    body: CacheInvalidate,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(editors),
):
    await ensure_team_access(kv, auth, body.team_id)
    return ok(await _issues(kv, linear).invalidate_cache(body.team_id))


@router.get("/cache/stats")
async def cache_stats(
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(viewers),
):
    return ok(await _issues(kv, linear).get_cache_stats())


# ─── Single issue ────────────────────────────────────────────────

@router.get("/{issue_id}")
async def issue_detail(
    issue_id: str,
    bypass_cache: bool = Query(False, alias="bypassCache"),
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(viewers),
):
    return ok(await _issues(kv, linear).get_issue_detail(issue_id, bypass_cache))


@router.put("/{issue_id}/state")
async def update_state(
    issue_id: str,
    body: IssueStateUpdate,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(editors),
):
    return ok(await _issues(kv, linear).update_issue_state(issue_id, body.state_id))


@router.post("/{issue_id}/move")
async def move_issue(
    issue_id: str,
    body: IssueMove,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(editors),
):
    await ensure_team_access(kv, auth, body.team_id)
    service = _issues(kv, linear)
    by_state = await service.get_team_issues_by_state(body.team_id)
    states = [entry["state"] for entry in by_state["states"]]
    result = await IssueMoveCoordinator(service, get_settings()).move(
        IssueBoard.from_states(by_state),
        issue_id,
        body.source_column.value,
        body.target_column.value,
        states,
    )
    return ok(result)


@router.post("/{issue_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    issue_id: str,
    body: CommentCreate,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(viewers),
):
    return ok(await _issues(kv, linear).add_comment(issue_id, body.body))


@router.post("/{issue_id}/sub-issues", status_code=status.HTTP_201_CREATED)
async def create_sub_issue(
    issue_id: str,
    body: SubIssueCreate,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    _: AuthContext = Depends(creators),
):
    issue = await _issues(kv, linear).create_sub_issue(issue_id, body.title, body.description)
    return ok(issue)
