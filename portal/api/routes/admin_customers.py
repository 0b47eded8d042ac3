"""Admin Customer Routes — customers, their members, teams and team members.

Invariants:
    - Every endpoint requires the manage_users permission
    - Team assignment may consult Linear, so those routes get a LinearClient
"""

from fastapi import APIRouter, Depends, status

from portal.api.dependencies import get_kv, get_linear, ok, require_permission
from portal.config import get_settings
from portal.core.domain_types import Permission
from portal.infrastructure.kv_store import KVStore
from portal.infrastructure.linear_client import LinearClient
from portal.schemas.customers import CustomerCreate, CustomerUpdate, MemberAdd, TeamAssign
from portal.services.auth_service import AuthContext
from portal.services.customer_service import CustomerService
from portal.services.team_service import TeamService

router = APIRouter(prefix="/api/v1/admin/customers", tags=["admin-customers"])
admin_only = require_permission(Permission.MANAGE_USERS)


def _customers(kv: KVStore, linear: LinearClient | None = None) -> CustomerService:
    return CustomerService(kv, linear, get_settings())


# ─── Customers ───────────────────────────────────────────────────

@router.get("")
async def list_customers(kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only)):
    return ok(await _customers(kv).get_all_customers())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: CustomerCreate,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).create_customer(body.model_dump(), auth.user_id))


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).get_customer_by_id(customer_id))


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    body: CustomerUpdate,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    customer = await _customers(kv).update_customer(
        customer_id, body.model_dump(exclude_none=True), auth.user_id,
    )
    return ok(customer)


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).delete_customer(customer_id, auth.user_id))


# ─── Members ─────────────────────────────────────────────────────

@router.get("/{customer_id}/members")
async def list_members(
    customer_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).get_customer_members(customer_id))


@router.post("/{customer_id}/members", status_code=status.HTTP_201_CREATED)
async def add_member(
    customer_id: str,
    body: MemberAdd,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    role = body.role.value if body.role else None
    return ok(await _customers(kv).add_member(customer_id, body.user_id, auth.user_id, role))


@router.delete("/{customer_id}/members/{user_id}")
async def remove_member(
    customer_id: str,
    user_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).remove_member(customer_id, user_id, auth.user_id))


# ─── Teams ───────────────────────────────────────────────────────

@router.get("/{customer_id}/teams")
async def list_teams(
    customer_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).get_customer_teams(customer_id))


@router.post("/{customer_id}/teams", status_code=status.HTTP_201_CREATED)
async def assign_team(
    customer_id: str,
    body: TeamAssign,
    kv: KVStore = Depends(get_kv),
    linear: LinearClient = Depends(get_linear),
    auth: AuthContext = Depends(admin_only),
):
    result = await _customers(kv, linear).assign_team_to_customer(
        customer_id, body.team_id, auth.user_id,
    )
    return ok(result)


@router.delete("/{customer_id}/teams/{team_id}")
async def remove_team(
    customer_id: str,
    team_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).remove_team_from_customer(customer_id, team_id, auth.user_id))


@router.get("/{customer_id}/available-teams")
async def available_teams(
    customer_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await TeamService(kv, settings=get_settings()).get_available_teams_for_customer(
        customer_id,
    ))


# ─── Team members ────────────────────────────────────────────────

@router.get("/{customer_id}/teams/{team_id}/members")
async def list_team_members(
    customer_id: str,
    team_id: str,
    kv: KVStore = Depends(get_kv),
    _: AuthContext = Depends(admin_only),
):
    return ok(await _customers(kv).get_customer_team_members(customer_id, team_id))


@router.post("/{customer_id}/teams/{team_id}/members", status_code=status.HTTP_201_CREATED)
async def add_team_member(
    customer_id: str,
    team_id: str,
    body: MemberAdd,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    result = await _customers(kv).add_member_to_customer_team(
        customer_id, team_id, body.user_id, auth.user_id,
    )
    return ok(result)


@router.delete("/{customer_id}/teams/{team_id}/members/{user_id}")
async def remove_team_member(
    customer_id: str,
    team_id: str,
    user_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    result = await _customers(kv).remove_member_from_customer_team(
        customer_id, team_id, user_id, auth.user_id,
    )
    return ok(result)
