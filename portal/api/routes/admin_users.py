"""Admin User Routes — user CRUD and customer membership management.

Invariants:
    - Every endpoint requires the manage_users permission
    - The acting user's id is recorded as created_by/updated_by/assigned_by
"""

from fastapi import APIRouter, Depends, status

from portal.api.dependencies import get_kv, ok, require_permission
from portal.config import get_settings
from portal.core.domain_types import Permission
from portal.infrastructure.kv_store import KVStore
from portal.schemas.users import (
    CustomerAssignment, CustomerAssignments, UserCreate, UserUpdate,
)
from portal.services.auth_service import AuthContext
from portal.services.user_service import UserService

router = APIRouter(prefix="/api/v1/admin/users", tags=["admin-users"])
admin_only = require_permission(Permission.MANAGE_USERS)


def _users(kv: KVStore) -> UserService:
    return UserService(kv, get_settings())


@router.get("")
async def list_users(kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only)):
    return ok(await _users(kv).get_all_users())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    user = await _users(kv).create_user(body.model_dump(mode="json"), auth.user_id)
    return ok(user)


@router.get("/{user_id}")
async def get_user(
    user_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    return ok(await _users(kv).get_user_by_id(user_id))


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    body: UserUpdate,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    user = await _users(kv).update_user(
        user_id,
        name=body.name,
        role=body.role.value if body.role else None,
        status=body.status.value if body.status else None,
        updated_by=auth.user_id,
    )
    return ok(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str, kv: KVStore = Depends(get_kv), auth: AuthContext = Depends(admin_only),
):
    return ok(await _users(kv).delete_user(user_id, auth.user_id))


@router.get("/{user_id}/customers")
async def user_customers(
    user_id: str, kv: KVStore = Depends(get_kv), _: AuthContext = Depends(admin_only),
):
    customers = await _users(kv).get_user_customers(user_id)
    return ok({"customers": customers, "count": len(customers)})


@router.put("/{user_id}/customers")
async def sync_user_customers(
    user_id: str,
    body: CustomerAssignments,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    result = await _users(kv).sync_customer_assignments(
        user_id, body.customer_ids, auth.user_id,
    )
    return ok(result)


@router.post("/{user_id}/customers/{customer_id}", status_code=status.HTTP_201_CREATED)
async def assign_customer(
    user_id: str,
    customer_id: str,
    body: CustomerAssignment | None = None,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    role = body.role.value if body and body.role else None
    membership = await _users(kv).assign_user_to_customer(
        user_id, customer_id, auth.user_id, role=role,
    )
    return ok(membership)


@router.delete("/{user_id}/customers/{customer_id}")
async def remove_customer(
    user_id: str,
    customer_id: str,
    kv: KVStore = Depends(get_kv),
    auth: AuthContext = Depends(admin_only),
):
    return ok(await _users(kv).remove_user_from_customer(user_id, customer_id, auth.user_id))
