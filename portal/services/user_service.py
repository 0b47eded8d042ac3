"""User Service — user records and their customer memberships.

Invariants:
    - user:{id}:customers mirrors customer:{cid}:members for every membership
    - customer:{cid}:member:{uid} exists exactly while both lists contain the pair
    - Removing a user from a customer first removes them from that customer's
      team member lists (customer:{cid}:team:{tid}:members)
    - Emails are stored trimmed and lowercased; an email belongs to one user
    - Listed superadmins are reported with role superadmin regardless of the stored role

Design Decisions:
    - Assign/remove are idempotent list edits: re-running a partial operation
      converges instead of failing
    - The superadmin email list follows role changes (grant/revoke) so the
      registry stays the single source for superadmin checks
"""

import logging
import uuid

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.domain_types import Role, UserStatus
from portal.core.errors import (
    DuplicateResourceError, ErrorContext, InvalidInputError, ResourceNotFoundError,
)
from portal.core.id_lists import with_id, without_id
from portal.core.repository_protocols import KeyValueStore
from portal.services.admin_activity import ActivityLog
from portal.services.superadmin_registry import SuperadminRegistry, normalize_email

logger = logging.getLogger(__name__)


def user_view(user: dict, role: str | None = None) -> dict:
    """Public shape of a user record."""
    metadata = user.get("metadata") or {}
    return {
        "id": user.get("id"),
        "email": user.get("email"),
        "name": metadata.get("name") or user.get("name"),
        "role": role or user.get("role") or Role.VIEWER.value,
        "status": user.get("status") or UserStatus.ACTIVE.value,
        "createdAt": user.get("createdAt"),
        "updatedAt": user.get("updatedAt"),
        "lastLoginAt": user.get("lastLoginAt"),
    }


class UserService:
    """User CRUD and user-to-customer membership bookkeeping."""

    def __init__(self, kv: KeyValueStore, settings: Settings | None = None):
        self.kv = kv
        self.settings = settings or get_settings()
        self.superadmins = SuperadminRegistry(kv, self.settings)
        self.activity = ActivityLog(kv)

    # ─── Reads ───────────────────────────────────────────────────

    async def get_all_users(self) -> dict:
        entries = await self.kv.get_by_prefix(kv_keys.USER_PREFIX)
        users = [
            value for key, value in entries
            if kv_keys.is_top_level_user_key(key) and isinstance(value, dict)
        ]
        listed = set(await self.superadmins.get_emails())

        customer_lists = await self.kv.mget(
            [kv_keys.user_customers(u["id"]) for u in users],
        )
        all_customer_ids = sorted({
            cid for ids in customer_lists for cid in ids or []
        })
        customer_records = dict(zip(
            all_customer_ids,
            await self.kv.mget([kv_keys.customer(cid) for cid in all_customer_ids]),
        ))

        result = []
        for user, customer_ids in zip(users, customer_lists):
            customer_ids = customer_ids or []
            memberships = await self.kv.mget([
                kv_keys.customer_member(cid, user["id"]) for cid in customer_ids
            ])
            customers = []
            for cid, membership in zip(customer_ids, memberships):
                record = customer_records.get(cid)
                if record is None:
                    continue
                customers.append({
                    "id": cid,
                    "name": record.get("name"),
                    "status": record.get("status", "active"),
                    "assignedAt": (membership or {}).get("assignedAt"),
                })
            role = (
                Role.SUPERADMIN.value
                if normalize_email(user.get("email")) in listed else None
            )
            result.append({
                **user_view(user, role),
                "customers": customers,
                "customerCount": len(customers),
            })

        result.sort(key=lambda u: u.get("createdAt") or "", reverse=True)
        return {"users": result, "count": len(result)}

    async def get_user_by_id(self, user_id: str) -> dict:
        user = await self._require_user(user_id)
        role = Role.SUPERADMIN.value if await self.superadmins.is_superadmin(
            user.get("email"),
        ) else None
        customers = await self.get_user_customers(user_id)
        return {
            **user_view(user, role),
            "metadata": user.get("metadata") or {},
            "customers": customers,
            "customerCount": len(customers),
        }

    async def get_user_customers(self, user_id: str) -> list[dict]:
        customer_ids = await self.kv.get(kv_keys.user_customers(user_id)) or []
        records = await self.kv.mget([kv_keys.customer(cid) for cid in customer_ids])
        memberships = await self.kv.mget([
            kv_keys.customer_member(cid, user_id) for cid in customer_ids
        ])
        return [
            {**record, "membership": membership}
            for record, membership in zip(records, memberships)
            if record is not None
        ]

    async def find_by_email(self, email: str) -> dict | None:
        normalized = normalize_email(email)
        for key, value in await self.kv.get_by_prefix(kv_keys.USER_PREFIX):
            if (
                kv_keys.is_top_level_user_key(key)
                and isinstance(value, dict)
                and normalize_email(value.get("email")) == normalized
            ):
                return value
        return None

    # ─── Writes ──────────────────────────────────────────────────

    async def create_user(self, data: dict, created_by: str | None) -> dict:
        email = normalize_email(data.get("email"))
        if not email:
            raise InvalidInputError("Email is required", field="email")
        if await self.find_by_email(email) is not None:
            raise DuplicateResourceError(f"A user with email {email} already exists")

        user_id = data.get("id") or str(uuid.uuid4())
        timestamp = now_iso()
        role = data.get("role") or Role.VIEWER.value
        user = {
            "id": user_id,
            "email": email,
            "role": role,
            "status": data.get("status") or UserStatus.ACTIVE.value,
            "createdAt": timestamp,
            "updatedAt": timestamp,
            "createdBy": created_by,
            "metadata": {"name": (data.get("name") or "").strip() or email.split("@")[0]},
        }
        customer_ids = list(dict.fromkeys(data.get("customers") or []))
        records = await self.kv.mget([kv_keys.customer(cid) for cid in customer_ids])
        for customer_id, record in zip(customer_ids, records):
            if record is None:
                raise ResourceNotFoundError(
                    "Customer", customer_id,
                    context=ErrorContext(customer_id=customer_id),
                )

        await self.kv.mset({
            kv_keys.user(user_id): user,
            kv_keys.user_customers(user_id): [],
        })
        for customer_id in customer_ids:
            await self.assign_user_to_customer(user_id, customer_id, created_by)

        if role == Role.SUPERADMIN.value:
            await self.superadmins.grant(email)

        await self.activity.record(
            "user_created", created_by, {"userId": user_id, "email": email, "role": role},
        )
        logger.info(f"User created with role {role}", extra={"user_id": user_id})
        return {**user_view(user), "customers": customer_ids}

    async def update_user(
        self,
        user_id: str,
        *,
        name: str | None = None,
        role: str | None = None,
        status: str | None = None,
        updated_by: str | None = None,
    ) -> dict:
        user = await self._require_user(user_id)
        previous_role = user.get("role")

        if name is not None:
            user["metadata"] = {**(user.get("metadata") or {}), "name": name.strip()}
        if role is not None:
            user["role"] = role
        if status is not None:
            user["status"] = status
        user["updatedAt"] = now_iso()
        user["updatedBy"] = updated_by
        await self.kv.set(kv_keys.user(user_id), user)

        if role is not None and role != previous_role:
            if role == Role.SUPERADMIN.value:
                await self.superadmins.grant(user.get("email"))
            elif previous_role == Role.SUPERADMIN.value:
                await self.superadmins.revoke(user.get("email"))

        await self.activity.record(
            "user_updated", updated_by,
            {"userId": user_id, "role": user.get("role"), "status": user.get("status")},
        )
        return user_view(user)

    async def delete_user(self, user_id: str, deleted_by: str | None = None) -> dict:
        user = await self._require_user(user_id)
        customer_ids = await self.kv.get(kv_keys.user_customers(user_id)) or []

        for customer_id in customer_ids:
            await self._drop_from_customer_teams(customer_id, user_id)
            members = await self.kv.get(kv_keys.customer_members(customer_id))
            if members is not None:
                await self.kv.set(
                    kv_keys.customer_members(customer_id), without_id(members, user_id),
                )

        await self.kv.mdel([
            *(kv_keys.customer_member(cid, user_id) for cid in customer_ids),
            kv_keys.user(user_id),
            kv_keys.user_customers(user_id),
            kv_keys.user_teams(user_id),
        ])
        if user.get("role") == Role.SUPERADMIN.value:
            await self.superadmins.revoke(user.get("email"))

        await self.activity.record(
            "user_deleted", deleted_by, {"userId": user_id, "email": user.get("email")},
        )
        logger.info(
            f"User deleted, removed from {len(customer_ids)} customer(s)",
            extra={"user_id": user_id},
        )
        return {"userId": user_id, "removedFromCustomers": len(customer_ids)}

    # ─── Customer membership ─────────────────────────────────────

    async def assign_user_to_customer(
        self, user_id: str, customer_id: str, assigned_by: str | None,
        role: str | None = None,
    ) -> dict:
        await self._require_user(user_id)
        if await self.kv.get(kv_keys.customer(customer_id)) is None:
            raise ResourceNotFoundError(
                "Customer", customer_id,
                context=ErrorContext(customer_id=customer_id),
            )

        user_customers = await self.kv.get(kv_keys.user_customers(user_id))
        customer_members = await self.kv.get(kv_keys.customer_members(customer_id))
        membership = {
            "userId": user_id,
            "customerId": customer_id,
            "assignedAt": now_iso(),
            "assignedBy": assigned_by,
        }
        if role:
            membership["role"] = role

        await self.kv.mset({
            kv_keys.user_customers(user_id): with_id(user_customers, customer_id),
            kv_keys.customer_members(customer_id): with_id(customer_members, user_id),
            kv_keys.customer_member(customer_id, user_id): membership,
        })
        logger.info(
            "User assigned to customer",
            extra={"user_id": user_id, "customer_id": customer_id},
        )
        return membership

    async def remove_user_from_customer(
        self, user_id: str, customer_id: str, removed_by: str | None = None,
    ) -> dict:
        teams_cleaned = await self._drop_from_customer_teams(customer_id, user_id)

        user_customers = await self.kv.get(kv_keys.user_customers(user_id))
        customer_members = await self.kv.get(kv_keys.customer_members(customer_id))
        updates = {}
        if user_customers is not None:
            updates[kv_keys.user_customers(user_id)] = without_id(user_customers, customer_id)
        if customer_members is not None:
            updates[kv_keys.customer_members(customer_id)] = without_id(
                customer_members, user_id,
            )
        if updates:
            await self.kv.mset(updates)
        await self.kv.delete(kv_keys.customer_member(customer_id, user_id))

        logger.info(
            f"User removed from customer, {teams_cleaned} team list(s) cleaned",
            extra={"user_id": user_id, "customer_id": customer_id},
        )
        return {
            "userId": user_id,
            "customerId": customer_id,
            "removedBy": removed_by,
            "teamsCleanedUp": teams_cleaned,
        }

    async def sync_customer_assignments(
        self, user_id: str, customer_ids: list[str], synced_by: str | None,
    ) -> dict:
        await self._require_user(user_id)
        current = await self.kv.get(kv_keys.user_customers(user_id)) or []
        desired = list(dict.fromkeys(customer_ids or []))

        to_add = [cid for cid in desired if cid not in current]
        to_remove = [cid for cid in current if cid not in desired]

        teams_cleaned = 0
        for customer_id in to_remove:
            result = await self.remove_user_from_customer(user_id, customer_id, synced_by)
            teams_cleaned += result["teamsCleanedUp"]
        for customer_id in to_add:
            await self.assign_user_to_customer(user_id, customer_id, synced_by)

        return {
            "added": to_add,
            "removed": to_remove,
            "teamsCleanedUp": teams_cleaned,
            "finalCustomers": await self.kv.get(kv_keys.user_customers(user_id)) or [],
        }

    # ─── Helpers ─────────────────────────────────────────────────

    async def _require_user(self, user_id: str) -> dict:
        user = await self.kv.get(kv_keys.user(user_id))
        if user is None:
            raise ResourceNotFoundError(
                "User", user_id, context=ErrorContext(user_id=user_id),
                message=f"User not found: {user_id}",
            )
        return user

    async def _drop_from_customer_teams(self, customer_id: str, user_id: str) -> int:
        """Remove user_id from every team member list of the customer."""
        team_ids = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        keys = [kv_keys.customer_team_members(customer_id, tid) for tid in team_ids]
        member_lists = await self.kv.mget(keys)
        updates = {
            key: without_id(members, user_id)
            for key, members in zip(keys, member_lists)
            if members and user_id in members
        }
        if updates:
            await self.kv.mset(updates)
        return len(updates)
