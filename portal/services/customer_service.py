"""Customer Service — customer records, members and exclusive team assignment.

Invariants:
    - customer:{cid}:teams and team:{tid}:customer agree: a team belongs to at most one customer
    - Assigning a team requires the team to be known (individual cache, hierarchy
      cache, or the Linear API, in that order)
    - Every ownership change deletes team_ownership_map:all
    - A customer team member must already be a member of the customer, with a
      membership record

Design Decisions:
    - The ownership write is read back and verified; a mismatch is a storage
      failure (DatabaseError) rather than a silent partial assignment
    - Linear lookups are optional: without a configured gateway the API tier is skipped
"""

import logging
import uuid

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.errors import (
    BusinessRuleError, DatabaseError, ErrorContext, InvalidInputError, PortalError,
    ResourceNotFoundError, TeamOwnershipConflictError,
)
from portal.core.id_lists import with_id, without_id
from portal.core.repository_protocols import KeyValueStore, LinearGateway
from portal.core.team_hierarchy import find_in_hierarchy, flatten_hierarchy
from portal.infrastructure import linear_queries
from portal.services.admin_activity import ActivityLog
from portal.services.user_service import UserService

logger = logging.getLogger(__name__)

_STRING_FIELDS = ("description", "contactEmail", "google_domain", "project", "epic")
_UPDATABLE_FIELDS = ("name", *_STRING_FIELDS, "environment", "status")

TEAM_NOT_SYNCED_MESSAGE = (
    "Team not found. Please sync Linear teams in Admin > Teams > Linear Sync."
)


def _clean(value):
    return value.strip() if isinstance(value, str) else value


def customer_view(customer: dict, users_count: int, teams_count: int) -> dict:
    return {
        "id": customer.get("id"),
        "name": customer.get("name"),
        "description": customer.get("description") or "",
        "contactEmail": customer.get("contactEmail") or customer.get("contact_email"),
        "google_domain": customer.get("google_domain"),
        "project": customer.get("project"),
        "epic": customer.get("epic"),
        "environment": customer.get("environment") or "UAT",
        "status": customer.get("status") or "active",
        "createdAt": customer.get("createdAt") or customer.get("created_at"),
        "updatedAt": customer.get("updatedAt") or customer.get("updated_at"),
        "usersCount": users_count,
        "teamsCount": teams_count,
    }


def _placeholder_team(team_id: str) -> dict:
    return {
        "id": team_id,
        "name": f"Team {team_id[:8]}",
        "key": team_id[:8],
        "description": "Team not synced from Linear. Please sync teams.",
        "state": "unknown",
    }


class CustomerService:
    """Customer CRUD, customer members and team ownership."""

    def __init__(
        self,
        kv: KeyValueStore,
        linear: LinearGateway | None = None,
        settings: Settings | None = None,
    ):
        self.kv = kv
        self.linear = linear
        self.settings = settings or get_settings()
        self.users = UserService(kv, self.settings)
        self.activity = ActivityLog(kv)

    # ─── Customers ───────────────────────────────────────────────

    async def get_all_customers(self) -> dict:
        entries = await self.kv.get_by_prefix(kv_keys.CUSTOMER_PREFIX)
        customers = [
            value for key, value in entries
            if kv_keys.is_top_level_customer_key(key)
            and isinstance(value, dict) and value.get("id")
        ]
        member_lists = await self.kv.mget(
            [kv_keys.customer_members(c["id"]) for c in customers],
        )
        team_lists = await self.kv.mget(
            [kv_keys.customer_teams(c["id"]) for c in customers],
        )
        result = [
            customer_view(c, len(members or []), len(teams or []))
            for c, members, teams in zip(customers, member_lists, team_lists)
        ]
        return {"customers": result, "count": len(result)}

    async def get_customer_by_id(self, customer_id: str) -> dict:
        customer = await self._require_customer(customer_id)
        member_ids = await self.kv.get(kv_keys.customer_members(customer_id)) or []
        users = await self.kv.mget([kv_keys.user(uid) for uid in member_ids])
        memberships = await self.kv.mget([
            kv_keys.customer_member(customer_id, uid) for uid in member_ids
        ])
        members = [
            {
                "userId": uid,
                "email": user.get("email"),
                "name": (user.get("metadata") or {}).get("name")
                or (user.get("email") or "").split("@")[0],
                "role": user.get("role"),
                "status": user.get("status"),
                "assignedAt": membership.get("assignedAt"),
                "assignedBy": membership.get("assignedBy"),
            }
            for uid, user, membership in zip(member_ids, users, memberships)
            if user and membership
        ]

        team_ids = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        records = await self.kv.mget([kv_keys.linear_team(tid) for tid in team_ids])
        teams = [
            {
                "id": tid,
                "name": record.get("name"),
                "key": record.get("key"),
                "description": record.get("description"),
            }
            for tid, record in zip(team_ids, records)
            if isinstance(record, dict)
        ]
        return {
            **customer,
            "members": members,
            "teams": teams,
            "usersCount": len(members),
            "teamsCount": len(teams),
        }

    async def create_customer(self, data: dict, created_by: str | None) -> dict:
        name = _clean(data.get("name"))
        if not name:
            raise InvalidInputError("Customer name is required", field="name")

        customer_id = str(uuid.uuid4())
        timestamp = now_iso()
        customer = {
            "id": customer_id,
            "name": name,
            "description": _clean(data.get("description")) or "",
            **{f: _clean(data.get(f)) or None for f in _STRING_FIELDS[1:]},
            "environment": data.get("environment") or "UAT",
            "status": data.get("status") or "active",
            "createdAt": timestamp,
            "updatedAt": timestamp,
            "createdBy": created_by,
        }
        await self.kv.mset({
            kv_keys.customer(customer_id): customer,
            kv_keys.customer_members(customer_id): [],
            kv_keys.customer_teams(customer_id): [],
        })
        await self.activity.record(
            "customer_created", created_by, {"customerId": customer_id, "name": name},
        )
        logger.info("Customer created", extra={"customer_id": customer_id})
        return {**customer, "usersCount": 0, "teamsCount": 0}

    async def update_customer(
        self, customer_id: str, data: dict, updated_by: str | None,
    ) -> dict:
        customer = await self._require_customer(customer_id)
        for field_name in _UPDATABLE_FIELDS:
            if data.get(field_name) is not None:
                customer[field_name] = _clean(data[field_name])
        customer["updatedAt"] = now_iso()
        customer["updatedBy"] = updated_by
        await self.kv.set(kv_keys.customer(customer_id), customer)
        await self.activity.record(
            "customer_updated", updated_by, {"customerId": customer_id},
        )
        return customer

    async def delete_customer(self, customer_id: str, deleted_by: str | None = None) -> dict:
        await self._require_customer(customer_id)
        member_ids = await self.kv.get(kv_keys.customer_members(customer_id)) or []
        team_ids = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        owners = await self.kv.mget([kv_keys.team_customer(tid) for tid in team_ids])
        owned = [tid for tid, owner in zip(team_ids, owners) if owner == customer_id]

        user_lists = await self.kv.mget([kv_keys.user_customers(uid) for uid in member_ids])
        updates = {
            kv_keys.user_customers(uid): without_id(customers, customer_id)
            for uid, customers in zip(member_ids, user_lists)
            if customers is not None
        }
        if updates:
            await self.kv.mset(updates)

        await self.kv.mdel([
            *(kv_keys.customer_member(customer_id, uid) for uid in member_ids),
            kv_keys.customer(customer_id),
            kv_keys.customer_members(customer_id),
            kv_keys.customer_teams(customer_id),
            *(kv_keys.team_customer(tid) for tid in owned),
            *(kv_keys.customer_team_members(customer_id, tid) for tid in team_ids),
            kv_keys.TEAM_OWNERSHIP_MAP,
        ])
        await self.activity.record(
            "customer_deleted", deleted_by, {"customerId": customer_id},
        )
        logger.info(
            f"Customer deleted, {len(member_ids)} member(s) detached",
            extra={"customer_id": customer_id},
        )
        return {"customerId": customer_id, "removedMembers": len(member_ids)}

    # ─── Members ─────────────────────────────────────────────────

    async def get_customer_members(self, customer_id: str) -> dict:
        await self._require_customer(customer_id)
        member_ids = await self.kv.get(kv_keys.customer_members(customer_id)) or []
        users = await self.kv.mget([kv_keys.user(uid) for uid in member_ids])
        memberships = await self.kv.mget([
            kv_keys.customer_member(customer_id, uid) for uid in member_ids
        ])
        members = []
        for uid, user, membership in zip(member_ids, users, memberships):
            if not user:
                continue
            membership = membership or {}
            members.append({
                "userId": uid,
                "email": user.get("email"),
                "name": (user.get("metadata") or {}).get("name")
                or (user.get("email") or "").split("@")[0],
                "role": user.get("role"),
                "status": user.get("status"),
                "assignedAt": membership.get("assignedAt") or user.get("createdAt"),
                "assignedBy": membership.get("assignedBy"),
            })
        return {"members": members, "count": len(members)}

    async def add_member(
        self, customer_id: str, user_id: str, added_by: str | None,
        role: str | None = None,
    ) -> dict:
        membership = await self.users.assign_user_to_customer(
            user_id, customer_id, added_by, role=role,
        )
        await self.activity.record(
            "customer_member_added", added_by,
            {"customerId": customer_id, "userId": user_id},
        )
        return membership

    async def remove_member(
        self, customer_id: str, user_id: str, removed_by: str | None,
    ) -> dict:
        result = await self.users.remove_user_from_customer(user_id, customer_id, removed_by)
        await self.activity.record(
            "customer_member_removed", removed_by,
            {"customerId": customer_id, "userId": user_id},
        )
        return result

    # ─── Teams ───────────────────────────────────────────────────

    async def get_customer_teams(self, customer_id: str) -> dict:
        await self._require_customer(customer_id)
        team_ids = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        cache = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL)
        known = {}
        if isinstance(cache, dict):
            known = {
                t.get("id"): t
                for t in flatten_hierarchy(cache.get("hierarchy") or cache.get("teams") or [])
            }
        teams = []
        for team_id in team_ids:
            team = known.get(team_id)
            if team is None:
                teams.append(_placeholder_team(team_id))
                continue
            teams.append({
                "id": team_id,
                "name": team.get("name"),
                "key": team.get("key"),
                "description": team.get("description") or f"{team.get('name')} team",
                "state": "active",
                "color": team.get("color"),
                "icon": team.get("icon"),
                "parentId": team.get("parent_id"),
                "parentName": team.get("parent_name"),
                "parentKey": team.get("parent_key"),
            })
        return {"teams": teams, "count": len(teams)}

    async def assign_team_to_customer(
        self, customer_id: str, team_id: str, assigned_by: str | None,
    ) -> dict:
        await self._require_customer(customer_id)
        team = await self._resolve_team(team_id)
        if team is None:
            raise ResourceNotFoundError(
                "Team", team_id, context=ErrorContext(team_id=team_id),
                message=TEAM_NOT_SYNCED_MESSAGE,
            )
        team_name = team.get("name") or team_id

        owner_id = await self.kv.get(kv_keys.team_customer(team_id))
        if owner_id and owner_id != customer_id:
            owner = await self.kv.get(kv_keys.customer(owner_id)) or {}
            raise TeamOwnershipConflictError(
                team_name, owner.get("name") or "Unknown Customer",
                context=ErrorContext(customer_id=customer_id, team_id=team_id),
            )

        teams = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        if team_id not in teams:
            await self.kv.set(kv_keys.customer_teams(customer_id), with_id(teams, team_id))
            await self.kv.set(kv_keys.team_customer(team_id), customer_id)
            if await self.kv.get(kv_keys.team_customer(team_id)) != customer_id:
                raise DatabaseError(
                    f"ownership of team {team_id} did not persist", "team assignment",
                    context=ErrorContext(customer_id=customer_id, team_id=team_id),
                )
            logger.info(
                f"Team {team_name} assigned to customer",
                extra={"customer_id": customer_id, "team_id": team_id},
            )

        await self.kv.delete(kv_keys.TEAM_OWNERSHIP_MAP)
        await self.activity.record(
            "team_assigned", assigned_by, {"customerId": customer_id, "teamId": team_id},
        )
        return {
            "message": f'Team "{team_name}" assigned successfully',
            "teamId": team_id,
            "teamName": team_name,
        }

    async def remove_team_from_customer(
        self, customer_id: str, team_id: str, removed_by: str | None = None,
    ) -> dict:
        members_key = kv_keys.customer_team_members(customer_id, team_id)
        cleaned = len(await self.kv.get(members_key) or [])
        teams = await self.kv.get(kv_keys.customer_teams(customer_id)) or []

        await self.kv.set(kv_keys.customer_teams(customer_id), without_id(teams, team_id))
        await self.kv.mdel([
            members_key,
            kv_keys.team_customer(team_id),
            kv_keys.TEAM_OWNERSHIP_MAP,
        ])
        await self.activity.record(
            "team_unassigned", removed_by, {"customerId": customer_id, "teamId": team_id},
        )
        logger.info(
            f"Team removed from customer, {cleaned} member assignment(s) cleaned",
            extra={"customer_id": customer_id, "team_id": team_id},
        )
        return {"message": "Team removed from customer successfully", "cleanedMembers": cleaned}

    # ─── Customer team members ───────────────────────────────────

    async def get_customer_team_members(self, customer_id: str, team_id: str) -> dict:
        member_ids = await self.kv.get(
            kv_keys.customer_team_members(customer_id, team_id),
        ) or []
        users = await self.kv.mget([kv_keys.user(uid) for uid in member_ids])
        members = [
            {
                "userId": uid,
                "email": user.get("email"),
                "name": (user.get("metadata") or {}).get("name")
                or (user.get("email") or "").split("@")[0],
                "role": user.get("role") or "viewer",
            }
            for uid, user in zip(member_ids, users)
            if user
        ]
        return {"members": members, "count": len(members)}

    async def add_member_to_customer_team(
        self, customer_id: str, team_id: str, user_id: str, added_by: str | None,
    ) -> dict:
        await self._require_customer(customer_id)
        context = ErrorContext(customer_id=customer_id, team_id=team_id, user_id=user_id)

        if team_id not in (await self.kv.get(kv_keys.customer_teams(customer_id)) or []):
            raise BusinessRuleError(
                "Team not assigned to customer", code="TEAM_NOT_ASSIGNED", context=context,
            )
        if user_id not in (await self.kv.get(kv_keys.customer_members(customer_id)) or []):
            raise BusinessRuleError(
                "User not a member of this customer. Please add user to customer first.",
                code="NOT_CUSTOMER_MEMBER", context=context,
            )
        if await self.kv.get(kv_keys.customer_member(customer_id, user_id)) is None:
            logger.warning(
                "User listed as customer member without a membership record",
                extra={"customer_id": customer_id, "user_id": user_id},
            )
            raise BusinessRuleError(
                "User membership record missing. Please re-assign user to customer to fix.",
                code="MEMBERSHIP_RECORD_MISSING", context=context,
            )

        key = kv_keys.customer_team_members(customer_id, team_id)
        members = await self.kv.get(key) or []
        if user_id not in members:
            await self.kv.set(key, with_id(members, user_id))
        await self.activity.record(
            "team_member_added", added_by,
            {"customerId": customer_id, "teamId": team_id, "userId": user_id},
        )
        return {"message": "User added to team successfully"}

    async def remove_member_from_customer_team(
        self, customer_id: str, team_id: str, user_id: str, removed_by: str | None,
    ) -> dict:
        key = kv_keys.customer_team_members(customer_id, team_id)
        members = await self.kv.get(key) or []
        await self.kv.set(key, without_id(members, user_id))
        await self.activity.record(
            "team_member_removed", removed_by,
            {"customerId": customer_id, "teamId": team_id, "userId": user_id},
        )
        return {"message": "User removed from team successfully"}

    # ─── Helpers ─────────────────────────────────────────────────

    async def _require_customer(self, customer_id: str) -> dict:
        customer = await self.kv.get(kv_keys.customer(customer_id))
        if customer is None:
            raise ResourceNotFoundError(
                "Customer", customer_id,
                context=ErrorContext(customer_id=customer_id),
                message="Customer not found",
            )
        return customer

    async def _resolve_team(self, team_id: str) -> dict | None:
        """Find a team in the individual cache, the hierarchy cache, then Linear."""
        team = await self.kv.get(kv_keys.linear_team(team_id))
        if isinstance(team, dict) and team.get("id") == team_id:
            return team

        cache = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL)
        if isinstance(cache, dict):
            found = find_in_hierarchy(
                cache.get("hierarchy") or cache.get("teams") or [], team_id,
            )
            if found is not None:
                record = {k: v for k, v in found.items() if k != "children"}
                await self.kv.set(kv_keys.linear_team(team_id), record)
                return record

        if self.linear is None:
            return None
        try:
            data = await self.linear.execute(
                linear_queries.GET_TEAM, {"teamId": team_id}, allow_team_not_found=True,
            )
        except PortalError as e:
            logger.warning(
                f"Linear lookup failed during team assignment: {e.message}",
                extra={"team_id": team_id, "error_code": e.code},
            )
            return None
        team = (data or {}).get("team")
        if isinstance(team, dict) and team.get("id") == team_id:
            await self.kv.set(kv_keys.linear_team(team_id), team)
            return team
        return None
