"""Team Service — synced Linear teams joined with portal ownership and access.

Invariants:
    - Team records are read from linear_teams:{id}; aggregate keys are never treated as teams
    - Enriched hierarchy is served from linear_teams:enriched while younger than its TTL
    - The ownership map (team → customer) is rebuilt from team:*:customer keys when
      its cache is missing or stale
    - Customer-level access: a member of a customer that owns a team can see it;
      /user/teams additionally requires the team-level member list

Design Decisions:
    - Counts are computed from one pass over customer team lists instead of a
      per-team scan, so enrichment cost is linear in customers + teams
"""

import logging

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import age_ms, is_fresh, now_iso, now_ms, stamped
from portal.core.domain_types import Role
from portal.core.errors import (
    ErrorContext, InvalidInputError, PortalError, ResourceNotFoundError,
)
from portal.core.id_lists import with_id, without_id
from portal.core.repository_protocols import KeyValueStore, LinearGateway
from portal.core.roles import ADMIN_ROLES
from portal.core.team_hierarchy import enrich_hierarchy, flatten_hierarchy
from portal.infrastructure import linear_queries

logger = logging.getLogger(__name__)


def _brief(team: dict) -> dict:
    return {
        "id": team.get("id"),
        "name": team.get("name"),
        "key": team.get("key"),
        "description": team.get("description"),
        "state": team.get("state"),
        "color": team.get("color"),
        "issueCount": team.get("issueCount") or 0,
    }


def _flat_entry(team: dict) -> dict:
    return {
        "id": team.get("id"),
        "name": team.get("name"),
        "key": team.get("key"),
        "description": team.get("description") or "",
        "state": team.get("state") or "active",
        "color": team.get("color"),
        "icon": team.get("icon"),
        "timezone": team.get("timezone"),
        "parentId": team.get("parentId") or team.get("parent_id"),
        "parentName": team.get("parentName") or team.get("parent_name"),
        "parentKey": team.get("parentKey") or team.get("parent_key"),
        "createdAt": team.get("createdAt"),
        "updatedAt": team.get("updatedAt"),
        "membersCount": 0,
        "customersCount": 0,
    }


def _member_entry(user_id: str, user: dict, membership: dict | None) -> dict:
    membership = membership or {}
    return {
        "userId": user_id,
        "email": user.get("email"),
        "name": (user.get("metadata") or {}).get("name")
        or (user.get("email") or "").split("@")[0],
        "role": user.get("role"),
        "status": user.get("status"),
        "assignedAt": membership.get("assignedAt") or membership.get("assigned_at"),
        "assignedBy": membership.get("assignedBy") or membership.get("assigned_by"),
    }


class TeamService:
    """Team listings, team membership and team access checks."""

    def __init__(
        self,
        kv: KeyValueStore,
        linear: LinearGateway | None = None,
        settings: Settings | None = None,
    ):
        self.kv = kv
        self.linear = linear
        self.settings = settings or get_settings()

    # ─── Listings ────────────────────────────────────────────────

    async def get_all_teams(self, include_hierarchy: bool = False) -> dict:
        now = now_ms()
        ttl = self.settings.enriched_teams_cache_ttl_seconds
        if include_hierarchy:
            cached = await self.kv.get(kv_keys.LINEAR_TEAMS_ENRICHED)
            if is_fresh(cached, ttl, now):
                return {
                    **cached["data"],
                    "cached": True,
                    "cacheAge": age_ms(cached, now),
                    "source": "enriched-cache",
                }

            synced = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL)
            if isinstance(synced, dict) and (synced.get("teams") or synced.get("hierarchy")):
                members_count, customers_count = await self._team_counts(
                    [t.get("id") for t in flatten_hierarchy(synced.get("hierarchy") or [])],
                )
                teams = synced.get("teams") or []
                data = {
                    "teams": teams,
                    "hierarchy": enrich_hierarchy(
                        synced.get("hierarchy") or [], members_count, customers_count,
                    ),
                    "rootTeamsCount": synced.get("rootTeamsCount") or 0,
                    "totalTeamsCount": synced.get("totalTeamsCount") or 0,
                    "count": synced.get("count") or len(teams),
                    "syncedAt": synced.get("syncedAt"),
                    "source": "kv-cache",
                }
                await self.kv.set(kv_keys.LINEAR_TEAMS_ENRICHED, stamped(data, now))
                return data

        records = await self._team_records()
        teams = [_flat_entry(r) for r in records]
        members_count, customers_count = await self._team_counts([t["id"] for t in teams])
        for team in teams:
            team["membersCount"] = members_count.get(team["id"], 0)
            team["customersCount"] = customers_count.get(team["id"], 0)
        return {"teams": teams, "count": len(teams), "source": "flat"}

    async def invalidate_cache(self) -> None:
        await self.kv.delete(kv_keys.LINEAR_TEAMS_ENRICHED)

    async def get_cache_stats(self) -> dict:
        ttl_ms = int(self.settings.enriched_teams_cache_ttl_seconds * 1000)
        cached = await self.kv.get(kv_keys.LINEAR_TEAMS_ENRICHED)
        age = age_ms(cached, now_ms())
        if age is None:
            return {"cached": False, "ttl": ttl_ms}
        return {"cached": True, "age": age, "ttl": ttl_ms}

    async def get_available_teams_for_customer(self, customer_id: str) -> dict:
        all_teams = (await self.get_all_teams(False))["teams"]
        assigned_here = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        ownership = await self.get_ownership_map()

        available = [
            {
                "id": team["id"],
                "name": team["name"],
                "key": team["key"],
                "description": team["description"],
                "state": team["state"],
                "color": team["color"],
                "isAssignedToThisCustomer": team["id"] in assigned_here,
            }
            for team in all_teams
            if ownership.get(team["id"]) in (None, customer_id)
        ]
        logger.info(
            f"{len(available)} of {len(all_teams)} teams available",
            extra={"customer_id": customer_id},
        )
        return {"teams": available, "count": len(available), "totalTeams": len(all_teams)}

    async def get_ownership_map(self) -> dict[str, str]:
        """Team id → owning customer id, cached in team_ownership_map:all."""
        now = now_ms()
        cached = await self.kv.get(kv_keys.TEAM_OWNERSHIP_MAP)
        if is_fresh(cached, self.settings.ownership_cache_ttl_seconds, now):
            return {tid: cid for tid, cid in cached.get("data") or []}

        ownership = {
            kv_keys.id_segment(key): value
            for key, value in await self.kv.get_by_prefix(kv_keys.TEAM_PREFIX)
            if kv_keys.is_team_customer_key(key) and isinstance(value, str) and value
        }
        await self.kv.set(
            kv_keys.TEAM_OWNERSHIP_MAP, stamped([[t, c] for t, c in ownership.items()], now),
        )
        return ownership

    async def clear_ownership_cache(self) -> None:
        await self.kv.delete(kv_keys.TEAM_OWNERSHIP_MAP)

    # ─── Single team ─────────────────────────────────────────────

    async def get_team_by_id(self, team_id: str) -> dict:
        team = await self._require_team(team_id)

        member_ids = await self.kv.get(kv_keys.team_members(team_id)) or []
        users = await self.kv.mget([kv_keys.user(uid) for uid in member_ids])
        memberships = await self.kv.mget([
            kv_keys.team_member(team_id, uid) for uid in member_ids
        ])
        members = [
            _member_entry(uid, user, membership)
            for uid, user, membership in zip(member_ids, users, memberships)
            if user
        ]

        customers = []
        for customer_id, team_ids in (await self._customer_team_lists()).items():
            if team_id in team_ids:
                customer = await self.kv.get(kv_keys.customer(customer_id))
                if customer:
                    customers.append({
                        "id": customer.get("id"),
                        "name": customer.get("name"),
                        "status": customer.get("status"),
                    })

        parent_id = team.get("parentId") or team.get("parent_id")
        parent = None
        if parent_id:
            record = await self.kv.get(kv_keys.linear_team(parent_id))
            if isinstance(record, dict):
                parent = {
                    k: record.get(k)
                    for k in ("id", "name", "key", "description", "color", "icon")
                }

        synced = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL) or {}
        children = [
            {k: t.get(k) for k in ("id", "name", "key", "description", "color", "icon")}
            for t in synced.get("teams") or []
            if (t.get("parentId") or t.get("parent_id")) == team_id
        ]
        return {
            **team,
            "parent": parent,
            "children": children,
            "childCount": len(children),
            "hasParent": bool(parent_id),
            "hasChildren": bool(children),
            "members": members,
            "membersCount": len(members),
            "customers": customers,
            "customersCount": len(customers),
        }

    async def get_team_customer(self, team_id: str) -> dict:
        customer_id = await self.kv.get(kv_keys.team_customer(team_id))
        if not customer_id:
            return {
                "teamId": team_id, "customerId": None,
                "customerName": None, "isAssigned": False,
            }
        customer = await self.kv.get(kv_keys.customer(customer_id)) or {}
        return {
            "teamId": team_id,
            "customerId": customer_id,
            "customerName": customer.get("name") or "Unknown Customer",
            "isAssigned": True,
        }

    async def get_teams_by_customer(self, customer_id: str) -> dict:
        if await self.kv.get(kv_keys.customer(customer_id)) is None:
            raise ResourceNotFoundError(
                "Customer", customer_id, context=ErrorContext(customer_id=customer_id),
                message="Customer not found",
            )
        team_ids = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
        records = await self.kv.mget([kv_keys.linear_team(tid) for tid in team_ids])
        teams = [_brief(r) for r in records if isinstance(r, dict)]
        return {"teams": teams, "count": len(teams)}

    # ─── Team membership ─────────────────────────────────────────

    async def get_team_members(self, team_id: str) -> dict:
        await self._require_team(team_id)
        member_ids = await self.kv.get(kv_keys.team_members(team_id)) or []
        users = await self.kv.mget([kv_keys.user(uid) for uid in member_ids])
        memberships = await self.kv.mget([
            kv_keys.team_member(team_id, uid) for uid in member_ids
        ])
        members = [
            _member_entry(uid, user, membership)
            for uid, user, membership in zip(member_ids, users, memberships)
            if user
        ]
        return {"members": members, "count": len(members)}

    async def assign_user_to_team(
        self, user_id: str, team_id: str, assigned_by: str | None,
    ) -> dict:
        if await self.kv.get(kv_keys.user(user_id)) is None:
            raise ResourceNotFoundError(
                "User", user_id, context=ErrorContext(user_id=user_id),
                message="User not found",
            )
        await self._require_team(team_id)

        user_teams = await self.kv.get(kv_keys.user_teams(user_id))
        team_members = await self.kv.get(kv_keys.team_members(team_id))
        membership = {
            "userId": user_id,
            "teamId": team_id,
            "assignedAt": now_iso(),
            "assignedBy": assigned_by,
        }
        await self.kv.mset({
            kv_keys.user_teams(user_id): with_id(user_teams, team_id),
            kv_keys.team_members(team_id): with_id(team_members, user_id),
            kv_keys.team_member(team_id, user_id): membership,
        })
        await self.invalidate_cache()
        logger.info(
            "User assigned to team", extra={"user_id": user_id, "team_id": team_id},
        )
        return {"message": "User assigned to team successfully", "membership": membership}

    async def remove_user_from_team(
        self, user_id: str, team_id: str, removed_by: str | None = None,
    ) -> dict:
        user_teams = await self.kv.get(kv_keys.user_teams(user_id))
        team_members = await self.kv.get(kv_keys.team_members(team_id))
        await self.kv.mset({
            kv_keys.user_teams(user_id): without_id(user_teams, team_id),
            kv_keys.team_members(team_id): without_id(team_members, user_id),
        })
        await self.kv.delete(kv_keys.team_member(team_id, user_id))
        await self.invalidate_cache()
        logger.info(
            "User removed from team",
            extra={"user_id": user_id, "team_id": team_id},
        )
        return {"message": "User removed from team successfully", "removedBy": removed_by}

    # ─── Access ──────────────────────────────────────────────────

    async def check_user_team_access(
        self, user_id: str, team_id: str, is_superadmin: bool = False,
    ) -> dict:
        user = await self.kv.get(kv_keys.user(user_id))
        if user is None:
            raise ResourceNotFoundError(
                "User", user_id, context=ErrorContext(user_id=user_id),
                message="User not found",
            )
        if is_superadmin or user.get("role") in ADMIN_ROLES:
            return {"hasAccess": True, "reason": "admin_role"}

        customer_id = await self._owning_customer_of(user_id, team_id)
        if customer_id:
            return {
                "hasAccess": True,
                "reason": "customer_member_access",
                "customerId": customer_id,
            }
        return {"hasAccess": False, "reason": "no_access"}

    async def get_user_accessible_teams(self, user_id: str) -> dict:
        user = await self.kv.get(kv_keys.user(user_id))
        if user is None:
            raise ResourceNotFoundError(
                "User", user_id, context=ErrorContext(user_id=user_id),
                message="User not found",
            )
        if user.get("role") in ADMIN_ROLES:
            result = await self.get_all_teams(False)
            return {
                "teams": result["teams"],
                "count": result["count"],
                "access_reason": "admin_role",
            }

        team_ids = await self._customer_level_team_ids(user_id)
        records = await self.kv.mget([kv_keys.linear_team(tid) for tid in team_ids])
        teams = [_brief(r) for r in records if isinstance(r, dict)]
        return {"teams": teams, "count": len(teams)}

    async def get_team_hierarchy(self, user_id: str, is_superadmin: bool) -> list[dict]:
        """Accessible teams grouped under their customers (Customer > Teams)."""
        if is_superadmin:
            team_ids = [r["id"] for r in await self._team_records()]
        else:
            team_ids = await self._customer_level_team_ids(user_id)
        if not team_ids:
            return []

        customer_lists = await self._customer_team_lists()
        customer_records = dict(zip(
            customer_lists,
            await self.kv.mget([kv_keys.customer(cid) for cid in customer_lists]),
        ))
        records = await self.kv.mget([kv_keys.linear_team(tid) for tid in team_ids])

        grouped: dict[str, dict] = {}
        for team in records:
            if not isinstance(team, dict):
                continue
            for customer_id, owned in customer_lists.items():
                customer = customer_records.get(customer_id)
                if team.get("id") not in owned or not customer:
                    continue
                entry = grouped.setdefault(customer_id, {
                    "id": customer_id,
                    "name": customer.get("name"),
                    "key": (customer.get("name") or "")[:3].upper(),
                    "children": [],
                })
                entry["children"].append({
                    "id": team.get("id"),
                    "name": team.get("name"),
                    "key": team.get("key"),
                    "description": team.get("description") or "",
                    "level": 1,
                    "children": [],
                })
        return list(grouped.values())

    async def get_user_teams(self, user_id: str, role: str, is_superadmin: bool) -> dict:
        """Teams for the sidebar: admins see all, others need team-level membership."""
        if is_superadmin or role == Role.ADMIN.value:
            synced = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL) or {}
            teams = synced.get("teams") or []
            return {
                "teams": teams,
                "count": len(teams),
                "access": "all",
                "reason": "superadmin" if is_superadmin else "admin",
            }

        customer_ids = await self.kv.get(kv_keys.user_customers(user_id)) or []
        if not customer_ids:
            return {
                "teams": [],
                "count": 0,
                "access": "none",
                "reason": "no_customer_assignment",
            }

        accessible: list[str] = []
        team_lists = await self.kv.mget([kv_keys.customer_teams(cid) for cid in customer_ids])
        for customer_id, team_ids in zip(customer_ids, team_lists):
            member_keys = [
                kv_keys.customer_team_members(customer_id, tid) for tid in team_ids or []
            ]
            for team_id, members in zip(team_ids or [], await self.kv.mget(member_keys)):
                if members and user_id in members and team_id not in accessible:
                    accessible.append(team_id)

        if not accessible:
            logger.info(
                "User has customers but no team-level membership",
                extra={"user_id": user_id},
            )

        records = await self.kv.mget([kv_keys.linear_team(tid) for tid in accessible])
        teams = [
            {k: r.get(k) for k in ("id", "name", "key", "description")}
            for r in records
            if isinstance(r, dict) and r.get("id")
        ]
        return {
            "teamIds": accessible,
            "teams": teams,
            "count": len(teams),
            "permissionModel": "team-level",
            "customerCount": len(customer_ids),
        }

    async def check_user_team_access_detail(
        self, user_id: str, role: str, is_superadmin: bool, team_id: str,
    ) -> dict:
        if is_superadmin or role == Role.ADMIN.value:
            return {
                "hasAccess": True,
                "accessType": "customer-level",
                "role": Role.SUPERADMIN.value if is_superadmin else Role.ADMIN.value,
                "teamName": await self._team_name(team_id),
                "teamId": team_id,
            }

        customer_id = await self._owning_customer_of(user_id, team_id)
        if customer_id:
            return {
                "hasAccess": True,
                "accessType": "customer-level",
                "role": role,
                "teamName": await self._team_name(team_id),
                "customerId": customer_id,
                "teamId": team_id,
            }
        return {"hasAccess": False, "accessType": None, "teamId": team_id}

    # ─── Kanban settings ─────────────────────────────────────────

    async def get_kanban_settings(self, user_id: str, team_id: str) -> dict:
        settings = await self.kv.get(kv_keys.user_kanban_settings(user_id, team_id))
        if settings is None:
            raise ResourceNotFoundError(
                "KanbanSettings", team_id,
                context=ErrorContext(user_id=user_id, team_id=team_id),
                message="No Kanban settings saved for this team",
            )
        return settings

    async def save_kanban_settings(self, user_id: str, team_id: str, settings: dict) -> dict:
        if not isinstance(settings.get("columnsOrder"), list):
            raise InvalidInputError(
                "Invalid settings: columnsOrder is required and must be an array",
                field="columnsOrder",
            )
        stored = {**settings, "teamId": team_id, "userId": user_id, "updatedAt": now_iso()}
        await self.kv.set(kv_keys.user_kanban_settings(user_id, team_id), stored)
        return stored

    async def delete_kanban_settings(self, user_id: str, team_id: str) -> None:
        await self.kv.delete(kv_keys.user_kanban_settings(user_id, team_id))

    # ─── Helpers ─────────────────────────────────────────────────

    async def _require_team(self, team_id: str) -> dict:
        team = await self.kv.get(kv_keys.linear_team(team_id))
        if not isinstance(team, dict):
            raise ResourceNotFoundError(
                "Team", team_id, context=ErrorContext(team_id=team_id),
                message="Team not found",
            )
        return team

    async def _team_records(self) -> list[dict]:
        return [
            value for key, value in await self.kv.get_by_prefix(kv_keys.LINEAR_TEAMS_PREFIX)
            if kv_keys.is_team_record_key(key) and isinstance(value, dict) and value.get("id")
        ]

    async def _customer_team_lists(self) -> dict[str, list]:
        """customer id → assigned team ids, for every top-level customer."""
        keys = await self.kv.keys_with_prefix(kv_keys.CUSTOMER_PREFIX)
        customer_ids = [
            kv_keys.id_segment(k) for k in keys if kv_keys.is_top_level_customer_key(k)
        ]
        lists = await self.kv.mget([kv_keys.customer_teams(cid) for cid in customer_ids])
        return {cid: ids or [] for cid, ids in zip(customer_ids, lists)}

    async def _team_counts(self, team_ids: list) -> tuple[dict, dict]:
        ids = [tid for tid in team_ids if tid]
        member_lists = await self.kv.mget([kv_keys.team_members(tid) for tid in ids])
        members_count = {tid: len(m or []) for tid, m in zip(ids, member_lists)}
        customers_count: dict[str, int] = {}
        for owned in (await self._customer_team_lists()).values():
            for tid in owned:
                customers_count[tid] = customers_count.get(tid, 0) + 1
        return members_count, customers_count

    async def _customer_level_team_ids(self, user_id: str) -> list[str]:
        customer_ids = await self.kv.get(kv_keys.user_customers(user_id)) or []
        team_ids: list[str] = []
        for owned in await self.kv.mget([kv_keys.customer_teams(cid) for cid in customer_ids]):
            for tid in owned or []:
                if tid not in team_ids:
                    team_ids.append(tid)
        return team_ids

    async def _owning_customer_of(self, user_id: str, team_id: str) -> str | None:
        customer_ids = await self.kv.get(kv_keys.user_customers(user_id)) or []
        team_lists = await self.kv.mget([kv_keys.customer_teams(cid) for cid in customer_ids])
        for customer_id, owned in zip(customer_ids, team_lists):
            if team_id in (owned or []):
                return customer_id
        return None

    async def _team_name(self, team_id: str) -> str:
        team = await self.kv.get(kv_keys.linear_team(team_id))
        if isinstance(team, dict) and team.get("name"):
            return team["name"]
        if self.linear is not None:
            try:
                data = await self.linear.execute(
                    linear_queries.GET_TEAM, {"teamId": team_id}, allow_team_not_found=True,
                )
            except PortalError as e:
                logger.warning(
                    f"Could not resolve team name from Linear: {e.message}",
                    extra={"team_id": team_id, "error_code": e.code},
                )
                return team_id
            fetched = (data or {}).get("team")
            if isinstance(fetched, dict) and fetched.get("name"):
                await self.kv.set(kv_keys.linear_team(team_id), fetched)
                return fetched["name"]
        return team_id
