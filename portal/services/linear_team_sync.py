"""Linear Team Sync — pulls the team tree from Linear into the KV caches.

Invariants:
    - A sync replaces every linear_teams:{id} record (teams deleted in Linear disappear)
    - linear_teams:all holds the flat summaries, the nested hierarchy and the counts
    - After a sync the enriched-hierarchy and ownership caches are invalidated
    - An empty workspace is reported, not treated as an error, and leaves the caches untouched

Design Decisions:
    - Orphaned customer mappings are reported by the sync but only removed by
      the explicit maintenance cleanup, so a transient Linear glitch never drops
      customer assignments
"""

import logging

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.errors import ErrorContext, ResourceNotFoundError
from portal.core.repository_protocols import KeyValueStore, LinearGateway
from portal.core.team_hierarchy import (
    build_team_hierarchy, orphaned_team_ids, team_record, team_summary,
)
from portal.infrastructure import linear_queries

logger = logging.getLogger(__name__)


class LinearTeamSync:
    """Team-level Linear reads and the team hierarchy sync."""

    def __init__(
        self, kv: KeyValueStore, linear: LinearGateway, settings: Settings | None = None,
    ):
        self.kv = kv
        self.linear = linear
        self.settings = settings or get_settings()

    # ─── Sync ────────────────────────────────────────────────────

    async def sync_team_hierarchy(self) -> dict:
        teams = await self._fetch_all_teams()
        if not teams:
            logger.info("Linear workspace has no teams; nothing to sync")
            return {
                "message": "No teams found in Linear workspace",
                "teamsCount": 0,
                "teams": [],
            }

        synced_at = now_iso()
        stale = [
            k for k in await self.kv.keys_with_prefix(kv_keys.LINEAR_TEAMS_PREFIX)
            if k != kv_keys.LINEAR_TEAMS_ALL
        ]
        await self.kv.mdel(stale)

        records = [team_record(t, synced_at) for t in teams]
        await self.kv.mset({kv_keys.linear_team(r["id"]): r for r in records})

        hierarchy = build_team_hierarchy(records)
        summaries = [team_summary(r) for r in records]
        await self.kv.set(kv_keys.LINEAR_TEAMS_ALL, {
            "teams": summaries,
            "hierarchy": hierarchy,
            "rootTeamsCount": len(hierarchy),
            "totalTeamsCount": len(summaries),
            "count": len(summaries),
            "syncedAt": synced_at,
        })

        organization = teams[0].get("organization")
        if organization:
            await self.kv.set(kv_keys.LINEAR_ORGANIZATION, {
                **organization,
                "teamsCount": len(teams),
                "syncedAt": synced_at,
            })

        await self.kv.mdel([kv_keys.LINEAR_TEAMS_ENRICHED, kv_keys.TEAM_OWNERSHIP_MAP])

        orphaned = await self._orphaned_mappings({r["id"] for r in records})
        orphan_count = sum(len(o["teamIds"]) for o in orphaned)
        if orphan_count:
            logger.warning(
                f"{orphan_count} customer team assignment(s) point at teams missing from Linear",
            )
        logger.info(f"Synced {len(records)} Linear teams ({len(hierarchy)} root)")

        return {
            "message": f"Successfully synced {len(records)} teams ({len(hierarchy)} root teams)",
            "teamsCount": len(records),
            "rootTeamsCount": len(hierarchy),
            "teams": summaries,
            "hierarchy": hierarchy,
            "syncedAt": synced_at,
            "orphanedMappings": {
                "count": orphan_count,
                "customers": len(orphaned),
                "details": orphaned,
            } if orphan_count else None,
        }

    async def clear_cache(self) -> dict:
        keys = await self.kv.keys_with_prefix(kv_keys.LINEAR_TEAMS_PREFIX)
        derived = [kv_keys.LINEAR_ORGANIZATION, kv_keys.TEAM_OWNERSHIP_MAP]
        await self.kv.mdel([*keys, *derived])
        logger.info(f"Cleared {len(keys)} Linear team cache key(s)")
        return {"deletedKeys": len(keys) + len(derived)}

    # ─── Reads ───────────────────────────────────────────────────

    async def list_teams(self) -> list[dict]:
        return [team_summary(team_record(t, now_iso())) for t in await self._fetch_all_teams()]

    async def get_hierarchy(self) -> dict:
        cached = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL)
        if isinstance(cached, dict) and isinstance(cached.get("teams"), list):
            return {**cached, "source": "cache"}
        teams = await self.list_teams()
        return {
            "teams": teams,
            "count": len(teams),
            "syncedAt": now_iso(),
            "source": "api",
        }

    async def get_team(self, team_id: str) -> dict:
        data = await self.linear.execute(linear_queries.GET_TEAM, {"teamId": team_id})
        team = (data or {}).get("team")
        if not team:
            raise ResourceNotFoundError(
                "Team", team_id, context=ErrorContext(team_id=team_id),
                message=f"Team not found in Linear workspace: {team_id}",
            )
        return team

    async def get_team_states(self, team_id: str) -> list[dict]:
        return await self._team_nodes(linear_queries.GET_TEAM_STATES, team_id, "states")

    async def get_team_labels(self, team_id: str) -> list[dict]:
        return await self._team_nodes(linear_queries.GET_TEAM_LABELS, team_id, "labels")

    async def get_team_members(self, team_id: str) -> list[dict]:
        return await self._team_nodes(linear_queries.GET_TEAM_MEMBERS, team_id, "members")

    async def test_connection(self) -> dict:
        data = await self.linear.execute(linear_queries.TEST_CONNECTION)
        viewer = data.get("viewer") or {}
        return {
            "message": f"Connected to Linear as {viewer.get('name') or viewer.get('email')}",
            "viewer": viewer,
            "organization": data.get("organization"),
        }

    # ─── Helpers ─────────────────────────────────────────────────

    async def _fetch_all_teams(self) -> list[dict]:
        teams, after = [], None
        while True:
            data = await self.linear.execute(
                linear_queries.TEAMS_WITH_HIERARCHY, {"after": after},
            )
            page = (data or {}).get("teams") or {}
            teams.extend(page.get("nodes") or [])
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage") or not info.get("endCursor"):
                return teams
            after = info["endCursor"]

    async def _team_nodes(self, query: str, team_id: str, field_name: str) -> list[dict]:
        data = await self.linear.execute(query, {"teamId": team_id})
        team = (data or {}).get("team")
        if team is None:
            raise ResourceNotFoundError(
                "Team", team_id, context=ErrorContext(team_id=team_id),
                message=f"Team not found in Linear workspace: {team_id}",
            )
        return (team.get(field_name) or {}).get("nodes") or []

    async def _orphaned_mappings(self, valid_ids: set[str]) -> list[dict]:
        orphaned = []
        for key in await self.kv.keys_with_prefix(kv_keys.CUSTOMER_PREFIX):
            if not kv_keys.is_top_level_customer_key(key):
                continue
            customer_id = kv_keys.id_segment(key)
            assigned = await self.kv.get(kv_keys.customer_teams(customer_id)) or []
            missing = orphaned_team_ids(assigned, valid_ids)
            if missing:
                orphaned.append({"customerId": customer_id, "teamIds": missing})
        return orphaned
