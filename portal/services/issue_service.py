"""Issue Service — team issues, issue detail caching and issue mutations via Linear.

Invariants:
    - Issue lists paginate until Linear reports hasNextPage = false
    - The issue detail cache is {data, expiresAt}; every fetch rewrites it, even on bypass
    - State changes and new comments invalidate that issue's detail cache
    - Optional create variables are omitted, never sent as null

Design Decisions:
    - Per-state issue fetches for the board run concurrently (asyncio.gather)
    - A failed active-cycle lookup does not block issue creation; it is logged
      and the issue is created without a cycle
"""

import asyncio
import json
import logging

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import is_unexpired, now_iso, now_ms
from portal.core.client_columns import (
    CLIENT_COLUMNS, calculate_distribution, map_state_to_client_column,
)
from portal.core.errors import (
    ErrorContext, LinearAPIError, PortalError, ResourceNotFoundError,
)
from portal.core.issue_hierarchy import (
    extract_array_from_response, group_by_parent, rename_children_to_sub_issues,
)
from portal.core.repository_protocols import KeyValueStore, LinearGateway
from portal.infrastructure import linear_queries

logger = logging.getLogger(__name__)

_SUB_ISSUE_LABELS = ("uat", "client-submitted")


class IssueService:
    """Linear issue reads and writes for one workspace."""

    def __init__(
        self, kv: KeyValueStore, linear: LinearGateway, settings: Settings | None = None,
    ):
        self.kv = kv
        self.linear = linear
        self.settings = settings or get_settings()

    # ─── Team configuration ──────────────────────────────────────

    async def get_team_config(self, team_id: str) -> dict | None:
        data = await self.linear.execute(
            linear_queries.GET_TEAM_CONFIG, {"teamId": team_id}, allow_team_not_found=True,
        )
        team = (data or {}).get("team")
        if not team:
            logger.warning(f"No Linear team config for {team_id}", extra={"team_id": team_id})
            return None
        return {
            "id": team.get("id"),
            "name": team.get("name"),
            "key": team.get("key"),
            "description": team.get("description"),
            "timezone": team.get("timezone"),
            "states": extract_array_from_response(team.get("states")),
            "labels": extract_array_from_response(team.get("labels")),
            "members": extract_array_from_response(team.get("members")),
            "projects": extract_array_from_response(team.get("projects")),
            "createdAt": team.get("createdAt"),
            "updatedAt": team.get("updatedAt"),
        }

    async def get_state_id_by_name(self, team_id: str, state_name: str) -> str | None:
        states = await self._team_states(team_id)
        wanted = state_name.lower()
        for state in states:
            if (state.get("name") or "").lower() == wanted:
                return state["id"]
        logger.warning(
            f"State '{state_name}' not found in team {team_id}",
            extra={"team_id": team_id},
        )
        return None

    # ─── Issue lists ─────────────────────────────────────────────

    async def get_all_team_issues(self, team_id: str) -> list[dict]:
        return await self._paginate(linear_queries.GET_ALL_TEAM_ISSUES, {"teamId": team_id})

    async def get_issues_in_state(self, team_id: str, state_id: str) -> list[dict]:
        return await self._paginate(
            linear_queries.GET_ISSUES_IN_STATE, {"teamId": team_id, "stateId": state_id},
        )

    async def get_issues_grouped_by_parent(self, team_id: str, state_id: str) -> list[dict]:
        return group_by_parent(await self.get_issues_in_state(team_id, state_id))

    async def get_team_issues_by_state(self, team_id: str) -> dict:
        config = await self.get_team_config(team_id)
        if config is None:
            raise ResourceNotFoundError(
                "Team", team_id, context=ErrorContext(team_id=team_id),
                message=f"Team {team_id} not found or has no configuration",
            )

        states = config["states"]
        grouped = await asyncio.gather(
            *(self.get_issues_grouped_by_parent(team_id, s["id"]) for s in states)
        )

        results = []
        for state, roots in zip(states, grouped):
            sub_count = sum(len(issue.get("subIssues") or []) for issue in roots)
            results.append({
                "state": {
                    "id": state.get("id"),
                    "name": state.get("name"),
                    "type": state.get("type"),
                    "color": state.get("color"),
                    "position": state.get("position"),
                },
                "issues": roots,
                "totalCount": len(roots) + sub_count,
                "rootCount": len(roots),
                "subIssueCount": sub_count,
            })

        total = sum(r["totalCount"] for r in results)
        logger.info(
            f"Loaded {total} issues across {len(states)} states for team {config['name']}",
            extra={"team_id": team_id},
        )
        return {
            "team": {"id": config["id"], "name": config["name"], "key": config["key"]},
            "states": results,
            "totalIssues": total,
            "timestamp": now_iso(),
        }

    async def get_client_board(self, team_id: str) -> dict:
        board = await self.get_team_issues_by_state(team_id)
        by_column: dict[str, list] = {c["id"]: [] for c in CLIENT_COLUMNS}
        for entry in board["states"]:
            column = map_state_to_client_column(entry["state"])
            if column is None:
                continue
            by_column[column].extend(entry["issues"])

        return {
            "team": board["team"],
            "columns": [
                {**column, "issues": by_column[column["id"]], "count": len(by_column[column["id"]])}
                for column in CLIENT_COLUMNS
            ],
            "distribution": calculate_distribution(by_column),
            "timestamp": board["timestamp"],
        }

    async def get_issue_statistics(self, team_id: str) -> dict:
        issues = await self.get_all_team_issues(team_id)
        stats = {"total": len(issues), "byState": {}, "byPriority": {}, "byAssignee": {}}
        for issue in issues:
            state = (issue.get("state") or {}).get("name") or "Unknown"
            priority = issue.get("priorityLabel") or "No Priority"
            assignee = (issue.get("assignee") or {}).get("name") or "Unassigned"
            for bucket, name in (
                ("byState", state), ("byPriority", priority), ("byAssignee", assignee),
            ):
                stats[bucket][name] = stats[bucket].get(name, 0) + 1
        return stats

    async def search_issues(self, query: str) -> list[dict]:
        data = await self.linear.execute(linear_queries.SEARCH_ISSUES, {"query": query})
        return extract_array_from_response((data or {}).get("issueSearch"))

    # ─── Issue detail ────────────────────────────────────────────

    async def get_issue_detail(self, issue_id: str, bypass_cache: bool = False) -> dict:
        key = kv_keys.issue_detail(issue_id)
        if not bypass_cache:
            cached = await self.kv.get(key)
            if is_unexpired(cached, now_ms()) and cached.get("data"):
                logger.debug(f"Issue detail cache hit for {issue_id}")
                return cached["data"]

        data = await self.linear.execute(linear_queries.GET_ISSUE_DETAIL, {"issueId": issue_id})
        issue = (data or {}).get("issue")
        if not issue:
            raise ResourceNotFoundError(
                "Issue", issue_id, context=ErrorContext(issue_id=issue_id),
            )

        detail = rename_children_to_sub_issues(issue)
        await self.kv.set(key, {
            "data": detail,
            "expiresAt": now_ms() + self.settings.issue_detail_cache_ttl_seconds * 1000,
        })
        return detail

    # ─── Mutations ───────────────────────────────────────────────

    async def update_issue_state(self, issue_id: str, state_id: str) -> dict:
        data = await self.linear.execute(
            linear_queries.UPDATE_ISSUE_STATE, {"issueId": issue_id, "stateId": state_id},
        )
        await self.kv.delete(kv_keys.issue_detail(issue_id))
        logger.info(
            f"Moved issue {issue_id} to state {state_id}", extra={"issue_id": issue_id},
        )
        return (data or {}).get("issueUpdate") or {"success": False}

    async def add_comment(self, issue_id: str, body: str) -> dict:
        data = await self.linear.execute(
            linear_queries.ADD_COMMENT, {"issueId": issue_id, "body": body},
        )
        await self.kv.delete(kv_keys.issue_detail(issue_id))
        return (data or {}).get("commentCreate") or {"success": False}

    async def create_issue(
        self,
        team_id: str,
        title: str,
        *,
        description: str | None = None,
        priority: int | None = None,
        assignee_id: str | None = None,
        state_id: str | None = None,
        label_ids: list[str] | None = None,
        cycle_id: str | None = None,
        parent_id: str | None = None,
    ) -> dict:
        if not cycle_id:
            cycle_id = await self._active_cycle_id(team_id)
        return await self._submit_issue({
            "teamId": team_id,
            "title": title,
            "description": description,
            "priority": priority,
            "assigneeId": assignee_id,
            "stateId": state_id,
            "labelIds": label_ids,
            "cycleId": cycle_id,
            "parentId": parent_id,
        })

    async def _submit_issue(self, fields: dict) -> dict:
        variables = {
            k: v for k, v in fields.items()
            if (v is not None if k == "priority" else bool(v))
        }
        team_id, parent_id = fields["teamId"], fields.get("parentId")

        data = await self.linear.execute(linear_queries.CREATE_ISSUE, variables)
        result = (data or {}).get("issueCreate") or {}
        if not result.get("success"):
            raise LinearAPIError(
                "Failed to create issue in Linear", "mutation_failed",
                context=ErrorContext(team_id=team_id),
            )

        issue = result.get("issue") or {}
        logger.info(
            f"Created {'sub-issue' if parent_id else 'issue'} {issue.get('identifier')}",
            extra={"team_id": team_id, "issue_id": issue.get("id")},
        )
        return issue

    async def create_sub_issue(
        self, parent_id: str, title: str, description: str | None = None,
    ) -> dict:
        data = await self.linear.execute(linear_queries.GET_PARENT_ISSUE, {"issueId": parent_id})
        parent = (data or {}).get("issue")
        if not parent:
            raise ResourceNotFoundError(
                "Issue", parent_id, context=ErrorContext(issue_id=parent_id),
                message=f"Parent issue not found: {parent_id}",
            )
        team_id = (parent.get("team") or {}).get("id")
        if not team_id:
            raise ResourceNotFoundError(
                "Team", parent_id, context=ErrorContext(issue_id=parent_id),
                message=f"Parent issue {parent_id} has no team assigned",
            )

        states = await self._team_states(team_id)
        triage = next((s for s in states if (s.get("name") or "").lower() == "triage"), None)

        labels = await self._team_labels(team_id)
        label_ids = [
            label["id"]
            for wanted in _SUB_ISSUE_LABELS
            for label in labels
            if (label.get("name") or "").lower() == wanted
        ]

        return await self._submit_issue({
            "teamId": team_id,
            "title": title,
            "description": description,
            "stateId": triage["id"] if triage else None,
            "labelIds": label_ids,
            "cycleId": (parent.get("cycle") or {}).get("id"),
            "parentId": parent_id,
        })

    # ─── Cache maintenance ───────────────────────────────────────

    async def invalidate_cache(self, team_id: str) -> dict:
        issues = await self.get_all_team_issues(team_id)
        await self.kv.mdel([kv_keys.issue_detail(i["id"]) for i in issues])
        return {
            "message": f"Invalidated cache for {len(issues)} issues in team {team_id}",
            "invalidatedCount": len(issues),
        }

    async def get_cache_stats(self) -> dict:
        entries = await self.kv.get_by_prefix(kv_keys.ISSUE_DETAIL_PREFIX)
        now = now_ms()
        valid = sum(1 for _, entry in entries if is_unexpired(entry, now))
        size = sum(len(json.dumps(entry)) for _, entry in entries)
        return {
            "totalCaches": len(entries),
            "validCaches": valid,
            "expiredCaches": len(entries) - valid,
            "estimatedSize": size,
            "estimatedSizeKB": round(size / 1024),
        }

    # ─── Helpers ─────────────────────────────────────────────────

    async def _paginate(self, query: str, variables: dict) -> list[dict]:
        issues, after = [], None
        while True:
            data = await self.linear.execute(query, {**variables, "after": after})
            page = (data or {}).get("issues") or {}
            issues.extend(page.get("nodes") or [])
            info = page.get("pageInfo") or {}
            if not info.get("hasNextPage") or not info.get("endCursor"):
                return issues
            after = info["endCursor"]

    async def _team_states(self, team_id: str) -> list[dict]:
        data = await self.linear.execute(linear_queries.GET_TEAM_STATES, {"teamId": team_id})
        return extract_array_from_response(((data or {}).get("team") or {}).get("states"))

    async def _team_labels(self, team_id: str) -> list[dict]:
        data = await self.linear.execute(linear_queries.GET_TEAM_LABELS, {"teamId": team_id})
        return extract_array_from_response(((data or {}).get("team") or {}).get("labels"))

    async def _active_cycle_id(self, team_id: str) -> str | None:
        try:
            data = await self.linear.execute(linear_queries.GET_ACTIVE_CYCLES, {"teamId": team_id})
        except PortalError as e:
            logger.warning(
                f"Active cycle lookup failed for team {team_id}, creating without cycle: {e}",
                extra={"team_id": team_id},
            )
            return None
        cycles = extract_array_from_response(((data or {}).get("team") or {}).get("cycles"))
        uat = next((c for c in cycles if "uat" in (c.get("name") or "").lower()), None)
        chosen = uat or (cycles[0] if cycles else None)
        return chosen["id"] if chosen else None
