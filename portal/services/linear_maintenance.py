"""Linear Maintenance — finds and removes customer team mappings to deleted teams.

Invariants:
    - Valid team ids come from the last sync (linear_teams:all), never from a live API call
    - validate_mappings() never writes
    - cleanup removes the orphan from customer:{cid}:teams together with its ownership key
"""

import logging

from portal.core import kv_keys
from portal.core.errors import InvalidInputError
from portal.core.id_lists import without_id
from portal.core.repository_protocols import KeyValueStore
from portal.core.team_hierarchy import orphaned_team_ids

logger = logging.getLogger(__name__)

NOT_SYNCED_MESSAGE = "Could not load teams data. Please sync teams first."


class LinearMaintenance:
    """Orphaned-mapping validation and cleanup."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def cleanup_orphaned_mappings(self) -> dict:
        valid_ids = await self._valid_team_ids()
        checked, removed_total, details = 0, 0, []

        for customer_id, assigned in await self._customer_assignments():
            checked += 1
            orphaned = orphaned_team_ids(assigned, valid_ids)
            if not orphaned:
                continue

            remaining = assigned
            for team_id in orphaned:
                remaining = without_id(remaining, team_id)
            await self.kv.set(kv_keys.customer_teams(customer_id), remaining)
            await self.kv.mdel([kv_keys.team_customer(t) for t in orphaned])

            removed_total += len(orphaned)
            details.append({
                "customerId": customer_id,
                "removed": orphaned,
                "remaining": len(remaining),
            })
            logger.info(
                f"Removed {len(orphaned)} orphaned team mapping(s) from customer {customer_id}",
                extra={"customer_id": customer_id},
            )

        if removed_total:
            await self.kv.delete(kv_keys.TEAM_OWNERSHIP_MAP)

        return {
            "customersChecked": checked,
            "orphanedRemoved": removed_total,
            "customersUpdated": len(details),
            "validTeamsCount": len(valid_ids),
            "details": details,
        }

    async def validate_mappings(self) -> dict:
        valid_ids = await self._valid_team_ids()
        checked, issues = 0, []

        for customer_id, assigned in await self._customer_assignments():
            checked += 1
            orphaned = orphaned_team_ids(assigned, valid_ids)
            if orphaned:
                issues.append({
                    "customerId": customer_id,
                    "orphanedTeams": [
                        {"teamId": t, "note": "Unknown team (deleted from Linear)"}
                        for t in orphaned
                    ],
                    "validTeamsCount": len(assigned) - len(orphaned),
                })

        return {
            "validTeamsCount": len(valid_ids),
            "customersChecked": checked,
            "customersWithOrphans": len(issues),
            "totalOrphaned": sum(len(i["orphanedTeams"]) for i in issues),
            "issues": issues,
        }

    # ─── Helpers ─────────────────────────────────────────────────

    async def _valid_team_ids(self) -> set[str]:
        synced = await self.kv.get(kv_keys.LINEAR_TEAMS_ALL)
        if not isinstance(synced, dict) or not isinstance(synced.get("teams"), list):
            raise InvalidInputError(NOT_SYNCED_MESSAGE)
        return {t["id"] for t in synced["teams"] if isinstance(t, dict) and t.get("id")}

    async def _customer_assignments(self) -> list[tuple[str, list[str]]]:
        assignments = []
        for key in await self.kv.keys_with_prefix(kv_keys.CUSTOMER_PREFIX):
            if not kv_keys.is_top_level_customer_key(key):
                continue
            customer_id = kv_keys.id_segment(key)
            assigned = await self.kv.get(kv_keys.customer_teams(customer_id))
            if isinstance(assigned, list) and assigned:
                assignments.append((customer_id, assigned))
        return assignments
