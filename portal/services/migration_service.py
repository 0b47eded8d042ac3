"""Migration Service — schema v1 → v2 KV migration, validation and status.

Invariants:
    - Steps run in order: user permissions → customer member indexes → team mappings
    - A failing item is recorded in report["errors"] and the run continues
    - Running the migration twice produces the same keys (all writes are upserts)
    - validate_schema() and get_migration_status() never write

Design Decisions:
    - Only storage failures (PortalError) and malformed records are collected per
      item; programming errors still propagate to the global handler
"""

import logging

from portal.config import Settings, get_settings
from portal.core import kv_keys
from portal.core.cache_entries import now_iso
from portal.core.errors import PortalError
from portal.core.repository_protocols import KeyValueStore
from portal.core.roles import is_internal_email

logger = logging.getLogger(__name__)

_MIGRATION_ACTOR = "system-migration"


class MigrationService:
    """Moves legacy permission records to membership and index keys."""

    def __init__(self, kv: KeyValueStore, settings: Settings | None = None):
        self.kv = kv
        self.settings = settings or get_settings()

    async def migrate_to_v2(self) -> dict:
        report = {
            "users_migrated": 0,
            "customer_memberships_created": 0,
            "indexes_created": 0,
            "team_assignments_created": 0,
            "errors": [],
        }

        users, memberships, errors = await self._migrate_user_permissions()
        report["users_migrated"] = users
        report["customer_memberships_created"] = memberships
        report["errors"].extend(errors)

        indexes, errors = await self._build_customer_member_indexes()
        report["indexes_created"] = indexes
        report["errors"].extend(errors)

        mappings, errors = await self._create_team_customer_mappings()
        report["team_assignments_created"] = mappings
        report["errors"].extend(errors)

        logger.info(
            f"Schema v2 migration finished: {users} users, {memberships} memberships, "
            f"{indexes} indexes, {mappings} team mappings, {len(report['errors'])} errors",
        )
        return report

    # ─── Steps ───────────────────────────────────────────────────

    async def _migrate_user_permissions(self) -> tuple[int, int, list[str]]:
        processed, created, errors = 0, 0, []
        for key, record in await self.kv.get_by_prefix(kv_keys.USER_PERMISSIONS_PREFIX):
            if record is None:
                continue
            try:
                if not isinstance(record, dict):
                    raise ValueError("record is not an object")
                user_id = key[len(kv_keys.USER_PERMISSIONS_PREFIX):]
                customer_id = record.get("customer_id")
                if customer_id and customer_id != "global":
                    timestamp = now_iso()
                    await self.kv.set(
                        kv_keys.user_customer_membership(user_id, customer_id),
                        {
                            "user_id": user_id,
                            "customer_id": customer_id,
                            "role": record.get("role"),
                            "status": record.get("status") or "active",
                            "created_at": record.get("created_at") or timestamp,
                            "updated_at": timestamp,
                            "assigned_by": record.get("created_by") or _MIGRATION_ACTOR,
                        },
                    )
                    created += 1

                    cleaned = {k: v for k, v in record.items() if k != "customer_id"}
                    if not is_internal_email(
                        record.get("email") or "", self.settings.internal_email_domains,
                    ):
                        cleaned.pop("role", None)
                    await self.kv.set(key, cleaned)
                processed += 1
            except (PortalError, ValueError) as e:
                errors.append(f"Error migrating user {key}: {e}")
                logger.warning(f"Migration step 1 failed for {key}: {e}")
        return processed, created, errors

    async def _build_customer_member_indexes(self) -> tuple[int, list[str]]:
        created, errors = 0, []
        members_by_customer: dict[str, list[str]] = {}
        for key, membership in await self.kv.get_by_prefix(kv_keys.USER_CUSTOMER_PREFIX):
            if not isinstance(membership, dict) or not membership.get("customer_id"):
                continue
            user_id = kv_keys.id_segment(key)
            members = members_by_customer.setdefault(membership["customer_id"], [])
            if user_id not in members:
                members.append(user_id)

        for customer_id, user_ids in members_by_customer.items():
            try:
                await self.kv.set(kv_keys.customer_members_index(customer_id), user_ids)
                created += 1
            except PortalError as e:
                errors.append(f"Error creating index for {customer_id}: {e}")
                logger.warning(f"Migration step 2 failed for {customer_id}: {e}")
        return created, errors

    async def _create_team_customer_mappings(self) -> tuple[int, list[str]]:
        created, errors = 0, []
        for key, customer in await self.kv.get_by_prefix(kv_keys.CUSTOMER_PREFIX):
            if not kv_keys.is_top_level_customer_key(key) or not customer:
                continue
            customer_id = kv_keys.id_segment(key)
            assigned = await self.kv.get(kv_keys.customer_assigned_teams(customer_id))
            if not isinstance(assigned, list) or not assigned:
                continue

            for team_id in assigned:
                try:
                    await self.kv.set(kv_keys.legacy_team_customer(team_id), customer_id)
                    team = await self.kv.get(kv_keys.linear_team(team_id)) or {}
                    await self.kv.set(
                        kv_keys.customer_team_detail(customer_id, team_id),
                        {
                            "customer_id": customer_id,
                            "team_id": team_id,
                            "team_name": team.get("name") or "Unknown Team",
                            "assigned_at": now_iso(),
                            "assigned_by": _MIGRATION_ACTOR,
                        },
                    )
                    created += 1
                except PortalError as e:
                    errors.append(f"Error mapping team {team_id}: {e}")
                    logger.warning(f"Migration step 3 failed for team {team_id}: {e}")
        return created, errors

    # ─── Read-only checks ────────────────────────────────────────

    async def validate_schema(self) -> dict:
        issues = []

        for key in await self.kv.keys_with_prefix(kv_keys.USER_CUSTOMER_PREFIX):
            user_id = kv_keys.id_segment(key)
            if await self.kv.get(kv_keys.user_permissions(user_id)) is None:
                issues.append(f"Orphaned membership: {key} - user not found")

        for key in await self.kv.keys_with_prefix(kv_keys.CUSTOMER_MEMBERS_INDEX_PREFIX):
            customer_id = key[len(kv_keys.CUSTOMER_MEMBERS_INDEX_PREFIX):]
            if await self.kv.get(kv_keys.customer(customer_id)) is None:
                issues.append(f"Orphaned index: {key} - customer not found")

        for key, customer_id in await self.kv.get_by_prefix(kv_keys.TEAM_CUSTOMER_PREFIX):
            team_id = key[len(kv_keys.TEAM_CUSTOMER_PREFIX):]
            if await self.kv.get(kv_keys.linear_team(team_id)) is None:
                issues.append(f"Invalid team mapping: {key} - team not found")
            if await self.kv.get(kv_keys.customer(str(customer_id))) is None:
                issues.append(f"Invalid team mapping: {key} - customer not found")

        return {"valid": not issues, "issues": issues}

    async def get_migration_status(self) -> dict:
        old_style = sum(
            1 for _, record in await self.kv.get_by_prefix(kv_keys.USER_PERMISSIONS_PREFIX)
            if isinstance(record, dict)
            and record.get("customer_id") and record["customer_id"] != "global"
        )
        memberships = len(await self.kv.keys_with_prefix(kv_keys.USER_CUSTOMER_PREFIX))
        indexes = len(await self.kv.keys_with_prefix(kv_keys.CUSTOMER_MEMBERS_INDEX_PREFIX))
        mappings = len(await self.kv.keys_with_prefix(kv_keys.TEAM_CUSTOMER_PREFIX))
        return {
            "old_style_users": old_style,
            "new_style_memberships": memberships,
            "customer_indexes": indexes,
            "team_mappings": mappings,
            "migration_needed": old_style > 0,
            "migration_complete": old_style == 0 and memberships > 0,
        }
