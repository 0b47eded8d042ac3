"""Linear Team Sync and Maintenance — hierarchy sync into KV plus orphaned-mapping cleanup.

Tests cover:
    - Paginated fetch, stale record removal, hierarchy nesting and counts
    - Derived caches invalidated; organization stored
    - Empty workspace leaves caches untouched
    - Orphans reported by sync, validated read-only, removed only by cleanup
    - Team reads (states/labels/members) and connection test
"""

import pytest

from portal.core.errors import InvalidInputError, ResourceNotFoundError
from portal.services.linear_maintenance import LinearMaintenance
from portal.services.linear_team_sync import LinearTeamSync
from tests.services.fake_linear import (
    FakeLinearClient, state, team_node, teams_page,
)
from tests.services.seed import (
    TEAM_API, TEAM_MOBILE, TEAM_WEB, seed_customer, seed_synced_teams, seed_team,
)


def _paged_teams(variables):
    if variables.get("after") is None:
        return teams_page([team_node(TEAM_WEB, "Web")], has_next=True, cursor="c1")
    return teams_page([
        team_node(TEAM_API, "API", parent={"id": TEAM_WEB, "name": "Web", "key": "WEB"}),
    ])


@pytest.fixture
def linear():
    return FakeLinearClient({"GetTeamsWithHierarchy": _paged_teams})


@pytest.fixture
def sync(kv, linear, settings):
    return LinearTeamSync(kv, linear, settings)


# ─── Sync ────────────────────────────────────────────────────────

async def test_sync_writes_records_and_hierarchy(sync, kv, linear):
    result = await sync.sync_team_hierarchy()
    assert result["teamsCount"] == 2
    assert result["rootTeamsCount"] == 1
    assert result["message"] == "Successfully synced 2 teams (1 root teams)"
    assert result["orphanedMappings"] is None
    assert [c["variables"]["after"] for c in linear.called("GetTeamsWithHierarchy")] == [None, "c1"]

    api = await kv.get(f"linear_teams:{TEAM_API}")
    assert api["parent_id"] == TEAM_WEB
    assert api["source"] == "linear_api"

    synced = await kv.get("linear_teams:all")
    assert synced["totalTeamsCount"] == 2
    root = synced["hierarchy"][0]
    assert root["id"] == TEAM_WEB
    assert root["children"][0]["id"] == TEAM_API
    assert root["children"][0]["level"] == 1
    assert root["totalDescendants"] == 1

    organization = await kv.get("linear:organization")
    assert organization["name"] == "Acme Org"
    assert organization["teamsCount"] == 2


async def test_sync_replaces_stale_records_and_caches(sync, kv):
    await seed_team(kv, TEAM_MOBILE, "Mobile")
    await kv.set("linear_teams:enriched", {"data": {}, "timestamp": 1})
    await kv.set("team_ownership_map:all", {"data": [], "timestamp": 1})

    await sync.sync_team_hierarchy()
    assert await kv.get(f"linear_teams:{TEAM_MOBILE}") is None
    assert await kv.get("linear_teams:enriched") is None
    assert await kv.get("team_ownership_map:all") is None


async def test_sync_reports_orphans_without_removing(sync, kv):
    await seed_customer(kv, "c1", teams=[TEAM_WEB, TEAM_MOBILE])
    result = await sync.sync_team_hierarchy()
    assert result["orphanedMappings"]["count"] == 1
    assert result["orphanedMappings"]["details"] == [{"customerId": "c1", "teamIds": [TEAM_MOBILE]}]
    assert await kv.get("customer:c1:teams") == [TEAM_WEB, TEAM_MOBILE]


async def test_empty_workspace_leaves_caches(kv, settings):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    await seed_team(kv, TEAM_WEB, "Web")
    linear = FakeLinearClient({"GetTeamsWithHierarchy": teams_page([])})
    result = await LinearTeamSync(kv, linear, settings).sync_team_hierarchy()
    assert result == {"message": "No teams found in Linear workspace", "teamsCount": 0, "teams": []}
    assert await kv.get(f"linear_teams:{TEAM_WEB}") is not None
    assert (await kv.get("linear_teams:all"))["count"] == 1


async def test_clear_cache(sync, kv):
    await sync.sync_team_hierarchy()
    result = await sync.clear_cache()
    assert result["deletedKeys"] == 5
    assert await kv.keys_with_prefix("linear_teams:") == []
    assert await kv.get("linear:organization") is None


# ─── Reads ───────────────────────────────────────────────────────

async def test_hierarchy_prefers_cache(sync, kv, linear):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    result = await sync.get_hierarchy()
    assert result["source"] == "cache"
    assert linear.calls == []


async def test_hierarchy_from_api_when_not_synced(sync):
    result = await sync.get_hierarchy()
    assert result["source"] == "api"
    assert [t["id"] for t in result["teams"]] == [TEAM_WEB, TEAM_API]
    assert result["teams"][1]["parent_name"] == "Web"


async def test_team_states(kv, settings):
    linear = FakeLinearClient({
        "GetTeamStates": {"team": {"states": {"nodes": [state("s1", "Todo")]}}},
    })
    states = await LinearTeamSync(kv, linear, settings).get_team_states(TEAM_WEB)
    assert [s["name"] for s in states] == ["Todo"]


async def test_team_labels_missing_team(kv, settings):
    linear = FakeLinearClient({"GetTeamLabels": {"team": None}})
    with pytest.raises(ResourceNotFoundError):
        await LinearTeamSync(kv, linear, settings).get_team_labels(TEAM_WEB)


async def test_test_connection(kv, settings):
    linear = FakeLinearClient({
        "TestConnection": {
            "viewer": {"id": "v1", "name": "Bot", "email": "bot@acme.com"},
            "organization": {"id": "org-1", "name": "Acme Org"},
        },
    })
    result = await LinearTeamSync(kv, linear, settings).test_connection()
    assert result["message"] == "Connected to Linear as Bot"
    assert result["organization"]["name"] == "Acme Org"


# ─── Maintenance ─────────────────────────────────────────────────

async def test_validate_mappings_is_read_only(kv):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    await seed_customer(kv, "c1", teams=[TEAM_WEB, TEAM_API])
    await seed_customer(kv, "c2", teams=[TEAM_WEB])
    await seed_customer(kv, "c3")

    result = await LinearMaintenance(kv).validate_mappings()
    assert result["customersChecked"] == 2
    assert result["customersWithOrphans"] == 1
    assert result["totalOrphaned"] == 1
    assert result["issues"][0]["orphanedTeams"][0]["teamId"] == TEAM_API
    assert await kv.get("customer:c1:teams") == [TEAM_WEB, TEAM_API]


async def test_cleanup_removes_orphans(kv):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    await seed_customer(kv, "c1", teams=[TEAM_WEB, TEAM_API])
    await kv.set("team_ownership_map:all", {"data": [], "timestamp": 1})

    result = await LinearMaintenance(kv).cleanup_orphaned_mappings()
    assert result["orphanedRemoved"] == 1
    assert result["details"] == [{"customerId": "c1", "removed": [TEAM_API], "remaining": 1}]
    assert await kv.get("customer:c1:teams") == [TEAM_WEB]
    assert await kv.get(f"team:{TEAM_API}:customer") is None
    assert await kv.get("team_ownership_map:all") is None


async def test_maintenance_requires_sync(kv):
    with pytest.raises(InvalidInputError, match="sync teams first"):
        await LinearMaintenance(kv).validate_mappings()


# ─── Routes ──────────────────────────────────────────────────────

async def test_sync_route_admin_only(client, linear, admin_headers, client_user_headers):
    """POST /linear/sync-hierarchy: admins sync, client users are refused."""
    linear.responses["GetTeamsWithHierarchy"] = _paged_teams
    res = await client.post("/api/v1/linear/sync-hierarchy", headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["teamsCount"] == 2
    assert res.json()["message"].startswith("Successfully synced")

    res = await client.post("/api/v1/linear/sync-hierarchy", headers=client_user_headers)
    assert res.status_code == 403


async def test_cleanup_route(client, kv, admin_headers):
    """POST /linear/cleanup-orphaned-mappings reports the removal count."""
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    await seed_customer(kv, "c1", teams=[TEAM_API])
    res = await client.post("/api/v1/linear/cleanup-orphaned-mappings", headers=admin_headers)
    assert res.json()["message"] == "Removed 1 orphaned team mapping(s)"
