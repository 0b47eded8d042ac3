"""Team, user-team and Linear read routes.

Invariants:
    - Listing all teams needs manage_teams; single-team reads need team access
    - /user/teams applies the team-level permission model
    - Kanban settings are per caller and per team
"""

from tests.services.fake_linear import team_node
from tests.services.seed import (
    TEAM_API, TEAM_WEB, add_membership, seed_customer, seed_synced_teams, seed_team,
)


async def test_list_teams_requires_manage_teams(client, kv, admin_headers, client_user_headers):
    await seed_team(kv, TEAM_WEB, "Web")
    res = await client.get("/api/v1/teams", headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["data"]["source"] == "flat"

    res = await client.get("/api/v1/teams", headers=client_user_headers)
    assert res.status_code == 403


async def test_list_teams_hierarchy_query(client, kv, admin_headers):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    res = await client.get("/api/v1/teams?hierarchy=true", headers=admin_headers)
    assert res.json()["data"]["source"] == "kv-cache"

    stats = (await client.get("/api/v1/teams/cache/stats", headers=admin_headers)).json()
    assert stats["data"]["cached"] is True
    await client.post("/api/v1/teams/cache/invalidate", headers=admin_headers)
    stats = (await client.get("/api/v1/teams/cache/stats", headers=admin_headers)).json()
    assert stats["data"]["cached"] is False


async def test_team_detail_access(client, kv, client_user_headers):
    """Customer members can read their team; other teams are forbidden."""
    await seed_team(kv, TEAM_WEB, "Web")
    await seed_team(kv, TEAM_API, "API")
    await seed_customer(kv, "c1", teams=[TEAM_WEB])
    await add_membership(kv, "c1", "u-client")

    res = await client.get(f"/api/v1/teams/{TEAM_WEB}", headers=client_user_headers)
    assert res.status_code == 200
    assert res.json()["data"]["name"] == "Web"

    res = await client.get(f"/api/v1/teams/{TEAM_API}", headers=client_user_headers)
    assert res.status_code == 403


async def test_team_access_route(client, kv, client_user_headers):
    res = await client.get(f"/api/v1/teams/{TEAM_WEB}/access", headers=client_user_headers)
    assert res.json()["data"] == {"hasAccess": False, "reason": "no_access"}


async def test_my_teams_and_hierarchy(client, kv, client_user_headers):
    await seed_team(kv, TEAM_WEB, "Web")
    await seed_customer(kv, "c1", "Acme", teams=[TEAM_WEB])
    await add_membership(kv, "c1", "u-client")

    mine = (await client.get("/api/v1/teams/my-teams", headers=client_user_headers)).json()
    assert [t["id"] for t in mine["data"]["teams"]] == [TEAM_WEB]

    tree = (await client.get("/api/v1/teams/hierarchy", headers=client_user_headers)).json()
    assert tree["data"]["count"] == 1
    assert tree["data"]["customers"][0]["children"][0]["id"] == TEAM_WEB


async def test_team_membership_routes(client, kv, admin_headers):
    await seed_team(kv, TEAM_WEB, "Web")
    res = await client.post(f"/api/v1/teams/{TEAM_WEB}/members/u-admin", headers=admin_headers)
    assert res.status_code == 201

    members = (await client.get(f"/api/v1/teams/{TEAM_WEB}/members", headers=admin_headers)).json()
    assert [m["userId"] for m in members["data"]["members"]] == ["u-admin"]

    await client.delete(f"/api/v1/teams/{TEAM_WEB}/members/u-admin", headers=admin_headers)
    members = (await client.get(f"/api/v1/teams/{TEAM_WEB}/members", headers=admin_headers)).json()
    assert members["data"]["count"] == 0


# ─── /user/teams ─────────────────────────────────────────────────

async def test_user_teams_team_level(client, kv, client_user_headers):
    await seed_team(kv, TEAM_WEB, "Web")
    await seed_customer(kv, "c1", teams=[TEAM_WEB, TEAM_API])
    await add_membership(kv, "c1", "u-client")
    await kv.set(f"customer:c1:team:{TEAM_WEB}:members", ["u-client"])

    data = (await client.get("/api/v1/user/teams", headers=client_user_headers)).json()["data"]
    assert data["teamIds"] == [TEAM_WEB]
    assert data["permissionModel"] == "team-level"


async def test_user_teams_admin_sees_all(client, kv, admin_headers):
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}, {"id": TEAM_API, "name": "API"}])
    data = (await client.get("/api/v1/user/teams", headers=admin_headers)).json()["data"]
    assert data["access"] == "all"
    assert data["count"] == 2


async def test_user_team_access_detail(client, kv, client_user_headers):
    await seed_team(kv, TEAM_WEB, "Web")
    await seed_customer(kv, "c1", teams=[TEAM_WEB])
    await add_membership(kv, "c1", "u-client")
    res = await client.get(f"/api/v1/user/teams/{TEAM_WEB}/access", headers=client_user_headers)
    assert res.json()["data"]["customerId"] == "c1"


async def test_kanban_settings_routes(client, client_user_headers):
    url = f"/api/v1/user/teams/{TEAM_WEB}/kanban-settings"
    assert (await client.get(url, headers=client_user_headers)).status_code == 404

    res = await client.put(url, json={"columnsOrder": "bad"}, headers=client_user_headers)
    assert res.status_code == 400

    res = await client.put(
        url, json={"columnsOrder": ["approved", "pendingReview"]}, headers=client_user_headers,
    )
    assert res.json()["message"] == "Kanban settings saved"
    saved = (await client.get(url, headers=client_user_headers)).json()["data"]
    assert saved["columnsOrder"] == ["approved", "pendingReview"]

    await client.delete(url, headers=client_user_headers)
    assert (await client.get(url, headers=client_user_headers)).status_code == 404


# ─── /linear reads ───────────────────────────────────────────────

async def test_linear_team_route(client, linear, viewer_headers):
    linear.responses["GetTeam"] = {"team": team_node(TEAM_WEB, "Web")}
    res = await client.get(f"/api/v1/linear/teams/{TEAM_WEB}", headers=viewer_headers)
    assert res.json()["data"]["name"] == "Web"


async def test_linear_test_requires_permission(client, viewer_headers):
    res = await client.get("/api/v1/linear/test", headers=viewer_headers)
    assert res.status_code == 403
    assert res.json()["error"]["message"] == "Missing required permission: access_linear_test"


async def test_validate_mappings_below_client_manager(client, client_user_headers):
    """client_user sits below client_manager in the role hierarchy."""
    res = await client.get("/api/v1/linear/validate-mappings", headers=client_user_headers)
    assert res.status_code == 403
    assert res.json()["error"]["message"] == (
        "Insufficient role level. Required: client_manager, Current: client_user"
    )


async def test_validate_mappings_open_to_client_managers(client, kv):
    await kv.set("user:u-mgr", {
        "id": "u-mgr", "email": "mgr@acme.com", "role": "client_manager", "status": "active",
    })
    await seed_synced_teams(kv, [{"id": TEAM_WEB, "name": "Web"}])
    res = await client.get(
        "/api/v1/linear/validate-mappings",
        headers={"X-User-Id": "u-mgr", "X-User-Email": "mgr@acme.com"},
    )
    assert res.status_code == 200
    assert res.json()["data"]["validTeamsCount"] == 1
