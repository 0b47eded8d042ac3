"""KV seeding helpers — write portal records directly, bypassing services."""

from portal.core import kv_keys

TEAM_WEB = "11111111-1111-4111-8111-111111111111"
TEAM_API = "22222222-2222-4222-8222-222222222222"
TEAM_MOBILE = "33333333-3333-4333-8333-333333333333"


async def seed_user(kv, user_id, email, role="viewer", status="active", customers=None):
    user = {
        "id": user_id,
        "email": email,
        "role": role,
        "status": status,
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-01-01T00:00:00Z",
        "metadata": {"name": email.split("@")[0].title()},
    }
    await kv.set(kv_keys.user(user_id), user)
    await kv.set(kv_keys.user_customers(user_id), list(customers or []))
    return user


async def seed_customer(kv, customer_id, name="Acme", members=None, teams=None):
    customer = {
        "id": customer_id,
        "name": name,
        "description": "",
        "environment": "UAT",
        "status": "active",
        "createdAt": "2026-01-01T00:00:00Z",
    }
    await kv.set(kv_keys.customer(customer_id), customer)
    await kv.set(kv_keys.customer_members(customer_id), list(members or []))
    await kv.set(kv_keys.customer_teams(customer_id), list(teams or []))
    for team_id in teams or []:
        await kv.set(kv_keys.team_customer(team_id), customer_id)
    return customer


async def add_membership(kv, customer_id, user_id):
    """Both membership lists plus the membership record."""
    customers = await kv.get(kv_keys.user_customers(user_id)) or []
    members = await kv.get(kv_keys.customer_members(customer_id)) or []
    await kv.set(kv_keys.user_customers(user_id), [*customers, customer_id])
    await kv.set(kv_keys.customer_members(customer_id), [*members, user_id])
    await kv.set(kv_keys.customer_member(customer_id, user_id), {
        "userId": user_id,
        "customerId": customer_id,
        "assignedAt": "2026-01-02T00:00:00Z",
        "assignedBy": "seed",
    })


async def seed_team(kv, team_id, name, parent_id=None):
    record = {
        "id": team_id,
        "name": name,
        "key": name[:3].upper(),
        "description": f"{name} team",
        "color": "#000000",
        "icon": None,
        "parent_id": parent_id,
        "parent_name": None,
        "parent_key": None,
    }
    await kv.set(kv_keys.linear_team(team_id), record)
    return record


async def seed_synced_teams(kv, records):
    """linear_teams:all as a sync would leave it (flat, no nesting)."""
    await kv.set(kv_keys.LINEAR_TEAMS_ALL, {
        "teams": records,
        "hierarchy": [{**r, "children": [], "level": 0} for r in records],
        "rootTeamsCount": len(records),
        "totalTeamsCount": len(records),
        "count": len(records),
        "syncedAt": "2026-01-01T00:00:00Z",
    })
