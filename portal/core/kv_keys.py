"""KV Key Schema — builders and parsers for every document key in the store.

Invariants:
    - Every key the services read or write is produced here
    - A top-level customer key has exactly two segments: customer:{id}
    - Team record keys exclude the aggregate keys linear_teams:all and linear_teams:enriched
"""

# ─── Prefixes ────────────────────────────────────────────────────

USER_PREFIX = "user:"
CUSTOMER_PREFIX = "customer:"
LINEAR_TEAMS_PREFIX = "linear_teams:"
TEAM_PREFIX = "team:"
ADMIN_ACTIVITY_PREFIX = "admin_activity:"
SUPERADMIN_AUDIT_PREFIX = "audit:superadmin:"
ISSUE_DETAIL_PREFIX = "linear:issue-detail:"

# Legacy (schema v1) and migration output
USER_PERMISSIONS_PREFIX = "user_permissions:"
USER_CUSTOMER_PREFIX = "user_customer:"
CUSTOMER_MEMBERS_INDEX_PREFIX = "customer_members:"
TEAM_CUSTOMER_PREFIX = "team_customer:"
CUSTOMER_TEAMS_DETAIL_PREFIX = "customer_teams:"

# ─── Fixed keys ──────────────────────────────────────────────────

LINEAR_TEAMS_ALL = "linear_teams:all"
LINEAR_TEAMS_ENRICHED = "linear_teams:enriched"
TEAM_OWNERSHIP_MAP = "team_ownership_map:all"
LINEAR_ORGANIZATION = "linear:organization"
LINEAR_API_KEY = "linear_api_key"
SUPERADMIN_EMAILS = "superadmin:emails"
SUPERADMIN_SETTINGS = "superadmin:settings"
SUPERADMIN_CACHE = "system:superadmins:cache"
SUPERADMIN_AUDIT_CACHE = "system:superadmin:audit:cache"
HEALTH_PING = "_health_check_ping"

_AGGREGATE_TEAM_KEYS = {LINEAR_TEAMS_ALL, LINEAR_TEAMS_ENRICHED}


# ─── Users ───────────────────────────────────────────────────────

def user(user_id: str) -> str:
    return f"user:{user_id}"


def user_customers(user_id: str) -> str:
    return f"user:{user_id}:customers"


def user_teams(user_id: str) -> str:
    return f"user:{user_id}:teams"


def user_kanban_settings(user_id: str, team_id: str) -> str:
    return f"user:{user_id}:team:{team_id}:kanban_settings"


# ─── Customers ───────────────────────────────────────────────────

def customer(customer_id: str) -> str:
    return f"customer:{customer_id}"


def customer_members(customer_id: str) -> str:
    return f"customer:{customer_id}:members"


def customer_member(customer_id: str, user_id: str) -> str:
    return f"customer:{customer_id}:member:{user_id}"


def customer_teams(customer_id: str) -> str:
    return f"customer:{customer_id}:teams"


def customer_team_members(customer_id: str, team_id: str) -> str:
    return f"customer:{customer_id}:team:{team_id}:members"


def customer_assigned_teams(customer_id: str) -> str:
    return f"customer:{customer_id}:assigned_teams"


# ─── Teams ───────────────────────────────────────────────────────

def team_customer(team_id: str) -> str:
    return f"team:{team_id}:customer"


def team_members(team_id: str) -> str:
    return f"team:{team_id}:members"


def team_member(team_id: str, user_id: str) -> str:
    return f"team:{team_id}:member:{user_id}"


def linear_team(team_id: str) -> str:
    return f"linear_teams:{team_id}"


def issue_detail(issue_id: str) -> str:
    return f"linear:issue-detail:{issue_id}"


# ─── Legacy schema ───────────────────────────────────────────────

def user_permissions(user_id: str) -> str:
    return f"user_permissions:{user_id}"


def user_customer_membership(user_id: str, customer_id: str) -> str:
    return f"user_customer:{user_id}:{customer_id}"


def customer_members_index(customer_id: str) -> str:
    return f"customer_members:{customer_id}"


def legacy_team_customer(team_id: str) -> str:
    return f"team_customer:{team_id}"


def customer_team_detail(customer_id: str, team_id: str) -> str:
    return f"customer_teams:{customer_id}:{team_id}"


# ─── Parsing ─────────────────────────────────────────────────────

def is_top_level_user_key(key: str) -> bool:
    parts = key.split(":")
    return len(parts) == 2 and parts[0] == "user" and bool(parts[1])


def is_top_level_customer_key(key: str) -> bool:
    parts = key.split(":")
    return len(parts) == 2 and parts[0] == "customer" and bool(parts[1])


def is_team_record_key(key: str) -> bool:
    return (
        key.startswith(LINEAR_TEAMS_PREFIX)
        and key not in _AGGREGATE_TEAM_KEYS
        and key.count(":") == 1
    )


def is_team_customer_key(key: str) -> bool:
    parts = key.split(":")
    return len(parts) == 3 and parts[0] == "team" and parts[2] == "customer"


def id_segment(key: str, index: int = 1) -> str:
    """Segment of a colon-separated key (the id sits at index 1 for most keys)."""
    return key.split(":")[index]
