"""Role Model — hierarchy levels, role definitions and permission checks.

Invariants:
    - Superadmin passes every permission and role-level check
    - Unknown roles have level 0 and no permissions
    - default_role_for never returns superadmin unless the email is listed

Design Decisions:
    - Permissions stored as Permission enum values; callers may pass either
      the enum or its string value
"""

from portal.core.domain_types import Permission, Role

P = Permission

ROLE_HIERARCHY: dict[str, int] = {
    Role.SUPERADMIN.value: 100,
    Role.ADMIN.value: 80,
    Role.CLIENT_MANAGER.value: 60,
    Role.CLIENT_USER.value: 40,
    Role.TESTER.value: 30,
    Role.VIEWER.value: 10,
}

_ALL_PERMISSIONS = [
    P.VIEW_ISSUES, P.CREATE_ISSUES, P.EDIT_ISSUES, P.DELETE_ISSUES,
    P.VIEW_PROJECT_STATUS, P.MANAGE_USERS, P.MANAGE_PERMISSIONS,
    P.ACCESS_LINEAR_TEST, P.VIEW_ANALYTICS, P.EXPORT_DATA, P.MANAGE_SYSTEM,
    P.MANAGE_CUSTOMERS, P.MANAGE_TEAMS, P.VIEW_ADMIN,
    P.ACCESS_ALL_CUSTOMERS, P.MANAGE_SECURITY,
]

ROLE_DEFINITIONS: dict[str, dict] = {
    Role.SUPERADMIN.value: {
        "name": "Super Administrator",
        "description": "Complete system access, manage all customers and global settings",
        "permissions": _ALL_PERMISSIONS,
    },
    Role.ADMIN.value: {
        "name": "Administrator",
        "description": "Manage users and customers within assigned scope",
        "permissions": [
            p for p in _ALL_PERMISSIONS
            if p not in (P.MANAGE_SYSTEM, P.ACCESS_ALL_CUSTOMERS, P.MANAGE_SECURITY)
        ],
    },
    Role.CLIENT_MANAGER.value: {
        "name": "Client Manager",
        "description": "Manage team members and view analytics",
        "permissions": [
            P.VIEW_ISSUES, P.CREATE_ISSUES, P.EDIT_ISSUES,
            P.VIEW_PROJECT_STATUS, P.MANAGE_PERMISSIONS, P.VIEW_ANALYTICS,
        ],
    },
    Role.CLIENT_USER.value: {
        "name": "Client User",
        "description": "Create and manage own issues",
        "permissions": [
            P.VIEW_ISSUES, P.CREATE_ISSUES, P.EDIT_ISSUES, P.VIEW_PROJECT_STATUS,
        ],
    },
    Role.TESTER.value: {
        "name": "Tester",
        "description": "Test features and report bugs",
        "permissions": [P.VIEW_ISSUES, P.CREATE_ISSUES, P.VIEW_PROJECT_STATUS],
    },
    Role.VIEWER.value: {
        "name": "Viewer",
        "description": "View-only access to assigned projects",
        "permissions": [P.VIEW_ISSUES, P.VIEW_PROJECT_STATUS],
    },
}

ADMIN_ROLES = (Role.SUPERADMIN.value, Role.ADMIN.value)


def _value(x) -> str:
    return x.value if isinstance(x, (Role, Permission)) else str(x)


def permissions_for(role: str | Role) -> list[str]:
    """Permission values granted to a role (empty for unknown roles)."""
    definition = ROLE_DEFINITIONS.get(_value(role))
    if not definition:
        return []
    return [p.value for p in definition["permissions"]]


def has_permission(
    role: str | Role, permission: str | Permission, is_superadmin: bool = False,
) -> bool:
    if is_superadmin or _value(role) == Role.SUPERADMIN.value:
        return True
    return _value(permission) in permissions_for(role)


def role_level(role: str | Role | None) -> int:
    if role is None:
        return 0
    return ROLE_HIERARCHY.get(_value(role), 0)


def has_role_level(role: str | Role, required: str | Role) -> bool:
    """True if role is at or above the required role in the hierarchy."""
    if _value(role) == Role.SUPERADMIN.value:
        return True
    return role_level(role) >= role_level(required)


def is_internal_email(email: str, internal_domains: list[str]) -> bool:
    email = (email or "").lower()
    return any(domain.lower() in email for domain in internal_domains)


def default_role_for(
    email: str, superadmin_emails: list[str], internal_domains: list[str],
) -> str:
    """Role assigned to a user created on first login."""
    normalized = (email or "").strip().lower()
    if normalized in superadmin_emails:
        return Role.SUPERADMIN.value
    if is_internal_email(normalized, internal_domains):
        return Role.ADMIN.value
    return Role.VIEWER.value


def describe_roles() -> list[dict]:
    """Role catalogue for the admin UI, highest level first."""
    return [
        {
            "id": role,
            "name": definition["name"],
            "description": definition["description"],
            "level": ROLE_HIERARCHY[role],
            "permissions": [p.value for p in definition["permissions"]],
        }
        for role, definition in sorted(
            ROLE_DEFINITIONS.items(), key=lambda kv: -ROLE_HIERARCHY[kv[0]],
        )
    ]
