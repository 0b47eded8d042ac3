"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - UserId, CustomerId, TeamId, IssueId wrap str — ids come from KV keys and Linear
    - All valid roles, statuses and permissions encoded as Enums — no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders (KV values are JSON)
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

UserId = NewType("UserId", str)
CustomerId = NewType("CustomerId", str)
TeamId = NewType("TeamId", str)
IssueId = NewType("IssueId", str)


# ─── Enums ───────────────────────────────────────────────────────

class Role(str, Enum):
    """Portal roles, highest privilege first."""
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    CLIENT_MANAGER = "client_manager"
    CLIENT_USER = "client_user"
    TESTER = "tester"
    VIEWER = "viewer"


class UserStatus(str, Enum):
    """Account states stored on user:{id}."""
    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Permission(str, Enum):
    """Fine-grained permissions granted through roles."""
    VIEW_ISSUES = "view_issues"
    CREATE_ISSUES = "create_issues"
    EDIT_ISSUES = "edit_issues"
    DELETE_ISSUES = "delete_issues"
    VIEW_PROJECT_STATUS = "view_project_status"
    MANAGE_USERS = "manage_users"
    MANAGE_PERMISSIONS = "manage_permissions"
    ACCESS_LINEAR_TEST = "access_linear_test"
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"
    MANAGE_SYSTEM = "manage_system"
    MANAGE_CUSTOMERS = "manage_customers"
    MANAGE_TEAMS = "manage_teams"
    VIEW_ADMIN = "view_admin"
    ACCESS_ALL_CUSTOMERS = "access_all_customers"
    MANAGE_SECURITY = "manage_security"


class KanbanColumn(str, Enum):
    """Internal team board columns used for drag-and-drop moves."""
    PENDING_REVIEW = "pendingReview"
    NEEDS_INPUT = "needsInput"
    APPROVED = "approved"
    RELEASED = "released"
    FAILED_REVIEW = "failedReview"


class ClientColumn(str, Enum):
    """Client-facing UAT board columns."""
    CLIENT_REVIEW = "client-review"
    BLOCKED = "blocked"
    DONE = "done"
    RELEASED = "released"
    CANCELED = "canceled"
    ARCHIVED = "archived"
