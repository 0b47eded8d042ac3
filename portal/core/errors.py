"""Error Hierarchy — typed, categorized exceptions for all portal failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are recoverable; infrastructure errors (500-level) are critical
    - to_response() produces the {"success": false, "error": {...}} envelope
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with PortalError base: FastAPI global handler catches all
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str | None = None
    customer_id: str | None = None
    team_id: str | None = None
    issue_id: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class PortalError(Exception):
    """Base exception for all portal errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "user_id": self.context.user_id,
                    "customer_id": self.context.customer_id,
                    "team_id": self.context.team_id,
                    "issue_id": self.context.issue_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            },
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class InvalidInputError(PortalError):
    """Request payload failed a domain-level check."""
    def __init__(self, message: str, field: str | None = None, context: ErrorContext | None = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class BusinessRuleError(PortalError):
    """Operation is well-formed but violates a portal rule."""
    def __init__(self, message: str, code: str = "BUSINESS_RULE_VIOLATION", context: ErrorContext | None = None):
        super().__init__(
            message, code, ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 400,
        )


class UnauthorizedError(PortalError):
    """Caller identity missing or account not usable."""
    def __init__(self, message: str = "Authentication required", context: ErrorContext | None = None):
        super().__init__(
            message, "UNAUTHORIZED", ErrorCategory.AUTHENTICATION,
            ErrorSeverity.WARNING, context, 401,
        )


class ForbiddenError(PortalError):
    """Caller lacks the role or permission for the operation."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "FORBIDDEN", ErrorCategory.AUTHORIZATION,
            ErrorSeverity.WARNING, context, 403,
        )


class ResourceNotFoundError(PortalError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
        message: str | None = None,
    ):
        super().__init__(
            message or f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class TeamOwnershipConflictError(PortalError):
    """Team already belongs to a different customer."""
    def __init__(
        self, team_name: str, owner_name: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f'Team "{team_name}" is already assigned to customer "{owner_name}". '
            "A team can only belong to one customer at a time.",
            "TEAM_OWNERSHIP_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


class DuplicateResourceError(PortalError):
    """A resource with the same unique value already exists."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "DUPLICATE_RESOURCE", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, context, 409,
        )


class ConcurrencyError(PortalError):
    """Concurrent modification detected."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONCURRENCY_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(PortalError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class LinearAPIError(PortalError):
    """Linear GraphQL call failed."""
    def __init__(
        self,
        message: str,
        api_error_type: str,
        retry_after_ms: int | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            message, "LINEAR_API_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, ctx, 502,
        )
        self.api_error_type = api_error_type


class LinearNotConfiguredError(PortalError):
    """No Linear API key in settings or KV store."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Linear API key not configured",
            "LINEAR_NOT_CONFIGURED", ErrorCategory.CONFIGURATION,
            ErrorSeverity.CRITICAL, context, 503,
        )
