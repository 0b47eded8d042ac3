"""Error Hierarchy — tests for error codes, HTTP statuses and the response envelope.

Tests cover:
    - Each error class maps to its code, category and HTTP status
    - to_response() produces {success: false, error: {...}} with context
    - LinearAPIError carries retry_after_ms in its context
"""

import pytest

from portal.core.errors import (
    BusinessRuleError, ConcurrencyError, DatabaseError, DuplicateResourceError,
    ErrorCategory, ErrorContext, ForbiddenError, InvalidInputError, LinearAPIError,
    LinearNotConfiguredError, PortalError, ResourceNotFoundError,
    TeamOwnershipConflictError, UnauthorizedError,
)


@pytest.mark.parametrize("error, status, code", [
    (InvalidInputError("bad"), 400, "VALIDATION_ERROR"),
    (BusinessRuleError("nope"), 400, "BUSINESS_RULE_VIOLATION"),
    (UnauthorizedError(), 401, "UNAUTHORIZED"),
    (ForbiddenError("no"), 403, "FORBIDDEN"),
    (ResourceNotFoundError("User", "u1"), 404, "RESOURCE_NOT_FOUND"),
    (TeamOwnershipConflictError("Web", "Acme"), 409, "TEAM_OWNERSHIP_CONFLICT"),
    (DuplicateResourceError("dup"), 409, "DUPLICATE_RESOURCE"),
    (ConcurrencyError("busy"), 409, "CONCURRENCY_CONFLICT"),
    (LinearAPIError("down", "timeout"), 502, "LINEAR_API_ERROR"),
    (LinearNotConfiguredError(), 503, "LINEAR_NOT_CONFIGURED"),
    (DatabaseError("boom", "query"), 503, "DATABASE_ERROR"),
])
def test_status_and_code(error, status, code):
    assert isinstance(error, PortalError)
    assert error.http_status == status
    assert error.code == code


def test_not_found_default_message():
    assert ResourceNotFoundError("User", "u1").message == "User 'u1' not found"
    assert ResourceNotFoundError("User", "u1", message="gone").message == "gone"


def test_ownership_conflict_message_names_owner():
    error = TeamOwnershipConflictError("Web", "Acme")
    assert error.message.startswith('Team "Web" is already assigned to customer "Acme".')
    assert error.category == ErrorCategory.CONFLICT


def test_to_response_envelope():
    error = BusinessRuleError(
        "Team not assigned", "TEAM_NOT_ASSIGNED",
        ErrorContext(customer_id="c1", team_id="t1"),
    )
    body = error.to_response()
    assert body["success"] is False
    assert body["error"]["code"] == "TEAM_NOT_ASSIGNED"
    assert body["error"]["message"] == "Team not assigned"
    assert body["error"]["category"] == "business_rule"
    assert body["error"]["context"]["customer_id"] == "c1"
    assert body["error"]["context"]["team_id"] == "t1"


def test_linear_error_carries_retry_after():
    error = LinearAPIError("slow down", "rate_limit", retry_after_ms=2000)
    assert error.api_error_type == "rate_limit"
    assert error.to_response()["error"]["context"]["retry_after_ms"] == 2000


def test_database_error_message():
    assert DatabaseError("lost", "commit").message == "Database commit failed: lost"
