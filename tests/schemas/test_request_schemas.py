"""Request Schemas — validation of admin, issue and superadmin request bodies.

Invariants:
    - Emails are normalized; roles and statuses must be known enum values
    - camelCase aliases accepted alongside snake_case field names
    - Titles and names cannot be blank after stripping
"""

import pytest
from pydantic import ValidationError

from portal.core.domain_types import KanbanColumn, Role
from portal.schemas.customers import CustomerCreate, MemberAdd, TeamAssign
from portal.schemas.issues import IssueCreate, IssueMove, IssueStateUpdate
from portal.schemas.superadmin import SuperadminInitialize
from portal.schemas.users import CustomerAssignments, UserCreate, UserUpdate


# --- Users --------------------------------------------------------------------

def test_user_create_normalizes_email():
    user = UserCreate(email="  Jane@Acme.COM ")
    assert user.email == "jane@acme.com"
    assert user.role == Role.VIEWER
    assert user.customers == []


def test_user_create_rejects_email_without_at():
    with pytest.raises(ValidationError):
        UserCreate(email="not-an-email")


def test_user_create_rejects_unknown_role():
    with pytest.raises(ValidationError):
        UserCreate(email="a@b.co", role="overlord")


def test_user_update_is_partial():
    update = UserUpdate(status="suspended")
    assert update.role is None
    assert update.status.value == "suspended"


def test_customer_assignments_accepts_alias():
    assert CustomerAssignments(customerIds=["c1"]).customer_ids == ["c1"]
    assert CustomerAssignments(customer_ids=["c2"]).customer_ids == ["c2"]


# --- Customers ----------------------------------------------------------------

def test_customer_create_strips_name():
    assert CustomerCreate(name="  Acme  ").name == "Acme"


def test_customer_create_rejects_blank_name():
    with pytest.raises(ValidationError):
        CustomerCreate(name="   ")


def test_member_and_team_aliases():
    assert MemberAdd(userId="u1").user_id == "u1"
    assert TeamAssign(teamId="t1").team_id == "t1"


# --- Issues -------------------------------------------------------------------

def test_issue_create_aliases_and_strip():
    body = IssueCreate(teamId="t1", title="  Broken link  ", labelIds=["l1"])
    assert body.team_id == "t1"
    assert body.title == "Broken link"
    assert body.label_ids == ["l1"]


def test_issue_create_priority_range():
    with pytest.raises(ValidationError):
        IssueCreate(teamId="t1", title="x", priority=5)


def test_issue_create_rejects_blank_title():
    with pytest.raises(ValidationError):
        IssueCreate(teamId="t1", title="   ")


def test_issue_move_columns():
    move = IssueMove(teamId="t1", sourceColumn="pendingReview", targetColumn="approved")
    assert move.target_column == KanbanColumn.APPROVED
    with pytest.raises(ValidationError):
        IssueMove(teamId="t1", sourceColumn="pendingReview", targetColumn="backlog")


def test_state_update_requires_state():
    with pytest.raises(ValidationError):
        IssueStateUpdate(stateId="")


# --- Superadmin ---------------------------------------------------------------

def test_superadmin_initialize_requires_emails():
    with pytest.raises(ValidationError):
        SuperadminInitialize(emails=[])
