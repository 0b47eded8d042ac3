"""Kanban Rules — tests for drop validation and column/state mapping.

Tests cover:
    - Same-column drops are rejected as informational no-ops
    - Parents move only when every sub-issue is approved
    - State lookup: exact name, then partial name, then state type
    - Drag feedback messages and keyboard column navigation
"""

from portal.core.kanban_rules import (
    adjacent_column, are_all_children_approved, column_for_state,
    get_children_not_ready_for_release, get_state_id_for_column,
    is_valid_drop, priority_label, provide_drag_feedback,
)


def _sub(identifier, name, state_type="started"):
    return {"identifier": identifier, "state": {"name": name, "type": state_type}}


STATES = [
    {"id": "s1", "name": "Client Review", "type": "started"},
    {"id": "s2", "name": "Release Ready", "type": "completed"},
    {"id": "s3", "name": "Shipped", "type": "completed"},
    {"id": "s4", "name": "Client Blocked", "type": "backlog"},
    {"id": "s5", "name": "In Progress", "type": "started"},
]


def test_same_column_drop_is_info():
    result = is_valid_drop("approved", "approved", {})
    assert not result.is_valid
    assert result.severity == "info"
    assert result.actionable is False
    assert result.title == "No Change Needed"


def test_drop_without_sub_issues_is_valid():
    assert is_valid_drop("pendingReview", "approved", {"subIssues": []}).is_valid


def test_drop_with_approved_sub_issues_is_valid():
    issue = {"subIssues": [_sub("A-1", "Client Review"), _sub("A-2", "Done", "completed")]}
    assert are_all_children_approved(issue)
    assert is_valid_drop("pendingReview", "approved", issue).is_valid


def test_drop_blocked_by_unapproved_sub_issues():
    """Gate on approval, report every child not yet ready for release."""
    issue = {"subIssues": [_sub("A-1", "In Progress"), _sub("A-2", "Client Review")]}
    result = is_valid_drop("pendingReview", "approved", issue)
    assert not result.is_valid
    assert result.reason == "This issue has 2 unapproved sub-tasks"
    assert result.suggestion == "Please approve all sub-tasks first: A-1, A-2"
    assert result.severity == "error"
    assert result.actionable is True


def test_unapproved_suggestion_truncates_after_three():
    issue = {"subIssues": [_sub(f"A-{i}", "Todo") for i in range(5)]}
    result = is_valid_drop("pendingReview", "approved", issue)
    assert result.reason == "This issue has 5 unapproved sub-tasks"
    assert result.suggestion.endswith("A-0, A-1, A-2...")


def test_not_ready_children():
    issue = {"subIssues": [_sub("A-1", "Client Review"), _sub("A-2", "Release Ready")]}
    assert not are_all_children_approved(issue)
    assert get_children_not_ready_for_release(issue) == {"count": 1, "identifiers": ["A-1"]}


def test_to_dict_drops_unset_fields():
    assert is_valid_drop("a", "b", {}).to_dict() == {"isValid": True}
    assert "suggestion" not in is_valid_drop("a", "a", {}).to_dict()


def test_state_lookup_exact_name():
    assert get_state_id_for_column("approved", STATES) == "s2"
    assert get_state_id_for_column("failedReview", STATES) == "s5"


def test_state_lookup_partial_name():
    states = [{"id": "x", "name": "Client Review (UAT)", "type": "started"}]
    assert get_state_id_for_column("pendingReview", states) == "x"


def test_state_lookup_falls_back_to_type():
    states = [{"id": "t", "name": "Triage", "type": "triage"}]
    assert get_state_id_for_column("pendingReview", states) == "t"


def test_state_lookup_unknown_column():
    assert get_state_id_for_column("nowhere", STATES) is None
    assert get_state_id_for_column("needsInput", [{"id": "z", "name": "Todo", "type": "unstarted"}]) is None


def test_column_for_state():
    assert column_for_state({"name": "Shipped"}) == "released"
    assert column_for_state({"name": "Canceled"}) == "failedReview"
    assert column_for_state({"name": "Backlog"}) is None


def test_drag_feedback():
    assert provide_drag_feedback(True, "pendingReview", "approved") == {
        "message": "Approve for release → Release Ready", "type": "success",
    }
    assert provide_drag_feedback(True, "released", "approved")["message"] == "Move to approved"
    assert provide_drag_feedback(False, "a", "b")["type"] == "error"


def test_adjacent_column():
    assert adjacent_column("pendingReview", 1) == "needsInput"
    assert adjacent_column("pendingReview", -1) is None
    assert adjacent_column("failedReview", 1) is None
    assert adjacent_column("unknown", 1) is None


def test_priority_label():
    assert priority_label(4) == "Urgent"
    assert priority_label(0) is None
