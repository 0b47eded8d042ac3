"""Issue Moves — optimistic Kanban moves, throttling, in-flight guard and revert.

Invariants:
    - Valid move: issue at top of target column with the target state
    - Failed or unsuccessful update: issue back at its original column and index
    - Same move repeated within the throttle window → ConcurrencyError
    - Moves stopped before the state update never start the throttle window
    - A move while another update for the issue is running → ConcurrencyError
    - Invalid drops and unmapped target states never call Linear
"""

import asyncio
from types import SimpleNamespace

import pytest

from portal.core.errors import BusinessRuleError, ConcurrencyError, LinearAPIError
from portal.services import issue_moves
from portal.services.issue_moves import IssueBoard, IssueMoveCoordinator
from tests.services.fake_linear import (
    BOARD_STATES, issue, issues_page, state, team_config,
)
from tests.services.seed import TEAM_WEB, add_membership, seed_customer

REVIEW = BOARD_STATES[0]


class RecordingIssues:
    """update_issue_state double: records calls and returns or raises a canned result."""

    def __init__(self, result=None, gate: asyncio.Event | None = None):
        self.result = result if result is not None else {"success": True}
        self.gate = gate
        self.calls = []

    async def update_issue_state(self, issue_id, state_id):
        self.calls.append((issue_id, state_id))
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _board():
    return IssueBoard({
        "pendingReview": [issue("a", "WEB-1"), issue("b", "WEB-2")],
        "approved": [issue("c", "WEB-3", state("s-ready", "Release Ready", "completed"))],
    })


async def test_successful_move(settings):
    board, issues = _board(), RecordingIssues()
    result = await IssueMoveCoordinator(issues, settings).move(
        board, "b", "pendingReview", "approved", BOARD_STATES,
    )
    assert result["success"] is True
    assert result["stateId"] == "s-ready"
    assert result["feedback"]["message"] == "Approve for release → Release Ready"
    assert issues.calls == [("b", "s-ready")]
    assert [i["id"] for i in board.columns["approved"]] == ["b", "c"]
    assert board.columns["approved"][0]["state"]["name"] == "Release Ready"
    assert result["columns"] == {"pendingReview": 1, "approved": 2}


async def test_failed_update_reverts_position(settings):
    board = _board()
    issues = RecordingIssues(LinearAPIError("down", "server_error"))
    result = await IssueMoveCoordinator(issues, settings).move(
        board, "b", "pendingReview", "needsInput", BOARD_STATES,
    )
    assert result["success"] is False
    assert result["reverted"] is True
    assert result["error"] == "down"
    assert [i["id"] for i in board.columns["pendingReview"]] == ["a", "b"]
    assert board.columns["pendingReview"][1]["state"]["name"] == "Client Review"
    assert board.columns.get("needsInput") == []


async def test_unsuccessful_result_reverts(settings):
    board = _board()
    issues = RecordingIssues({"success": False})
    result = await IssueMoveCoordinator(issues, settings).move(
        board, "a", "pendingReview", "approved", BOARD_STATES,
    )
    assert result["reverted"] is True
    assert result["error"] == "Failed to update - reverted changes"
    assert [i["id"] for i in board.columns["pendingReview"]] == ["a", "b"]


async def test_same_column_is_invalid(settings):
    issues = RecordingIssues()
    with pytest.raises(BusinessRuleError) as exc:
        await IssueMoveCoordinator(issues, settings).move(
            _board(), "a", "pendingReview", "pendingReview", BOARD_STATES,
        )
    assert exc.value.code == "INVALID_DROP"
    assert issues.calls == []


async def test_parent_with_unapproved_children(settings):
    blocked_child = issue("k1", "WEB-7", state("s-progress", "In Progress"))
    parent = {**issue("p", "WEB-6"), "subIssues": [blocked_child]}
    board = IssueBoard({"pendingReview": [parent]})
    with pytest.raises(BusinessRuleError) as exc:
        await IssueMoveCoordinator(RecordingIssues(), settings).move(
            board, "p", "pendingReview", "approved", BOARD_STATES,
        )
    assert "1 unapproved sub-task" in exc.value.message
    assert "WEB-7" in exc.value.message


async def test_repeat_move_throttled(settings):
    coordinator = IssueMoveCoordinator(RecordingIssues({"success": False}), settings)
    await coordinator.move(_board(), "a", "pendingReview", "approved", BOARD_STATES)
    with pytest.raises(ConcurrencyError, match="before moving this item again"):
        await coordinator.move(_board(), "a", "pendingReview", "approved", BOARD_STATES)


async def test_in_flight_move_rejected(settings):
    gate = asyncio.Event()
    coordinator = IssueMoveCoordinator(RecordingIssues(gate=gate), settings)
    board = _board()
    first = asyncio.create_task(
        coordinator.move(board, "a", "pendingReview", "approved", BOARD_STATES),
    )
    await asyncio.sleep(0)
    with pytest.raises(ConcurrencyError, match="still processing"):
        await coordinator.move(_board(), "a", "pendingReview", "needsInput", BOARD_STATES)
    gate.set()
    assert (await first)["success"] is True


async def test_missing_target_state(settings):
    issues = RecordingIssues()
    with pytest.raises(BusinessRuleError) as exc:
        await IssueMoveCoordinator(issues, settings).move(
            _board(), "a", "pendingReview", "released", [REVIEW],
        )
    assert exc.value.code == "TARGET_STATE_NOT_FOUND"
    assert issues.calls == []


async def test_missing_target_state_does_not_throttle_retry(settings):
    issues = RecordingIssues()
    coordinator = IssueMoveCoordinator(issues, settings)
    with pytest.raises(BusinessRuleError):
        await coordinator.move(_board(), "a", "pendingReview", "approved", [REVIEW])
    result = await coordinator.move(_board(), "a", "pendingReview", "approved", BOARD_STATES)
    assert result["success"] is True
    assert issues.calls == [("a", "s-ready")]


async def test_expired_throttle_entries_dropped(settings, monkeypatch):
    clock = [100.0]
    monkeypatch.setattr(issue_moves, "time", SimpleNamespace(monotonic=lambda: clock[0]))
    coordinator = IssueMoveCoordinator(RecordingIssues({"success": False}), settings)

    await coordinator.move(_board(), "a", "pendingReview", "approved", BOARD_STATES)
    clock[0] += settings.drag_throttle_seconds
    await coordinator.move(_board(), "b", "pendingReview", "approved", BOARD_STATES)
    assert list(issue_moves._recent_moves) == [("b", "pendingReview", "approved")]

    await coordinator.move(_board(), "a", "pendingReview", "approved", BOARD_STATES)


def test_board_from_states_skips_unmapped():
    board = IssueBoard.from_states({"states": [
        {"state": REVIEW, "issues": [issue("a")]},
        {"state": state("s-todo", "Todo", "unstarted"), "issues": [issue("z")]},
    ]})
    assert board.counts() == {"pendingReview": 1}


# ─── Route ───────────────────────────────────────────────────────

def _board_responses(linear):
    linear.responses.update({
        "GetTeamConfig": team_config(TEAM_WEB),
        "GetIssuesInState": lambda v: issues_page(
            [issue("i1", "WEB-1")] if v["stateId"] == "s-review" else [],
        ),
        "UpdateIssueState": {"issueUpdate": {"success": True, "issue": {"id": "i1"}}},
    })


async def test_move_route(client, kv, linear, client_user_headers):
    """POST /issues/{id}/move runs the move for a customer member."""
    await seed_customer(kv, "c1", teams=[TEAM_WEB])
    await add_membership(kv, "c1", "u-client")
    _board_responses(linear)

    res = await client.post(
        "/api/v1/issues/i1/move",
        json={"teamId": TEAM_WEB, "sourceColumn": "pendingReview", "targetColumn": "approved"},
        headers=client_user_headers,
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["success"] is True
    assert data["stateId"] == "s-ready"
    assert linear.called("UpdateIssueState")[0]["variables"] == {
        "issueId": "i1", "stateId": "s-ready",
    }


async def test_move_route_denied_without_team_access(client, kv, linear, client_user_headers):
    """Callers outside the owning customer get 403."""
    await seed_customer(kv, "c1", teams=[TEAM_WEB])
    res = await client.post(
        "/api/v1/issues/i1/move",
        json={"teamId": TEAM_WEB, "sourceColumn": "pendingReview", "targetColumn": "approved"},
        headers=client_user_headers,
    )
    assert res.status_code == 403
    assert linear.calls == []


async def test_move_route_invalid_drop(client, kv, linear, admin_headers):
    """Same-column drop → 400 INVALID_DROP."""
    _board_responses(linear)
    res = await client.post(
        "/api/v1/issues/i1/move",
        json={"teamId": TEAM_WEB, "sourceColumn": "pendingReview", "targetColumn": "pendingReview"},
        headers=admin_headers,
    )
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVALID_DROP"
