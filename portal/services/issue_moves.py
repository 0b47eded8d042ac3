"""Issue Moves — optimistic Kanban moves with in-flight guard, throttle and revert.

Invariants:
    - At most one state update per issue is in flight; the marker is always cleared
    - The same issue/source/target move is throttled for drag_throttle_seconds,
      counted from the last move that reached the state update
    - Throttle entries older than the window are dropped on every move
    - A moved issue lands at the top of its target column carrying the new state
    - A failed or unsuccessful state update restores the issue to its original
      column and position

Design Decisions:
    - The in-flight set and throttle table are module-level: every request in
      the process shares them, like the single board a user drags on
"""

import logging
import time

from portal.config import Settings, get_settings
from portal.core.errors import (
    BusinessRuleError, ConcurrencyError, ErrorContext, PortalError, ResourceNotFoundError,
)
from portal.core.kanban_rules import (
    column_for_state, get_state_id_for_column, is_valid_drop, provide_drag_feedback,
)

logger = logging.getLogger(__name__)

_in_flight: set[str] = set()
_recent_moves: dict[tuple[str, str, str], float] = {}


def reset_move_tracking() -> None:
    _in_flight.clear()
    _recent_moves.clear()


def _prune_recent_moves(now: float, window: float) -> None:
    for key in [k for k, at in _recent_moves.items() if now - at >= window]:
        del _recent_moves[key]


class IssueBoard:
    """Issues arranged into Kanban columns, mutable for optimistic moves."""

    def __init__(self, columns: dict[str, list[dict]] | None = None):
        self.columns: dict[str, list[dict]] = columns or {}

    @classmethod
    def from_states(cls, by_state: dict) -> "IssueBoard":
        """Build from get_team_issues_by_state(); states outside the board are skipped."""
        columns: dict[str, list[dict]] = {}
        for entry in by_state.get("states") or []:
            column = column_for_state(entry.get("state") or {})
            if column is None:
                continue
            columns.setdefault(column, []).extend(entry.get("issues") or [])
        return cls(columns)

    def locate(self, issue_id: str) -> tuple[str, int, dict] | None:
        for column, issues in self.columns.items():
            for index, issue in enumerate(issues):
                if issue.get("id") == issue_id:
                    return column, index, issue
        return None

    def move_to_top(self, issue_id: str, target_column: str, state: dict) -> dict:
        located = self.locate(issue_id)
        if located is None:
            raise ResourceNotFoundError("Issue", issue_id)
        column, index, issue = located
        del self.columns[column][index]
        moved = {**issue, "state": state}
        self.columns.setdefault(target_column, []).insert(0, moved)
        return moved

    def restore(self, issue_id: str, column: str, index: int, original: dict) -> None:
        for issues in self.columns.values():
            issues[:] = [i for i in issues if i.get("id") != issue_id]
        target = self.columns.setdefault(column, [])
        target.insert(min(index, len(target)), original)

    def counts(self) -> dict[str, int]:
        return {column: len(issues) for column, issues in self.columns.items()}


class IssueMoveCoordinator:
    """Runs one optimistic move against Linear and reverts it on failure."""

    def __init__(self, issue_service, settings: Settings | None = None):
        self.issues = issue_service
        self.settings = settings or get_settings()

    async def move(
        self,
        board: IssueBoard,
        issue_id: str,
        source_column: str,
        target_column: str,
        states: list[dict],
    ) -> dict:
        context = ErrorContext(issue_id=issue_id)
        located = board.locate(issue_id)
        if located is None:
            raise ResourceNotFoundError("Issue", issue_id, context=context)
        column, index, original = located

        validation = is_valid_drop(source_column, target_column, original)
        if not validation.is_valid:
            message = validation.reason
            if validation.suggestion:
                message = f"{message}. {validation.suggestion}"
            raise BusinessRuleError(
                f"{validation.title}: {message}", "INVALID_DROP", context,
            )

        if issue_id in _in_flight:
            raise ConcurrencyError(
                "Please wait, previous operation is still processing", context,
            )

        throttle_key = (issue_id, source_column, target_column)
        now = time.monotonic()
        _prune_recent_moves(now, self.settings.drag_throttle_seconds)
        if throttle_key in _recent_moves:
            raise ConcurrencyError("Please wait before moving this item again", context)

        state_id = get_state_id_for_column(target_column, states)
        target_state = next((s for s in states if s.get("id") == state_id), None)
        if target_state is None:
            raise BusinessRuleError(
                f"Target state not found for column {target_column}",
                "TARGET_STATE_NOT_FOUND", context,
            )

        _recent_moves[throttle_key] = now
        _in_flight.add(issue_id)
        moved = board.move_to_top(issue_id, target_column, target_state)
        error = None
        try:
            result = await self.issues.update_issue_state(issue_id, state_id)
            succeeded = bool((result or {}).get("success"))
        except PortalError as e:
            succeeded, error = False, e.message
            logger.warning(
                f"State update for {issue_id} failed, reverting move: {e.message}",
                extra={"issue_id": issue_id},
            )
        finally:
            _in_flight.discard(issue_id)

        if not succeeded:
            board.restore(issue_id, column, index, original)
            return {
                "success": False,
                "reverted": True,
                "error": error or "Failed to update - reverted changes",
                "issue": original,
                "columns": board.counts(),
            }

        logger.info(
            f"Moved issue {issue_id} from {source_column} to {target_column}",
            extra={"issue_id": issue_id},
        )
        return {
            "success": True,
            "reverted": False,
            "issue": moved,
            "stateId": state_id,
            "feedback": provide_drag_feedback(True, source_column, target_column),
            "columns": board.counts(),
        }
