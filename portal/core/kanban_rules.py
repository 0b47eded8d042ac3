"""Kanban Rules — column/state mapping and drop validation for the team issue board.

Invariants:
    - A parent issue may only move when every sub-issue is approved
      (state "Client Review" or a completed state)
    - is_valid_drop never raises; invalid moves return a DropValidation with a reason
    - get_state_id_for_column tries exact name, then partial name, then state type

Design Decisions:
    - DropValidation.to_dict() uses the camelCase keys the board client reads
"""

from dataclasses import dataclass

from portal.core.domain_types import KanbanColumn

COLUMN_TO_STATE_MAPPING: dict[str, tuple[str, ...]] = {
    KanbanColumn.PENDING_REVIEW.value: ("Client Review",),
    KanbanColumn.APPROVED.value: ("Release Ready",),
    KanbanColumn.RELEASED.value: ("Shipped",),
    KanbanColumn.NEEDS_INPUT.value: ("Client Blocked",),
    KanbanColumn.FAILED_REVIEW.value: ("In Progress", "Canceled"),
}

COLUMN_TYPE_FALLBACK: dict[str, str] = {
    KanbanColumn.PENDING_REVIEW.value: "triage",
    KanbanColumn.APPROVED.value: "completed",
    KanbanColumn.RELEASED.value: "completed",
    KanbanColumn.NEEDS_INPUT.value: "backlog",
    KanbanColumn.FAILED_REVIEW.value: "canceled",
}

# Keyboard navigation order
COLUMN_ORDER: tuple[str, ...] = (
    KanbanColumn.PENDING_REVIEW.value,
    KanbanColumn.NEEDS_INPUT.value,
    KanbanColumn.APPROVED.value,
    KanbanColumn.RELEASED.value,
    KanbanColumn.FAILED_REVIEW.value,
)

_FEEDBACK_MESSAGES: dict[str, str] = {
    "pendingReview-approved": "Approve for release → Release Ready",
    "pendingReview-failedReview": "Request changes → In Progress for rework",
    "pendingReview-needsInput": "Mark as needs input → Client Blocked",
    "approved-released": "Mark as shipped → Shipped",
    "approved-failedReview": "Reject approval → In Progress",
    "needsInput-pendingReview": "Submit for review → Client Review",
    "failedReview-pendingReview": "Resubmit for review → Client Review",
    "failedReview-needsInput": "Request more input → Client Blocked",
}

_PRIORITY_LABELS = {4: "Urgent", 3: "High", 2: "Medium", 1: "Low"}


@dataclass(frozen=True)
class DropValidation:
    is_valid: bool
    reason: str | None = None
    title: str | None = None
    suggestion: str | None = None
    severity: str | None = None
    actionable: bool | None = None

    def to_dict(self) -> dict:
        result = {"isValid": self.is_valid}
        for key, value in (
            ("reason", self.reason), ("title", self.title),
            ("suggestion", self.suggestion), ("severity", self.severity),
            ("actionable", self.actionable),
        ):
            if value is not None:
                result[key] = value
        return result


def _sub_issues(issue: dict) -> list[dict]:
    return issue.get("subIssues") or []


def _is_approved(sub: dict) -> bool:
    state = sub.get("state") or {}
    return state.get("name") == "Client Review" or state.get("type") == "completed"


def _is_release_ready(sub: dict) -> bool:
    state = sub.get("state") or {}
    return state.get("name") == "Release Ready" or state.get("type") == "completed"


def are_all_children_approved(issue: dict) -> bool:
    return all(_is_approved(sub) for sub in _sub_issues(issue))


def get_children_not_ready_for_release(issue: dict) -> dict:
    pending = [sub for sub in _sub_issues(issue) if not _is_release_ready(sub)]
    return {"count": len(pending), "identifiers": [s.get("identifier") for s in pending]}


def is_valid_drop(source_column: str, target_column: str, issue: dict) -> DropValidation:
    if source_column == target_column:
        return DropValidation(
            is_valid=False,
            reason="Issue is already in this column",
            title="No Change Needed",
            severity="info",
            actionable=False,
        )
    if not are_all_children_approved(issue):
        pending = get_children_not_ready_for_release(issue)
        count = pending["count"]
        shown = ", ".join(str(i) for i in pending["identifiers"][:3])
        return DropValidation(
            is_valid=False,
            reason=f"This issue has {count} unapproved sub-task{'s' if count > 1 else ''}",
            title="Cannot Move Parent Issue",
            suggestion=f"Please approve all sub-tasks first: {shown}{'...' if count > 3 else ''}",
            severity="error",
            actionable=True,
        )
    return DropValidation(is_valid=True)


def get_state_id_for_column(column: str, states: list[dict]) -> str | None:
    names = COLUMN_TO_STATE_MAPPING.get(column)
    if not names:
        return None
    for name in names:
        for state in states:
            if state.get("name") == name:
                return state["id"]
    for name in names:
        wanted = name.lower()
        for state in states:
            have = (state.get("name") or "").lower()
            if have and (wanted in have or have in wanted):
                return state["id"]
    fallback_type = COLUMN_TYPE_FALLBACK.get(column)
    for state in states:
        if state.get("type") == fallback_type:
            return state["id"]
    return None


def column_for_state(state: dict) -> str | None:
    """Board column whose mapped names include this state's name."""
    name = state.get("name")
    for column, names in COLUMN_TO_STATE_MAPPING.items():
        if name in names:
            return column
    return None


def provide_drag_feedback(is_valid: bool, source_column: str, target_column: str) -> dict:
    if not is_valid:
        return {"message": "This move is not allowed", "type": "error"}
    message = _FEEDBACK_MESSAGES.get(
        f"{source_column}-{target_column}", f"Move to {target_column}",
    )
    return {"message": message, "type": "success"}


def adjacent_column(column: str, direction: int) -> str | None:
    """Neighbouring column for keyboard moves (direction -1 or +1)."""
    if column not in COLUMN_ORDER:
        return None
    index = COLUMN_ORDER.index(column) + direction
    if 0 <= index < len(COLUMN_ORDER):
        return COLUMN_ORDER[index]
    return None


def priority_label(priority) -> str | None:
    return _PRIORITY_LABELS.get(priority)
