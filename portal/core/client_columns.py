"""Client Columns — maps Linear workflow states onto the client UAT board.

Invariants:
    - Matching is by state name (lowercased substring) in a fixed priority order;
      only the canceled rule also looks at state type
    - States matching no rule map to None and are not shown to clients
    - Percentages round half up and are 0 when there are no issues
"""

import math

from portal.core.domain_types import ClientColumn

CLIENT_COLUMNS: list[dict] = [
    {
        "id": ClientColumn.CLIENT_REVIEW.value,
        "title": "Pending Review",
        "description": "Ready for your review and feedback",
        "color": "#3b82f6",
        "allowIssueCreation": True,
        "allowApproval": True,
    },
    {
        "id": ClientColumn.BLOCKED.value,
        "title": "Blocked/Needs Input",
        "description": "Waiting for information or client feedback",
        "color": "#f59e0b",
        "allowIssueCreation": False,
        "allowApproval": False,
    },
    {
        "id": ClientColumn.DONE.value,
        "title": "Approved",
        "description": "Approved and completed",
        "color": "#10b981",
        "allowIssueCreation": False,
        "allowApproval": False,
    },
    {
        "id": ClientColumn.RELEASED.value,
        "title": "Released",
        "description": "Shipped to production",
        "color": "#8b5cf6",
        "allowIssueCreation": False,
        "allowApproval": False,
    },
    {
        "id": ClientColumn.CANCELED.value,
        "title": "Canceled",
        "description": "Canceled issues",
        "color": "#ef4444",
        "allowIssueCreation": False,
        "allowApproval": False,
    },
    {
        "id": ClientColumn.ARCHIVED.value,
        "title": "Archived",
        "description": "Rejected, failed, or duplicate issues",
        "color": "#64748b",
        "allowIssueCreation": False,
        "allowApproval": False,
    },
]

_NAME_RULES: list[tuple[tuple[str, ...], ClientColumn]] = [
    (("shipped", "released", "live", "deployed"), ClientColumn.RELEASED),
    (("client review", "client-review"), ClientColumn.CLIENT_REVIEW),
    (("duplicate", "rejected", "failed"), ClientColumn.ARCHIVED),
]
_LATE_NAME_RULES: list[tuple[tuple[str, ...], ClientColumn]] = [
    (
        ("release ready", "ready for release", "ready to release", "approved"),
        ClientColumn.DONE,
    ),
    (("blocked", "waiting", "hold", "paused"), ClientColumn.BLOCKED),
]


def map_state_to_client_column(state: dict) -> str | None:
    name = (state.get("name") or "").lower()
    for needles, column in _NAME_RULES:
        if any(n in name for n in needles):
            return column.value
    if state.get("type") == "canceled" or "canceled" in name or "cancelled" in name:
        return ClientColumn.CANCELED.value
    for needles, column in _LATE_NAME_RULES:
        if any(n in name for n in needles):
            return column.value
    return None


def calculate_distribution(issues_by_column: dict[str, list]) -> dict:
    total = sum(len(issues) for issues in issues_by_column.values())
    distribution: dict = {"total": total}
    percentages = {}
    for column in CLIENT_COLUMNS:
        count = len(issues_by_column.get(column["id"]) or [])
        distribution[column["id"]] = count
        percentages[column["id"]] = (
            math.floor(count / total * 100 + 0.5) if total > 0 else 0
        )
    distribution["percentages"] = percentages
    return distribution
