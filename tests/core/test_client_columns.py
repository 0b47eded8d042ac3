"""Client Columns — tests for the client UAT board state mapping and distribution.

Tests cover:
    - Name rules apply in priority order (released before client-review, etc.)
    - Canceled matches by type or by either spelling
    - Unmatched states are hidden
    - Distribution counts and half-up percentages
"""

import pytest

from portal.core.client_columns import (
    CLIENT_COLUMNS, calculate_distribution, map_state_to_client_column,
)


@pytest.mark.parametrize("name, state_type, expected", [
    ("Shipped", "completed", "released"),
    ("Deployed to prod", "started", "released"),
    ("Client Review", "started", "client-review"),
    ("Duplicate", "canceled", "archived"),
    ("Failed QA", "started", "archived"),
    ("Won't do", "canceled", "canceled"),
    ("Cancelled", "started", "canceled"),
    ("Release Ready", "completed", "done"),
    ("Approved", "completed", "done"),
    ("Client Blocked", "backlog", "blocked"),
    ("On Hold", "backlog", "blocked"),
    ("In Progress", "started", None),
    ("Todo", "unstarted", None),
])
def test_map_state_to_client_column(name, state_type, expected):
    assert map_state_to_client_column({"name": name, "type": state_type}) == expected


def test_released_rule_wins_over_client_review():
    assert map_state_to_client_column({"name": "Client Review - Live"}) == "released"


def test_columns_in_display_order():
    assert [c["id"] for c in CLIENT_COLUMNS] == [
        "client-review", "blocked", "done", "released", "canceled", "archived",
    ]
    assert CLIENT_COLUMNS[0]["allowIssueCreation"] is True


def test_distribution_counts_and_percentages():
    distribution = calculate_distribution({
        "client-review": [1],
        "blocked": [1, 2],
        "done": [],
    })
    assert distribution["total"] == 3
    assert distribution["blocked"] == 2
    assert distribution["archived"] == 0
    assert distribution["percentages"]["client-review"] == 33
    assert distribution["percentages"]["blocked"] == 67


def test_distribution_rounds_half_up():
    distribution = calculate_distribution({
        "done": [1],
        "released": [1] * 7,
    })
    assert distribution["percentages"]["done"] == 13
    assert distribution["percentages"]["released"] == 88


def test_empty_distribution():
    distribution = calculate_distribution({})
    assert distribution["total"] == 0
    assert all(v == 0 for v in distribution["percentages"].values())
