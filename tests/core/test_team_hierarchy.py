"""Team Hierarchy — tests for flattening Linear teams and building the team tree.

Tests cover:
    - team_record flattens the parent and stamps the sync time
    - Children nest under parents regardless of input order
    - Teams with a missing parent become roots
    - level, childCount and totalDescendants
    - Enrichment copies counts without touching the source tree
    - Orphaned team detection
"""

from portal.core.team_hierarchy import (
    build_team_hierarchy, enrich_hierarchy, find_in_hierarchy, flatten_hierarchy,
    orphaned_team_ids, team_record, team_summary,
)


def _rec(team_id, parent_id=None):
    return {"id": team_id, "name": team_id.upper(), "parent_id": parent_id}


def test_team_record_flattens_parent():
    node = {"id": "t2", "name": "API", "parent": {"id": "t1", "name": "Eng", "key": "ENG"}}
    record = team_record(node, "2026-01-01T00:00:00Z")
    assert record["parent_id"] == "t1"
    assert record["parent_name"] == "Eng"
    assert record["parent_key"] == "ENG"
    assert record["syncedAt"] == "2026-01-01T00:00:00Z"
    assert record["source"] == "linear_api"
    assert record["parent"] == {"id": "t1", "name": "Eng", "key": "ENG"}


def test_team_record_without_parent():
    record = team_record({"id": "t1", "name": "Eng", "parent": None}, "now")
    assert record["parent_id"] is None


def test_team_summary_keeps_listing_fields():
    summary = team_summary({**_rec("t1"), "key": "T1", "states": [1, 2]})
    assert summary["key"] == "T1"
    assert "states" not in summary


def test_build_hierarchy_nests_children_in_any_order():
    roots = build_team_hierarchy([_rec("c", "b"), _rec("b", "a"), _rec("a")])
    assert [r["id"] for r in roots] == ["a"]
    b = roots[0]["children"][0]
    c = b["children"][0]
    assert (roots[0]["level"], b["level"], c["level"]) == (0, 1, 2)
    assert roots[0]["childCount"] == 1
    assert roots[0]["totalDescendants"] == 2
    assert c["totalDescendants"] == 0


def test_missing_parent_makes_root():
    roots = build_team_hierarchy([_rec("a"), _rec("x", "gone")])
    assert sorted(r["id"] for r in roots) == ["a", "x"]


def test_every_team_appears_once():
    records = [_rec("a"), _rec("b", "a"), _rec("c", "a"), _rec("d", "c")]
    flat = flatten_hierarchy(build_team_hierarchy(records))
    assert sorted(n["id"] for n in flat) == ["a", "b", "c", "d"]


def test_build_does_not_mutate_records():
    records = [_rec("a"), _rec("b", "a")]
    build_team_hierarchy(records)
    assert "children" not in records[0]


def test_find_in_hierarchy():
    roots = build_team_hierarchy([_rec("a"), _rec("b", "a")])
    assert find_in_hierarchy(roots, "b")["id"] == "b"
    assert find_in_hierarchy(roots, "zzz") is None


def test_enrich_hierarchy_adds_counts():
    roots = build_team_hierarchy([_rec("a"), _rec("b", "a")])
    enriched = enrich_hierarchy(roots, {"a": 3}, {"b": 1})
    assert enriched[0]["membersCount"] == 3
    assert enriched[0]["customersCount"] == 0
    assert enriched[0]["children"][0]["customersCount"] == 1
    assert "membersCount" not in roots[0]


def test_orphaned_team_ids():
    assert orphaned_team_ids(["a", "b", "c"], {"a", "c"}) == ["b"]
    assert orphaned_team_ids(None, {"a"}) == []
