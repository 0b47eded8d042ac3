"""Issue Hierarchy — parent/sub-issue trees and descendant statistics for Linear issues.

Invariants:
    - Inputs are never mutated; every returned issue is a shallow copy
    - group_by_parent shows each issue at most once: as a root, as a direct
      sub-issue of a parent in the same state, or not at all (a grand-child whose
      parent and grandparent share its state)
    - _originalSubIssueCount is the number of direct children Linear reports,
      independent of which state those children are in

Design Decisions:
    - Two breakdowns exist: subtree_breakdown walks nested subIssues (built trees),
      descendant_breakdown walks Linear's children.nodes (raw API payloads)
"""

import re

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE,
)


def extract_array_from_response(data) -> list:
    """Accept a list, a GraphQL connection ({nodes: [...]}) or None."""
    if not data:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("nodes"), list):
        return data["nodes"]
    return []


def validate_team_id(team_id: str) -> bool:
    return bool(team_id) and bool(_UUID_RE.match(team_id))


def _children_nodes(issue: dict) -> list:
    return extract_array_from_response(issue.get("children"))


def _state_name(issue: dict, default: str) -> str:
    return (issue.get("state") or {}).get("name") or default


def count_descendants(issue: dict) -> int:
    """Every issue below this one in Linear's children.nodes tree."""
    return sum(1 + count_descendants(child) for child in _children_nodes(issue))


def descendant_breakdown(issue: dict) -> dict:
    """Level counts over children.nodes; byState covers levels 1 and 2."""
    breakdown = {"level1": 0, "level2": 0, "level3Plus": 0, "byState": {}, "total": 0}
    children = _children_nodes(issue)
    breakdown["level1"] = len(children)
    by_state = breakdown["byState"]
    for child in children:
        name = _state_name(child, "unknown")
        by_state[name] = by_state.get(name, 0) + 1
        grandchildren = _children_nodes(child)
        breakdown["level2"] += len(grandchildren)
        for grandchild in grandchildren:
            name = _state_name(grandchild, "unknown")
            by_state[name] = by_state.get(name, 0) + 1
            breakdown["level3Plus"] += count_descendants(grandchild)
    breakdown["total"] = breakdown["level1"] + breakdown["level2"] + breakdown["level3Plus"]
    return breakdown


def subtree_breakdown(sub_issues: list[dict]) -> dict:
    """Level counts over an already-built subIssues tree."""
    breakdown = {"level1": 0, "level2": 0, "level3Plus": 0, "byState": {}, "total": 0}

    def visit(issue: dict, level: int) -> None:
        if level == 1:
            breakdown["level1"] += 1
        elif level == 2:
            breakdown["level2"] += 1
        else:
            breakdown["level3Plus"] += 1
        breakdown["total"] += 1
        name = _state_name(issue, "Unknown")
        breakdown["byState"][name] = breakdown["byState"].get(name, 0) + 1
        for sub in issue.get("subIssues") or []:
            visit(sub, level + 1)

    for issue in sub_issues or []:
        visit(issue, 1)
    return breakdown


def build_hierarchy_tree(flat_issues: list[dict]) -> list[dict]:
    """Nest issues under their parent; issues whose parent is absent are roots."""
    by_id = {issue["id"]: {**issue, "subIssues": []} for issue in flat_issues}
    roots = []
    for issue in flat_issues:
        node = by_id[issue["id"]]
        parent_id = (issue.get("parent") or {}).get("id")
        if parent_id and parent_id in by_id:
            by_id[parent_id]["subIssues"].append(node)
        else:
            roots.append(node)
    return roots


def enhance_issues_with_hierarchy(issues: list[dict]) -> list[dict]:
    enhanced = []
    for issue in issues:
        copy = {**issue}
        if issue.get("subIssues"):
            breakdown = subtree_breakdown(issue["subIssues"])
            copy["_hierarchyBreakdown"] = breakdown
            copy["_originalSubIssueCount"] = breakdown["total"]
        enhanced.append(copy)
    return enhanced


def group_by_parent(issues: list[dict]) -> list[dict]:
    """Root issues of one workflow state with direct same-state children nested."""
    by_id = {
        issue["id"]: {
            **issue,
            "subIssues": [],
            "_originalSubIssueCount": len(_children_nodes(issue)),
            "_hierarchyBreakdown": descendant_breakdown(issue),
        }
        for issue in issues
    }
    originals = {issue["id"]: issue for issue in issues}

    def is_nested(issue: dict) -> bool:
        parent_id = (issue.get("parent") or {}).get("id")
        if not parent_id or parent_id not in by_id:
            return False
        grandparent_id = (originals[parent_id].get("parent") or {}).get("id")
        return bool(grandparent_id) and grandparent_id in by_id

    roots = []
    for issue in issues:
        parent_id = (issue.get("parent") or {}).get("id")
        if parent_id and parent_id in by_id:
            if not is_nested(issue):
                by_id[parent_id]["subIssues"].append(by_id[issue["id"]])
        else:
            roots.append(by_id[issue["id"]])
    return roots


def rename_children_to_sub_issues(issue: dict) -> dict:
    """Issue detail shape: children.nodes exposed as subIssues."""
    copy = {k: v for k, v in issue.items() if k != "children"}
    copy["subIssues"] = _children_nodes(issue)
    return copy
