"""Team Hierarchy — parent/child trees over synced Linear teams.

Invariants:
    - Every team appears exactly once in the tree
    - A team whose parent is not in the set is a root
    - level is the depth from the root (roots are 0), computed from the tree
      itself so input order does not matter
    - totalDescendants counts every node below a team

Design Decisions:
    - Nodes are shallow copies: callers keep their flat records untouched
"""


def team_record(team: dict, synced_at: str) -> dict:
    """Flatten a Linear team node into the stored linear_teams:{id} record."""
    parent = team.get("parent") or {}
    record = dict(team)
    record["parent_id"] = parent.get("id")
    record["parent_name"] = parent.get("name")
    record["parent_key"] = parent.get("key")
    record["syncedAt"] = synced_at
    record["source"] = "linear_api"
    return record


def team_summary(record: dict) -> dict:
    """Short entry used in the linear_teams:all team list."""
    return {
        "id": record.get("id"),
        "name": record.get("name"),
        "key": record.get("key"),
        "description": record.get("description"),
        "color": record.get("color"),
        "icon": record.get("icon"),
        "parent_id": record.get("parent_id"),
        "parent_name": record.get("parent_name"),
    }


def build_team_hierarchy(records: list[dict]) -> list[dict]:
    """Nest team records under parents; returns the root nodes."""
    nodes = {r["id"]: {**r, "children": []} for r in records if r.get("id")}
    roots = []
    for node in nodes.values():
        parent_id = node.get("parent_id")
        if parent_id and parent_id in nodes and parent_id != node["id"]:
            nodes[parent_id]["children"].append(node)
        else:
            roots.append(node)
    for root in roots:
        _annotate(root, 0)
    return roots


def _annotate(node: dict, level: int) -> int:
    node["level"] = level
    node["childCount"] = len(node["children"])
    total = 0
    for child in node["children"]:
        total += 1 + _annotate(child, level + 1)
    node["totalDescendants"] = total
    return total


def flatten_hierarchy(nodes: list[dict]) -> list[dict]:
    """Depth-first list of every node (children included)."""
    flat = []
    for node in nodes or []:
        flat.append(node)
        flat.extend(flatten_hierarchy(node.get("children") or []))
    return flat


def find_in_hierarchy(nodes: list[dict], team_id: str) -> dict | None:
    for node in flatten_hierarchy(nodes):
        if node.get("id") == team_id:
            return node
    return None


def enrich_hierarchy(
    nodes: list[dict], members_count: dict[str, int], customers_count: dict[str, int],
) -> list[dict]:
    """Copy of the tree with membersCount/customersCount on every node."""
    enriched = []
    for node in nodes or []:
        tid = node.get("id")
        enriched.append({
            **node,
            "membersCount": members_count.get(tid, 0),
            "customersCount": customers_count.get(tid, 0),
            "children": enrich_hierarchy(
                node.get("children") or [], members_count, customers_count,
            ),
        })
    return enriched


def orphaned_team_ids(assigned: list[str], valid_ids: set[str]) -> list[str]:
    return [tid for tid in assigned or [] if tid not in valid_ids]
