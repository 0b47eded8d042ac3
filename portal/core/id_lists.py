"""Id Lists — idempotent edits on the denormalized id lists stored in KV.

Invariants:
    - Results are new lists; inputs are never mutated
    - with_id never duplicates; without_id removes every occurrence
    - None is treated as an empty list
"""


def with_id(ids: list | None, item: str) -> list:
    ids = list(ids or [])
    if item not in ids:
        ids.append(item)
    return ids


def without_id(ids: list | None, item: str) -> list:
    return [i for i in ids or [] if i != item]
