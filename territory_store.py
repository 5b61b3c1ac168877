"""
territory_store.py

Navigation path (root -> current) and children-of-current helpers.

Pure functions over immutable values; navigator.py owns the live copies and
decides when to call them.
"""

from __future__ import annotations

from typing import Iterable

from territories import Territory


Path = tuple[Territory, ...]


def current_territory(path: Path) -> Territory | None:
    return path[-1] if path else None


def path_index(path: Path, territory_id: int) -> int | None:
    for i, t in enumerate(path):
        if t.territory_id == territory_id:
            return i
    return None


def descend_path(path: Path, children: dict[int, Territory], territory_id: int) -> Path:
    """
    Append the selected child, or cut the path back to an ancestor that was
    re-selected.  Ids that are neither leave the path unchanged.
    """
    child = children.get(territory_id)
    if child is not None and path_index(path, territory_id) is None:
        path = path + (child,)
    idx = path_index(path, territory_id)
    if idx is not None:
        path = path[: idx + 1]
    return path


def order_ancestry(territories: Iterable[Territory], leaf_id: int, root_id: int) -> Path | None:
    """
    Arrange an ancestry reply root-first by following parent links from
    *leaf_id*.  The ledger's ordering is not relied upon.

    Returns None when the chain does not reach *root_id*.
    """
    by_id = {t.territory_id: t for t in territories}
    chain: list[Territory] = []
    cur = by_id.get(leaf_id)
    while cur is not None:
        chain.append(cur)
        if cur.territory_id == root_id:
            return tuple(reversed(chain))
        if len(chain) > len(by_id):
            # Parent links loop back on themselves.
            return None
        cur = by_id.get(cur.parent_id)
    return None


def children_by_id(territories: Iterable[Territory]) -> dict[int, Territory]:
    return {t.territory_id: t for t in territories}


def path_violations(path: Path, root_id: int) -> list[str]:
    """Parent-chain checks for a navigation path.  Empty list means healthy."""
    violations: list[str] = []
    if not path:
        return violations
    if path[0].territory_id != root_id:
        violations.append(f"path[0] is {path[0].territory_id}, expected root {root_id}")
    seen: set[int] = set()
    for i, t in enumerate(path):
        if t.territory_id in seen:
            violations.append(f"territory {t.territory_id} appears twice in path")
        seen.add(t.territory_id)
        if i > 0 and t.parent_id != path[i - 1].territory_id:
            violations.append(
                f"path[{i}] ({t.territory_id}) parent {t.parent_id} != path[{i - 1}] ({path[i - 1].territory_id})"
            )
    return violations
