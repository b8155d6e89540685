"""
FORKY SCOPE - Reachable Sub-graph around a Pivot

compute_scope() walks parents, children or both from a root node up to
`max_depth` hops and records, for every reached node:

- depth:         shortest hop count from the root in either direction
- parent_depth:  shortest hop count walking up (ancestors)
- child_depth:   shortest hop count walking down (descendants)
- branches:      ids of the root's direct neighbours through which the
                 node was reached (a node can sit on several branches)

The root itself is always present with depth 0 and no branches.
"""
from collections import deque
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import msgspec

from core.ontology import ScopeDirection
from core.schemas import NodeData


DEFAULT_MAX_DEPTH = 3


class ScopeEntry(msgspec.Struct, kw_only=True):
    """Traversal facts for one node of a scope."""
    node_id: str
    depth: float = float("inf")
    parent_depth: Optional[int] = None
    child_depth: Optional[int] = None
    branches: List[str] = msgspec.field(default_factory=list)

    def add_branches(self, branch_ids: Iterable[str]) -> None:
        for branch_id in branch_ids:
            if branch_id not in self.branches:
                self.branches.append(branch_id)


def _min_depth(current: Optional[int], depth: int) -> int:
    return depth if current is None else min(current, depth)


def _traverse(
    root: NodeData,
    nodes: Mapping[str, NodeData],
    get_next: Callable[[NodeData], Tuple[str, ...]],
    depth_field: str,
    max_depth: int,
) -> Dict[str, ScopeEntry]:
    entries: Dict[str, ScopeEntry] = {}

    queue = deque((hop_id, 1, hop_id) for hop_id in get_next(root) if hop_id)
    # BFS reaches each (node, branch) pair first at its shortest depth
    seen: Set[Tuple[str, str]] = set()

    while queue:
        node_id, depth, branch_id = queue.popleft()
        if depth > max_depth or (node_id, branch_id) in seen:
            continue
        node = nodes.get(node_id)
        if node is None:
            continue
        seen.add((node_id, branch_id))

        entry = entries.get(node_id)
        if entry is None:
            entry = entries[node_id] = ScopeEntry(node_id=node_id)
        entry.depth = min(entry.depth, depth)
        entry.add_branches([branch_id])
        setattr(entry, depth_field, _min_depth(getattr(entry, depth_field), depth))

        for next_id in get_next(node):
            if next_id:
                queue.append((next_id, depth + 1, branch_id))

    return entries


def compute_scope(
    root_id: str,
    nodes: Mapping[str, NodeData],
    direction: ScopeDirection = ScopeDirection.BOTH,
    max_depth: Optional[int] = None,
) -> Dict[str, ScopeEntry]:
    """
    Scope around `root_id` as an insertion-ordered id -> ScopeEntry map.

    A negative or non-integer `max_depth` falls back to 3. Unknown roots
    yield a scope holding only the root entry.
    """
    if not isinstance(max_depth, int) or isinstance(max_depth, bool) or max_depth < 0:
        max_depth = DEFAULT_MAX_DEPTH
    direction = ScopeDirection(direction)

    combined: Dict[str, ScopeEntry] = {root_id: ScopeEntry(node_id=root_id, depth=0)}
    root = nodes.get(root_id)
    if root is None:
        return combined

    walks = []
    if direction in (ScopeDirection.PARENTS, ScopeDirection.BOTH):
        walks.append((lambda n: n.parent_ids, "parent_depth"))
    if direction in (ScopeDirection.CHILDREN, ScopeDirection.BOTH):
        walks.append((lambda n: n.children_ids, "child_depth"))

    for get_next, depth_field in walks:
        for node_id, entry in _traverse(root, nodes, get_next, depth_field, max_depth).items():
            target = combined.get(node_id)
            if target is None:
                target = combined[node_id] = ScopeEntry(node_id=node_id)
            target.depth = min(target.depth, entry.depth)
            value = getattr(entry, depth_field)
            if value is not None:
                setattr(target, depth_field, _min_depth(getattr(target, depth_field), value))
            target.add_branches(entry.branches)

    combined[root_id].depth = 0
    return combined