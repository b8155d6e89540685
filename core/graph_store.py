"""
FORKY GRAPH STORE - The State Container

The single owner of the prompt graph. Every structural change goes through
the mutation operations enumerated here; node and edge records are frozen,
so the store enforces link consistency centrally by replacing records
rather than letting callers edit them.

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string ids: "node_ab12...", "edge_cd34..."
  - _nodes / _edges: insertion-ordered id -> record maps (source of truth)

  Bridge Layer
  - _node_map: Dict[str, int]  (id -> rustworkx index)
  - _inv_map: Dict[int, str]   (rustworkx index -> id)

  Rust Layer (rustworkx.PyDiGraph)
  - Index mirror of the same topology, used for reachability,
    ancestry, topological order and acyclicity checks

Invariants:
- For every edge (s, t): t.parent_ids contains s and s.children_ids
  contains t, and neither holds without the edge.
- At most one edge per (source, target) pair.
- Acyclicity is the caller's job: check `would_create_cycle` before
  `add_edge`. The store does not re-verify it.

Every applied mutation publishes a GraphEvent on the store's EventBus.
"""
from contextlib import contextmanager
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
import logging

import msgspec
import polars as pl
import rustworkx as rx

from core.errors import NodeNotFoundError, ValidationError
from core.ontology import (
    LogicalRole,
    ModeSource,
    NodeStatus,
    OperationMode,
    detect_mode_from_prompt,
)
from core.schemas import (
    EdgeData,
    GraphSnapshot,
    NodeData,
    OrchestrationMetadata,
    Position,
    deserialize_snapshot,
    serialize_snapshot,
)
from infrastructure.event_bus import EventBus, EventType


logger = logging.getLogger(__name__)

# Offset of a child node from its parent on the canvas
CHILD_OFFSET = (60.0, 320.0)

_LINK_FIELDS = frozenset({"id", "parent_ids", "children_ids"})
_UPDATABLE_FIELDS = (
    frozenset(NodeData.__struct_fields__) - _LINK_FIELDS - {"created_at", "updated_at"}
)

_NODE_SCHEMA = {
    "id": pl.Utf8,
    "prompt": pl.Utf8,
    "response": pl.Utf8,
    "summary": pl.Utf8,
    "status": pl.Utf8,
    "role": pl.Utf8,
    "pinned": pl.Boolean,
    "x": pl.Float64,
    "y": pl.Float64,
    "parent_count": pl.Int64,
    "child_count": pl.Int64,
    "created_at": pl.Utf8,
    "updated_at": pl.Utf8,
}

_EDGE_SCHEMA = {
    "id": pl.Utf8,
    "source": pl.Utf8,
    "target": pl.Utf8,
    "created_at": pl.Utf8,
}


class GraphStore:
    """
    In-memory prompt graph with bidirectional link bookkeeping.

    Usage:
        store = GraphStore(project_id="proj_1")

        root = store.add_node_with_prompt(Position(x=0, y=0), "Plan a trip")
        child = store.create_child_node(root, "Where to?")

        store.update_node_prompt(root, "Plan a cheap trip")
        store.get_node(child).status  # NodeStatus.STALE

    Thread Safety:
        NOT thread-safe. All mutations run on one logical thread; generation
        runs interleave only at await points, never inside a mutation.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ):
        self._nodes: Dict[str, NodeData] = {}
        self._edges: Dict[str, EdgeData] = {}
        self._edge_keys: Dict[Tuple[str, str], str] = {}

        # Index mirror
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        # Selection keeps insertion order; values unused
        self._selected: Dict[str, None] = {}

        # Project settings (not versioned by history)
        self.project_id = project_id
        self.system_prompt = system_prompt
        self._project_name = project_name

        self.event_bus = event_bus or EventBus()
        self._origin = "graph_store"

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @property
    def is_empty(self) -> bool:
        return not self._nodes

    @property
    def project_name(self) -> Optional[str]:
        return self._project_name

    @property
    def selected_node_ids(self) -> Tuple[str, ...]:
        return tuple(self._selected)

    # =========================================================================
    # EVENTS
    # =========================================================================

    @contextmanager
    def origin(self, name: str):
        """Tag events published inside the block with `name` as their source."""
        previous = self._origin
        self._origin = name
        try:
            yield self
        finally:
            self._origin = previous

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.event_bus.emit(event_type, payload, source=self._origin)

    # =========================================================================
    # NODE READS
    # =========================================================================

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def find_node(self, node_id: str) -> Optional[NodeData]:
        """Node record or None."""
        return self._nodes.get(node_id)

    def get_node(self, node_id: str) -> NodeData:
        """
        Node record by id.

        Raises:
            NodeNotFoundError: If the id is unknown
        """
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFoundError(node_id) from None

    def iter_nodes(self) -> Iterator[NodeData]:
        return iter(list(self._nodes.values()))

    def get_all_nodes(self) -> List[NodeData]:
        return list(self._nodes.values())

    def nodes_by_id(self) -> Dict[str, NodeData]:
        """Copy of the id -> node mapping (records are immutable)."""
        return dict(self._nodes)

    def get_parents(self, node_id: str) -> List[NodeData]:
        node = self.get_node(node_id)
        return [self._nodes[p] for p in node.parent_ids if p in self._nodes]

    def get_children(self, node_id: str) -> List[NodeData]:
        node = self.get_node(node_id)
        return [self._nodes[c] for c in node.children_ids if c in self._nodes]

    # =========================================================================
    # NODE MUTATIONS
    # =========================================================================

    def add_node(self, position: Optional[Position] = None) -> str:
        """Create an isolated, empty node. Returns its id."""
        return self.add_node_with_prompt(position, "")

    def add_node_with_prompt(self, position: Optional[Position], prompt: str) -> str:
        """Create an isolated node carrying `prompt`. Returns its id."""
        node = NodeData.create(prompt=prompt, position=position)
        return self._insert(node)

    def insert_node(self, node: NodeData) -> str:
        """
        Insert a fully formed record (remote creation, import).

        Links on the record are ignored; wire them with `add_edge`.

        Raises:
            ValidationError: If the id already exists
        """
        if node.id in self._nodes:
            raise ValidationError(f"Node already exists: {node.id}")
        return self._insert(node.evolve(parent_ids=(), children_ids=(), updated_at=node.updated_at))

    def _insert(self, node: NodeData) -> str:
        idx = self._graph.add_node(node.id)
        self._node_map[node.id] = idx
        self._inv_map[idx] = node.id
        self._nodes[node.id] = node

        logger.debug(f"Added node {node.id}")
        self._publish(EventType.NODE_CREATED, {
            "node_id": node.id,
            "role": node.role.value,
        })
        return node.id

    def create_child_node(
        self,
        parent_id: str,
        prompt: str,
        orchestration: Optional[OrchestrationMetadata] = None,
    ) -> Optional[str]:
        """
        Create a node below-right of `parent_id` and link it as a child.

        Returns None (no mutation) if the parent is unknown. The orchestration
        override is applied only when an edge was actually created.
        """
        parent = self._nodes.get(parent_id)
        if parent is None:
            return None

        child_id = self.add_node_with_prompt(parent.position.offset(*CHILD_OFFSET), prompt)
        edge_id = self.add_edge(parent_id, child_id)
        if edge_id is None:
            return child_id

        if orchestration is not None:
            self.update_node(child_id, orchestration=orchestration)
        return child_id

    def update_node(self, node_id: str, **fields: Any) -> bool:
        """
        Shallow-merge `fields` into a node and refresh `updated_at`.

        No-op (returns False) if the id is unknown.

        Raises:
            ValidationError: For link fields, timestamps or unknown names
        """
        forbidden = _LINK_FIELDS.intersection(fields)
        if forbidden:
            raise ValidationError(
                f"Link fields cannot be updated directly: {sorted(forbidden)}"
            )
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown node fields: {sorted(unknown)}")

        node = self._nodes.get(node_id)
        if node is None:
            return False

        if "status" in fields:
            try:
                fields["status"] = NodeStatus(fields["status"])
            except ValueError as e:
                raise ValidationError(str(e)) from e

        self._replace(node.evolve(**fields), previous=node, fields=list(fields))
        return True

    def _replace(self, node: NodeData, previous: NodeData, fields: List[str]) -> None:
        self._nodes[node.id] = node
        payload: Dict[str, Any] = {"node_id": node.id, "fields": fields}
        if node.status != previous.status:
            payload["old_status"] = previous.status.value
            payload["new_status"] = node.status.value
        self._publish(EventType.NODE_UPDATED, payload)

    def patch_orchestration(self, node_id: str, **changes: Any) -> bool:
        """Replace individual orchestration metadata fields on a node."""
        node = self._nodes.get(node_id)
        if node is None:
            return False
        return self.update_node(node_id, orchestration=node.orchestration.patched(**changes))

    def delete_node(self, node_id: str) -> bool:
        """
        Remove a node, repairing neighbour links and dropping incident edges.

        No-op (returns False) if the id is unknown.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return False

        for parent_id in node.parent_ids:
            parent = self._nodes.get(parent_id)
            if parent is not None:
                self._nodes[parent_id] = parent.evolve(
                    children_ids=tuple(c for c in parent.children_ids if c != node_id)
                )
        for child_id in node.children_ids:
            child = self._nodes.get(child_id)
            if child is not None:
                self._nodes[child_id] = child.evolve(
                    parent_ids=tuple(p for p in child.parent_ids if p != node_id)
                )

        incident = [
            edge for edge in self._edges.values()
            if edge.source == node_id or edge.target == node_id
        ]
        for edge in incident:
            del self._edges[edge.id]
            del self._edge_keys[(edge.source, edge.target)]

        idx = self._node_map.pop(node_id)
        del self._inv_map[idx]
        self._graph.remove_node(idx)

        self._selected.pop(node_id, None)
        del self._nodes[node_id]

        logger.debug(f"Deleted node {node_id} ({len(incident)} incident edges)")
        for edge in incident:
            self._publish(EventType.EDGE_DELETED, {
                "edge_id": edge.id,
                "source_id": edge.source,
                "target_id": edge.target,
            })
        self._publish(EventType.NODE_DELETED, {"node_id": node_id})
        return True

    def set_node_status(self, node_id: str, status: NodeStatus) -> bool:
        """
        Set a node's status. Marking a plan node stale also flags its plan
        payload stale.
        """
        node = self._nodes.get(node_id)
        if node is None:
            return False
        status = NodeStatus(status)
        changes: Dict[str, Any] = {"status": status}
        if status == NodeStatus.STALE:
            orchestration = self._stale_plan(node.orchestration)
            if orchestration is not None:
                changes["orchestration"] = orchestration
        self._replace(node.evolve(**changes), previous=node, fields=list(changes))
        return True

    @staticmethod
    def _stale_plan(orchestration: OrchestrationMetadata) -> Optional[OrchestrationMetadata]:
        if orchestration.role == LogicalRole.PLAN and orchestration.plan is not None:
            return orchestration.patched(
                plan=msgspec.structs.replace(orchestration.plan, is_stale=True)
            )
        return None

    def update_node_prompt(self, node_id: str, prompt: str) -> bool:
        """
        Change a node's prompt and mark its descendants stale.

        Unless the node's mode was set manually, the explore/build mode tag
        is re-derived from the new text. Returns False (no-op) when the node
        is unknown or the prompt is unchanged.
        """
        node = self._nodes.get(node_id)
        if node is None or node.prompt == prompt:
            return False

        changes: Dict[str, Any] = {"prompt": prompt}
        if node.orchestration.mode_source != ModeSource.MANUAL:
            changes["orchestration"] = node.orchestration.patched(
                mode=detect_mode_from_prompt(prompt),
                mode_source=ModeSource.AUTO,
            )
        self._replace(node.evolve(**changes), previous=node, fields=list(changes))
        self.mark_descendants_stale(node_id)
        return True

    def update_node_response(self, node_id: str, response: str) -> bool:
        return self.update_node(node_id, response=response)

    def update_node_summary(self, node_id: str, summary: Optional[str]) -> bool:
        return self.update_node(node_id, summary=summary)

    def set_node_mode(
        self,
        node_id: str,
        mode: OperationMode,
        source: ModeSource = ModeSource.MANUAL,
    ) -> bool:
        """Tag a node explore/build. Manual tags survive prompt edits."""
        return self.patch_orchestration(
            node_id, mode=OperationMode(mode), mode_source=ModeSource(source)
        )

    # =========================================================================
    # STALENESS CASCADE
    # =========================================================================

    def collect_descendants(self, root_id: str) -> List[str]:
        """Descendants of `root_id` in breadth-first order, each id once."""
        root = self._nodes.get(root_id)
        if root is None:
            return []

        order: List[str] = []
        visited = set()
        queue = deque(root.children_ids)
        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)
            current = self._nodes.get(current_id)
            if current is None:
                continue
            order.append(current_id)
            queue.extend(current.children_ids)
        return order

    def mark_descendants_stale(self, node_id: str) -> List[str]:
        """
        Mark every descendant of `node_id` stale, skipping nodes that are
        generating (their own descendants are still visited). Plan payloads
        of visited plan nodes are flagged stale too.

        Returns the ids whose status became stale.
        """
        marked: List[str] = []
        for descendant_id in self.collect_descendants(node_id):
            node = self._nodes[descendant_id]
            changes: Dict[str, Any] = {}
            if node.status != NodeStatus.LOADING:
                changes["status"] = NodeStatus.STALE
                marked.append(descendant_id)
            orchestration = self._stale_plan(node.orchestration)
            if orchestration is not None:
                changes["orchestration"] = orchestration
            self._replace(node.evolve(**changes), previous=node, fields=list(changes))

        if marked:
            logger.debug(f"Marked {len(marked)} descendants of {node_id} stale")
        return marked

    def cascade_stale(self, root_id: str) -> List[str]:
        """
        Explicit cascade: mark all non-generating descendants of `root_id`
        stale in one batch and return them for sequential regeneration.

        Raises:
            NodeNotFoundError: If the root is unknown
        """
        self.get_node(root_id)
        affected = self.mark_descendants_stale(root_id)
        logger.info(f"Cascade from {root_id}: {len(affected)} nodes stale")
        return affected

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def get_edge(self, edge_id: str) -> Optional[EdgeData]:
        return self._edges.get(edge_id)

    def find_edge(self, source_id: str, target_id: str) -> Optional[EdgeData]:
        edge_id = self._edge_keys.get((source_id, target_id))
        return self._edges.get(edge_id) if edge_id else None

    def has_edge(self, source_id: str, target_id: str) -> bool:
        return (source_id, target_id) in self._edge_keys

    def get_all_edges(self) -> List[EdgeData]:
        return list(self._edges.values())

    def would_create_cycle(self, source_id: str, target_id: str) -> bool:
        """
        True if linking source -> target would close a cycle, i.e. the
        target already reaches the source. Self-links always count.
        """
        if source_id == target_id:
            return True
        if source_id not in self._node_map or target_id not in self._node_map:
            return False
        return rx.has_path(
            self._graph, self._node_map[target_id], self._node_map[source_id]
        )

    def add_edge(self, source_id: str, target_id: str) -> Optional[str]:
        """
        Link source -> target and update both endpoints' link tuples.

        Returns None without mutation if the same (source, target) edge
        already exists or either endpoint is unknown.
        """
        if (source_id, target_id) in self._edge_keys:
            return None

        source = self._nodes.get(source_id)
        target = self._nodes.get(target_id)
        if source is None or target is None:
            missing = source_id if source is None else target_id
            logger.warning(f"Cannot link {source_id} -> {target_id}: unknown node {missing}")
            return None

        edge = EdgeData.create(source_id, target_id)
        self._edges[edge.id] = edge
        self._edge_keys[(source_id, target_id)] = edge.id
        self._graph.add_edge(self._node_map[source_id], self._node_map[target_id], edge.id)

        if target_id not in source.children_ids:
            self._nodes[source_id] = source.evolve(children_ids=source.children_ids + (target_id,))
        if source_id not in target.parent_ids:
            self._nodes[target_id] = target.evolve(parent_ids=target.parent_ids + (source_id,))

        logger.debug(f"Added edge {source_id} -> {target_id}")
        self._publish(EventType.EDGE_CREATED, {
            "edge_id": edge.id,
            "source_id": source_id,
            "target_id": target_id,
        })
        return edge.id

    def delete_edge(self, edge_id: str) -> bool:
        """Unlink both endpoints and remove the edge. No-op if unknown."""
        edge = self._edges.pop(edge_id, None)
        if edge is None:
            return False
        del self._edge_keys[(edge.source, edge.target)]

        source = self._nodes.get(edge.source)
        if source is not None:
            self._nodes[edge.source] = source.evolve(
                children_ids=tuple(c for c in source.children_ids if c != edge.target)
            )
        target = self._nodes.get(edge.target)
        if target is not None:
            self._nodes[edge.target] = target.evolve(
                parent_ids=tuple(p for p in target.parent_ids if p != edge.source)
            )

        src_idx = self._node_map.get(edge.source)
        tgt_idx = self._node_map.get(edge.target)
        if src_idx is not None and tgt_idx is not None and self._graph.has_edge(src_idx, tgt_idx):
            self._graph.remove_edge(src_idx, tgt_idx)

        self._publish(EventType.EDGE_DELETED, {
            "edge_id": edge.id,
            "source_id": edge.source,
            "target_id": edge.target,
        })
        return True

    # =========================================================================
    # GRAPH ALGORITHMS (rustworkx)
    # =========================================================================

    def get_ancestor_ids(self, node_id: str) -> List[str]:
        """All ancestors of a node (unordered)."""
        idx = self._node_map.get(node_id)
        if idx is None:
            raise NodeNotFoundError(node_id)
        return [self._inv_map[i] for i in rx.ancestors(self._graph, idx)]

    def has_cycle(self) -> bool:
        return not rx.is_directed_acyclic_graph(self._graph)

    def topological_order(self) -> List[str]:
        """Node ids with every parent before its children."""
        try:
            return [self._inv_map[i] for i in rx.topological_sort(self._graph)]
        except rx.DAGHasCycle:
            raise ValidationError("Graph contains a cycle") from None

    def validate_links(self) -> List[str]:
        """
        Check the bidirectional link invariant.

        Returns a list of human-readable violations; empty when consistent.
        """
        violations: List[str] = []
        for edge in self._edges.values():
            source = self._nodes.get(edge.source)
            target = self._nodes.get(edge.target)
            if source is None or target is None:
                violations.append(f"edge {edge.id} has a dangling endpoint")
                continue
            if edge.target not in source.children_ids:
                violations.append(f"{edge.source}.children_ids lacks {edge.target}")
            if edge.source not in target.parent_ids:
                violations.append(f"{edge.target}.parent_ids lacks {edge.source}")

        for node in self._nodes.values():
            if len(set(node.parent_ids)) != len(node.parent_ids):
                violations.append(f"{node.id}.parent_ids has duplicates")
            if len(set(node.children_ids)) != len(node.children_ids):
                violations.append(f"{node.id}.children_ids has duplicates")
            for parent_id in node.parent_ids:
                if (parent_id, node.id) not in self._edge_keys:
                    violations.append(f"{node.id}.parent_ids has {parent_id} without an edge")
            for child_id in node.children_ids:
                if (node.id, child_id) not in self._edge_keys:
                    violations.append(f"{node.id}.children_ids has {child_id} without an edge")
        return violations

    # =========================================================================
    # SELECTION & PROJECT
    # =========================================================================

    def select_node(self, node_id: str) -> None:
        self._selected[node_id] = None

    def deselect_node(self, node_id: str) -> None:
        self._selected.pop(node_id, None)

    def toggle_node_selection(self, node_id: str) -> None:
        if node_id in self._selected:
            del self._selected[node_id]
        else:
            self._selected[node_id] = None

    def set_selected_node_ids(self, node_ids: List[str]) -> None:
        self._selected = dict.fromkeys(node_ids)

    def clear_selection(self) -> None:
        self._selected.clear()

    def set_project_name(self, name: Optional[str]) -> None:
        self._project_name = name

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def snapshot(self) -> GraphSnapshot:
        """
        Capture nodes, edges, selection and project name.

        Records are immutable, so the snapshot shares them with the live graph.
        """
        return GraphSnapshot(
            nodes=tuple(self._nodes.values()),
            edges=tuple(self._edges.values()),
            selected_node_ids=tuple(self._selected),
            project_name=self._project_name,
        )

    def restore(self, snapshot: GraphSnapshot) -> None:
        """Replace the versioned state with `snapshot` and rebuild the index."""
        self._nodes = {node.id: node for node in snapshot.nodes}
        self._edges = {edge.id: edge for edge in snapshot.edges}
        self._edge_keys = {(e.source, e.target): e.id for e in snapshot.edges}
        self._selected = dict.fromkeys(snapshot.selected_node_ids)
        self._project_name = snapshot.project_name
        self._rebuild_index()

        self._publish(EventType.HISTORY_RESTORED, {
            "node_count": len(self._nodes),
            "edge_count": len(self._edges),
        })

    def _rebuild_index(self) -> None:
        self._graph = rx.PyDiGraph(multigraph=False)
        node_ids = list(self._nodes)
        indices = self._graph.add_nodes_from(node_ids)
        self._node_map = dict(zip(node_ids, indices))
        self._inv_map = dict(zip(indices, node_ids))
        self._graph.add_edges_from([
            (self._node_map[e.source], self._node_map[e.target], e.id)
            for e in self._edges.values()
            if e.source in self._node_map and e.target in self._node_map
        ])

    # =========================================================================
    # PERSISTENCE (Polars-Compatible)
    # =========================================================================

    def to_polars_nodes(self) -> pl.DataFrame:
        """Export nodes to a Polars DataFrame."""
        nodes = list(self._nodes.values())
        return pl.DataFrame({
            "id": [n.id for n in nodes],
            "prompt": [n.prompt for n in nodes],
            "response": [n.response for n in nodes],
            "summary": [n.summary for n in nodes],
            "status": [n.status.value for n in nodes],
            "role": [n.role.value for n in nodes],
            "pinned": [n.is_pinned for n in nodes],
            "x": [float(n.position.x) for n in nodes],
            "y": [float(n.position.y) for n in nodes],
            "parent_count": [len(n.parent_ids) for n in nodes],
            "child_count": [len(n.children_ids) for n in nodes],
            "created_at": [n.created_at for n in nodes],
            "updated_at": [n.updated_at for n in nodes],
        }, schema=_NODE_SCHEMA)

    def to_polars_edges(self) -> pl.DataFrame:
        """Export edges to a Polars DataFrame."""
        edges = list(self._edges.values())
        return pl.DataFrame({
            "id": [e.id for e in edges],
            "source": [e.source for e in edges],
            "target": [e.target for e in edges],
            "created_at": [e.created_at for e in edges],
        }, schema=_EDGE_SCHEMA)

    def save_parquet(self, directory: Path) -> Tuple[Path, Path]:
        """Write nodes.parquet and edges.parquet under `directory`."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        nodes_path = directory / "nodes.parquet"
        edges_path = directory / "edges.parquet"
        self.to_polars_nodes().write_parquet(nodes_path)
        self.to_polars_edges().write_parquet(edges_path)
        return nodes_path, edges_path

    def dump_json(self) -> bytes:
        """Serialize the versioned state to JSON."""
        return serialize_snapshot(self.snapshot())

    def load_json(self, data: bytes) -> None:
        """Replace the versioned state with a `dump_json` document."""
        self.restore(deserialize_snapshot(data))

    # =========================================================================
    # MAGIC METHODS
    # =========================================================================

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"GraphStore(nodes={self.node_count}, edges={self.edge_count})"
