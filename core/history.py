"""
FORKY HISTORY - Undo/Redo over GraphStore Snapshots

HistoryManager wraps the undoable GraphStore mutations. Before each one it
pushes a snapshot of the pre-mutation state onto the `past` stack and
clears `future`.

Coalescing:
    A push carries a key ("addNode", "prompt:<node_id>", ...). If the same
    key was pushed less than `coalesce_ms` ago, no new snapshot is taken,
    so a burst of edits to one prompt becomes one undo step.

Versioned state:
    nodes, edges, selection and project name (GraphSnapshot). Project
    settings, build sessions and generation streams are not versioned.

Remote changes (realtime reconciliation) go straight to the GraphStore
and are never recorded here.
"""
import logging
import time
from typing import Callable, List, Optional

from core.graph_store import CHILD_OFFSET, GraphStore
from core.schemas import GraphSnapshot, OrchestrationMetadata, Position


logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_COALESCE_MS = 750


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class HistoryManager:
    """
    Two-stack undo/redo for a GraphStore.

    Usage:
        history = HistoryManager(store)
        node_id = history.add_node()
        history.undo()   # node gone
        history.redo()   # node back
    """

    def __init__(
        self,
        store: GraphStore,
        limit: Optional[int] = None,
        coalesce_ms: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.limit = limit if limit is not None else DEFAULT_HISTORY_LIMIT
        self.coalesce_ms = coalesce_ms if coalesce_ms is not None else DEFAULT_COALESCE_MS
        self._clock = clock or _monotonic_ms

        self.past: List[GraphSnapshot] = []
        self.future: List[GraphSnapshot] = []

        self._last_key: Optional[str] = None
        self._last_at: float = 0.0

    # =========================================================================
    # STACK MANAGEMENT
    # =========================================================================

    def _should_push(self, key: str) -> bool:
        now = self._clock()
        coalesced = key == self._last_key and (now - self._last_at) < self.coalesce_ms
        self._last_key = key
        self._last_at = now
        return not coalesced

    def _record(self, key: str) -> None:
        if not self._should_push(key):
            return
        self.past.append(self.store.snapshot())
        if len(self.past) > self.limit:
            self.past.pop(0)
        self.future.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self.past)

    @property
    def can_redo(self) -> bool:
        return bool(self.future)

    def clear(self) -> None:
        self.past.clear()
        self.future.clear()
        self._last_key = None

    def undo(self) -> bool:
        """Restore the most recent past snapshot. False if there is none."""
        if not self.past:
            return False
        previous = self.past.pop()
        self.future.append(self.store.snapshot())
        with self.store.origin("history"):
            self.store.restore(previous)
        self._last_key = None
        logger.debug(f"Undo ({len(self.past)} left)")
        return True

    def redo(self) -> bool:
        """Re-apply the most recently undone snapshot. False if there is none."""
        if not self.future:
            return False
        following = self.future.pop()
        self.past.append(self.store.snapshot())
        if len(self.past) > self.limit:
            self.past.pop(0)
        with self.store.origin("history"):
            self.store.restore(following)
        self._last_key = None
        logger.debug(f"Redo ({len(self.future)} left)")
        return True

    # =========================================================================
    # UNDOABLE MUTATIONS
    # =========================================================================

    def add_node(self, position: Optional[Position] = None) -> str:
        self._record("addNode")
        return self.store.add_node(position)

    def add_node_with_prompt(self, position: Optional[Position], prompt: str) -> str:
        self._record("addNode")
        return self.store.add_node_with_prompt(position, prompt)

    def delete_node(self, node_id: str) -> bool:
        if not self.store.has_node(node_id):
            return False
        self._record("deleteNode")
        return self.store.delete_node(node_id)

    def add_edge(self, source_id: str, target_id: str) -> Optional[str]:
        # A duplicate is a no-op and must not leave an empty undo step
        if self.store.has_edge(source_id, target_id):
            return None
        if not (self.store.has_node(source_id) and self.store.has_node(target_id)):
            return None
        self._record("addEdge")
        return self.store.add_edge(source_id, target_id)

    def delete_edge(self, edge_id: str) -> bool:
        if self.store.get_edge(edge_id) is None:
            return False
        self._record("deleteEdge")
        return self.store.delete_edge(edge_id)

    def update_node_prompt(self, node_id: str, prompt: str) -> bool:
        node = self.store.find_node(node_id)
        if node is None or node.prompt == prompt:
            return False
        self._record(f"prompt:{node_id}")
        return self.store.update_node_prompt(node_id, prompt)

    def create_child_node(
        self,
        parent_id: str,
        prompt: str,
        orchestration: Optional[OrchestrationMetadata] = None,
    ) -> Optional[str]:
        """
        Child creation recorded as two steps (node, then edge), so a single
        undo removes the link and a second removes the node.
        """
        parent = self.store.find_node(parent_id)
        if parent is None:
            return None
        child_id = self.add_node_with_prompt(parent.position.offset(*CHILD_OFFSET), prompt)
        edge_id = self.add_edge(parent_id, child_id)
        if edge_id is not None and orchestration is not None:
            self.store.update_node(child_id, orchestration=orchestration)
        return child_id

    def __repr__(self) -> str:
        return f"HistoryManager(past={len(self.past)}, future={len(self.future)})"
