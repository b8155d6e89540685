"""
FORKY REALTIME - Broadcast Out, Reconcile In

Outbound:
    The orchestrator mirrors `node:streaming` chunk/done events to other
    observers of a project through a Broadcaster. EventBusBroadcaster
    publishes them as NODE_STREAMING events on an EventBus.

Inbound:
    RealtimeReconciler folds remote `node:updated`, `node:created`,
    `node:deleted` and `node:streaming` payloads into a GraphStore through
    the regular mutation API, so the link invariants and the staleness
    cascade apply exactly as for local edits. Payloads use the wire shape
    (camelCase keys: nodeId, parentIds, ...).

Remote changes bypass HistoryManager: they are never undoable locally,
and a local undo does not revert them.
"""
import logging
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Protocol

import msgspec

from core.graph_store import GraphStore
from core.ontology import NodeStatus, normalize_status
from core.schemas import NodeData, OrchestrationMetadata, Position
from infrastructure.event_bus import EventBus, EventType


logger = logging.getLogger(__name__)

REALTIME_ORIGIN = "realtime"


# =============================================================================
# OUTBOUND
# =============================================================================

class Broadcaster(Protocol):
    def emit_to_project(self, project_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        ...


class EventBusBroadcaster:
    """Broadcaster that publishes NODE_STREAMING events on an EventBus."""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus

    def emit_to_project(self, project_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.event_bus.emit(
            EventType.NODE_STREAMING,
            {
                "project_id": project_id,
                "event": event_name,
                "node_id": payload.get("nodeId"),
                "data": dict(payload),
            },
            source="broadcaster",
        )


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_position(value: Any) -> Optional[Position]:
    """A Position from a `{x, y}` mapping of numbers, else None."""
    if not isinstance(value, Mapping):
        return None
    x, y = value.get("x"), value.get("y")
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    if not isinstance(x, Real) or not isinstance(y, Real):
        return None
    return Position(x=float(x), y=float(y))


def normalize_parent_ids(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [item for item in value if isinstance(item, str) and item]


def _normalize_orchestration(value: Any) -> Optional[OrchestrationMetadata]:
    if isinstance(value, OrchestrationMetadata):
        return value
    if not isinstance(value, Mapping):
        return None
    try:
        return msgspec.convert(value, OrchestrationMetadata, strict=False)
    except msgspec.ValidationError as e:
        logger.warning(f"Dropping malformed remote orchestration metadata: {e}")
        return None


# =============================================================================
# INBOUND
# =============================================================================

class RealtimeReconciler:
    """
    Applies remote project events to a GraphStore.

    Usage:
        reconciler = RealtimeReconciler(store)
        reconciler.apply_node_updated({"nodeId": "n1", "updates": {"status": "GENERATING"}})
    """

    def __init__(self, store: GraphStore):
        self.store = store

    def _normalize_updates(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for key in ("prompt", "response"):
            if isinstance(updates.get(key), str):
                fields[key] = updates[key]
        if "summary" in updates and (updates["summary"] is None or isinstance(updates["summary"], str)):
            fields["summary"] = updates["summary"]
        if "status" in updates:
            fields["status"] = normalize_status(updates["status"])
        if "position" in updates:
            position = normalize_position(updates["position"])
            if position is not None:
                fields["position"] = position
        orchestration_raw = updates.get("orchestration", updates.get("metadata"))
        if orchestration_raw is not None:
            orchestration = _normalize_orchestration(orchestration_raw)
            if orchestration is not None:
                fields["orchestration"] = orchestration
        return fields

    def _sync_parents(self, node_id: str, parent_ids: List[str]) -> None:
        """Make the node's incoming edges match `parent_ids` exactly."""
        for edge in self.store.get_all_edges():
            if edge.target == node_id and edge.source not in parent_ids:
                self.store.delete_edge(edge.id)
        for parent_id in parent_ids:
            if self.store.has_edge(parent_id, node_id):
                continue
            if self.store.would_create_cycle(parent_id, node_id):
                logger.warning(f"Skipping remote link {parent_id} -> {node_id}: would create a cycle")
                continue
            self.store.add_edge(parent_id, node_id)

    def apply_node_updated(self, data: Mapping[str, Any]) -> bool:
        """Apply `{nodeId, updates | data}`. False if nothing was applied."""
        node_id = data.get("nodeId")
        if not isinstance(node_id, str):
            return False
        updates = data.get("updates", data.get("data"))
        if not isinstance(updates, Mapping):
            return False

        with self.store.origin(REALTIME_ORIGIN):
            fields = self._normalize_updates(updates)
            applied = self.store.update_node(node_id, **fields) if fields else self.store.has_node(node_id)
            parent_ids = normalize_parent_ids(updates.get("parentIds"))
            if applied and parent_ids is not None:
                self._sync_parents(node_id, parent_ids)
        return applied

    def apply_node_created(self, data: Mapping[str, Any]) -> Optional[str]:
        """
        Apply `{node: {id, prompt, position, status?, parentIds?, ...}}`.

        A known id is updated in place; a new one is inserted and linked to
        its parents. Payloads without a string id/prompt or a numeric
        position are ignored.
        """
        raw = data.get("node")
        if not isinstance(raw, Mapping):
            return None
        node_id, prompt = raw.get("id"), raw.get("prompt")
        position = normalize_position(raw.get("position"))
        if not isinstance(node_id, str) or not isinstance(prompt, str) or position is None:
            return None
        parent_ids = normalize_parent_ids(raw.get("parentIds")) or []

        with self.store.origin(REALTIME_ORIGIN):
            if self.store.has_node(node_id):
                fields = self._normalize_updates(raw)
                fields["status"] = normalize_status(raw.get("status"))
                self.store.update_node(node_id, **fields)
                if parent_ids:
                    self._sync_parents(node_id, parent_ids)
                return node_id

            created_at = raw.get("createdAt") if isinstance(raw.get("createdAt"), str) else None
            extra: Dict[str, Any] = {}
            if created_at:
                extra["created_at"] = created_at
                updated_at = raw.get("updatedAt")
                extra["updated_at"] = updated_at if isinstance(updated_at, str) else created_at
            orchestration = _normalize_orchestration(raw.get("orchestration", raw.get("metadata")))
            if orchestration is not None:
                extra["orchestration"] = orchestration
            node = NodeData.create(
                id=node_id,
                prompt=prompt,
                position=position,
                response=raw.get("response") if isinstance(raw.get("response"), str) else "",
                summary=raw.get("summary") if isinstance(raw.get("summary"), str) else None,
                status=normalize_status(raw.get("status")),
                **extra,
            )
            self.store.insert_node(node)
            self._sync_parents(node_id, parent_ids)
        return node_id

    def apply_node_deleted(self, data: Mapping[str, Any]) -> bool:
        node_id = data.get("nodeId")
        if not isinstance(node_id, str):
            return False
        with self.store.origin(REALTIME_ORIGIN):
            return self.store.delete_node(node_id)

    def apply_node_streaming(self, data: Mapping[str, Any]) -> bool:
        """
        Mirror a remote generation: chunks append to the response and mark
        the node loading; `done` returns it to idle and stores the summary.
        """
        node_id = data.get("nodeId")
        if not isinstance(node_id, str) or not node_id:
            return False
        node = self.store.find_node(node_id)
        if node is None:
            return False

        with self.store.origin(REALTIME_ORIGIN):
            chunk = data.get("chunk")
            if isinstance(chunk, str) and chunk:
                if node.status != NodeStatus.LOADING:
                    self.store.set_node_status(node_id, NodeStatus.LOADING)
                self.store.update_node_response(node_id, f"{node.response}{chunk}")
            if data.get("done") is True:
                self.store.set_node_status(node_id, NodeStatus.IDLE)
                summary = data.get("summary")
                if isinstance(summary, str) and summary.strip():
                    self.store.update_node_summary(node_id, summary)
        return True
