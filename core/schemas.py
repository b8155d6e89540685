"""
FORKY SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines the records that flow through the engine:
- Position: presentation-only 2D point
- OrchestrationMetadata: role, pin, mode and role-specific payloads
- NodeData / EdgeData: the graph records owned by GraphStore
- GraphSnapshot: the versioned part of the graph state
- ChatMessage: one turn of language-model context
- Serialization helpers for snapshots, export and IPC

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. FROZEN: Records are immutable. GraphStore is the only writer and
   replaces a record (msgspec.structs.replace) instead of editing it, so
   no caller can break link consistency by poking at a field.
4. SHARED SNAPSHOTS: immutability makes a snapshot a copy of the id maps;
   records are shared between the live graph and its history.
"""
import msgspec
from typing import Optional, Dict, Any, List, Iterable, Tuple
from datetime import datetime, timezone
import uuid

from core.ontology import (
    NodeStatus,
    LogicalRole,
    OperationMode,
    ModeSource,
    TodoItemStatus,
    Tier,
    ChallengerIntensity,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id(prefix: str = "") -> str:
    """Generate a new id, optionally prefixed (e.g. ``node_3f2a...``)."""
    token = uuid.uuid4().hex
    return f"{prefix}_{token}" if prefix else token


def scope_fingerprint(node_ids: Iterable[str]) -> str:
    """
    Deterministic fingerprint of the nodes that back a generated version.

    The fingerprint is the sorted, pipe-joined id list, so the same scope
    always yields the same string regardless of selection order.
    """
    return "|".join(sorted(set(node_ids)))


# =============================================================================
# ORCHESTRATION PAYLOADS
# =============================================================================

class Position(msgspec.Struct, kw_only=True, frozen=True):
    """Canvas position. Carried for presentation only."""
    x: float = 0.0
    y: float = 0.0

    def offset(self, dx: float, dy: float) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


class ScoreExplanation(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    heuristic_score: Optional[float] = None
    adjusted_score: Optional[float] = None
    delta: Optional[float] = None
    reason: Optional[str] = None


class PlanVersion(msgspec.Struct, kw_only=True, frozen=True):
    version: int
    content: str = ""
    created_at: str = msgspec.field(default_factory=now_utc)
    scope_hash: Optional[str] = None


class PlanNodeData(msgspec.Struct, kw_only=True, frozen=True):
    """Plan payload: versioned content plus the scope that produced it."""
    versions: Tuple[PlanVersion, ...] = ()
    active_version: int = 1
    is_stale: bool = False
    deliverable: Optional[str] = None
    scope_hash: Optional[str] = None
    build_root_node_id: Optional[str] = None

    def max_version(self) -> int:
        return max((v.version for v in self.versions), default=0)

    def get_version(self, version: int) -> Optional[PlanVersion]:
        for v in self.versions:
            if v.version == version:
                return v
        return None

    def with_version_content(self, version: int, content: str) -> "PlanNodeData":
        """Set a version's content, appending the version if it is missing."""
        if self.get_version(version) is None:
            versions = self.versions + (PlanVersion(version=version, content=content),)
        else:
            versions = tuple(
                msgspec.structs.replace(v, content=content) if v.version == version else v
                for v in self.versions
            )
        return msgspec.structs.replace(self, versions=versions)


class SourceProvenance(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    kind: str
    uri: str
    title: Optional[str] = None
    retrieved_at: Optional[str] = None
    sha256: Optional[str] = None
    mime_type: Optional[str] = None


class SourceExcerpt(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    id: str
    text: str
    start_line: Optional[int] = None
    end_line: Optional[int] = None


class SourceNodeData(msgspec.Struct, kw_only=True, frozen=True):
    provenance: SourceProvenance
    excerpts: Tuple[SourceExcerpt, ...] = ()
    summary: Optional[str] = None


class ArtifactNodeData(msgspec.Struct, kw_only=True, frozen=True):
    is_final: bool = False


class ChallengerNodeData(msgspec.Struct, kw_only=True, frozen=True):
    intensity: ChallengerIntensity = "medium"


class TodoItem(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    id: str
    title: str
    status: TodoItemStatus = TodoItemStatus.TODO
    notes: Optional[str] = None


class TodoNodeData(msgspec.Struct, kw_only=True, frozen=True):
    items: Tuple[TodoItem, ...] = ()
    derived_from_plan_node_id: Optional[str] = None


class OrchestrationMetadata(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    """
    Role-level metadata carried by every node.

    `logical_role` decides how the node is rendered into context; the
    role-specific payloads (plan, source, todo, ...) are only present on
    nodes that play that role.
    """
    logical_role: Optional[LogicalRole] = None
    mode: Optional[OperationMode] = None
    mode_source: Optional[ModeSource] = None
    pinned: bool = False
    score: Optional[float] = None
    tier: Optional[Tier] = None
    score_explanation: Optional[ScoreExplanation] = None
    plan: Optional[PlanNodeData] = None
    challenger: Optional[ChallengerNodeData] = None
    source: Optional[SourceNodeData] = None
    artifact: Optional[ArtifactNodeData] = None
    todo: Optional[TodoNodeData] = None
    last_error: Optional[str] = None

    @property
    def role(self) -> LogicalRole:
        """Effective role (conversation when unset)."""
        return self.logical_role or LogicalRole.CONVERSATION

    def patched(self, **changes: Any) -> "OrchestrationMetadata":
        """Return a copy with the given fields replaced."""
        return msgspec.structs.replace(self, **changes)


class GenerationSettings(msgspec.Struct, kw_only=True, frozen=True, omit_defaults=True):
    """Model settings recorded on a node when a generation starts."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    tokens: Optional[int] = None


# =============================================================================
# NODE DATA (The Core Graph Payload)
# =============================================================================

class NodeData(msgspec.Struct, kw_only=True, frozen=True):
    """
    A prompt/response node of the graph.

    Link tuples (`parent_ids`, `children_ids`) are owned by GraphStore and
    kept consistent with the edge mapping.
    """
    # === Identity ===
    id: str

    # === Content ===
    prompt: str = ""
    response: str = ""
    summary: Optional[str] = None
    status: NodeStatus = NodeStatus.IDLE

    # === Presentation ===
    position: Position = msgspec.field(default_factory=Position)

    # === Links ===
    parent_ids: Tuple[str, ...] = ()
    children_ids: Tuple[str, ...] = ()

    # === Metadata ===
    orchestration: OrchestrationMetadata = msgspec.field(default_factory=OrchestrationMetadata)
    generation: GenerationSettings = msgspec.field(default_factory=GenerationSettings)

    # === Provenance ===
    created_at: str = msgspec.field(default_factory=now_utc)
    updated_at: str = msgspec.field(default_factory=now_utc)

    @property
    def role(self) -> LogicalRole:
        return self.orchestration.role

    @property
    def is_pinned(self) -> bool:
        return self.orchestration.pinned

    def evolve(self, **changes: Any) -> "NodeData":
        """Copy with the given fields replaced and `updated_at` refreshed."""
        changes.setdefault("updated_at", now_utc())
        return msgspec.structs.replace(self, **changes)

    @classmethod
    def create(
        cls,
        prompt: str = "",
        position: Optional[Position] = None,
        **kwargs
    ) -> "NodeData":
        """Factory method to create a new NodeData with optional custom ID."""
        node_id = kwargs.pop("id", None) or generate_id("node")
        timestamp = now_utc()
        kwargs.setdefault("created_at", timestamp)
        kwargs.setdefault("updated_at", timestamp)
        return cls(
            id=node_id,
            prompt=prompt,
            position=position or Position(),
            **kwargs
        )


# =============================================================================
# EDGE DATA (The Graph Relationship Payload)
# =============================================================================

class EdgeData(msgspec.Struct, kw_only=True, frozen=True):
    """A directed parent -> child link. Owned exclusively by GraphStore."""
    id: str
    source: str
    target: str
    created_at: str = msgspec.field(default_factory=now_utc)

    @classmethod
    def create(cls, source: str, target: str, **kwargs) -> "EdgeData":
        """Factory method to create an EdgeData."""
        edge_id = kwargs.pop("id", None) or generate_id("edge")
        return cls(id=edge_id, source=source, target=target, **kwargs)


# =============================================================================
# GRAPH SNAPSHOT
# =============================================================================

class GraphSnapshot(msgspec.Struct, kw_only=True, frozen=True):
    """
    The versioned part of the graph state.

    Settings, viewport and build sessions are deliberately not part of it.
    """
    nodes: Tuple[NodeData, ...] = ()
    edges: Tuple[EdgeData, ...] = ()
    selected_node_ids: Tuple[str, ...] = ()
    project_name: Optional[str] = None

    def encode(self) -> bytes:
        """Canonical msgpack bytes, for equality checks and storage."""
        return _msgpack_encoder.encode(self)

    @classmethod
    def decode(cls, data: bytes) -> "GraphSnapshot":
        return _msgpack_snapshot_decoder.decode(data)


# =============================================================================
# CONTEXT MESSAGES
# =============================================================================

class ChatMessage(msgspec.Struct, kw_only=True, frozen=True):
    """One turn of the linear context sent to the language model."""
    role: str  # "system" | "user" | "assistant"
    content: str

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application

_json_encoder = msgspec.json.Encoder()
_node_decoder = msgspec.json.Decoder(type=NodeData)
_snapshot_json_decoder = msgspec.json.Decoder(type=GraphSnapshot)

_msgpack_encoder = msgspec.msgpack.Encoder()
_msgpack_snapshot_decoder = msgspec.msgpack.Decoder(type=GraphSnapshot)


def serialize_node(node: NodeData) -> bytes:
    """Serialize a NodeData to JSON bytes."""
    return _json_encoder.encode(node)


def deserialize_node(data: bytes) -> NodeData:
    """Deserialize JSON bytes to a NodeData."""
    return _node_decoder.decode(data)


def serialize_snapshot(snapshot: GraphSnapshot) -> bytes:
    """Serialize a whole graph to JSON bytes (export format)."""
    return _json_encoder.encode(snapshot)


def deserialize_snapshot(data: bytes) -> GraphSnapshot:
    return _snapshot_json_decoder.decode(data)


def to_builtins(value: Any) -> Any:
    """Convert a struct (or container of structs) to plain Python values."""
    return msgspec.to_builtins(value)
