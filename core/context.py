"""
FORKY CONTEXT - Ancestry to Linear Prompt

ContextAggregator turns a node's ancestry into the ordered message list
sent to the language model.

Resolution rules:
- One parent: the parent's context comes first, then the node itself.
- Several parents: each parent's context is flattened into a
  "User: ... / Assistant: ..." transcript and emitted as one synthetic
  user message headed `--- Context <label> ---`, in stored parent order.
- Leaf rendering by logical role:
    source    -> structured SOURCE block (header, summary, excerpts)
    artifact  -> full response if pinned, else summary, else a preview
    otherwise -> prompt as a user turn, response as an assistant turn
- The target's own prompt is always the final user turn.

Ancestry is walked with a recursion-path guard: a cycle (which the store
only prevents when callers check `would_create_cycle`) truncates that
branch with a warning instead of recursing without bound.
"""
import logging
from typing import FrozenSet, List, Optional

from core.graph_store import GraphStore
from core.ontology import LogicalRole
from core.schemas import ChatMessage, NodeData


logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT_PREVIEW_CHARS = 600
BRANCH_LABEL_CHARS = 30


class ContextAggregator:
    """
    Builds model context from a GraphStore.

    Usage:
        aggregator = ContextAggregator(store)
        messages = aggregator.build_messages(node_id)
        llm_messages = [m.as_dict() for m in messages]
    """

    def __init__(self, store: GraphStore, artifact_preview_chars: Optional[int] = None):
        self.store = store
        self.artifact_preview_chars = (
            artifact_preview_chars
            if artifact_preview_chars is not None
            else DEFAULT_ARTIFACT_PREVIEW_CHARS
        )

    def build_messages(self, node_id: str) -> List[ChatMessage]:
        """
        Full context for generating `node_id`: ancestry, then its prompt.

        Raises:
            NodeNotFoundError: If the node is unknown
        """
        node = self.store.get_node(node_id)
        messages = self._ancestry(node, frozenset({node.id}))
        messages.append(ChatMessage(role="user", content=node.prompt))
        return messages

    # =========================================================================
    # RECURSION
    # =========================================================================

    def _ancestry(self, node: NodeData, path: FrozenSet[str]) -> List[ChatMessage]:
        parent_ids = node.parent_ids
        if not parent_ids:
            return []

        if len(parent_ids) == 1:
            return self._resolve(parent_ids[0], path)

        messages: List[ChatMessage] = []
        for i, parent_id in enumerate(parent_ids):
            branch = self._resolve(parent_id, path)
            parent = self.store.find_node(parent_id)
            label = (parent.prompt[:BRANCH_LABEL_CHARS] if parent else "") or f"Branch {i + 1}"
            messages.append(ChatMessage(
                role="user",
                content=f"--- Context {label} ---\n{render_transcript(branch)}",
            ))
        return messages

    def _resolve(self, node_id: str, path: FrozenSet[str]) -> List[ChatMessage]:
        """Context of an ancestor: its own ancestry followed by its rendering."""
        if node_id in path:
            logger.warning(f"Cycle in ancestry at {node_id}; truncating branch")
            return []
        node = self.store.find_node(node_id)
        if node is None:
            return []
        inner = path | {node_id}
        return self._ancestry(node, inner) + self.render_node(node)

    # =========================================================================
    # LEAF RENDERING
    # =========================================================================

    def render_node(self, node: NodeData) -> List[ChatMessage]:
        """Messages contributed by one ancestor, according to its role."""
        role = node.role
        if role == LogicalRole.SOURCE:
            return [ChatMessage(role="user", content=render_source(node))]
        if role == LogicalRole.ARTIFACT:
            return [ChatMessage(
                role="user",
                content=render_artifact(node, self.artifact_preview_chars),
            )]

        messages: List[ChatMessage] = []
        if node.prompt:
            messages.append(ChatMessage(role="user", content=node.prompt))
        if node.response:
            messages.append(ChatMessage(role="assistant", content=node.response))
        return messages


def render_transcript(messages: List[ChatMessage]) -> str:
    lines = []
    for message in messages:
        speaker = "User" if message.role == "user" else "Assistant"
        lines.append(f"{speaker}: {message.content}")
    return "\n\n".join(lines)


def render_source(node: NodeData) -> str:
    """SOURCE block: header, optional summary, excerpt list."""
    source = node.orchestration.source
    header = ["SOURCE"]
    if source and source.provenance.title:
        header.append(f"title: {source.provenance.title}")
    if source and source.provenance.kind:
        header.append(f"kind: {source.provenance.kind}")
    if source and source.provenance.uri:
        header.append(f"uri: {source.provenance.uri}")
    else:
        header.append(f"nodeId: {node.id}")

    parts = ["\n".join(header)]

    summary = source.summary if source and source.summary is not None else node.summary
    if summary:
        parts.append(f"summary: {summary}")

    lines = []
    if source:
        for excerpt in source.excerpts:
            if not excerpt.text:
                continue
            if excerpt.start_line is not None and excerpt.end_line is not None:
                lines.append(f"- {excerpt.text} (L{excerpt.start_line}-L{excerpt.end_line})")
            else:
                lines.append(f"- {excerpt.text}")
    if lines:
        parts.append("excerpts:\n" + "\n".join(lines))

    return "\n\n".join(parts)


def render_artifact(node: NodeData, preview_chars: int = DEFAULT_ARTIFACT_PREVIEW_CHARS) -> str:
    lines = [f"ARTIFACT nodeId: {node.id}"]
    if node.is_pinned and node.response:
        lines += ["content:", node.response]
    elif node.summary:
        lines += ["summary:", node.summary]
    elif node.response:
        lines += ["preview:", node.response[:preview_chars]]
    return "\n".join(lines)
