"""
FORKY CORE - Central exports for the graph model.

This module provides access to:
- The prompt graph (GraphStore) and its undo history (HistoryManager)
- Context aggregation for a node's ancestry (ContextAggregator)
- Build scope traversal and scoring (compute_scope, HeuristicScorer)
- Error types and record schemas

The language-model facade lives in core.llm and is imported from there
directly, since it depends on infrastructure.config.
"""

from core.errors import (
    EngineError,
    NotFoundError,
    NodeNotFoundError,
    ProjectNotFoundError,
    ValidationError,
    GenerationConflictError,
    ProviderUnavailableError,
    GenerationFailure,
)
from core.schemas import NodeData, EdgeData, GraphSnapshot, Position, ChatMessage
from core.graph_store import GraphStore
from core.history import HistoryManager
from core.context import ContextAggregator
from core.scope import compute_scope
from core.scoring import HeuristicScorer, compute_build_scope_snapshot

__all__ = [
    # Errors
    "EngineError",
    "NotFoundError",
    "NodeNotFoundError",
    "ProjectNotFoundError",
    "ValidationError",
    "GenerationConflictError",
    "ProviderUnavailableError",
    "GenerationFailure",
    # Records
    "NodeData",
    "EdgeData",
    "GraphSnapshot",
    "Position",
    "ChatMessage",
    # Graph
    "GraphStore",
    "HistoryManager",
    "ContextAggregator",
    # Scope
    "compute_scope",
    "HeuristicScorer",
    "compute_build_scope_snapshot",
]
