"""
FORKY ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how records are structured),
ontology.py is the Dictionary (the words we can use).

This module defines:
- Enums: the vocabulary (NodeStatus, PersistedStatus, LogicalRole, ...)
- Wire normalization: persisted/remote status strings -> local NodeStatus
- Prompt heuristics: explore/build mode detection and "critical" prompts

Two status vocabularies coexist. The local graph speaks NodeStatus
(idle/loading/error/stale); persistence and the realtime channel speak
PersistedStatus (IDLE/GENERATING/COMPLETED/ERROR/STALE). "generating" on
the wire is "loading" locally, and "completed" collapses to "idle".
"""
from enum import Enum
from typing import Any, Literal, Tuple


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeStatus(str, Enum):
    """Local status of a node in the graph."""
    IDLE = "idle"          # Nothing pending
    LOADING = "loading"    # A generation is streaming into the node
    ERROR = "error"        # Last generation failed
    STALE = "stale"        # An ancestor changed; needs regeneration


class PersistedStatus(str, Enum):
    """Status vocabulary of the persistence collaborator and the wire."""
    IDLE = "IDLE"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    STALE = "STALE"


class LogicalRole(str, Enum):
    """How a node is rendered into language-model context."""
    CONVERSATION = "conversation"
    SOURCE = "source"
    ARTIFACT = "artifact"
    CHALLENGER = "challenger"
    PLAN = "plan"


class OperationMode(str, Enum):
    """Coarse intent of a prompt."""
    EXPLORE = "explore"
    BUILD = "build"


class ModeSource(str, Enum):
    """Who decided a node's mode."""
    AUTO = "auto"
    MANUAL = "manual"


class ScopeDirection(str, Enum):
    """Traversal direction for build scopes."""
    PARENTS = "parents"
    CHILDREN = "children"
    BOTH = "both"


class TodoItemStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"


class SourceKind(str, Enum):
    WEB = "web"
    FILE = "file"
    IMAGE = "image"
    CODEBASE = "codebase"
    MANUAL = "manual"


# =============================================================================
# Type Aliases
# =============================================================================

Tier = Literal[1, 2, 3]
ChallengerIntensity = Literal["soft", "medium", "hard"]

LOWEST_TIER: int = 3


# =============================================================================
# WIRE NORMALIZATION
# =============================================================================

_STATUS_ALIASES = {
    "IDLE": NodeStatus.IDLE,
    "idle": NodeStatus.IDLE,
    "COMPLETED": NodeStatus.IDLE,
    "completed": NodeStatus.IDLE,
    "GENERATING": NodeStatus.LOADING,
    "generating": NodeStatus.LOADING,
    "loading": NodeStatus.LOADING,
    "ERROR": NodeStatus.ERROR,
    "error": NodeStatus.ERROR,
    "STALE": NodeStatus.STALE,
    "stale": NodeStatus.STALE,
}


def normalize_status(value: Any) -> NodeStatus:
    """Map any persisted/remote status string onto the local vocabulary.

    Unknown or missing values fall back to IDLE.
    """
    if isinstance(value, NodeStatus):
        return value
    if isinstance(value, str):
        return _STATUS_ALIASES.get(value, NodeStatus.IDLE)
    return NodeStatus.IDLE


# =============================================================================
# PROMPT HEURISTICS
# =============================================================================

BUILD_SIGNALS: Tuple[str, ...] = (
    "plan",
    "build",
    "create",
    "implement",
    "generate",
    "roadmap",
    "deliverable",
    "mvp",
    "spec",
)

EXPLORE_SIGNALS: Tuple[str, ...] = (
    "explain",
    "why",
    "how",
    "compare",
    "summarize",
    "resume",
)

CRITICAL_SIGNALS: Tuple[str, ...] = (
    "constraint",
    "contrainte",
    "requirement",
    "exigence",
    "non-goal",
    "non goal",
    "risk",
    "risque",
    "decision",
    "must",
    "critical",
    "critique",
)


def detect_mode_from_prompt(prompt: str) -> OperationMode:
    """
    Classify a prompt as explore or build.

    Build signals outrank explore signals only when explore signals are
    absent; when both (or neither) appear, the presence of "plan" alone
    decides build.
    """
    text = prompt.strip().lower()
    if not text:
        return OperationMode.EXPLORE

    has_build = any(signal in text for signal in BUILD_SIGNALS)
    has_explore = any(signal in text for signal in EXPLORE_SIGNALS)

    if has_build and not has_explore:
        return OperationMode.BUILD
    if has_explore and not has_build:
        return OperationMode.EXPLORE
    if "plan" in text:
        return OperationMode.BUILD
    return OperationMode.EXPLORE


def is_critical_prompt(prompt: str) -> bool:
    """True if the prompt mentions a constraint/requirement/risk/decision."""
    text = prompt.strip().lower()
    if not text:
        return False
    return any(signal in text for signal in CRITICAL_SIGNALS)
