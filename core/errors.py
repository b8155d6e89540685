"""
FORKY ERRORS - The Failure Taxonomy

Every failure the engine surfaces belongs to one of four families:

- NotFoundError: an unknown node or project. The operation aborts with no
  partial mutation.
- ValidationError: bad input (unknown model id, empty deliverable, link
  fields passed to a plain update). Rejected before any mutation.
- ProviderUnavailableError: the language-model provider behind a model id
  is not configured. Surfaced to the caller, never silently substituted.
- GenerationFailure: anything that breaks a streaming run after the stream
  was created. Recovered locally by the orchestrator (node status becomes
  "error"); it never reaches the caller that started the run.

Cancellation is not an error and has no exception type.
"""
from typing import Optional


class EngineError(Exception):
    """Base exception for the orchestration engine."""
    pass


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(EngineError):
    """Raised when a referenced entity does not exist."""
    pass


class NodeNotFoundError(NotFoundError):
    """Raised when a node id is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class ProjectNotFoundError(NotFoundError):
    """Raised when a node has no resolvable project."""
    def __init__(self, project_id: Optional[str] = None):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id or '<none>'}")


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(EngineError):
    """Raised when input is rejected before any mutation happens."""
    pass


class GenerationConflictError(ValidationError):
    """Raised when a node already has a live generation stream."""
    def __init__(self, node_id: str, stream_id: str):
        self.node_id = node_id
        self.stream_id = stream_id
        super().__init__(
            f"Node {node_id} is already generating (stream {stream_id})"
        )


# =============================================================================
# PROVIDER / GENERATION
# =============================================================================

class ProviderUnavailableError(EngineError):
    """Raised when the provider behind a model id has no credentials."""
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} not configured")


class GenerationFailure(EngineError):
    """Raised inside a streaming run; always recovered by the orchestrator."""
    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.message = message
        super().__init__(f"Generation failed for {node_id}: {message}")
