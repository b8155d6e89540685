"""
FORKY INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML + environment engine configuration
- event_bus: graph change notifications
- logger: mutation event log fed from the event bus
- persistence: the storage collaborator (Repository) and an in-memory one
"""

from infrastructure.event_bus import EventBus, EventType, GraphEvent
from infrastructure.config import EngineConfig, get_config, load_config
from infrastructure.logger import MutationLogger
from infrastructure.persistence import InMemoryRepository, Project, Repository

__all__ = [
    "EventBus",
    "EventType",
    "GraphEvent",
    "EngineConfig",
    "get_config",
    "load_config",
    "MutationLogger",
    "InMemoryRepository",
    "Project",
    "Repository",
]
