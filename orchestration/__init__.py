"""
FORKY ORCHESTRATION - Generation and Build Workflows

- generation: streaming generation state machine
- streams: per-generation event channels
- build_session: scope curation and derived plan/artifact/todo nodes
- realtime: broadcaster and remote event reconciliation
- commands: serialized command queue
"""

from orchestration.streams import GenerationEvent, StreamChannel, StreamRegistry, iter_frames
from orchestration.generation import GenerationOrchestrator
from orchestration.build_session import BuildScopeEngine, BuildSession
from orchestration.realtime import Broadcaster, EventBusBroadcaster, RealtimeReconciler
from orchestration.commands import Command, CommandDispatcher, CommandType

__all__ = [
    "GenerationEvent",
    "StreamChannel",
    "StreamRegistry",
    "iter_frames",
    "GenerationOrchestrator",
    "BuildScopeEngine",
    "BuildSession",
    "Broadcaster",
    "EventBusBroadcaster",
    "RealtimeReconciler",
    "Command",
    "CommandDispatcher",
    "CommandType",
]
