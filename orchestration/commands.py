"""
FORKY COMMANDS - Serialized Work Queue

Everything that changes graph state from outside a user edit (a scheduled
generation, a cancel, a cascade, a remote event) goes through one queue
and is applied in arrival order by a single consumer. Generation runs
themselves stream concurrently; only their starts are serialized.

    dispatcher = CommandDispatcher(orchestrator, reconciler)
    dispatcher.submit(Command(type=CommandType.GENERATE, node_id="n1"))
    await dispatcher.drain()
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import msgspec

from core.errors import EngineError, GenerationConflictError
from orchestration.generation import GenerationOrchestrator
from orchestration.realtime import RealtimeReconciler


logger = logging.getLogger(__name__)


class CommandType(str, Enum):
    GENERATE = "generate"
    CANCEL_GENERATION = "cancel_generation"
    CASCADE_REGENERATE = "cascade_regenerate"
    WS_CREATE = "ws_create"
    WS_UPDATE = "ws_update"
    WS_DELETE = "ws_delete"
    WS_STREAMING = "ws_streaming"


class Command(msgspec.Struct, kw_only=True, frozen=True):
    type: CommandType
    node_id: Optional[str] = None
    payload: Dict[str, Any] = msgspec.field(default_factory=dict)
    options: Dict[str, Any] = msgspec.field(default_factory=dict)


class CommandDispatcher:
    """Single consumer for engine commands."""

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        reconciler: Optional[RealtimeReconciler] = None,
    ):
        self.orchestrator = orchestrator
        self.reconciler = reconciler or RealtimeReconciler(orchestrator.store)
        self.queue: asyncio.Queue = asyncio.Queue()

    def submit(self, command: Command) -> None:
        self.queue.put_nowait(command)

    def schedule_generation(self, node_id: str) -> None:
        """Scheduler hook for BuildScopeEngine."""
        self.submit(Command(type=CommandType.GENERATE, node_id=node_id))

    async def run(self) -> None:
        """Consume commands forever (cancel the task to stop)."""
        while True:
            command = await self.queue.get()
            try:
                await self.dispatch(command)
            except EngineError as e:
                logger.warning(f"Command {command.type.value} failed: {e}")
            finally:
                self.queue.task_done()

    async def drain(self) -> int:
        """Process queued commands until the queue is empty. Returns how many ran."""
        processed = 0
        while not self.queue.empty():
            command = self.queue.get_nowait()
            try:
                await self.dispatch(command)
            except EngineError as e:
                logger.warning(f"Command {command.type.value} failed: {e}")
            finally:
                self.queue.task_done()
            processed += 1
        return processed

    async def dispatch(self, command: Command) -> Any:
        handler = getattr(self, f"_handle_{command.type.value}")
        return await handler(command)

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _handle_generate(self, command: Command) -> Optional[str]:
        node = self.orchestrator.store.find_node(command.node_id)
        if node is None or not node.prompt.strip():
            logger.debug(f"Skipping generation of {command.node_id}: no prompt")
            return None
        try:
            return await self.orchestrator.start_generation(command.node_id, **command.options)
        except GenerationConflictError as e:
            logger.info(str(e))
            return None

    async def _handle_cancel_generation(self, command: Command) -> bool:
        return await self.orchestrator.cancel(command.node_id)

    async def _handle_cascade_regenerate(self, command: Command) -> List[str]:
        """Mark descendants stale, then regenerate them one after another."""
        affected = await self.orchestrator.cascade(command.node_id)
        for node_id in affected:
            node = self.orchestrator.store.find_node(node_id)
            if node is None or not node.prompt.strip():
                continue
            await self.orchestrator.generate_and_wait(node_id, cascade=True, **command.options)
        return affected

    async def _handle_ws_create(self, command: Command) -> Optional[str]:
        return self.reconciler.apply_node_created(command.payload)

    async def _handle_ws_update(self, command: Command) -> bool:
        return self.reconciler.apply_node_updated(command.payload)

    async def _handle_ws_delete(self, command: Command) -> bool:
        return self.reconciler.apply_node_deleted(command.payload)

    async def _handle_ws_streaming(self, command: Command) -> bool:
        return self.reconciler.apply_node_streaming(command.payload)
