"""
FORKY GENERATION - The Streaming State Machine

GenerationOrchestrator owns one streaming session per generating node and
drives the language-model call for it.

Lifecycle of a run:

    start_generation(node_id)
        pre-flight (raises to the caller, nothing mutated):
            node exists            -> NodeNotFoundError
            store has a project    -> ValidationError
            project is persisted   -> ProjectNotFoundError
            model id / provider    -> ValidationError / ProviderUnavailableError
            no live stream         -> GenerationConflictError
        stream created, node persisted GENERATING, local node LOADING
        run scheduled as a task; stream id returned immediately

    _run (background task)
        context (ContextAggregator) + project system prompt
        for each delta: accumulate, progress, emit on channel + broadcast
        summary (best-effort second call)
        persist COMPLETED, update local view, emit done, release stream

    cancel(node_id)
        set the cancel event, release the stream, persist IDLE, restore the
        pre-generation local response. No done event, nothing persisted.

    failure inside the run
        persist ERROR (best-effort), local status error with the message in
        orchestration.last_error, done event with null summary/tokens,
        release stream. Never raised to the caller of start_generation.
"""
import asyncio
import logging
import math
import re
import time
from typing import Any, Dict, List, Optional, Set

import msgspec

from core.context import ContextAggregator
from core.errors import (
    GenerationConflictError,
    GenerationFailure,
    NotFoundError,
    ProjectNotFoundError,
    ValidationError,
)
from core.graph_store import GraphStore
from core.llm import LanguageModel, ModelHandle, get_llm
from core.ontology import NodeStatus, PersistedStatus, TodoItemStatus
from core.schemas import (
    ChatMessage,
    GenerationSettings,
    NodeData,
    OrchestrationMetadata,
    TodoItem,
    now_utc,
)
from infrastructure.config import EngineConfig, get_config
from infrastructure.persistence import NodeUpdate, Project, Repository
from orchestration.realtime import Broadcaster
from orchestration.streams import GenerationEvent, StreamChannel, StreamRegistry, StreamSession


logger = logging.getLogger(__name__)

STREAMING_EVENT = "node:streaming"
CHUNKS_PER_TOKEN_BUDGET = 20
MAX_TODO_ITEMS = 50

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert in synthesis. Create an ultra-concise summary (1 sentence) in English."
)

_TODO_LINE = re.compile(r"^-\s*\[( |x|X)\]\s+(.+)$")


def parse_todo_items(markdown: str) -> List[TodoItem]:
    """Checklist lines (`- [ ] ...` / `- [x] ...`) as todo items, at most 50."""
    items: List[TodoItem] = []
    stamp = int(time.time() * 1000)
    for line in markdown.split("\n"):
        match = _TODO_LINE.match(line.strip())
        if not match:
            continue
        title = match.group(2).strip()
        if not title:
            continue
        items.append(TodoItem(
            id=f"todo_{stamp}_{len(items)}",
            title=title,
            status=TodoItemStatus.DONE if match.group(1).lower() == "x" else TodoItemStatus.TODO,
        ))
        if len(items) >= MAX_TODO_ITEMS:
            break
    return items


def estimate_progress(emitted: int, max_tokens: int) -> float:
    """Monotonic chunk-count heuristic, capped below 1."""
    budget = max(1, math.ceil(max_tokens / CHUNKS_PER_TOKEN_BUDGET))
    return min(0.99, emitted / budget)


class GenerationOrchestrator:
    """
    Starts, streams, cancels and completes node generations.

    Usage:
        orchestrator = GenerationOrchestrator(store, repository)
        stream_id = await orchestrator.start_generation(node_id, model="gpt-4o-mini")
        async for event in orchestrator.get_stream(stream_id).events():
            ...
    """

    def __init__(
        self,
        store: GraphStore,
        repository: Repository,
        llm: Optional[LanguageModel] = None,
        broadcaster: Optional[Broadcaster] = None,
        config: Optional[EngineConfig] = None,
        aggregator: Optional[ContextAggregator] = None,
    ):
        self.store = store
        self.repository = repository
        self.llm = llm or get_llm()
        self.broadcaster = broadcaster
        self.config = config or get_config()
        self.aggregator = aggregator or ContextAggregator(
            store, artifact_preview_chars=self.config.artifact_preview_chars
        )
        self.streams = StreamRegistry()
        self._runs: Set[asyncio.Task] = set()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start_generation(
        self,
        node_id: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cascade: bool = False,
    ) -> str:
        """
        Validate, open a stream and schedule the run. Returns the stream id.

        Raises:
            NodeNotFoundError, ValidationError, ProjectNotFoundError,
            ProviderUnavailableError, GenerationConflictError
        """
        node = self.store.get_node(node_id)
        project_id = self.store.project_id
        if not project_id:
            raise ValidationError(f"Node {node_id} has no project")
        project = await self.repository.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)

        model_id = model or self.config.default_model
        handle = self.llm.get_model(model_id)
        temperature = self.config.temperature if temperature is None else temperature
        max_tokens = max_tokens or self.config.max_tokens

        existing = self.streams.find_stream_id_by_node_id(node_id)
        if existing is not None:
            raise GenerationConflictError(node_id, existing)

        session = self.streams.create(node_id)
        session.previous_response = node.response
        try:
            if await self.repository.get_node(node_id) is None:
                await self.repository.create_node_with_edges(project_id, node, node.parent_ids)
            await self.repository.update_node(node_id, NodeUpdate(
                status=PersistedStatus.GENERATING,
                model=model_id,
                temperature=temperature,
            ))
        except Exception:
            self.streams.complete(session.stream_id)
            raise

        self.store.update_node(
            node_id,
            status=NodeStatus.LOADING,
            response="",
            generation=GenerationSettings(model=model_id, temperature=temperature),
        )

        session.task = asyncio.create_task(self._run(
            session, handle, project, temperature, max_tokens, cascade
        ))
        self._runs.add(session.task)
        session.task.add_done_callback(self._runs.discard)
        logger.info(f"Generation started for {node_id} on {model_id} ({session.stream_id})")
        return session.stream_id

    def get_stream(self, stream_id: str) -> Optional[StreamChannel]:
        """The live channel, or None once the stream is unknown or completed."""
        return self.streams.get(stream_id)

    async def cancel(self, node_id: str) -> bool:
        """
        Abort the node's live generation. Returns False if none was live.

        The node returns to idle with its pre-generation response.
        """
        stream_id = self.streams.find_stream_id_by_node_id(node_id)
        if stream_id is None:
            return False

        session = self.streams.get_session(stream_id)
        session.cancel_event.set()
        self.streams.complete(stream_id)
        if session.task is not None and not session.task.done():
            session.task.cancel()

        try:
            await self.repository.update_node(node_id, NodeUpdate(status=PersistedStatus.IDLE))
        except Exception as e:
            logger.warning(f"Could not persist cancellation of {node_id}: {e}", exc_info=True)

        self.store.update_node(
            node_id,
            status=NodeStatus.IDLE,
            response=session.previous_response,
        )
        logger.info(f"Generation cancelled for {node_id}")
        return True

    async def generate_and_wait(self, node_id: str, **options: Any) -> Optional[str]:
        """Start a generation and wait until its stream is released."""
        stream_id = await self.start_generation(node_id, **options)
        session = self.streams.get_session(stream_id)
        if session is None:
            return stream_id
        await session.channel.wait_closed()
        return stream_id

    async def wait_idle(self) -> None:
        """Wait until every scheduled run, including its post-completion work, has ended."""
        while self._runs:
            await asyncio.wait(list(self._runs))

    async def cascade(self, node_id: str) -> List[str]:
        """
        Mark all non-generating descendants stale, locally and in storage.

        Returns the affected ids in breadth-first order.

        Raises:
            NodeNotFoundError: If the root is unknown
        """
        affected = self.store.cascade_stale(node_id)
        for descendant_id in affected:
            try:
                await self.repository.update_node(
                    descendant_id, NodeUpdate(status=PersistedStatus.STALE)
                )
            except NotFoundError:
                logger.debug(f"Stale descendant {descendant_id} is not persisted yet")
        return affected

    async def summarize(self, handle: ModelHandle, content: str) -> Optional[str]:
        """One-sentence summary; None when empty or when the call fails."""
        if not content.strip():
            return None
        try:
            summary = await self.llm.complete_text(
                handle,
                [ChatMessage(role="user", content=content)],
                system=SUMMARY_SYSTEM_PROMPT,
                temperature=self.config.summary_temperature,
                max_output_tokens=self.config.summary_max_tokens,
            )
        except Exception as e:
            logger.warning(f"Summary generation failed: {e}", exc_info=True)
            return None
        summary = summary.strip()
        return summary or None

    # =========================================================================
    # RUN
    # =========================================================================

    def _broadcast(self, project_id: str, payload: Dict[str, Any]) -> None:
        if self.broadcaster is None:
            return
        payload["timestamp"] = now_utc()
        self.broadcaster.emit_to_project(project_id, STREAMING_EVENT, payload)

    async def _run(
        self,
        session: StreamSession,
        handle: ModelHandle,
        project: Project,
        temperature: float,
        max_tokens: int,
        cascade: bool,
    ) -> None:
        node_id = session.node_id
        stream_id = session.stream_id
        cancelled = session.cancel_event.is_set

        try:
            messages = self.aggregator.build_messages(node_id)
            system = project.system_prompt or self.store.system_prompt or None

            result = await self.llm.stream_text(
                handle,
                messages,
                system=system,
                temperature=temperature,
                max_output_tokens=max_tokens,
                cancel_event=session.cancel_event,
            )

            parts: List[str] = []
            async for delta in result.text_stream:
                if cancelled():
                    return
                text = str(delta)
                parts.append(text)
                progress = estimate_progress(len(parts), max_tokens)

                self.streams.emit(stream_id, GenerationEvent(chunk=text, progress=progress))
                self._broadcast(project.id, {"nodeId": node_id, "chunk": text, "progress": progress})

                current = self.store.find_node(node_id)
                if current is not None:
                    self.store.update_node_response(node_id, current.response + text)

            if cancelled():
                return

            response = "".join(parts)
            tokens = result.usage.total_tokens
            summary = await self.summarize(handle, response)
            if cancelled():
                return

            await self.repository.update_node(node_id, NodeUpdate(
                response=response,
                summary=summary,
                status=PersistedStatus.COMPLETED,
                model=handle.model_id,
                tokens=tokens,
            ))

            self._complete_locally(node_id, response, summary, tokens, cascade)

            done = GenerationEvent(done=True, summary=summary, tokens=tokens)
            self.streams.emit(stream_id, done)
            self._broadcast(project.id, {
                "nodeId": node_id, "done": True, "summary": summary, "tokens": tokens,
            })
            self.streams.complete(stream_id)
            logger.info(f"Generation completed for {node_id} ({tokens} tokens)")

            await self._maybe_rename_project(project, node_id, response, handle.model_id)

        except asyncio.CancelledError:
            self.streams.complete(stream_id)
            raise
        except Exception as e:
            if cancelled():
                logger.debug(f"Ignoring error after cancellation of {node_id}: {e}")
                return
            failure = GenerationFailure(node_id, str(e) or type(e).__name__)
            logger.error(str(failure), exc_info=True)
            await self._fail(session, project.id, failure)

    def _complete_locally(
        self,
        node_id: str,
        response: str,
        summary: Optional[str],
        tokens: Optional[int],
        cascade: bool,
    ) -> None:
        node = self.store.find_node(node_id)
        if node is None:
            logger.warning(f"Node {node_id} vanished before completion")
            return

        changes: Dict[str, Any] = {
            "status": NodeStatus.IDLE,
            "response": response,
            "generation": GenerationSettings(
                model=node.generation.model,
                temperature=node.generation.temperature,
                tokens=tokens,
            ),
            "orchestration": self._completed_orchestration(node, response),
        }
        if summary:
            changes["summary"] = summary
        self.store.update_node(node_id, **changes)

        if not cascade:
            self.store.mark_descendants_stale(node_id)

    @staticmethod
    def _completed_orchestration(node: NodeData, response: str) -> OrchestrationMetadata:
        orchestration = node.orchestration.patched(last_error=None)
        plan = orchestration.plan
        if plan is not None:
            plan = plan.with_version_content(plan.active_version, response)
            orchestration = orchestration.patched(
                plan=msgspec.structs.replace(plan, is_stale=False)
            )
        if orchestration.todo is not None:
            orchestration = orchestration.patched(todo=msgspec.structs.replace(
                orchestration.todo, items=tuple(parse_todo_items(response))
            ))
        return orchestration

    async def _fail(self, session: StreamSession, project_id: str, failure: GenerationFailure) -> None:
        node_id = session.node_id
        try:
            await self.repository.update_node(node_id, NodeUpdate(status=PersistedStatus.ERROR))
        except Exception as e:
            logger.warning(f"Could not persist error status of {node_id}: {e}", exc_info=True)

        node = self.store.find_node(node_id)
        if node is not None:
            self.store.update_node(
                node_id,
                status=NodeStatus.ERROR,
                orchestration=node.orchestration.patched(last_error=failure.message),
            )

        self.streams.emit(session.stream_id, GenerationEvent(done=True, summary=None, tokens=None))
        self._broadcast(project_id, {"nodeId": node_id, "done": True, "summary": None, "tokens": None})
        self.streams.complete(session.stream_id)

    async def _maybe_rename_project(
        self,
        project: Project,
        node_id: str,
        response: str,
        model_id: str,
    ) -> None:
        """Give an untitled project a generated title (best-effort)."""
        if (self.store.project_name or project.name) not in (None, "", self.config.untitled_project_name):
            return
        node = self.store.find_node(node_id)
        if node is None or not node.prompt:
            return
        try:
            title = await self.llm.generate_title(node.prompt, response, model_id)
            if not title:
                return
            await self.repository.rename_project(project.id, title)
        except Exception as e:
            logger.warning(f"Project title generation failed: {e}", exc_info=True)
            return
        self.store.set_project_name(title)
        logger.info(f"Project {project.id} renamed to {title!r}")
