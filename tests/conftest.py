"""
Pytest configuration and shared fixtures for the Forky test suite.

The language model is replaced by FakeLanguageModel: streams are either
scripted (`fake_llm.chunks = [...]`) or held open and fed by the test
(`fake_llm.hold = True`, then `stream.feed(...)` / `finish()` / `fail()`).
"""
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.errors import ProviderUnavailableError
from core.graph_store import GraphStore
from core.llm import ModelHandle, Provider, PROVIDER_LABELS, Usage, provider_for_model, reset_llm
from core.schemas import ChatMessage
from infrastructure.config import EngineConfig, reset_config
from infrastructure.event_bus import EventBus
from infrastructure.persistence import InMemoryRepository, Project
from orchestration.generation import GenerationOrchestrator


# =============================================================================
# FAKE LANGUAGE MODEL
# =============================================================================

_END = object()


class FakeStream:
    """Stream result fed through a queue."""

    def __init__(self, cancel_event: Optional[asyncio.Event] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancel_event = cancel_event
        self.usage = Usage()

    def feed(self, chunk: str) -> None:
        self._queue.put_nowait(chunk)

    def finish(self, tokens: Optional[int] = None) -> None:
        self.usage = Usage(total_tokens=tokens)
        self._queue.put_nowait(_END)

    def fail(self, exc: BaseException) -> None:
        self._queue.put_nowait(exc)

    @property
    def text_stream(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            if self._cancel_event is not None and self._cancel_event.is_set():
                return
            yield item


class FakeLanguageModel:
    """Stand-in for core.llm.LanguageModel with recorded calls."""

    def __init__(self):
        self.chunks: List[str] = ["Hello", " world"]
        self.tokens: Optional[int] = 12
        self.summary: str = "A short summary"
        self.summary_error: Optional[Exception] = None
        self.title: str = "Generated Title"
        self.hold = False
        self.unavailable: Set[Provider] = set()

        self.stream_calls: List[Dict[str, Any]] = []
        self.summary_calls: List[Dict[str, Any]] = []
        self.title_calls: List[Dict[str, Any]] = []
        self.streams: List[FakeStream] = []
        self.opened = asyncio.Event()

    def get_model(self, model_id: str) -> ModelHandle:
        provider = provider_for_model(model_id)
        if provider in self.unavailable:
            raise ProviderUnavailableError(PROVIDER_LABELS[provider])
        return ModelHandle(
            model_id=model_id, provider=provider, litellm_model=model_id, api_key="test-key"
        )

    async def stream_text(
        self,
        model: ModelHandle,
        messages: Sequence[ChatMessage],
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FakeStream:
        self.stream_calls.append({
            "model": model.model_id,
            "messages": list(messages),
            "system": system,
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        })
        stream = FakeStream(cancel_event)
        self.streams.append(stream)
        if not self.hold:
            for chunk in self.chunks:
                stream.feed(chunk)
            stream.finish(self.tokens)
        self.opened.set()
        return stream

    async def complete_text(
        self,
        model: ModelHandle,
        messages: Sequence[ChatMessage],
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
    ) -> str:
        self.summary_calls.append({"model": model.model_id, "messages": list(messages), "system": system})
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary

    async def generate_title(self, prompt: str, response: str, model_id: Optional[str] = None) -> str:
        self.title_calls.append({"prompt": prompt, "response": response, "model": model_id})
        return self.title

    async def wait_opened(self) -> FakeStream:
        await self.opened.wait()
        self.opened.clear()
        return self.streams[-1]


class RecordingBroadcaster:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def emit_to_project(self, project_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.events.append({"project_id": project_id, "event": event_name, "payload": dict(payload)})


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset process-wide singletons before and after each test."""
    reset_config()
    reset_llm()
    yield
    reset_config()
    reset_llm()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def store(event_bus):
    """A GraphStore bound to project proj_1."""
    return GraphStore(event_bus=event_bus, project_id="proj_1")


@pytest.fixture
def repository():
    repo = InMemoryRepository()
    repo.add_project(Project(id="proj_1", name="Untitled project"))
    return repo


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def fake_llm():
    return FakeLanguageModel()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def orchestrator(store, repository, fake_llm, broadcaster, config):
    return GenerationOrchestrator(
        store, repository, llm=fake_llm, broadcaster=broadcaster, config=config
    )
