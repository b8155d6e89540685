"""
FORKY STREAMS - Per-Generation Event Channels

Each generation run owns one StreamSession in the StreamRegistry:

    StreamSession
      stream_id     "stream_<16 hex>"
      node_id       the node being generated
      channel       StreamChannel (pub/sub of GenerationEvent)
      cancel_event  asyncio.Event, set to abort the run
      created_at

A StreamChannel replays what was already emitted to late subscribers, so
a caller that opens the stream after the first chunk still sees the full
text. Completing a session closes its channel and drops it from the
registry; `get()` then returns None.

Transport:
    iter_frames(channel) yields one msgspec JSON frame per event
    (`{"chunk": ..., "progress": ...}` / `{"done": true, ...}`), unset keys
    omitted and nulls preserved, ending after the `done` frame.
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import msgspec

from core.schemas import now_utc


logger = logging.getLogger(__name__)


class GenerationEvent(msgspec.Struct, kw_only=True, omit_defaults=True):
    """One frame of a generation stream."""
    chunk: Any = msgspec.UNSET
    progress: Any = msgspec.UNSET
    done: Any = msgspec.UNSET
    summary: Any = msgspec.UNSET
    tokens: Any = msgspec.UNSET

    @property
    def is_done(self) -> bool:
        return self.done is True


_frame_encoder = msgspec.json.Encoder()
_CLOSED = object()


# =============================================================================
# CHANNEL
# =============================================================================

class StreamChannel:
    """Replaying multi-subscriber channel of GenerationEvents."""

    def __init__(self):
        self._history: List[GenerationEvent] = []
        self._queues: Set[asyncio.Queue] = set()
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def history(self) -> List[GenerationEvent]:
        return list(self._history)

    def emit(self, event: GenerationEvent) -> None:
        if self.closed:
            logger.debug("Emit on closed channel ignored")
            return
        self._history.append(event)
        for queue in self._queues:
            queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Past events, then live ones, until the channel closes."""
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        if self.closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.add(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._queues.discard(queue)

    async def wait_closed(self) -> None:
        await self._closed.wait()


@dataclass
class StreamSession:
    stream_id: str
    node_id: str
    channel: StreamChannel
    cancel_event: asyncio.Event
    created_at: str = field(default_factory=now_utc)
    previous_response: str = ""
    task: Optional[asyncio.Task] = None


# =============================================================================
# REGISTRY
# =============================================================================

class StreamRegistry:
    """Live generation streams, keyed by stream id."""

    def __init__(self):
        self._sessions: Dict[str, StreamSession] = {}

    def create(self, node_id: str) -> StreamSession:
        stream_id = f"stream_{secrets.token_hex(8)}"
        session = StreamSession(
            stream_id=stream_id,
            node_id=node_id,
            channel=StreamChannel(),
            cancel_event=asyncio.Event(),
        )
        self._sessions[stream_id] = session
        logger.debug(f"Opened {stream_id} for {node_id}")
        return session

    def get(self, stream_id: str) -> Optional[StreamChannel]:
        session = self._sessions.get(stream_id)
        return session.channel if session else None

    def get_session(self, stream_id: str) -> Optional[StreamSession]:
        return self._sessions.get(stream_id)

    def emit(self, stream_id: str, event: GenerationEvent) -> None:
        session = self._sessions.get(stream_id)
        if session is None:
            return
        session.channel.emit(event)

    def complete(self, stream_id: str) -> None:
        session = self._sessions.pop(stream_id, None)
        if session is None:
            return
        session.channel.close()
        logger.debug(f"Closed {stream_id}")

    def find_stream_id_by_node_id(self, node_id: str) -> Optional[str]:
        for stream_id, session in self._sessions.items():
            if session.node_id == node_id:
                return stream_id
        return None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, stream_id: str) -> bool:
        return stream_id in self._sessions


# =============================================================================
# TRANSPORT
# =============================================================================

def encode_frame(event: GenerationEvent) -> bytes:
    return _frame_encoder.encode(event)


async def iter_frames(channel: StreamChannel) -> AsyncIterator[bytes]:
    """JSON frames for a caller, ending after the `done` frame."""
    async for event in channel.events():
        yield encode_frame(event)
        if event.is_done:
            return
