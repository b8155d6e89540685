"""
FORKY EVENT BUS - Graph Change Notifications

Every GraphStore owns a bus and publishes one GraphEvent per applied
mutation. Listeners never hold a reference the store knows about:

    GraphStore / Orchestrator -> EventBus -> BuildScopeEngine   (edge_created)
                                          -> MutationLogger     (all types)
                                          -> EventBusBroadcaster (node_streaming)

Delivery:
    sync handlers    called in subscription order, inside publish()
    async handlers   scheduled as tasks on the running loop; `flush()`
                     awaits the ones still pending
    failures         logged with the event type, never raised to the
                     publisher

Usage:
    bus = EventBus()
    bus.subscribe(EventType.EDGE_CREATED, lambda e: print(e.payload["edge_id"]))
    bus.emit(EventType.EDGE_CREATED, {"edge_id": "edge_1"}, source="graph_store")
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Set

import msgspec


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    NODE_CREATED = "node_created"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    EDGE_CREATED = "edge_created"
    EDGE_DELETED = "edge_deleted"
    NODE_STREAMING = "node_streaming"
    HISTORY_RESTORED = "history_restored"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    One published change.

    Attributes:
        type: What happened
        payload: Type-specific ids and fields (node_id, edge_id, fields, ...)
        timestamp: Unix time of publication
        source: Origin tag ("graph_store", "history", "realtime", "broadcaster")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


SyncHandler = Callable[[GraphEvent], None]
AsyncHandler = Callable[[GraphEvent], Awaitable[Any]]


class Subscription(NamedTuple):
    handler: Callable
    is_async: bool


class EventBus:
    """
    Per-graph publish/subscribe hub.

    Not thread-safe: publishers and sync handlers share the store's single
    logical thread.
    """

    def __init__(self):
        self._subscriptions: Dict[EventType, List[Subscription]] = {t: [] for t in EventType}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def _add(self, event_type: EventType, handler: Callable, is_async: bool) -> None:
        subscriptions = self._subscriptions[EventType(event_type)]
        if any(s.handler == handler for s in subscriptions):
            return
        subscriptions.append(Subscription(handler, is_async))
        logger.debug(f"Subscribed {'async' if is_async else 'sync'} handler to {event_type.value}")

    def subscribe(self, event_type: EventType, handler: SyncHandler) -> None:
        """Register a handler called synchronously on publish. Re-subscribing is a no-op."""
        self._add(event_type, handler, is_async=False)

    def subscribe_async(self, event_type: EventType, handler: AsyncHandler) -> None:
        self._add(event_type, handler, is_async=True)

    def subscribe_all(self, handler: SyncHandler) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Callable) -> None:
        subscriptions = self._subscriptions[EventType(event_type)]
        remaining = [s for s in subscriptions if s.handler != handler]
        if len(remaining) != len(subscriptions):
            self._subscriptions[EventType(event_type)] = remaining
            logger.debug(f"Unsubscribed handler from {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._subscriptions[EventType(event_type)])
        return sum(len(subscriptions) for subscriptions in self._subscriptions.values())

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def emit(self, event_type: EventType, payload: Dict[str, Any], source: str = "unknown") -> GraphEvent:
        """Stamp, publish and return a new event."""
        event = GraphEvent(type=event_type, payload=payload, timestamp=time.time(), source=source)
        self.publish(event)
        return event

    def publish(self, event: GraphEvent) -> None:
        logger.debug(f"{event.type.value} from {event.source}: {sorted(event.payload)}")
        for subscription in list(self._subscriptions[event.type]):
            if subscription.is_async:
                self._schedule(subscription.handler, event)
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(f"Handler for {event.type.value} failed: {e}", exc_info=True)

    def _schedule(self, handler: AsyncHandler, event: GraphEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop; async handler for {event.type.value} skipped")
            return
        task = loop.create_task(handler(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async handler failed: {task.exception()}", exc_info=task.exception())

    @property
    def pending(self) -> int:
        """Async handler tasks not yet finished."""
        return len(self._tasks)

    async def flush(self) -> None:
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))
