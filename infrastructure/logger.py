"""
FORKY MUTATION LOGGER - Graph Change Journal

Turns the GraphEvents a store publishes into numbered MutationEvents that
can be queried after the fact ("what touched node_42, and who did it?").

    store.event_bus --record()--> MutationEvent --> ring buffer (always)
                                                --> daily JSON-lines file (opt-in)
                                                --> callbacks

Usage:
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    store.update_node_prompt(root_id, "Plan a cheaper trip")
    for entry in mutation_log.get_node_timeline(child_id):
        print(entry["type"], entry["new_status"], entry["source"])

    mutation_log.to_polars().filter(pl.col("source") == "realtime")
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Any, BinaryIO, Callable, Deque, Dict, List, Optional

import msgspec
import polars as pl

from infrastructure.event_bus import EventBus, EventType, GraphEvent


log = logging.getLogger(__name__)

LOG_FILE_PREFIX = "mutations_"


@dataclass
class LoggerConfig:
    enable_file_log: bool = False
    log_path: Path = Path("./workspace/logs")
    buffer_size: int = 10000


# =============================================================================
# RECORD
# =============================================================================

class MutationEvent(msgspec.Struct, kw_only=True, omit_defaults=True):
    """One journal entry. Ids are copied from the event payload when present."""
    timestamp: str
    sequence: int
    mutation_type: str
    source: str = "unknown"
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    fields: Optional[List[str]] = None

    @classmethod
    def from_graph_event(cls, event: GraphEvent, sequence: int) -> "MutationEvent":
        payload = event.payload
        return cls(
            timestamp=datetime.fromtimestamp(event.timestamp, timezone.utc).isoformat(),
            sequence=sequence,
            mutation_type=event.type.value,
            source=event.source,
            node_id=payload.get("node_id"),
            edge_id=payload.get("edge_id"),
            source_id=payload.get("source_id"),
            target_id=payload.get("target_id"),
            old_status=payload.get("old_status"),
            new_status=payload.get("new_status"),
            fields=list(payload["fields"]) if payload.get("fields") else None,
        )

    def touches(self, node_id: str) -> bool:
        return node_id in (self.node_id, self.source_id, self.target_id)


# =============================================================================
# FILE SINK
# =============================================================================

class FileLogger:
    """Appends entries to `mutations_<YYYY-MM-DD>.jsonl`, switching files at UTC midnight."""

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)
        self.log_path.mkdir(parents=True, exist_ok=True)
        self._handle: Optional[BinaryIO] = None
        self._day: Optional[str] = None

    def path_for(self, day: str) -> Path:
        return self.log_path / f"{LOG_FILE_PREFIX}{day}.jsonl"

    def write(self, event: MutationEvent) -> None:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        if day != self._day:
            self.close()
            self._handle = open(self.path_for(day), "ab")
            self._day = day
        self._handle.write(msgspec.json.encode(event) + b"\n")
        self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
            self._day = None

    def read_log(self, day: str) -> List[MutationEvent]:
        """Entries of one day's file; malformed lines are skipped with a warning."""
        path = self.path_for(day)
        if not path.exists():
            return []
        decoder = msgspec.json.Decoder(MutationEvent)
        events: List[MutationEvent] = []
        for lineno, line in enumerate(path.read_bytes().splitlines(), start=1):
            if not line.strip():
                continue
            try:
                events.append(decoder.decode(line))
            except msgspec.DecodeError as e:
                log.warning(f"Skipping malformed log line {path}:{lineno}: {e}")
        return events


# =============================================================================
# MUTATION LOGGER
# =============================================================================

class MutationLogger:
    """
    Journal of graph mutations fed by one or more event buses.

    Entries are numbered in arrival order across all attached buses. The
    in-memory buffer keeps the newest `buffer_size` entries.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()
        self._entries: Deque[MutationEvent] = deque(maxlen=self.config.buffer_size)
        self._sequence = 0
        self._file = FileLogger(self.config.log_path) if self.config.enable_file_log else None
        self._callbacks: List[Callable[[MutationEvent], None]] = []
        self._buses: List[EventBus] = []

    def attach(self, event_bus: EventBus) -> None:
        event_bus.subscribe_all(self.record)
        if event_bus not in self._buses:
            self._buses.append(event_bus)

    def detach(self, event_bus: EventBus) -> None:
        for event_type in EventType:
            event_bus.unsubscribe(event_type, self.record)
        if event_bus in self._buses:
            self._buses.remove(event_bus)

    def record(self, event: GraphEvent) -> MutationEvent:
        self._sequence += 1
        entry = MutationEvent.from_graph_event(event, self._sequence)
        self._entries.append(entry)
        if self._file is not None:
            self._file.write(entry)
        for callback in list(self._callbacks):
            try:
                callback(entry)
            except Exception as e:
                log.error(f"Mutation callback failed: {e}", exc_info=True)
        return entry

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        return list(self._entries)[-n:] if n > 0 else []

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return [e for e in self._entries if e.timestamp >= timestamp]

    def get_events_for_node(self, node_id: str) -> List[MutationEvent]:
        """Entries naming the node directly or as an edge endpoint."""
        return [e for e in self._entries if e.touches(node_id)]

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return [e for e in self._entries if e.mutation_type == mutation_type]

    def get_node_timeline(self, node_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "time": e.timestamp,
                "type": e.mutation_type,
                "old_status": e.old_status,
                "new_status": e.new_status,
                "source": e.source,
            }
            for e in self.get_events_for_node(node_id)
        ]

    def to_polars(self) -> pl.DataFrame:
        """The buffered entries as a DataFrame, one row per entry."""
        columns = [name for name in MutationEvent.__struct_fields__ if name != "fields"]
        return pl.DataFrame(
            {name: [getattr(e, name) for e in self._entries] for name in columns},
            schema={
                name: pl.Int64 if name == "sequence" else pl.Utf8
                for name in columns
            },
        )

    def __len__(self) -> int:
        return len(self._entries)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        for bus in list(self._buses):
            self.detach(bus)
        if self._file is not None:
            self._file.close()

    def __enter__(self) -> "MutationLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
