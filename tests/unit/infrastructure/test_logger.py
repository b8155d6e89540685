"""
Unit tests for infrastructure/logger.py - MutationLogger

The logger is fed from a GraphStore's event bus.
"""
from infrastructure.logger import FileLogger, LoggerConfig, MutationLogger


def test_logger_records_store_mutations(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    a = store.add_node_with_prompt(None, "A")
    b = store.create_child_node(a, "B")
    store.update_node_prompt(a, "A2")

    types = [e.mutation_type for e in mutation_log.get_recent_events()]
    assert types[:3] == ["node_created", "node_created", "edge_created"]
    assert "node_updated" in types

    timeline = mutation_log.get_node_timeline(b)
    assert timeline[0]["type"] == "node_created"
    assert timeline[-1]["new_status"] == "stale"


def test_sequence_numbers_increase(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    store.add_node()
    store.add_node()

    sequences = [e.sequence for e in mutation_log.get_recent_events()]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 2


def test_source_is_recorded(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    with store.origin("realtime"):
        store.add_node()

    assert mutation_log.get_recent_events(1)[0].source == "realtime"


def test_detach_stops_recording(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)
    mutation_log.detach(store.event_bus)

    store.add_node()

    assert mutation_log.get_recent_events() == []


def test_file_log_roundtrip(store, tmp_path):
    with MutationLogger(LoggerConfig(enable_file_log=True, log_path=tmp_path)) as mutation_log:
        mutation_log.attach(store.event_bus)
        node_id = store.add_node()

    files = list(tmp_path.glob("mutations_*.jsonl"))
    assert len(files) == 1
    date = files[0].stem.split("_", 1)[1]

    events = FileLogger(tmp_path).read_log(date)
    assert events[0].node_id == node_id


def test_subscriber_callback(store):
    mutation_log = MutationLogger()
    seen = []
    mutation_log.subscribe(seen.append)
    mutation_log.attach(store.event_bus)

    store.add_node()

    assert len(seen) == 1


def test_events_for_node_include_edge_endpoints(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    a = store.add_node()
    b = store.add_node()
    store.add_edge(a, b)

    types = [e.mutation_type for e in mutation_log.get_events_for_node(b)]
    assert types[0] == "node_created"
    assert "edge_created" in types


def test_buffer_keeps_newest_entries(store):
    mutation_log = MutationLogger(LoggerConfig(buffer_size=3))
    mutation_log.attach(store.event_bus)

    for _ in range(5):
        store.add_node()

    assert len(mutation_log) == 3
    assert [e.sequence for e in mutation_log.get_recent_events()] == [3, 4, 5]


def test_to_polars(store):
    mutation_log = MutationLogger()
    mutation_log.attach(store.event_bus)

    node_id = store.add_node()
    with store.origin("realtime"):
        store.update_node_prompt(node_id, "remote")

    frame = mutation_log.to_polars()

    assert frame.height == 2
    assert frame["source"].to_list() == ["graph_store", "realtime"]
    assert frame["node_id"].to_list() == [node_id, node_id]
