"""
Unit tests for core/graph_store.py - GraphStore

Tests the prompt graph including:
- Node creation, child creation and deletion
- Edge creation, de-duplication and removal
- Bidirectional link bookkeeping
- Staleness cascade
- Snapshots, events and Polars export
"""
import pytest

from core.errors import NodeNotFoundError, ValidationError
from core.graph_store import CHILD_OFFSET, GraphStore
from core.ontology import LogicalRole, ModeSource, NodeStatus, OperationMode
from core.schemas import NodeData, OrchestrationMetadata, PlanNodeData, Position
from infrastructure.event_bus import EventType


def _collect(store):
    events = []
    store.event_bus.subscribe_all(events.append)
    return events


# =============================================================================
# NODE OPERATIONS TESTS
# =============================================================================

def test_add_node_creates_empty_idle_node(store):
    """A fresh node has no prompt, no links and idle status."""
    node_id = store.add_node(Position(x=5, y=7))

    node = store.get_node(node_id)
    assert node.prompt == ""
    assert node.response == ""
    assert node.status == NodeStatus.IDLE
    assert node.parent_ids == ()
    assert node.children_ids == ()
    assert node.position == Position(x=5, y=7)
    assert store.node_count == 1
    assert node_id in store


def test_get_node_unknown_raises(store):
    """get_node raises NodeNotFoundError naming the id."""
    with pytest.raises(NodeNotFoundError) as exc_info:
        store.get_node("missing")
    assert "missing" in str(exc_info.value)
    assert store.find_node("missing") is None


def test_insert_node_duplicate_id_fails(store):
    """Inserting an id twice is rejected."""
    node = NodeData.create(id="A", prompt="first")
    store.insert_node(node)

    with pytest.raises(ValidationError):
        store.insert_node(node)
    assert store.node_count == 1


def test_insert_node_ignores_link_fields(store):
    """Link tuples on an inserted record are reset; edges carry the links."""
    node = NodeData.create(id="A", parent_ids=("ghost",), children_ids=("ghost",))
    store.insert_node(node)

    assert store.get_node("A").parent_ids == ()
    assert store.get_node("A").children_ids == ()
    assert store.validate_links() == []


def test_create_child_node_links_and_offsets(store):
    """A child sits below-right of its parent and both sides are linked."""
    parent_id = store.add_node_with_prompt(Position(x=10, y=20), "Plan a trip")

    child_id = store.create_child_node(parent_id, "Where to?")

    child = store.get_node(child_id)
    parent = store.get_node(parent_id)
    assert child.prompt == "Where to?"
    assert child.position == Position(x=10 + CHILD_OFFSET[0], y=20 + CHILD_OFFSET[1])
    assert child.parent_ids == (parent_id,)
    assert parent.children_ids == (child_id,)
    assert store.edge_count == 1
    assert store.validate_links() == []


def test_create_child_node_unknown_parent_is_noop(store):
    """No node is created when the parent does not exist."""
    assert store.create_child_node("missing", "Hello") is None
    assert store.node_count == 0


def test_create_child_node_applies_orchestration(store):
    """The orchestration override lands on the linked child."""
    parent_id = store.add_node_with_prompt(None, "Root")
    override = OrchestrationMetadata(logical_role=LogicalRole.CHALLENGER)

    child_id = store.create_child_node(parent_id, "Push back", orchestration=override)

    assert store.get_node(child_id).role == LogicalRole.CHALLENGER


def test_update_node_rejects_link_fields(store):
    """Link tuples are owned by the store."""
    node_id = store.add_node()
    with pytest.raises(ValidationError):
        store.update_node(node_id, parent_ids=("x",))
    with pytest.raises(ValidationError):
        store.update_node(node_id, id="other")


def test_update_node_rejects_unknown_fields(store):
    node_id = store.add_node()
    with pytest.raises(ValidationError):
        store.update_node(node_id, colour="red")


def test_update_node_unknown_id_returns_false(store):
    assert store.update_node("missing", response="x") is False


def test_update_node_replaces_record(store):
    """Updates swap in a new record; earlier reads are unaffected."""
    node_id = store.add_node()
    before = store.get_node(node_id)

    store.update_node(node_id, response="done")

    after = store.get_node(node_id)
    assert after.response == "done"
    assert after.updated_at >= before.updated_at
    assert before.response == ""


def test_update_node_rejects_timestamps(store):
    node_id = store.add_node()
    with pytest.raises(ValidationError):
        store.update_node(node_id, updated_at="2030-01-01T00:00:00+00:00")


def test_delete_node_repairs_neighbours(store):
    """Deleting a middle node drops its edges and both neighbour links."""
    a = store.add_node_with_prompt(None, "A")
    b = store.create_child_node(a, "B")
    c = store.create_child_node(b, "C")

    assert store.delete_node(b) is True

    assert not store.has_node(b)
    assert store.get_node(a).children_ids == ()
    assert store.get_node(c).parent_ids == ()
    assert store.edge_count == 0
    assert store.validate_links() == []


def test_delete_node_unknown_returns_false(store):
    assert store.delete_node("missing") is False


def test_delete_node_drops_selection(store):
    node_id = store.add_node()
    store.select_node(node_id)

    store.delete_node(node_id)

    assert store.selected_node_ids == ()


# =============================================================================
# EDGE OPERATIONS TESTS
# =============================================================================

def test_add_edge_is_deduplicated(store):
    """A second identical edge is refused and links stay unique."""
    a = store.add_node()
    b = store.add_node()

    first = store.add_edge(a, b)
    second = store.add_edge(a, b)

    assert first is not None
    assert second is None
    assert store.edge_count == 1
    assert store.get_node(b).parent_ids == (a,)
    assert store.get_node(a).children_ids == (b,)


def test_add_edge_unknown_endpoint_is_noop(store):
    a = store.add_node()
    assert store.add_edge(a, "missing") is None
    assert store.add_edge("missing", a) is None
    assert store.edge_count == 0


def test_delete_edge_unlinks_both_sides(store):
    a = store.add_node()
    b = store.add_node()
    edge_id = store.add_edge(a, b)

    assert store.delete_edge(edge_id) is True

    assert store.get_node(a).children_ids == ()
    assert store.get_node(b).parent_ids == ()
    assert store.find_edge(a, b) is None
    assert store.delete_edge(edge_id) is False


def test_multi_parent_links_are_consistent(store):
    """A node with several parents lists each exactly once."""
    a = store.add_node()
    b = store.add_node()
    c = store.add_node()
    store.add_edge(a, c)
    store.add_edge(b, c)

    assert set(store.get_node(c).parent_ids) == {a, b}
    assert [n.id for n in store.get_parents(c)] == [a, b]
    assert store.validate_links() == []


def test_would_create_cycle(store):
    a = store.add_node()
    b = store.create_child_node(a, "b")
    c = store.create_child_node(b, "c")

    assert store.would_create_cycle(c, a) is True
    assert store.would_create_cycle(a, c) is False
    assert store.has_cycle() is False


def test_topological_order_puts_parents_first(store):
    a = store.add_node()
    b = store.create_child_node(a, "b")
    c = store.create_child_node(b, "c")

    order = store.topological_order()

    assert order.index(a) < order.index(b) < order.index(c)
    assert set(store.get_ancestor_ids(c)) == {a, b}


# =============================================================================
# STALENESS TESTS
# =============================================================================

def test_prompt_change_marks_descendants_stale(store):
    """Children and grandchildren go stale; the edited node does not."""
    root = store.add_node_with_prompt(None, "Root")
    child = store.create_child_node(root, "Child")
    grandchild = store.create_child_node(child, "Grandchild")

    assert store.update_node_prompt(root, "Root v2") is True

    assert store.get_node(root).status == NodeStatus.IDLE
    assert store.get_node(child).status == NodeStatus.STALE
    assert store.get_node(grandchild).status == NodeStatus.STALE


def test_cascade_skips_loading_but_visits_its_children(store):
    """A generating node keeps its status; nodes below it still go stale."""
    root = store.add_node_with_prompt(None, "Root")
    child = store.create_child_node(root, "Child")
    grandchild = store.create_child_node(child, "Grandchild")
    store.set_node_status(child, NodeStatus.LOADING)

    store.update_node_prompt(root, "Changed")

    assert store.get_node(child).status == NodeStatus.LOADING
    assert store.get_node(grandchild).status == NodeStatus.STALE


def test_unchanged_prompt_is_noop(store):
    root = store.add_node_with_prompt(None, "Same")
    child = store.create_child_node(root, "Child")

    assert store.update_node_prompt(root, "Same") is False
    assert store.get_node(child).status == NodeStatus.IDLE


def test_diamond_descendant_visited_once(store):
    """A node reachable along two paths appears once in the cascade."""
    root = store.add_node()
    left = store.create_child_node(root, "L")
    right = store.create_child_node(root, "R")
    bottom = store.add_node()
    store.add_edge(left, bottom)
    store.add_edge(right, bottom)

    affected = store.cascade_stale(root)

    assert affected.count(bottom) == 1
    assert affected == [left, right, bottom]


def test_cascade_stale_unknown_root_raises(store):
    with pytest.raises(NodeNotFoundError):
        store.cascade_stale("missing")


def test_stale_plan_payload_is_flagged(store):
    """Marking a plan node stale also flags its plan payload."""
    root = store.add_node_with_prompt(None, "Root")
    plan = store.create_child_node(
        root,
        "Plan",
        orchestration=OrchestrationMetadata(logical_role=LogicalRole.PLAN, plan=PlanNodeData()),
    )

    store.update_node_prompt(root, "Root v2")

    node = store.get_node(plan)
    assert node.status == NodeStatus.STALE
    assert node.orchestration.plan.is_stale is True


# =============================================================================
# MODE DETECTION TESTS
# =============================================================================

def test_prompt_edit_derives_mode(store):
    node_id = store.add_node()

    store.update_node_prompt(node_id, "Build an MVP roadmap")

    orchestration = store.get_node(node_id).orchestration
    assert orchestration.mode == OperationMode.BUILD
    assert orchestration.mode_source == ModeSource.AUTO


def test_manual_mode_survives_prompt_edit(store):
    node_id = store.add_node()
    store.set_node_mode(node_id, OperationMode.BUILD, ModeSource.MANUAL)

    store.update_node_prompt(node_id, "Explain why the sky is blue")

    assert store.get_node(node_id).orchestration.mode == OperationMode.BUILD


# =============================================================================
# EVENTS TESTS
# =============================================================================

def test_mutations_publish_events(store):
    """Each applied mutation publishes one event tagged with its origin."""
    events = _collect(store)

    a = store.add_node()
    b = store.add_node()
    store.add_edge(a, b)
    with store.origin("realtime"):
        store.update_node(b, response="remote")

    types = [e.type for e in events]
    assert types == [
        EventType.NODE_CREATED,
        EventType.NODE_CREATED,
        EventType.EDGE_CREATED,
        EventType.NODE_UPDATED,
    ]
    assert events[2].payload["source_id"] == a
    assert events[3].source == "realtime"
    assert events[0].source == "graph_store"


def test_status_change_event_carries_transition(store):
    events = _collect(store)
    node_id = store.add_node()

    store.set_node_status(node_id, NodeStatus.ERROR)

    update = events[-1]
    assert update.payload["old_status"] == "idle"
    assert update.payload["new_status"] == "error"


# =============================================================================
# SNAPSHOT & EXPORT TESTS
# =============================================================================

def test_snapshot_restore_roundtrip(store):
    a = store.add_node_with_prompt(None, "A")
    b = store.create_child_node(a, "B")
    store.select_node(b)
    store.set_project_name("Trip")
    snapshot = store.snapshot()

    store.delete_node(a)
    store.set_project_name("Other")
    store.restore(snapshot)

    assert store.snapshot().encode() == snapshot.encode()
    assert store.get_node(b).parent_ids == (a,)
    assert store.selected_node_ids == (b,)
    assert store.project_name == "Trip"
    assert store.would_create_cycle(b, a) is True


def test_dump_and_load_json(store):
    a = store.add_node_with_prompt(Position(x=1, y=2), "A")
    store.create_child_node(a, "B")

    other = GraphStore()
    other.load_json(store.dump_json())

    assert other.node_count == 2
    assert other.edge_count == 1
    assert other.validate_links() == []


def test_polars_export(store, tmp_path):
    a = store.add_node_with_prompt(None, "A")
    store.create_child_node(a, "B")

    nodes_df = store.to_polars_nodes()
    edges_df = store.to_polars_edges()

    assert nodes_df.height == 2
    assert edges_df.height == 1
    assert set(nodes_df["prompt"].to_list()) == {"A", "B"}
    assert edges_df["source"].to_list() == [a]

    nodes_path, edges_path = store.save_parquet(tmp_path)
    assert nodes_path.exists()
    assert edges_path.exists()


def test_selection_helpers(store):
    a = store.add_node()
    b = store.add_node()

    store.select_node(a)
    store.toggle_node_selection(b)
    assert store.selected_node_ids == (a, b)

    store.toggle_node_selection(a)
    assert store.selected_node_ids == (b,)

    store.clear_selection()
    assert store.selected_node_ids == ()
