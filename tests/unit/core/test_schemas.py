"""
Unit tests for core/schemas.py and core/ontology.py

Records, fingerprints and the wire vocabulary.
"""
import msgspec
import pytest

from core.ontology import (
    NodeStatus,
    OperationMode,
    detect_mode_from_prompt,
    is_critical_prompt,
    normalize_status,
)
from core.schemas import (
    EdgeData,
    GraphSnapshot,
    NodeData,
    PlanNodeData,
    PlanVersion,
    Position,
    deserialize_node,
    generate_id,
    scope_fingerprint,
    serialize_node,
)


# =============================================================================
# RECORD TESTS
# =============================================================================

def test_node_create_defaults():
    node = NodeData.create(prompt="Hi", position=Position(x=1, y=2))

    assert node.id.startswith("node_")
    assert node.status == NodeStatus.IDLE
    assert node.created_at == node.updated_at
    assert node.parent_ids == ()


def test_node_create_with_custom_id():
    assert NodeData.create(id="A").id == "A"


def test_records_are_frozen():
    node = NodeData.create()
    with pytest.raises(AttributeError):
        node.prompt = "changed"


def test_node_json_roundtrip_preserves_fields():
    node = NodeData.create(id="A", prompt="p", response="r", summary="s")

    assert deserialize_node(serialize_node(node)) == node


def test_generate_id_prefix():
    assert generate_id("edge").startswith("edge_")
    assert generate_id() != generate_id()


def test_edge_create():
    edge = EdgeData.create("a", "b")
    assert (edge.source, edge.target) == ("a", "b")
    assert edge.id.startswith("edge_")


# =============================================================================
# FINGERPRINT TESTS
# =============================================================================

def test_scope_fingerprint_is_sorted_and_joined():
    assert scope_fingerprint(["R", "B", "A"]) == "A|B|R"
    assert scope_fingerprint(["B", "A", "B"]) == "A|B"
    assert scope_fingerprint([]) == ""


# =============================================================================
# PLAN TESTS
# =============================================================================

def test_plan_version_helpers():
    plan = PlanNodeData(versions=(PlanVersion(version=1), PlanVersion(version=3)))

    assert plan.max_version() == 3
    assert plan.get_version(2) is None

    updated = plan.with_version_content(3, "body")
    assert updated.get_version(3).content == "body"
    assert plan.get_version(3).content == ""

    appended = plan.with_version_content(4, "new")
    assert appended.max_version() == 4


def test_empty_plan_max_version():
    assert PlanNodeData().max_version() == 0


# =============================================================================
# SNAPSHOT TESTS
# =============================================================================

def test_graph_snapshot_msgpack_roundtrip():
    node = NodeData.create(id="A", prompt="p")
    snapshot = GraphSnapshot(nodes=(node,), selected_node_ids=("A",), project_name="P")

    assert GraphSnapshot.decode(snapshot.encode()) == snapshot


# =============================================================================
# ONTOLOGY TESTS
# =============================================================================

@pytest.mark.parametrize("value,expected", [
    ("GENERATING", NodeStatus.LOADING),
    ("COMPLETED", NodeStatus.IDLE),
    ("IDLE", NodeStatus.IDLE),
    ("ERROR", NodeStatus.ERROR),
    ("STALE", NodeStatus.STALE),
    ("loading", NodeStatus.LOADING),
    ("bogus", NodeStatus.IDLE),
    (None, NodeStatus.IDLE),
    (3, NodeStatus.IDLE),
])
def test_normalize_status(value, expected):
    assert normalize_status(value) == expected


@pytest.mark.parametrize("prompt,mode", [
    ("Build the MVP", OperationMode.BUILD),
    ("Explain recursion", OperationMode.EXPLORE),
    ("Explain how to plan the launch", OperationMode.BUILD),
    ("Explain how to create the app", OperationMode.EXPLORE),
    ("", OperationMode.EXPLORE),
    ("Tell me a joke", OperationMode.EXPLORE),
])
def test_detect_mode_from_prompt(prompt, mode):
    assert detect_mode_from_prompt(prompt) == mode


def test_is_critical_prompt():
    assert is_critical_prompt("Hard constraint: budget under 1k")
    assert is_critical_prompt("Main RISK is weather")
    assert not is_critical_prompt("Nice weather today")
    assert not is_critical_prompt("")


def test_enum_values_encode_as_strings():
    assert msgspec.json.encode(NodeStatus.STALE) == b'"stale"'
