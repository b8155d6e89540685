"""
Unit tests for core/scope.py and core/scoring.py

Tests build scope traversal and the heuristic scorer:
- Depth and branch attribution in both directions
- max_depth fallback
- Score formula, tiers and reasons
- Suggested include/exclude split
"""
from datetime import datetime, timedelta, timezone

import pytest

from core.ontology import LogicalRole, ScopeDirection
from core.schemas import NodeData, OrchestrationMetadata
from core.scope import compute_scope
from core.scoring import (
    HeuristicScorer,
    ScoreResult,
    apply_score_adjustment,
    assign_tier,
    compute_build_scope_snapshot,
)


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
OLD = (NOW - timedelta(days=3)).isoformat()


def _build(store, edges, **overrides):
    """Insert nodes named in `edges` (old timestamps) and link them."""
    names = []
    for source, target in edges:
        for name in (source, target):
            if name not in names:
                names.append(name)
    for name in names:
        orchestration = overrides.get(name, {}).get("orchestration")
        extra = {"orchestration": orchestration} if orchestration is not None else {}
        store.insert_node(NodeData.create(id=name, prompt=name, created_at=OLD, **extra))
    for source, target in edges:
        store.add_edge(source, target)
    # Linking refreshes updated_at; pin timestamps afterwards
    return {
        node.id: node.evolve(updated_at=overrides.get(node.id, {}).get("updated_at", OLD))
        for node in store.iter_nodes()
    }


# =============================================================================
# SCOPE TRAVERSAL TESTS
# =============================================================================

def test_scope_records_depth_and_branches(store):
    """
    Graph:  P -> R -> C1 -> G
                 R -> C2 -> G
    """
    nodes = _build(store, [("P", "R"), ("R", "C1"), ("R", "C2"), ("C1", "G"), ("C2", "G")])

    scope = compute_scope("R", nodes)

    assert scope["R"].depth == 0
    assert scope["R"].branches == []
    assert scope["P"].depth == 1
    assert scope["P"].parent_depth == 1
    assert scope["P"].branches == ["P"]
    assert scope["G"].depth == 2
    assert scope["G"].child_depth == 2
    assert sorted(scope["G"].branches) == ["C1", "C2"]


def test_scope_direction_limits_walk(store):
    nodes = _build(store, [("P", "R"), ("R", "C")])

    assert set(compute_scope("R", nodes, ScopeDirection.PARENTS)) == {"R", "P"}
    assert set(compute_scope("R", nodes, ScopeDirection.CHILDREN)) == {"R", "C"}


def test_scope_max_depth(store):
    nodes = _build(store, [("R", "A"), ("A", "B"), ("B", "C"), ("C", "D")])

    assert set(compute_scope("R", nodes, max_depth=1)) == {"R", "A"}
    assert set(compute_scope("R", nodes, max_depth=0)) == {"R"}


@pytest.mark.parametrize("bad_depth", [-1, 2.5, None, True])
def test_invalid_max_depth_falls_back_to_three(store, bad_depth):
    nodes = _build(store, [("R", "A"), ("A", "B"), ("B", "C"), ("C", "D")])

    assert set(compute_scope("R", nodes, max_depth=bad_depth)) == {"R", "A", "B", "C"}


def test_unknown_root_yields_root_only(store):
    scope = compute_scope("ghost", {})
    assert list(scope) == ["ghost"]
    assert scope["ghost"].depth == 0


def test_node_on_both_sides_keeps_min_depth(store):
    """A node that is both ancestor and descendant keeps both depths."""
    nodes = _build(store, [("X", "R"), ("R", "Y"), ("Y", "Z")])
    store.add_edge("R", "X")  # cycle X <-> R
    nodes = store.nodes_by_id()

    scope = compute_scope("R", nodes)

    assert scope["X"].parent_depth == 1
    assert scope["X"].child_depth == 1
    assert scope["X"].depth == 1


# =============================================================================
# SCORER TESTS
# =============================================================================

def test_parent_at_depth_one_score(store):
    """0.6 * 80 + 8 (ancestor) + 10 (conversation) + 0 (old) = 66."""
    nodes = _build(store, [("P", "R")])
    scope = compute_scope("R", nodes)

    result = HeuristicScorer(now=NOW).score(nodes["P"], scope["P"])

    assert result.score == 66
    assert result.tier == 2
    assert result.reasons == ["Distance 1", "Ancestor context", "Role conversation"]


def test_recent_child_score(store):
    """0.6 * 80 + 4 (descendant) + 15 (plan) + 5 (recent) = 72."""
    nodes = _build(
        store,
        [("R", "C")],
        C={
            "updated_at": (NOW - timedelta(minutes=5)).isoformat(),
            "orchestration": OrchestrationMetadata(logical_role=LogicalRole.PLAN),
        },
    )
    scope = compute_scope("R", nodes)

    result = HeuristicScorer(now=NOW).score(nodes["C"], scope["C"])

    assert result.score == 72
    assert result.reasons[-2:] == ["Role plan", "Recent"]


def test_pinned_node_scores_100(store):
    nodes = _build(store, [("R", "C")], C={"orchestration": OrchestrationMetadata(pinned=True)})
    scope = compute_scope("R", nodes)

    result = HeuristicScorer(now=NOW).score(nodes["C"], scope["C"])

    assert result == ScoreResult(score=100, tier=1, reasons=["Pinned"])


@pytest.mark.parametrize("score,tier", [(100, 1), (75, 1), (74, 2), (40, 2), (39, 3), (0, 3)])
def test_assign_tier_boundaries(score, tier):
    assert assign_tier(score) == tier


def test_apply_score_adjustment_clamps():
    assert apply_score_adjustment(90, 25, "boost") == {"score": 100, "delta": 10, "reason": "boost"}
    assert apply_score_adjustment(10, -30, "cut") == {"score": 0, "delta": -10, "reason": "cut"}


# =============================================================================
# SNAPSHOT TESTS
# =============================================================================

def test_snapshot_suggests_by_tier(store):
    """Far, old descendants (tier 3) are suggested for exclusion."""
    nodes = _build(store, [("R", "A"), ("A", "B"), ("B", "C")])

    snapshot = compute_build_scope_snapshot("R", nodes, scorer=HeuristicScorer(now=NOW))

    # depth 3 child: 0.6 * 40 + 4 + 10 = 38 -> tier 3
    assert snapshot.scope_nodes["C"].tier == 3
    assert "C" in snapshot.suggested_excluded
    assert {"R", "A"} <= snapshot.suggested_included
    assert snapshot.pinned == set()


def test_snapshot_always_includes_root_and_pinned(store):
    nodes = _build(
        store,
        [("R", "A"), ("A", "B"), ("B", "C")],
        C={"orchestration": OrchestrationMetadata(pinned=True)},
    )

    snapshot = compute_build_scope_snapshot("R", nodes, scorer=HeuristicScorer(now=NOW))

    assert "R" in snapshot.suggested_included
    assert "C" in snapshot.suggested_included
    assert snapshot.pinned == {"C"}
