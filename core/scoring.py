"""
FORKY SCORING - Relevance of Scoped Nodes

The build scope engine asks a Scorer how relevant each scoped node is to
the pivot. The Scorer is pluggable; HeuristicScorer is the default.

Heuristic (0-100):
    pinned             -> 100, tier 1
    proximity          = clamp(100 - 20 * depth), weighted 0.6
    direction bonus    = +8 ancestor, +4 descendant only
    role bonus         = source 20, plan/artifact 15, challenger 5, else 10
    recency bonus      = +5 if updated within 1h, +2 within 1 day

Tiers: >= 75 -> 1, >= 40 -> 2, else 3. A node is included by default if it
is pinned, is the root, or is not in the lowest tier.
"""
from datetime import datetime, timedelta, timezone
import math
from typing import Dict, List, Mapping, Optional, Protocol, Set

import msgspec

from core.ontology import LOWEST_TIER, LogicalRole, ScopeDirection, Tier
from core.schemas import NodeData
from core.scope import ScopeEntry, compute_scope


HOUR = timedelta(hours=1)
DAY = timedelta(days=1)

_ROLE_POINTS = {
    LogicalRole.SOURCE: 20,
    LogicalRole.PLAN: 15,
    LogicalRole.ARTIFACT: 15,
    LogicalRole.CHALLENGER: 5,
}


class ScoreResult(msgspec.Struct, kw_only=True, frozen=True):
    score: float
    tier: Tier
    reasons: List[str] = msgspec.field(default_factory=list)


class ScopedNode(msgspec.Struct, kw_only=True, frozen=True):
    """A scope entry together with its score."""
    node_id: str
    depth: int
    branches: List[str]
    score: float
    tier: Tier
    reasons: List[str]


class Scorer(Protocol):
    def score(self, node: NodeData, entry: ScopeEntry) -> ScoreResult:
        ...


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, value))


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def assign_tier(score: float) -> Tier:
    if score >= 75:
        return 1
    if score >= 40:
        return 2
    return 3


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HeuristicScorer:
    """
    Distance, direction, role and recency heuristic.

    `now` pins the reference time (tests); by default the wall clock is read
    on every call.
    """

    def __init__(self, now: Optional[datetime] = None):
        self._now = now

    def _reference_time(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def _recency(self, node: NodeData) -> int:
        updated = _parse_timestamp(node.updated_at)
        now = self._reference_time()
        if updated is None:
            return 5
        age = max(timedelta(0), now - updated)
        if age <= HOUR:
            return 5
        if age <= DAY:
            return 2
        return 0

    def score(self, node: NodeData, entry: ScopeEntry) -> ScoreResult:
        if node.is_pinned:
            return ScoreResult(score=100, tier=1, reasons=["Pinned"])

        proximity = clamp_score(100 - entry.depth * 20)
        if entry.parent_depth is not None:
            direction = 8
        elif entry.child_depth is not None:
            direction = 4
        else:
            direction = 0
        role_points = _ROLE_POINTS.get(node.role, 10)
        recency = self._recency(node)

        score = clamp_score(_round_half_up(proximity * 0.6 + direction + role_points + recency))

        reasons = [f"Distance {entry.depth}"]
        if entry.parent_depth is not None and entry.child_depth is not None:
            reasons.append("Multi-direction (parent + child)")
        elif entry.parent_depth is not None:
            reasons.append("Ancestor context")
        elif entry.child_depth is not None:
            reasons.append("Descendant branch")
        reasons.append(f"Role {node.role.value}")
        if recency > 0:
            reasons.append("Recent")
        explanation = node.orchestration.score_explanation
        if explanation is not None and explanation.reason:
            reasons.append(explanation.reason)

        return ScoreResult(score=score, tier=assign_tier(score), reasons=reasons)


def apply_score_adjustment(score: float, delta: float, reason: str) -> Dict[str, object]:
    """Shift a score by `delta`, clamped; report the delta actually applied."""
    adjusted = clamp_score(_round_half_up(score + delta))
    return {"score": adjusted, "delta": adjusted - score, "reason": reason}


# =============================================================================
# BUILD SCOPE SNAPSHOT
# =============================================================================

class ScopeSnapshot(msgspec.Struct, kw_only=True):
    """Scored scope plus the scorer's suggested include/exclude split."""
    scope_nodes: Dict[str, ScopedNode] = msgspec.field(default_factory=dict)
    suggested_included: Set[str] = msgspec.field(default_factory=set)
    suggested_excluded: Set[str] = msgspec.field(default_factory=set)
    pinned: Set[str] = msgspec.field(default_factory=set)


def compute_build_scope_snapshot(
    root_id: str,
    nodes: Mapping[str, NodeData],
    direction: ScopeDirection = ScopeDirection.BOTH,
    max_depth: Optional[int] = None,
    scorer: Optional[Scorer] = None,
) -> ScopeSnapshot:
    scorer = scorer or HeuristicScorer()
    snapshot = ScopeSnapshot()

    for node_id, entry in compute_scope(root_id, nodes, direction, max_depth).items():
        node = nodes.get(node_id)
        if node is None:
            continue

        if node.is_pinned:
            snapshot.pinned.add(node_id)

        result = scorer.score(node, entry)
        snapshot.scope_nodes[node_id] = ScopedNode(
            node_id=node_id,
            depth=int(entry.depth),
            branches=list(entry.branches),
            score=result.score,
            tier=result.tier,
            reasons=list(result.reasons),
        )

        if node.is_pinned or node_id == root_id or result.tier != LOWEST_TIER:
            snapshot.suggested_included.add(node_id)
        else:
            snapshot.suggested_excluded.add(node_id)

    return snapshot
