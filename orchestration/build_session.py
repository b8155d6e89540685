"""
FORKY BUILD SESSION - Scope Curation for Derived Artifacts

A build session curates a scored sub-graph around a pivot node into the
set of nodes that back a plan, artifact or todo node.

States:
    no session --start--> active --generate_plan / apply_to_plan--> (none)
                                 \\--end_build_session------------> (none)

Session contents:
    root_node_id, deliverable, direction, max_depth
    scope_nodes           id -> ScopedNode (depth, branches, score, tier)
    included / excluded   user curation; never both for one node
    suggested_*           the scorer's untouched split (reset target)
    pinned                nodes whose own pinned flag is set
    impact flags          raised by structural edits near the pivot

Structural edits while a session is live:
    The engine listens for EDGE_CREATED on the store's bus. A new edge
    whose source is the pivot (or is already scoped) refreshes the
    affected branch(es) of the scope and may raise the impact flag.

Derived nodes are scheduled for generation through the injected
`scheduler` callable (the command dispatcher in practice).
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from typing import Callable, Dict, Iterator, List, Optional, Set

import msgspec

from core.graph_store import GraphStore
from core.ontology import (
    LogicalRole,
    ModeSource,
    NodeStatus,
    OperationMode,
    ScopeDirection,
    is_critical_prompt,
)
from core.schemas import (
    ArtifactNodeData,
    NodeData,
    OrchestrationMetadata,
    PlanNodeData,
    PlanVersion,
    ScoreExplanation,
    TodoNodeData,
    now_utc,
    scope_fingerprint,
)
from core.scoring import Scorer, ScopeSnapshot, ScopedNode, compute_build_scope_snapshot
from infrastructure.config import EngineConfig, get_config
from infrastructure.event_bus import EventType, GraphEvent


logger = logging.getLogger(__name__)

PLAN_OFFSET = (320.0, 40.0)
ARTIFACT_OFFSET = (320.0, 60.0)
TODO_OFFSET = (320.0, 220.0)


def _plan_prompt(deliverable: str) -> str:
    return "\n".join([
        f"Objective: produce an excellent project plan for: {deliverable}",
        "",
        "Constraints:",
        "- Respond in structured Markdown (titles, lists, checklists).",
        "- Start with an ultra-concise summary.",
        "- Include: scope, milestones, risks, delivery plan, success criteria.",
        "- Use the context provided by parent nodes.",
    ])


def _refresh_prompt(deliverable: str) -> str:
    return "\n".join([
        f"Objective: refresh the project plan for: {deliverable}",
        "",
        "Constraints:",
        "- Respond in structured Markdown (titles, lists, checklists).",
        "- Update the plan taking into account context changes.",
        "- Use the context provided by parent nodes.",
    ])


def _artifact_prompt(deliverable: str) -> str:
    return "\n".join([
        "Objective: produce a deliverable (artifact) from the plan and context.",
        "",
        f"Deliverable: {deliverable}",
        "",
        "Constraints:",
        "- Respond in structured and directly usable Markdown.",
        "- Strictly follow the active plan.",
        "- Include necessary sections (e.g., intro, steps, checklists, appendices).",
    ])


def _todo_prompt(deliverable: str) -> str:
    return "\n".join([
        "Objective: turn the plan into a list of actionable tasks (todo).",
        "",
        f"Context: {deliverable}",
        "",
        "Constraints:",
        "- Return a structured Markdown list (checklist) with 10-25 items.",
        "- Group by sections if necessary.",
        "- Each item must be actionable and concrete.",
    ])


@dataclass
class BuildSession:
    """The single live curation session."""
    root_node_id: str
    direction: ScopeDirection
    max_depth: int
    deliverable: str = ""
    scope_nodes: Dict[str, ScopedNode] = field(default_factory=dict)
    included: Set[str] = field(default_factory=set)
    excluded: Set[str] = field(default_factory=set)
    pinned: Set[str] = field(default_factory=set)
    suggested_included: Set[str] = field(default_factory=set)
    suggested_excluded: Set[str] = field(default_factory=set)
    frozen_suggestions: bool = True
    impact_global_detected: bool = False
    impacted_branch_ids: Set[str] = field(default_factory=set)
    target_plan_node_id: Optional[str] = None

    def branch_members(self, branch_id: str) -> List[str]:
        return [
            node_id for node_id, scoped in self.scope_nodes.items()
            if branch_id in scoped.branches
        ]

    def adopt(self, snapshot: ScopeSnapshot) -> None:
        """Take scope and suggestions from a fresh snapshot."""
        self.scope_nodes = dict(snapshot.scope_nodes)
        self.suggested_included = set(snapshot.suggested_included)
        self.suggested_excluded = set(snapshot.suggested_excluded)
        self.pinned = set(snapshot.pinned)
        self.frozen_suggestions = True


class BuildScopeEngine:
    """
    Owns the build session and derives plan/artifact/todo nodes.

    Usage:
        engine = BuildScopeEngine(store, scheduler=dispatcher.schedule_generation)
        engine.start_build_session(root_id)
        engine.set_build_deliverable("Launch checklist")
        plan_id = engine.generate_plan_from_build_session()
    """

    def __init__(
        self,
        store: GraphStore,
        scorer: Optional[Scorer] = None,
        scheduler: Optional[Callable[[str], None]] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.scorer = scorer
        self.scheduler = scheduler
        self.config = config or get_config()
        self._session: Optional[BuildSession] = None
        self._wiring = False
        store.event_bus.subscribe(EventType.EDGE_CREATED, self._on_edge_created)

    @property
    def session(self) -> Optional[BuildSession]:
        return self._session

    def close(self) -> None:
        self.store.event_bus.unsubscribe(EventType.EDGE_CREATED, self._on_edge_created)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _snapshot(self, root_id: str, direction: ScopeDirection, max_depth: int) -> ScopeSnapshot:
        return compute_build_scope_snapshot(
            root_id,
            self.store.nodes_by_id(),
            direction=direction,
            max_depth=max_depth,
            scorer=self.scorer,
        )

    def _schedule(self, node_id: str) -> None:
        if self.scheduler is None:
            logger.debug(f"No scheduler; {node_id} left for manual generation")
            return
        self.scheduler(node_id)

    @contextmanager
    def _internal_wiring(self) -> Iterator[None]:
        """Edges added here are not treated as user edits of the live scope."""
        self._wiring = True
        try:
            yield
        finally:
            self._wiring = False

    def _link(self, source_id: str, target_id: str) -> Optional[str]:
        if self.store.would_create_cycle(source_id, target_id):
            logger.warning(f"Skipping link {source_id} -> {target_id}: would create a cycle")
            return None
        return self.store.add_edge(source_id, target_id)

    def _set_pinned(self, node_id: str, pinned: bool) -> bool:
        return self.store.patch_orchestration(node_id, pinned=pinned)

    # =========================================================================
    # SESSION LIFECYCLE
    # =========================================================================

    def _open(self, root_id: str) -> Optional[BuildSession]:
        if not self.store.has_node(root_id):
            return None
        direction = ScopeDirection(self.config.scope_direction)
        max_depth = self.config.scope_max_depth
        session = BuildSession(root_node_id=root_id, direction=direction, max_depth=max_depth)
        session.adopt(self._snapshot(root_id, direction, max_depth))
        session.included = set(session.suggested_included)
        session.excluded = set(session.suggested_excluded)
        self._session = session
        logger.info(f"Build session on {root_id}: {len(session.scope_nodes)} scoped nodes")
        return session

    def start_build_session(self, root_id: str) -> Optional[BuildSession]:
        """Open a session around `root_id`, seeded from the scorer's suggestions."""
        return self._open(root_id)

    def start_build_from_node(self, root_id: str) -> Optional[BuildSession]:
        """Like start_build_session, and tag the root build/manual."""
        if not self.store.has_node(root_id):
            return None
        self.store.set_node_mode(root_id, OperationMode.BUILD, ModeSource.MANUAL)
        return self._open(root_id)

    def start_plan_scope_edit(self, plan_node_id: str) -> Optional[BuildSession]:
        """
        Re-open the scope of an existing plan around its recorded build root.

        Included starts from the plan's current parents (plus the root);
        every other scoped node starts excluded.
        """
        plan_node = self.store.find_node(plan_node_id)
        if plan_node is None:
            return None
        plan = plan_node.orchestration.plan
        root_id = (plan.build_root_node_id if plan else None) or plan_node_id

        direction = ScopeDirection(self.config.scope_direction)
        max_depth = self.config.scope_max_depth
        session = BuildSession(
            root_node_id=root_id,
            direction=direction,
            max_depth=max_depth,
            deliverable=(plan.deliverable if plan else None) or "",
            target_plan_node_id=plan_node_id,
        )
        session.adopt(self._snapshot(root_id, direction, max_depth))
        session.included = set(plan_node.parent_ids) | {root_id}
        session.excluded = {nid for nid in session.scope_nodes if nid not in session.included}
        self._session = session
        return session

    def apply_build_scope_to_plan(self) -> bool:
        """Rewire the target plan's parents to the included set and mark it stale."""
        session = self._session
        if session is None or session.target_plan_node_id is None:
            return False
        plan_node = self.store.find_node(session.target_plan_node_id)
        if plan_node is None:
            return False

        self._session = None
        plan_id = plan_node.id
        next_parents = [nid for nid in session.included if nid != plan_id]

        for parent_id in plan_node.parent_ids:
            edge = self.store.find_edge(parent_id, plan_id)
            if edge is not None:
                self.store.delete_edge(edge.id)
        with self._internal_wiring():
            for parent_id in sorted(next_parents):
                if self.store.has_node(parent_id):
                    self._link(parent_id, plan_id)

        plan_node = self.store.get_node(plan_id)
        if plan_node.status != NodeStatus.LOADING:
            self.store.set_node_status(plan_id, NodeStatus.STALE)
        elif plan_node.orchestration.plan is not None:
            self.store.patch_orchestration(
                plan_id,
                plan=msgspec.structs.replace(plan_node.orchestration.plan, is_stale=True),
            )
        logger.info(f"Applied scope of {len(next_parents)} nodes to plan {plan_id}")
        return True

    def end_build_session(self) -> None:
        self._session = None

    def set_build_deliverable(self, deliverable: str) -> None:
        if self._session is not None:
            self._session.deliverable = deliverable

    # =========================================================================
    # SCOPE SHAPE AND SUGGESTIONS
    # =========================================================================

    def set_build_scope_config(
        self,
        direction: Optional[ScopeDirection] = None,
        max_depth: Optional[int] = None,
    ) -> None:
        """Change direction/depth; recompute and discard manual curation."""
        session = self._session
        if session is None:
            return
        if direction:
            session.direction = ScopeDirection(direction)
        if isinstance(max_depth, int) and not isinstance(max_depth, bool) and max_depth >= 0:
            session.max_depth = max_depth

        session.adopt(self._snapshot(session.root_node_id, session.direction, session.max_depth))
        session.included = set(session.suggested_included)
        session.excluded = set(session.suggested_excluded)
        session.impact_global_detected = False
        session.impacted_branch_ids = set()

    def recompute_build_suggestions(self, branch_id: Optional[str] = None) -> None:
        """
        Without `branch_id`: full refresh of scope and suggestions, impact
        flags cleared. With it: only that branch's nodes are refreshed.
        Curation (included/excluded) is kept either way.
        """
        session = self._session
        if session is None:
            return
        snapshot = self._snapshot(session.root_node_id, session.direction, session.max_depth)

        if not branch_id:
            session.adopt(snapshot)
            session.impact_global_detected = False
            session.impacted_branch_ids = set()
            return

        self._merge_branch(session, snapshot, branch_id, seed_curation=False)
        session.frozen_suggestions = True

    @staticmethod
    def _merge_branch(
        session: BuildSession,
        snapshot: ScopeSnapshot,
        branch_id: str,
        seed_curation: bool,
    ) -> None:
        for node_id, scoped in snapshot.scope_nodes.items():
            if branch_id not in scoped.branches:
                continue
            session.scope_nodes[node_id] = scoped

            if node_id in snapshot.suggested_included:
                session.suggested_included.add(node_id)
                session.suggested_excluded.discard(node_id)
            elif node_id in snapshot.suggested_excluded:
                session.suggested_excluded.add(node_id)
                session.suggested_included.discard(node_id)

            if seed_curation and node_id not in session.included and node_id not in session.excluded:
                if node_id in snapshot.suggested_included:
                    session.included.add(node_id)
                else:
                    session.excluded.add(node_id)

    def _on_edge_created(self, event: GraphEvent) -> None:
        """Incremental scope refresh when the user links nodes mid-session."""
        session = self._session
        if session is None or self._wiring:
            return
        source_id = event.payload.get("source_id")
        target_id = event.payload.get("target_id")
        target = self.store.find_node(target_id) if target_id else None
        if target is None or not self.store.has_node(source_id):
            return

        root_id = session.root_node_id
        source_scoped = session.scope_nodes.get(source_id)
        target_scoped = session.scope_nodes.get(target_id)
        if source_id == root_id:
            branch_ids = [target_id]
        elif source_scoped is not None:
            branch_ids = list(source_scoped.branches)
        elif target_id == root_id:
            branch_ids = [source_id]
        elif target_scoped is not None:
            branch_ids = list(target_scoped.branches)
        else:
            branch_ids = []
        if not branch_ids:
            return

        # depths as they were before this edge
        close_to_pivot = any(
            scoped is not None and scoped.depth <= 1
            for scoped in (source_scoped, target_scoped)
        )
        multi_parent = len(target.parent_ids) > 1
        critical = is_critical_prompt(target.prompt)

        snapshot = self._snapshot(root_id, session.direction, session.max_depth)
        for branch_id in branch_ids:
            self._merge_branch(session, snapshot, branch_id, seed_curation=True)
        session.pinned = set(snapshot.pinned)
        session.frozen_suggestions = True

        if close_to_pivot or multi_parent or critical:
            session.impact_global_detected = True
            session.impacted_branch_ids.update(branch_ids)
            logger.debug(f"Scope impact from {source_id} -> {target_id} on {branch_ids}")

    # =========================================================================
    # CURATION
    # =========================================================================

    def toggle_build_include(self, node_id: str) -> None:
        session = self._session
        if session is None:
            return
        session.excluded.discard(node_id)
        if node_id in session.included:
            session.included.discard(node_id)
            session.excluded.add(node_id)
        else:
            session.included.add(node_id)

    def toggle_build_exclude(self, node_id: str) -> None:
        session = self._session
        if session is None:
            return
        session.included.discard(node_id)
        if node_id in session.excluded:
            session.excluded.discard(node_id)
            session.included.add(node_id)
        else:
            session.excluded.add(node_id)

    def toggle_build_pin(self, node_id: str) -> None:
        """Flip the node's pinned flag; pinning forces inclusion."""
        node = self.store.find_node(node_id)
        if node is None:
            return
        pinned = not node.is_pinned
        self._set_pinned(node_id, pinned)

        session = self._session
        if session is None:
            return
        if pinned:
            session.pinned.add(node_id)
            session.included.add(node_id)
            session.excluded.discard(node_id)
        else:
            session.pinned.discard(node_id)

    def include_build_branch(self, branch_id: str) -> None:
        session = self._session
        if session is None:
            return
        for node_id in session.branch_members(branch_id):
            session.included.add(node_id)
            session.excluded.discard(node_id)

    def exclude_build_branch(self, branch_id: str) -> None:
        """Exclude a branch; pinned nodes stay where they are."""
        session = self._session
        if session is None:
            return
        for node_id in session.branch_members(branch_id):
            if node_id in session.pinned:
                continue
            session.excluded.add(node_id)
            session.included.discard(node_id)

    def pin_build_branch(self, branch_id: str) -> None:
        session = self._session
        if session is None:
            return
        for node_id in session.branch_members(branch_id):
            if not self._set_pinned(node_id, True):
                continue
            session.pinned.add(node_id)
            session.included.add(node_id)
            session.excluded.discard(node_id)

    def unpin_build_branch(self, branch_id: str) -> None:
        session = self._session
        if session is None:
            return
        for node_id in session.branch_members(branch_id):
            if not self._set_pinned(node_id, False):
                continue
            session.pinned.discard(node_id)

    def reset_build_to_suggested(self) -> None:
        session = self._session
        if session is None:
            return
        session.included = set(session.suggested_included)
        session.excluded = set(session.suggested_excluded)

    # =========================================================================
    # DERIVED NODES
    # =========================================================================

    def generate_plan_from_build_session(self) -> Optional[str]:
        """
        Create a plan node backed by the included set (root always in it).

        No-op (None) without a session, with a blank deliverable, or when
        the root is gone. Ends the session and schedules generation.
        """
        session = self._session
        if session is None or not session.deliverable.strip():
            return None
        root = self.store.find_node(session.root_node_id)
        if root is None:
            return None

        included = sorted(session.included | {session.root_node_id})
        scope_hash = scope_fingerprint(included)

        orchestration = OrchestrationMetadata(
            logical_role=LogicalRole.PLAN,
            mode=OperationMode.BUILD,
            mode_source=ModeSource.MANUAL,
            plan=PlanNodeData(
                versions=(PlanVersion(version=1, content="", created_at=now_utc(), scope_hash=scope_hash),),
                active_version=1,
                is_stale=False,
                deliverable=session.deliverable,
                scope_hash=scope_hash,
                build_root_node_id=session.root_node_id,
            ),
        )
        plan_id = self.store.insert_node(NodeData.create(
            prompt=_plan_prompt(session.deliverable),
            position=root.position.offset(*PLAN_OFFSET),
            orchestration=orchestration,
        ))

        self._session = None
        with self._internal_wiring():
            for node_id in included:
                if self.store.has_node(node_id):
                    self.store.add_edge(node_id, plan_id)

        logger.info(f"Plan {plan_id} created from {len(included)} nodes ({scope_hash[:40]})")
        self._schedule(plan_id)
        return plan_id

    def generate_artifact_from_plan(self, plan_node_id: str) -> Optional[str]:
        """Artifact node wired from the plan and from the plan's own parents."""
        plan_node = self.store.find_node(plan_node_id)
        if plan_node is None:
            return None
        plan = plan_node.orchestration.plan
        deliverable = (plan.deliverable if plan else None) or "Artifact"
        parent_ids = sorted(plan_node.parent_ids)
        scope_hash = scope_fingerprint(parent_ids)

        orchestration = OrchestrationMetadata(
            logical_role=LogicalRole.ARTIFACT,
            mode=OperationMode.BUILD,
            mode_source=ModeSource.MANUAL,
            artifact=ArtifactNodeData(is_final=False),
            score_explanation=ScoreExplanation(
                reason=f"Derived from plan scope: {scope_hash[:40]}"
            ),
        )
        artifact_id = self.store.insert_node(NodeData.create(
            prompt=_artifact_prompt(deliverable),
            position=plan_node.position.offset(*ARTIFACT_OFFSET),
            orchestration=orchestration,
        ))
        with self._internal_wiring():
            self.store.add_edge(plan_node_id, artifact_id)
            for parent_id in parent_ids:
                self.store.add_edge(parent_id, artifact_id)

        self._schedule(artifact_id)
        return artifact_id

    def generate_todo_from_plan(self, plan_node_id: str) -> Optional[str]:
        """Todo (artifact role with a todo payload) wired like an artifact."""
        plan_node = self.store.find_node(plan_node_id)
        if plan_node is None:
            return None
        plan = plan_node.orchestration.plan
        deliverable = (plan.deliverable if plan else None) or "Todo"
        scope_hash = scope_fingerprint(sorted(plan_node.parent_ids))

        orchestration = OrchestrationMetadata(
            logical_role=LogicalRole.ARTIFACT,
            mode=OperationMode.BUILD,
            mode_source=ModeSource.MANUAL,
            todo=TodoNodeData(items=(), derived_from_plan_node_id=plan_node_id),
            score_explanation=ScoreExplanation(
                reason=f"Derived from plan scope: {scope_hash[:40]}"
            ),
        )
        todo_id = self.store.insert_node(NodeData.create(
            prompt=_todo_prompt(deliverable),
            position=plan_node.position.offset(*TODO_OFFSET),
            orchestration=orchestration,
        ))
        with self._internal_wiring():
            self.store.add_edge(plan_node_id, todo_id)
            for parent_id in plan_node.parent_ids:
                self.store.add_edge(parent_id, todo_id)

        self._schedule(todo_id)
        return todo_id

    def refresh_plan_version(self, plan_node_id: str) -> Optional[int]:
        """Append an empty plan version for the current parents and regenerate."""
        node = self.store.find_node(plan_node_id)
        if node is None or node.orchestration.plan is None:
            return None
        plan = node.orchestration.plan

        next_version = plan.max_version() + 1
        scope_hash = scope_fingerprint(node.parent_ids)
        next_plan = msgspec.structs.replace(
            plan,
            versions=plan.versions + (
                PlanVersion(version=next_version, content="", created_at=now_utc(), scope_hash=scope_hash),
            ),
            active_version=next_version,
            is_stale=False,
            scope_hash=scope_hash,
        )
        self.store.update_node(
            plan_node_id,
            prompt=_refresh_prompt(plan.deliverable or "Plan"),
            response="",
            status=NodeStatus.IDLE,
            orchestration=node.orchestration.patched(logical_role=LogicalRole.PLAN, plan=next_plan),
        )
        self._schedule(plan_node_id)
        return next_version

    def set_active_plan_version(self, plan_node_id: str, version: int) -> bool:
        """Show a stored version's content. False if the version is unknown."""
        node = self.store.find_node(plan_node_id)
        if node is None or node.orchestration.plan is None:
            return False
        plan = node.orchestration.plan
        selected = plan.get_version(version)
        if selected is None:
            return False
        self.store.update_node(
            plan_node_id,
            response=selected.content,
            status=NodeStatus.IDLE,
            orchestration=node.orchestration.patched(
                logical_role=LogicalRole.PLAN,
                plan=msgspec.structs.replace(plan, active_version=version),
            ),
        )
        return True
