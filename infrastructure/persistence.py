"""
FORKY PERSISTENCE - The Storage Collaborator

The orchestration engine never owns durable storage. It talks to a
Repository: read-by-id for nodes and projects, a node update, and a
transactional "create node + edges + bump counts" operation. Each call is
assumed strongly consistent on its own; no cross-call transactions.

Persisted node statuses use the wire vocabulary
    IDLE | GENERATING | COMPLETED | ERROR | STALE
(core.ontology.PersistedStatus), distinct from the local view statuses.

InMemoryRepository is the reference implementation, used by the CLI and
the tests. It records every write so callers can assert on them.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import msgspec

from core.errors import NodeNotFoundError, ProjectNotFoundError
from core.ontology import PersistedStatus
from core.schemas import NodeData, generate_id, now_utc


logger = logging.getLogger(__name__)


# =============================================================================
# RECORDS
# =============================================================================

class Project(msgspec.Struct, kw_only=True):
    id: str
    name: Optional[str] = None
    system_prompt: Optional[str] = None
    node_count: int = 0
    edge_count: int = 0
    updated_at: str = msgspec.field(default_factory=now_utc)


class PersistedNode(msgspec.Struct, kw_only=True):
    """A node as the storage layer sees it."""
    id: str
    project_id: str
    prompt: str = ""
    response: Optional[str] = None
    summary: Optional[str] = None
    status: PersistedStatus = PersistedStatus.IDLE
    model: Optional[str] = None
    temperature: Optional[float] = None
    tokens: Optional[int] = None
    parent_ids: List[str] = msgspec.field(default_factory=list)
    updated_at: str = msgspec.field(default_factory=now_utc)


class PersistedEdge(msgspec.Struct, kw_only=True, frozen=True):
    id: str
    project_id: str
    source: str
    target: str


class NodeUpdate(msgspec.Struct, kw_only=True, omit_defaults=True):
    """Partial node write. Unset fields are left untouched."""
    response: Any = msgspec.UNSET
    summary: Any = msgspec.UNSET
    status: Any = msgspec.UNSET
    model: Any = msgspec.UNSET
    temperature: Any = msgspec.UNSET
    tokens: Any = msgspec.UNSET

    def as_fields(self) -> Dict[str, Any]:
        return {
            name: value
            for name in self.__struct_fields__
            if (value := getattr(self, name)) is not msgspec.UNSET
        }


# =============================================================================
# PROTOCOL
# =============================================================================

class Repository(Protocol):
    async def get_node(self, node_id: str) -> Optional[PersistedNode]:
        ...

    async def get_project(self, project_id: str) -> Optional[Project]:
        ...

    async def update_node(self, node_id: str, update: NodeUpdate) -> PersistedNode:
        ...

    async def create_node_with_edges(
        self,
        project_id: str,
        node: NodeData,
        parent_ids: Sequence[str],
    ) -> PersistedNode:
        ...

    async def rename_project(self, project_id: str, name: str) -> Project:
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryRepository:
    """
    Dict-backed Repository.

    Usage:
        repo = InMemoryRepository()
        repo.add_project(Project(id="proj_1", name="Untitled project"))
        await repo.create_node_with_edges("proj_1", node, parent_ids=[])
        await repo.update_node(node.id, NodeUpdate(status=PersistedStatus.GENERATING))
    """

    def __init__(self):
        self.projects: Dict[str, Project] = {}
        self.nodes: Dict[str, PersistedNode] = {}
        self.edges: Dict[str, PersistedEdge] = {}
        # (node_id, fields) for every update, in call order
        self.writes: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = asyncio.Lock()

    def add_project(self, project: Project) -> Project:
        self.projects[project.id] = project
        return project

    async def get_node(self, node_id: str) -> Optional[PersistedNode]:
        return self.nodes.get(node_id)

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    async def update_node(self, node_id: str, update: NodeUpdate) -> PersistedNode:
        """
        Apply a partial write.

        Raises:
            NodeNotFoundError: If the node was never persisted
        """
        async with self._lock:
            node = self.nodes.get(node_id)
            if node is None:
                raise NodeNotFoundError(node_id)
            fields = update.as_fields()
            if "status" in fields:
                fields["status"] = PersistedStatus(fields["status"])
            for name, value in fields.items():
                setattr(node, name, value)
            node.updated_at = now_utc()
            self.writes.append((node_id, fields))
            return node

    async def create_node_with_edges(
        self,
        project_id: str,
        node: NodeData,
        parent_ids: Sequence[str],
    ) -> PersistedNode:
        """
        Create a node and its incoming edges, bumping project counts.

        Raises:
            ProjectNotFoundError: If the project is unknown
        """
        async with self._lock:
            project = self.projects.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)

            persisted = PersistedNode(
                id=node.id,
                project_id=project_id,
                prompt=node.prompt,
                response=node.response or None,
                summary=node.summary,
                parent_ids=list(parent_ids),
            )
            self.nodes[node.id] = persisted
            for parent_id in parent_ids:
                edge_id = generate_id("edge")
                self.edges[edge_id] = PersistedEdge(
                    id=edge_id, project_id=project_id, source=parent_id, target=node.id
                )
            project.node_count += 1
            project.edge_count += len(parent_ids)
            project.updated_at = now_utc()
            logger.debug(f"Persisted node {node.id} with {len(parent_ids)} edges")
            return persisted

    async def rename_project(self, project_id: str, name: str) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        project.name = name
        project.updated_at = now_utc()
        return project

    def statuses_for(self, node_id: str) -> List[PersistedStatus]:
        """Every status written for a node, in order."""
        return [fields["status"] for nid, fields in self.writes if nid == node_id and "status" in fields]
