"""Fleet domain types shared by the cache, graph builder and API."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContainerState(str, Enum):
    """Lifecycle state of a container."""

    CREATED = "created"
    RESTARTING = "restarting"
    RUNNING = "running"
    REMOVING = "removing"
    PAUSED = "paused"
    EXITED = "exited"
    DEAD = "dead"
    # Never reported by the engine; set locally for cache-only entries
    UNAVAILABLE = "unavailable"


_ENGINE_STATES = {s.value for s in ContainerState if s is not ContainerState.UNAVAILABLE}


class FleetModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_api(self) -> Dict[str, Any]:
        """Serialize for HTTP and live channel payloads."""
        return self.model_dump(mode="json", by_alias=True)


def identity_of(names: Optional[List[str]], container_id: str) -> str:
    """
    Derive the stable identity of a container.

    Args:
        names: Engine display names (e.g. ["/web"])
        container_id: Engine-assigned ID

    Returns:
        First name without its leading "/", or the ID when unnamed
    """
    if names:
        name = names[0].removeprefix("/")
        if name:
            return name
    return container_id


class PortBinding(FleetModel):
    """A published or exposed container port."""

    private_port: int
    public_port: Optional[int] = None
    type: str = "tcp"
    ip: Optional[str] = None


class ContainerRecord(FleetModel):
    """Best-effort view of one container, live or cached."""

    id: str
    name: str
    names: List[str] = Field(default_factory=list)
    image: Optional[str] = None
    state: ContainerState = ContainerState.UNAVAILABLE
    status: str = ""
    ports: List[PortBinding] = Field(default_factory=list)
    # Only variables matching the dependency-prefix allow-list
    env: Dict[str, str] = Field(default_factory=dict)
    rebuilding: bool = False

    @classmethod
    def from_engine(cls, summary: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> "ContainerRecord":
        """
        Build a record from an engine container-list entry.

        Args:
            summary: One element of the engine's ``/containers/json`` response
            env: Filtered environment variables, if already known

        Returns:
            ContainerRecord
        """
        container_id = summary.get("Id", "")
        names = summary.get("Names") or []
        ports = [
            PortBinding(
                private_port=p["PrivatePort"],
                public_port=p.get("PublicPort"),
                type=p.get("Type", "tcp"),
                ip=p.get("IP"),
            )
            for p in summary.get("Ports") or []
            if "PrivatePort" in p
        ]
        state = summary.get("State") or ContainerState.UNAVAILABLE.value
        if state not in _ENGINE_STATES:
            state = ContainerState.UNAVAILABLE.value
        return cls(
            id=container_id,
            name=identity_of(names, container_id),
            names=list(names),
            image=summary.get("Image"),
            state=state,
            status=summary.get("Status") or "",
            ports=ports,
            env=env or {},
        )

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize for the durable snapshot (rebuilding is never stored)."""
        return self.model_dump(mode="json", exclude={"rebuilding"})

    def mark_unavailable(self, status: str) -> "ContainerRecord":
        """Return a copy flagged as known only from cache."""
        return self.model_copy(
            update={
                "state": ContainerState.UNAVAILABLE.value,
                "status": status,
                "rebuilding": False,
            }
        )


class DependencyEdge(FleetModel):
    """A dependency inferred from one environment variable."""

    env_var: str
    target: str
    url: str
    port: str


class ContainerDependencies(FleetModel):
    """A container with its outgoing dependencies."""

    id: str
    name: str
    state: ContainerState
    status: str
    dependencies: List[DependencyEdge] = Field(default_factory=list)
    # Advisory: some resolved target is exited
    has_broken_dependency: bool = False


class NodePosition(FleetModel):
    """2D coordinate of a graph node."""

    x: float
    y: float


class GraphNode(FleetModel):
    """A laid-out node of the dependency graph."""

    id: str
    name: str
    state: ContainerState
    status: str
    level: int
    position: NodePosition
    position_source: Literal["saved", "computed"] = "computed"
    has_broken_dependency: bool = False


class GraphEdge(DependencyEdge):
    """A dependency edge with its source container."""

    source: str


class DependencyGraph(FleetModel):
    """Nodes and edges of the fleet dependency graph."""

    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
