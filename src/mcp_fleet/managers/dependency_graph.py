"""Dependency inference from environment variables and layered layout.

A container advertises its listening port through a variable ending in the
port suffix (``API_PORT=9000``). Another container depends on it when one of
its dependency variables (``URI_API=http://api:9000/v1``) points at that
port. Misconfigured or unresolvable values produce no edge and no error.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple
from urllib.parse import urlsplit

from mcp_fleet.config import Settings
from mcp_fleet.managers.fleet_cache import FleetCache
from mcp_fleet.models.fleet import (
    ContainerDependencies,
    ContainerRecord,
    ContainerState,
    DependencyEdge,
    DependencyGraph,
    GraphEdge,
    GraphNode,
    NodePosition,
)
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.docker_client import EngineClient
from mcp_fleet.utils.exceptions import MCPFleetError

logger = get_logger(__name__)


@dataclass(frozen=True)
class DependencyConfig:
    """Naming conventions and grid size used by the graph builder."""

    dependency_prefixes: Tuple[str, ...] = ("ENDPOINT_MODULE_", "URI_", "VITE_URI_", "MQTT_URI")
    port_suffix: str = "PORT"
    port_exclude_prefix: str = "VITE_"
    column_width: int = 650
    row_height: int = 280

    @classmethod
    def from_settings(cls, settings: Settings) -> "DependencyConfig":
        """Build the configuration from application settings."""
        return cls(
            dependency_prefixes=tuple(settings.dependency_prefixes_list),
            port_suffix=settings.port_suffix,
            port_exclude_prefix=settings.port_exclude_prefix,
            column_width=settings.layout_column_width,
            row_height=settings.layout_row_height,
        )

    def is_dependency_var(self, key: str) -> bool:
        """True if the variable may carry a dependency URL."""
        return any(key.startswith(prefix) for prefix in self.dependency_prefixes)

    def advertises_port(self, key: str) -> bool:
        """True if the variable announces the container's own listening port."""
        if not key.endswith(self.port_suffix):
            return False
        return not (self.port_exclude_prefix and key.startswith(self.port_exclude_prefix))

    def filter_env(self, env: Mapping[str, str]) -> Dict[str, str]:
        """Keep only dependency variables."""
        return {k: v for k, v in env.items() if self.is_dependency_var(k)}


def parse_endpoint_port(value: str) -> str | None:
    """
    Extract the port of a ``scheme://host:port[/path]`` value.

    Returns:
        Port as a string, or None if the value has no explicit port
    """
    value = value.strip()
    if "://" not in value:
        return None
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname or port is None:
        return None
    return str(port)


def build_port_table(
    fleet: Sequence[ContainerRecord],
    envs: Mapping[str, Mapping[str, str]],
    config: DependencyConfig,
) -> Dict[str, str]:
    """
    Map advertised port values to container identities.

    Later containers overwrite earlier ones on a shared port.
    """
    table: Dict[str, str] = {}
    for record in fleet:
        for key, value in envs.get(record.name, {}).items():
            if value and config.advertises_port(key):
                previous = table.get(value)
                if previous and previous != record.name:
                    logger.debug(
                        "Port advertised by several containers",
                        extra={"port": value, "previous": previous, "current": record.name},
                    )
                table[value] = record.name
    return table


def infer_dependencies(
    fleet: Sequence[ContainerRecord],
    envs: Mapping[str, Mapping[str, str]],
    config: DependencyConfig,
) -> List[ContainerDependencies]:
    """
    Infer every container's outgoing dependencies.

    Args:
        fleet: Reconciled fleet
        envs: Identity to environment variables
        config: Naming conventions

    Returns:
        One entry per container, in fleet order
    """
    ports = build_port_table(fleet, envs, config)
    states = {record.name: record.state for record in fleet}

    result = []
    for record in fleet:
        edges = []
        for key, value in envs.get(record.name, {}).items():
            if not value or not config.is_dependency_var(key):
                continue
            port = parse_endpoint_port(value)
            if port is None or port not in ports:
                continue
            edges.append(DependencyEdge(env_var=key, target=ports[port], url=value, port=port))

        broken = any(states.get(edge.target) == ContainerState.EXITED for edge in edges)
        result.append(
            ContainerDependencies(
                id=record.id,
                name=record.name,
                state=record.state,
                status=record.status,
                dependencies=edges,
                has_broken_dependency=broken,
            )
        )
    return result


def compute_levels(order: Sequence[str], dependencies: Mapping[str, Iterable[str]]) -> Dict[str, int]:
    """
    Assign each node its depth in the dependency DAG.

    Nodes without dependencies sit at level 0; a node is leveled once all of
    its dependencies are, at one more than the deepest of them. Nodes never
    reached (cycles and anything depending on a cycle) default to level 0.

    Args:
        order: Node names in input order
        dependencies: Node name to the names it depends on

    Returns:
        Node name to level
    """
    forward: Dict[str, List[str]] = {name: [] for name in order}
    reverse: Dict[str, List[str]] = {name: [] for name in order}
    for name in order:
        for target in dependencies.get(name, ()):
            if target in forward and target not in forward[name]:
                forward[name].append(target)
                reverse[target].append(name)

    levels: Dict[str, int] = {}
    queue: deque = deque()
    for name in order:
        if not forward[name]:
            levels[name] = 0
            queue.append(name)

    while queue:
        current = queue.popleft()
        for dependent in reverse[current]:
            if dependent in levels:
                continue
            if all(dep in levels for dep in forward[dependent]):
                levels[dependent] = 1 + max(levels[dep] for dep in forward[dependent])
                queue.append(dependent)

    for name in order:
        levels.setdefault(name, 0)
    return levels


def compute_layout(
    order: Sequence[str], levels: Mapping[str, int], config: DependencyConfig
) -> Dict[str, NodePosition]:
    """Place nodes on a grid: level is the column, rank within the level the row."""
    rows: Dict[int, int] = {}
    positions: Dict[str, NodePosition] = {}
    for name in order:
        level = levels.get(name, 0)
        row = rows.get(level, 0)
        rows[level] = row + 1
        positions[name] = NodePosition(x=level * config.column_width, y=row * config.row_height)
    return positions


def build_graph(
    dependencies: Sequence[ContainerDependencies],
    saved_positions: Mapping[str, NodePosition],
    config: DependencyConfig,
) -> DependencyGraph:
    """
    Lay out inferred dependencies, preferring operator-saved positions.

    Args:
        dependencies: Output of ``infer_dependencies``
        saved_positions: Identity to saved position
        config: Grid configuration

    Returns:
        DependencyGraph with one node per container
    """
    order = [entry.name for entry in dependencies]
    levels = compute_levels(
        order, {entry.name: [edge.target for edge in entry.dependencies] for entry in dependencies}
    )
    computed = compute_layout(order, levels, config)

    nodes = []
    edges = []
    for entry in dependencies:
        saved = saved_positions.get(entry.name)
        nodes.append(
            GraphNode(
                id=entry.id,
                name=entry.name,
                state=entry.state,
                status=entry.status,
                level=levels[entry.name],
                position=saved or computed[entry.name],
                position_source="saved" if saved else "computed",
                has_broken_dependency=entry.has_broken_dependency,
            )
        )
        for edge in entry.dependencies:
            edges.append(GraphEdge(source=entry.name, **edge.model_dump()))
    return DependencyGraph(nodes=nodes, edges=edges)


class DependencyGraphBuilder:
    """Fetches environments and runs inference over a reconciled fleet."""

    def __init__(self, engine: EngineClient, config: DependencyConfig, cache: FleetCache) -> None:
        """
        Initialize graph builder.

        Args:
            engine: Engine client for live inspects
            config: Naming conventions and grid size
            cache: Fleet cache holding the last known environments
        """
        self.engine = engine
        self.config = config
        self.cache = cache

    async def _environment(self, record: ContainerRecord) -> Dict[str, str]:
        if record.state == ContainerState.UNAVAILABLE:
            return dict(record.env)
        try:
            return await asyncio.to_thread(self.engine.container_env, record.id)
        except MCPFleetError as e:
            logger.warning(
                "Failed to inspect container, using cached environment",
                extra={"container_id": record.id, "container_name": record.name, "error": str(e)},
            )
            cached = self.cache.find(record.name)
            return dict(cached.env) if cached else dict(record.env)

    async def resolve_environments(self, fleet: Sequence[ContainerRecord]) -> Dict[str, Dict[str, str]]:
        """
        Collect each container's environment.

        Reachable containers are inspected live; cache-only entries and
        failed inspects fall back to the cached (filtered) environment.
        """
        envs = await asyncio.gather(*(self._environment(record) for record in fleet))
        return {record.name: env for record, env in zip(fleet, envs)}

    async def dependencies(self, fleet: Sequence[ContainerRecord]) -> List[ContainerDependencies]:
        """Infer dependencies of a reconciled fleet."""
        envs = await self.resolve_environments(fleet)
        return infer_dependencies(fleet, envs, self.config)

    async def graph(
        self, fleet: Sequence[ContainerRecord], saved_positions: Mapping[str, NodePosition]
    ) -> DependencyGraph:
        """Infer dependencies and lay them out."""
        return build_graph(await self.dependencies(fleet), saved_positions, self.config)
