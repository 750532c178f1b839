"""Models for MCP Fleet: ORM tables and fleet domain types."""

from .base import Base
from .fleet import (
    ContainerDependencies,
    ContainerRecord,
    ContainerState,
    DependencyEdge,
    DependencyGraph,
    GraphEdge,
    GraphNode,
    NodePosition,
    PortBinding,
    identity_of,
)
from .snapshots import FLEET_SNAPSHOT, LAYOUT, Snapshot

__all__ = [
    "Base",
    "ContainerDependencies",
    "ContainerRecord",
    "ContainerState",
    "DependencyEdge",
    "DependencyGraph",
    "FLEET_SNAPSHOT",
    "GraphEdge",
    "GraphNode",
    "LAYOUT",
    "NodePosition",
    "PortBinding",
    "Snapshot",
    "identity_of",
]
