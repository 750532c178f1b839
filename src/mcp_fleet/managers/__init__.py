"""Manager modules for business logic."""

from .dependency_graph import DependencyConfig, DependencyGraphBuilder
from .event_broker import EventBroker, Subscription
from .fleet_cache import FleetCache
from .layout_store import LayoutStore
from .log_follow_manager import LogFollowManager
from .rebuild_orchestrator import RebuildJob, RebuildOrchestrator, RebuildRegistry
from .reconciliation_manager import ReconciliationManager
from .script_catalog import ScriptCatalog
from .shutdown_coordinator import ShutdownCoordinator
from .state_store import StateStore

__all__ = [
    "DependencyConfig",
    "DependencyGraphBuilder",
    "EventBroker",
    "FleetCache",
    "LayoutStore",
    "LogFollowManager",
    "RebuildJob",
    "RebuildOrchestrator",
    "RebuildRegistry",
    "ReconciliationManager",
    "ScriptCatalog",
    "ShutdownCoordinator",
    "StateStore",
    "Subscription",
]
