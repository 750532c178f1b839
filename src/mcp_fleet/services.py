"""Wiring of the managers shared by the HTTP, live and MCP surfaces."""

from mcp_fleet.config import Settings, get_settings
from mcp_fleet.managers.dependency_graph import DependencyConfig, DependencyGraphBuilder
from mcp_fleet.managers.event_broker import EventBroker
from mcp_fleet.managers.fleet_cache import FleetCache
from mcp_fleet.managers.layout_store import LayoutStore
from mcp_fleet.managers.log_follow_manager import LogFollowManager
from mcp_fleet.managers.rebuild_orchestrator import RebuildOrchestrator, RebuildRegistry
from mcp_fleet.managers.reconciliation_manager import ReconciliationManager
from mcp_fleet.managers.script_catalog import ScriptCatalog
from mcp_fleet.managers.shutdown_coordinator import ShutdownCoordinator
from mcp_fleet.managers.state_store import StateStore
from mcp_fleet.models.database import DatabaseManager
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.audit_logger import AuditEventType, get_audit_logger
from mcp_fleet.utils.docker_client import DockerClientManager, EngineClient
from mcp_fleet.utils.exceptions import MCPFleetError
from mcp_fleet.utils.metrics_collector import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)


class FleetServices:
    """All long-lived managers of one server process."""

    def __init__(
        self,
        settings: Settings | None = None,
        engine: EngineClient | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Build the manager graph.

        Args:
            settings: Application settings
            engine: Engine client (built from settings if None)
            metrics: Metrics collector
        """
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metrics_collector()
        self.engine = engine or EngineClient(DockerClientManager(self.settings))
        self.db_manager = DatabaseManager(self.settings)

        self.store = StateStore(self.db_manager)
        self.cache = FleetCache(self.store)
        self.layout = LayoutStore(self.store)
        self.config = DependencyConfig.from_settings(self.settings)
        self.broker = EventBroker(self.settings.subscriber_queue_size)
        self.registry = RebuildRegistry()

        self.reconciler = ReconciliationManager(
            self.engine,
            self.cache,
            self.config,
            is_rebuilding=self.registry.is_running,
            metrics=self.metrics,
        )
        self.graph_builder = DependencyGraphBuilder(self.engine, self.config, self.cache)
        self.orchestrator = RebuildOrchestrator(
            self.settings,
            self.broker,
            self.cache,
            self.engine,
            registry=self.registry,
            metrics=self.metrics,
        )
        self.log_follows = LogFollowManager(self.engine, self.broker, self.settings, self.metrics)
        self.scripts = ScriptCatalog(self.settings)
        self.shutdown = ShutdownCoordinator(self)

    async def start(self) -> None:
        """
        Open the state database, load both snapshots and refresh the cache.

        The startup refresh is best-effort: an unreachable engine leaves the
        loaded snapshot in place.
        """
        await self.db_manager.create_tables()
        cached = await self.cache.load()
        positions = await self.layout.load()
        self.metrics.set_cached_containers(cached)
        logger.info("State loaded", extra={"containers": cached, "positions": positions})

        try:
            merged = await self.reconciler.refresh()
            logger.info("Startup cache refresh completed", extra={"containers": len(merged)})
        except MCPFleetError as e:
            logger.warning("Startup cache refresh failed", extra={"error": str(e)})

        get_audit_logger().log_event(
            AuditEventType.SYSTEM_STARTUP, details={"containers": len(self.cache)}
        )

    async def stop(self) -> None:
        """Drain rebuilds and release every resource."""
        await self.shutdown.initiate_shutdown()


# Global instance
_services: FleetServices | None = None


def get_services() -> FleetServices:
    """
    Get the global services instance.

    Returns:
        FleetServices instance
    """
    global _services
    if _services is None:
        _services = FleetServices()
    return _services


def set_services(services: FleetServices | None) -> None:
    """Install (or clear with None) the global services instance."""
    global _services
    _services = services
