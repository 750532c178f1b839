"""Reconciliation of live engine state with the cached fleet snapshot."""

import asyncio
from typing import Callable, List, Optional, Sequence, Set

from mcp_fleet.managers.dependency_graph import DependencyConfig
from mcp_fleet.managers.fleet_cache import FleetCache
from mcp_fleet.models.fleet import ContainerRecord
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.docker_client import EngineClient
from mcp_fleet.utils.exceptions import EngineAPIError, MCPFleetError
from mcp_fleet.utils.metrics_collector import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

# Status text of entries known only from cache
UNAVAILABLE_CACHED_STATUS = "Unavailable (cached)"
UNAVAILABLE_ENGINE_DOWN_STATUS = "Unavailable (engine unreachable)"


class ReconciliationManager:
    """Merges the live fleet with the cache and keeps the cache fresh."""

    def __init__(
        self,
        engine: EngineClient,
        cache: FleetCache,
        config: DependencyConfig,
        is_rebuilding: Optional[Callable[[str], bool]] = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize reconciliation manager.

        Args:
            engine: Engine client
            cache: Fleet cache
            config: Dependency conventions used to filter cached env vars
            is_rebuilding: Returns True while an identity has a running rebuild
            metrics: Metrics collector
        """
        self.engine = engine
        self.cache = cache
        self.config = config
        self.is_rebuilding = is_rebuilding or (lambda identity: False)
        self.metrics = metrics or get_metrics_collector()
        self._refresh_tasks: Set[asyncio.Task] = set()

    async def fetch_live(self) -> List[ContainerRecord]:
        """
        List the live fleet.

        Raises:
            EngineAPIError: If the engine cannot be queried
        """
        try:
            summaries = await asyncio.to_thread(self.engine.list_containers)
        except EngineAPIError:
            self.metrics.record_engine_failure("list")
            raise
        return [ContainerRecord.from_engine(summary) for summary in summaries]

    def reconcile(self, live: Sequence[ContainerRecord]) -> List[ContainerRecord]:
        """
        Merge the live fleet with cached containers.

        Cached containers missing from ``live`` are appended as unavailable.
        Live containers unknown to the cache are inspected and cached in the
        background; that refresh never affects this call.

        Args:
            live: Records built from the engine's current list

        Returns:
            ``live`` unchanged, followed by cache-only entries
        """
        live_names = {record.name for record in live}
        cached = self.cache.get_all()
        cached_names = {record.name for record in cached}

        merged = list(live)
        for record in cached:
            if record.name not in live_names:
                merged.append(record.mark_unavailable(UNAVAILABLE_CACHED_STATUS))

        new_records = [record for record in live if record.name not in cached_names]
        if new_records:
            logger.info(
                "Caching newly observed containers",
                extra={"count": len(new_records), "names": [r.name for r in new_records]},
            )
            self._schedule_refresh(new_records)

        return merged

    def _schedule_refresh(self, records: List[ContainerRecord]) -> None:
        task = asyncio.create_task(self._refresh_quietly(records))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_quietly(self, records: List[ContainerRecord]) -> None:
        try:
            await self.refresh(records)
        except Exception as e:
            logger.warning("Background cache refresh failed", extra={"error": str(e)})

    async def wait_for_refreshes(self) -> None:
        """Wait until scheduled background refreshes have finished."""
        if self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    async def _with_env(self, record: ContainerRecord) -> ContainerRecord:
        try:
            env = await asyncio.to_thread(self.engine.container_env, record.id)
        except MCPFleetError as e:
            logger.warning(
                "Failed to inspect container, keeping cached environment",
                extra={"container_id": record.id, "container_name": record.name, "error": str(e)},
            )
            cached = self.cache.find(record.name)
            return record.model_copy(update={"env": dict(cached.env) if cached else dict(record.env)})
        return record.model_copy(update={"env": self.config.filter_env(env)})

    async def refresh(self, records: Optional[Sequence[ContainerRecord]] = None) -> List[ContainerRecord]:
        """
        Inspect containers and store them with their filtered environment.

        Args:
            records: Containers to refresh; the whole live fleet if None

        Returns:
            Merged cache contents

        Raises:
            EngineAPIError: If records is None and the engine cannot be listed
            PersistenceError: If the snapshot cannot be written
        """
        if records is None:
            records = await self.fetch_live()

        enriched = await asyncio.gather(*(self._with_env(record) for record in records))
        merged = await self.cache.save_containers(enriched)
        self.metrics.set_cached_containers(len(merged))
        return merged

    def _annotate(self, records: List[ContainerRecord]) -> List[ContainerRecord]:
        return [
            record.model_copy(update={"rebuilding": self.is_rebuilding(record.name)})
            for record in records
        ]

    async def list_fleet(self) -> List[ContainerRecord]:
        """
        Best-effort view of the whole fleet.

        Reconciles against the live engine; if the engine is unreachable,
        returns the cache with every entry unavailable.

        Raises:
            EngineAPIError: If the engine fails and the cache is empty
        """
        try:
            live = await self.fetch_live()
        except EngineAPIError as e:
            cached = self.cache.get_all()
            if not cached:
                self.metrics.record_reconcile("failed")
                logger.error("Docker engine unavailable and fleet cache empty", extra={"error": str(e)})
                raise
            self.metrics.record_reconcile("cache_fallback")
            logger.warning(
                "Docker engine unavailable, serving cached fleet",
                extra={"error": str(e), "count": len(cached)},
            )
            return [record.mark_unavailable(UNAVAILABLE_ENGINE_DOWN_STATUS) for record in cached]

        self.metrics.record_reconcile("live")
        return self.reconcile(self._annotate(live))
