"""Shutdown coordinator for graceful server shutdown."""

import asyncio
from typing import TYPE_CHECKING

from mcp_fleet.utils import get_logger
from mcp_fleet.utils.audit_logger import AuditEventType, get_audit_logger

if TYPE_CHECKING:
    from mcp_fleet.services import FleetServices

logger = get_logger(__name__)


class ShutdownCoordinator:
    """Coordinator for graceful server shutdown."""

    def __init__(self, services: "FleetServices") -> None:
        """Initialize shutdown coordinator."""
        self.services = services
        self.settings = services.settings
        self._shutdown_initiated = False
        self._shutdown_event = asyncio.Event()

    def is_shutting_down(self) -> bool:
        """
        Check if shutdown has been initiated.

        Returns:
            True if shutdown is in progress
        """
        return self._shutdown_initiated

    async def initiate_shutdown(self) -> None:
        """
        Initiate graceful shutdown sequence.

        This method:
        1. Waits up to FLEET_DRAIN_GRACE_S for running rebuilds
        2. Cancels the rebuilds still running (their processes are killed)
        3. Closes followed log streams
        4. Lets background cache refreshes finish
        5. Closes the state database and the engine client
        """
        if self._shutdown_initiated:
            logger.warning("Shutdown already initiated")
            return

        self._shutdown_initiated = True
        logger.info("Initiating graceful shutdown")

        try:
            cancelled = await self.services.orchestrator.shutdown(self.settings.drain_grace_s)
            await self.services.log_follows.shutdown()
            await self.services.reconciler.wait_for_refreshes()

            get_audit_logger().log_event(
                AuditEventType.SYSTEM_SHUTDOWN, details={"cancelled_rebuilds": cancelled}
            )
            logger.info("Graceful shutdown completed", extra={"cancelled_rebuilds": cancelled})
        except Exception as e:
            logger.error("Error during shutdown", extra={"error": str(e)})
        finally:
            await self.services.db_manager.close()
            self.services.engine.close()
            self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        """Wait for shutdown to complete."""
        await self._shutdown_event.wait()
