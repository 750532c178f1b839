"""Live log follow shared between observers of the same container."""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

from mcp_fleet.config import Settings
from mcp_fleet.managers.event_broker import LOG_DATA, LOG_ERROR, EventBroker, Subscription, log_topic
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.docker_client import EngineClient, LogStream
from mcp_fleet.utils.exceptions import MCPFleetError
from mcp_fleet.utils.log_frames import FrameDemultiplexer
from mcp_fleet.utils.metrics_collector import MetricsCollector, get_metrics_collector

logger = get_logger(__name__)

# Time a pump gets to notice its closed stream before it is cancelled
STOP_TIMEOUT_S = 5.0


@dataclass
class _Follow:
    container_id: str
    refs: int = 0
    task: Optional[asyncio.Task] = None
    stream: Optional[LogStream] = None
    stopping: bool = False


class LogFollowManager:
    """
    Reference-counted upstream log streams.

    The first observer of a container opens the engine stream; every decoded
    line is published on the container's log topic. The stream is closed
    when the last observer leaves.
    """

    def __init__(
        self,
        engine: EngineClient,
        broker: EventBroker,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize log follow manager.

        Args:
            engine: Engine client
            broker: Event broker carrying the log topics
            settings: Application settings (tail and idle timeout)
            metrics: Metrics collector
        """
        self.engine = engine
        self.broker = broker
        self.settings = settings
        self.metrics = metrics or get_metrics_collector()
        self._follows: Dict[str, _Follow] = {}

    def active_follows(self) -> int:
        """Number of upstream streams currently followed."""
        return sum(1 for f in self._follows.values() if f.task is not None and not f.task.done())

    def subscribe(self, container_id: str) -> Subscription:
        """
        Subscribe to a container's live logs.

        Args:
            container_id: Container ID or name

        Returns:
            Subscription on the container's log topic; release it with
            ``unsubscribe``
        """
        subscription = self.broker.subscribe(log_topic(container_id))
        follow = self._follows.get(container_id)
        if follow is None:
            follow = _Follow(container_id=container_id)
            self._follows[container_id] = follow
        follow.refs += 1
        if follow.task is None or follow.task.done():
            follow.stopping = False
            follow.task = asyncio.create_task(self._pump(follow))
            logger.info("Following container logs", extra={"container_id": container_id})
        self.metrics.set_active_log_follows(self.active_follows())
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription; stops the upstream stream on the last one."""
        if subscription.closed:
            return
        subscription.close()
        container_id = subscription.topic.split(":", 1)[1]
        follow = self._follows.get(container_id)
        if follow is None:
            return
        follow.refs -= 1
        if follow.refs <= 0:
            del self._follows[container_id]
            await self._stop(follow)
        self.metrics.set_active_log_follows(self.active_follows())

    async def _stop(self, follow: _Follow) -> None:
        follow.stopping = True
        if follow.stream is not None:
            follow.stream.close()
        if follow.task is not None and not follow.task.done():
            # A pump still opening the stream closes it itself once it sees ``stopping``
            _, pending = await asyncio.wait([follow.task], timeout=STOP_TIMEOUT_S)
            if pending:
                follow.task.cancel()
                await asyncio.gather(follow.task, return_exceptions=True)
        logger.info("Stopped following container logs", extra={"container_id": follow.container_id})

    def _error(self, container_id: str, message: str) -> None:
        self.broker.publish(
            log_topic(container_id), LOG_ERROR, {"containerId": container_id, "error": message}
        )

    async def _pump(self, follow: _Follow) -> None:
        container_id = follow.container_id
        topic = log_topic(container_id)
        try:
            stream = await asyncio.to_thread(
                self.engine.follow_logs,
                container_id,
                self.settings.log_follow_tail,
                self.settings.log_follow_idle_timeout_s,
            )
        except MCPFleetError as e:
            logger.warning(
                "Failed to open log stream", extra={"container_id": container_id, "error": str(e)}
            )
            self._error(container_id, str(e))
            return

        follow.stream = stream
        if follow.stopping:
            stream.close()
            return

        demux = FrameDemultiplexer()
        try:
            while True:
                chunk = await asyncio.to_thread(stream.read_chunk)
                if chunk is None:
                    break
                for kind, line in demux.feed_lines(chunk):
                    self.broker.publish(
                        topic, LOG_DATA, {"containerId": container_id, "data": line, "stream": kind}
                    )
        except MCPFleetError as e:
            if not stream.closed:
                logger.warning(
                    "Log stream failed", extra={"container_id": container_id, "error": str(e)}
                )
                self._error(container_id, str(e))
        finally:
            stream.close()
            if demux.pending_bytes:
                logger.debug(
                    "Discarding incomplete log frame",
                    extra={"container_id": container_id, "bytes": demux.pending_bytes},
                )

    async def shutdown(self) -> None:
        """Stop every upstream stream."""
        follows = list(self._follows.values())
        self._follows.clear()
        for follow in follows:
            await self._stop(follow)
        self.metrics.set_active_log_follows(0)
