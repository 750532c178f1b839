"""Publish/subscribe channel for live events.

Topics:
    ``fleet``              rebuild status, script output and completion
    ``logs:<containerId>`` followed log lines of one container
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional, Set

from mcp_fleet.utils import get_logger

logger = get_logger(__name__)

FLEET_TOPIC = "fleet"

# Event names sent to observers
LOG_DATA = "log-data"
LOG_ERROR = "log-error"
REBUILD_STATUS_CHANGED = "rebuild-status-changed"
SCRIPT_OUTPUT = "script-output"
SCRIPT_COMPLETED = "script-completed"


def log_topic(container_id: str) -> str:
    """Topic carrying the followed logs of one container."""
    return f"logs:{container_id}"


@dataclass
class Event:
    """A named event with its JSON payload."""

    topic: str
    name: str
    payload: Dict[str, Any]
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> Dict[str, Any]:
        """Wire form: the payload tagged with the event name under ``event``."""
        return {"event": self.name, **self.payload}


class Subscription:
    """One observer's bounded queue on one topic."""

    def __init__(self, broker: "EventBroker", topic: str, maxsize: int) -> None:
        """Create an open subscription."""
        self.broker = broker
        self.topic = topic
        self._queue: asyncio.Queue[Optional[Event]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: Event) -> bool:
        """Enqueue without waiting; returns False if the event was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self) -> Optional[Event]:
        """Wait for the next event; None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> Optional[Event]:
        """Return a queued event or None."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        """Detach from the broker and wake any pending reader."""
        if self.closed:
            return
        self.closed = True
        self.broker._remove(self)
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventBroker:
    """
    In-process topic broker.

    Delivery is at-most-once: a subscriber whose queue is full loses the
    event. Events of one publisher on one topic arrive in publish order.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        """
        Initialize event broker.

        Args:
            queue_size: Maximum pending events per subscription
        """
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, topic: str) -> Subscription:
        """Open a subscription on a topic."""
        subscription = Subscription(self, topic, self.queue_size)
        self._subscribers.setdefault(topic, set()).add(subscription)
        logger.debug("Subscribed", extra={"topic": topic})
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.topic]
        logger.debug("Unsubscribed", extra={"topic": subscription.topic})

    def subscriber_count(self, topic: str) -> int:
        """Number of open subscriptions on a topic."""
        return len(self._subscribers.get(topic, ()))

    def publish(self, topic: str, name: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber of a topic.

        Args:
            topic: Topic name
            name: Event name
            payload: JSON-serializable payload

        Returns:
            Number of subscribers that received the event
        """
        event = Event(topic=topic, name=name, payload=payload)
        delivered = 0
        for subscription in list(self._subscribers.get(topic, ())):
            if subscription.offer(event):
                delivered += 1
            else:
                logger.warning(
                    "Subscriber queue full, dropping event",
                    extra={"topic": topic, "event": name, "dropped": subscription.dropped},
                )
        return delivered
