"""
In-process change broker.

Publishers hand an event to ``publish``; every current subscriber of the
topic receives it on its own bounded queue. A slow subscriber never blocks
the publisher: when its queue is full the oldest buffered event is dropped.

An optional relay (see ``realtime.redis_relay``) carries events between
processes so subscribers on one worker see events published on another.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

TOPIC_BUS_LOCATIONS = "bus_locations"
TOPIC_BUSES_CHANGES = "buses_changes"

KNOWN_TOPICS = frozenset({TOPIC_BUS_LOCATIONS, TOPIC_BUSES_CHANGES})


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ChangeEvent:
    """
    One published event.

    Attributes:
        topic: Topic the event was published on
        event: Event name, e.g. ``location_update`` or ``UPDATE``
        payload: JSON-serializable event data
        origin: Instance id of the publishing broker
        timestamp: ISO 8601 UTC publication time
    """
    topic: str
    event: str
    payload: Dict[str, Any]
    origin: str
    timestamp: str = field(default_factory=_utc_timestamp)

    def to_message(self) -> Dict[str, Any]:
        """The frame sent to WebSocket clients."""
        return {
            "type": self.event,
            "topic": self.topic,
            "data": self.payload,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps({
            "topic": self.topic,
            "event": self.event,
            "payload": self.payload,
            "origin": self.origin,
            "timestamp": self.timestamp,
        }, default=str)

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            topic=data["topic"],
            event=data["event"],
            payload=data.get("payload") or {},
            origin=data.get("origin", ""),
            timestamp=data.get("timestamp") or _utc_timestamp(),
        )


class Subscription:
    """
    Handle returned by ``ChangeBroker.subscribe``.

    Events are read from ``queue`` (or with ``get``). ``dropped`` counts
    events discarded because the queue was full.
    """

    def __init__(self, topic: str, max_queue_size: int) -> None:
        self.id = str(uuid.uuid4())
        self.topic = topic
        self.queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self.active = True

    def offer(self, event: ChangeEvent) -> None:
        """Enqueue without blocking, evicting the oldest event when full."""
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Wait for the next event.

        Returns:
            The event, or None if ``timeout`` elapsed first
        """
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def __repr__(self) -> str:
        return f"Subscription(id={self.id!r}, topic={self.topic!r}, pending={self.queue.qsize()})"


class ChangeBroker:
    """
    Topic-based fan-out to subscriber queues.

    Args:
        max_queue_size: Buffer size of each subscriber queue
        instance_id: Identifies this process on the relay; generated when omitted
    """

    def __init__(self, max_queue_size: int = 100, instance_id: Optional[str] = None) -> None:
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        self.max_queue_size = max_queue_size
        self.instance_id = instance_id or str(uuid.uuid4())
        self._subscriptions: Dict[str, Set[Subscription]] = {}
        self._relay = None

    def attach_relay(self, relay) -> None:
        """Forward every local publication through ``relay.forward``."""
        self._relay = relay

    def detach_relay(self) -> None:
        self._relay = None

    @property
    def relay(self):
        return self._relay

    def subscribe(self, topic: str) -> Subscription:
        """
        Register a new subscriber for ``topic``.

        Raises:
            ValueError: If topic is empty
        """
        if not topic:
            raise ValueError("topic must be a non-empty string")

        subscription = Subscription(topic, self.max_queue_size)
        self._subscriptions.setdefault(topic, set()).add(subscription)

        logger.debug(
            f"Subscribed to {topic}",
            extra={"extra_data": {"topic": topic, "subscription_id": subscription.id}}
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop delivering to ``subscription``. Safe to call more than once."""
        subscription.active = False
        subscribers = self._subscriptions.get(subscription.topic)
        if not subscribers:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscriptions[subscription.topic]

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._subscriptions.get(topic, ()))
        return sum(len(subs) for subs in self._subscriptions.values())

    def topics(self) -> List[str]:
        return sorted(self._subscriptions)

    def deliver(self, event: ChangeEvent) -> int:
        """
        Hand ``event`` to every local subscriber of its topic.

        Returns:
            Number of subscribers the event was queued for
        """
        subscribers = list(self._subscriptions.get(event.topic, ()))
        for subscription in subscribers:
            subscription.offer(event)
        return len(subscribers)

    async def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> int:
        """
        Publish an event locally and through the relay, if one is attached.

        Relay failures are logged and do not fail the publication.

        Returns:
            Number of local subscribers the event was queued for
        """
        change = ChangeEvent(topic=topic, event=event, payload=payload, origin=self.instance_id)
        delivered = self.deliver(change)

        if self._relay is not None:
            try:
                await self._relay.forward(change)
            except Exception as e:
                logger.warning(
                    "Failed to relay change event",
                    extra={"extra_data": {"topic": topic, "event": event, "error": str(e)}}
                )

        logger.debug(
            f"Published {event} on {topic}",
            extra={"extra_data": {"topic": topic, "event": event, "delivered": delivered}}
        )
        return delivered
