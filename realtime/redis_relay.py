"""
Redis pub/sub relay between broker instances.

Each process publishes its own events to one Redis channel and listens on
the same channel. Events that came from this process are skipped on the
way back in, so local subscribers see every event exactly once.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from realtime.broker import ChangeBroker, ChangeEvent

logger = logging.getLogger(__name__)


class RedisChangeRelay:
    """
    Forward broker events to Redis and deliver remote events locally.

    Args:
        redis: Async Redis client
        broker: Local broker to feed
        channel: Pub/sub channel shared by all instances
    """

    def __init__(self, redis: Redis, broker: ChangeBroker, channel: str = "ruralbus:changes") -> None:
        self._redis = redis
        self._broker = broker
        self.channel = channel
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.received = 0

    @classmethod
    def from_url(cls, url: str, broker: ChangeBroker, channel: str = "ruralbus:changes") -> "RedisChangeRelay":
        return cls(Redis.from_url(url), broker, channel)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Subscribe to the channel, start listening and attach to the broker."""
        if self._running:
            return

        await self._redis.ping()
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._running = True
        self._task = asyncio.create_task(self._listen())
        self._broker.attach_relay(self)

        logger.info(
            "Redis change relay started",
            extra={"extra_data": {"channel": self.channel, "instance_id": self._broker.instance_id}}
        )

    async def stop(self) -> None:
        """Detach from the broker, stop listening and close the connection."""
        self._running = False
        if self._broker.relay is self:
            self._broker.detach_relay()

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

        await self._redis.aclose()
        logger.info("Redis change relay stopped")

    async def forward(self, event: ChangeEvent) -> None:
        await self._redis.publish(self.channel, event.to_json())

    async def health_check(self) -> bool:
        return bool(await self._redis.ping()) and self._running

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                self._process_message(message)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "Redis relay receive failed",
                    extra={"extra_data": {"channel": self.channel, "error": str(e)}}
                )
                await asyncio.sleep(1)

    def _process_message(self, message: Dict[str, Any]) -> None:
        if message.get("type") != "message":
            return

        data = message.get("data", b"")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            event = ChangeEvent.from_json(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(
                "Discarding malformed relay message",
                extra={"extra_data": {"channel": self.channel, "error": str(e)}}
            )
            return

        if event.origin == self._broker.instance_id:
            return

        self.received += 1
        self._broker.deliver(event)
