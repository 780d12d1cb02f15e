"""
Real-time change distribution.

The broker fans events out to per-subscriber queues, the Redis relay
links brokers across processes, and the connection manager streams topics
to WebSocket clients.
"""

from .broker import (
    ChangeBroker,
    ChangeEvent,
    Subscription,
    KNOWN_TOPICS,
    TOPIC_BUS_LOCATIONS,
    TOPIC_BUSES_CHANGES,
)
from .connection_manager import ConnectionManager
from .redis_relay import RedisChangeRelay

__all__ = [
    "ChangeBroker",
    "ChangeEvent",
    "Subscription",
    "KNOWN_TOPICS",
    "TOPIC_BUS_LOCATIONS",
    "TOPIC_BUSES_CHANGES",
    "ConnectionManager",
    "RedisChangeRelay",
]
