"""
Storage layer for routes, buses, schedules, API key grants and contact
messages.
"""

from config.settings import Settings, StoreBackend
from store.base import BusStore
from store.elasticsearch_store import ElasticsearchBusStore
from store.memory_store import InMemoryBusStore
from store.models import (
    ApiKeyGrant,
    Bus,
    BusPositionUpdate,
    BusWithRoute,
    ContactMessage,
    Route,
    RouteSummary,
    Schedule,
    ScheduleWithRoute,
)


def create_store(settings: Settings) -> BusStore:
    """Build the store selected by ``settings.store_backend`` (not yet connected)."""
    if settings.store_backend == StoreBackend.ELASTICSEARCH:
        return ElasticsearchBusStore(
            endpoint=settings.elastic_endpoint,
            api_key=settings.elastic_api_key,
            index_prefix=settings.elastic_index_prefix,
        )
    return InMemoryBusStore(seed_demo_data=settings.seed_demo_data)


__all__ = [
    "BusStore",
    "ElasticsearchBusStore",
    "InMemoryBusStore",
    "create_store",
    "ApiKeyGrant",
    "Bus",
    "BusPositionUpdate",
    "BusWithRoute",
    "ContactMessage",
    "Route",
    "RouteSummary",
    "Schedule",
    "ScheduleWithRoute",
]
