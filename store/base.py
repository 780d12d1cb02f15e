"""
Abstract store interface for the rural bus backend.

A store owns routes, buses, schedules, API key grants and contact
messages. Implementations are constructed explicitly, connected during
application start-up and closed at shutdown.

Every successful write to a bus row is announced on the ``buses_changes``
topic of the attached change broker.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from realtime.broker import ChangeBroker, TOPIC_BUSES_CHANGES
from store.models import (
    ApiKeyGrant,
    Bus,
    BusPositionUpdate,
    BusWithRoute,
    ContactMessage,
    ScheduleWithRoute,
)

logger = logging.getLogger(__name__)


class BusStore(ABC):
    """Async persistence for bus tracking records."""

    backend_name = "store"

    def __init__(self) -> None:
        self._broker: Optional[ChangeBroker] = None

    def set_change_broker(self, broker: Optional[ChangeBroker]) -> None:
        """Attach the broker that receives row-change events."""
        self._broker = broker

    async def _emit_table_change(self, event: str, record: Bus) -> None:
        """
        Publish a row-change event for a bus write.

        Failures are logged; the write has already happened and stands.
        """
        if self._broker is None:
            return

        try:
            await self._broker.publish(
                TOPIC_BUSES_CHANGES,
                event,
                {"table": "buses", "record": record.model_dump(mode="json")},
            )
        except Exception as e:
            logger.warning(
                "Failed to publish bus change event",
                extra={"extra_data": {"bus_id": record.id, "event": event, "error": str(e)}}
            )

    @abstractmethod
    async def connect(self) -> None:
        """Open connections and prepare indices or seed data."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """
        Probe the backing service.

        Returns:
            Dict with at least ``healthy`` (bool) and ``backend`` keys
        """

    @abstractmethod
    async def get_api_key_grant(self, api_key: str) -> Optional[ApiKeyGrant]:
        """Return the grant for ``api_key``, or None when no such key exists."""

    @abstractmethod
    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        """Return one bus by id, or None."""

    @abstractmethod
    async def update_bus_position(
        self, bus_id: str, update: BusPositionUpdate
    ) -> Optional[Bus]:
        """
        Overwrite the position fields of one bus.

        Args:
            bus_id: Id of the bus row
            update: Fields to overwrite; null speed/heading are written as null

        Returns:
            The updated bus, or None when no row has that id
        """

    @abstractmethod
    async def list_active_buses_with_route(self) -> List[BusWithRoute]:
        """Active buses, each with its route summary."""

    @abstractmethod
    async def list_active_schedules_with_route(self) -> List[ScheduleWithRoute]:
        """Active schedules with route summary, ordered by departure_time."""

    @abstractmethod
    async def create_contact_message(
        self,
        name: str,
        email: str,
        message: str,
        phone: Optional[str] = None,
    ) -> ContactMessage:
        """Persist a contact form submission and return the stored record."""
