"""
In-process store used in development and tests.

Records live in dictionaries guarded by an asyncio lock, so concurrent
position updates to one bus serialize and the last write wins.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from store.base import BusStore
from store.models import (
    ApiKeyGrant,
    Bus,
    BusPositionUpdate,
    BusWithRoute,
    ContactMessage,
    Route,
    Schedule,
    ScheduleWithRoute,
)
from store import seed

logger = logging.getLogger(__name__)


class InMemoryBusStore(BusStore):
    """
    Dictionary-backed BusStore.

    Args:
        seed_demo_data: Load the demo routes, buses, schedules and keys on connect
    """

    backend_name = "memory"

    def __init__(self, seed_demo_data: bool = False) -> None:
        super().__init__()
        self.seed_demo_data = seed_demo_data
        self._routes: Dict[str, Route] = {}
        self._buses: Dict[str, Bus] = {}
        self._schedules: Dict[str, Schedule] = {}
        self._grants: Dict[str, ApiKeyGrant] = {}
        self._contact_messages: List[ContactMessage] = []
        self._lock = asyncio.Lock()
        self._connected = False

    async def connect(self) -> None:
        if self.seed_demo_data and not self._buses:
            self.load_demo_data()
        self._connected = True
        logger.info(
            "In-memory store ready",
            extra={"extra_data": {
                "routes": len(self._routes),
                "buses": len(self._buses),
                "schedules": len(self._schedules),
            }}
        )

    async def close(self) -> None:
        self._connected = False

    async def health_check(self) -> Dict[str, Any]:
        return {
            "healthy": True,
            "backend": self.backend_name,
            "buses": len(self._buses),
        }

    def load_demo_data(self) -> None:
        for route in seed.demo_routes():
            self.add_route(route)
        for bus in seed.demo_buses():
            self.add_bus(bus)
        for schedule in seed.demo_schedules():
            self.add_schedule(schedule)
        for grant in seed.demo_api_key_grants():
            self.add_api_key_grant(grant)

    def add_route(self, route: Route) -> None:
        self._routes[route.id] = route

    def add_bus(self, bus: Bus) -> None:
        self._buses[bus.id] = bus

    def add_schedule(self, schedule: Schedule) -> None:
        self._schedules[schedule.id] = schedule

    def add_api_key_grant(self, grant: ApiKeyGrant) -> None:
        self._grants[grant.api_key] = grant

    @property
    def contact_messages(self) -> List[ContactMessage]:
        return list(self._contact_messages)

    async def get_api_key_grant(self, api_key: str) -> Optional[ApiKeyGrant]:
        return self._grants.get(api_key)

    async def get_bus(self, bus_id: str) -> Optional[Bus]:
        return self._buses.get(bus_id)

    async def update_bus_position(
        self, bus_id: str, update: BusPositionUpdate
    ) -> Optional[Bus]:
        async with self._lock:
            bus = self._buses.get(bus_id)
            if bus is None:
                return None
            updated = bus.model_copy(update=update.model_dump())
            self._buses[bus_id] = updated

        await self._emit_table_change("UPDATE", updated)
        return updated

    def _route_summary(self, route_id: str):
        route = self._routes.get(route_id)
        return route.summary() if route else None

    async def list_active_buses_with_route(self) -> List[BusWithRoute]:
        return [
            BusWithRoute(**bus.model_dump(), route=self._route_summary(bus.route_id))
            for bus in self._buses.values()
            if bus.is_active
        ]

    async def list_active_schedules_with_route(self) -> List[ScheduleWithRoute]:
        active = [s for s in self._schedules.values() if s.is_active]
        active.sort(key=lambda s: s.departure_time)
        return [
            ScheduleWithRoute(**s.model_dump(), route=self._route_summary(s.route_id))
            for s in active
        ]

    async def create_contact_message(
        self,
        name: str,
        email: str,
        message: str,
        phone: Optional[str] = None,
    ) -> ContactMessage:
        record = ContactMessage(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone=phone,
            message=message,
        )
        self._contact_messages.append(record)
        return record
