"""
Record models for routes, buses, schedules, API key grants and contact
messages, shared by every store implementation.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RouteSummary(BaseModel):
    """The route fields embedded in bus and schedule listings."""
    route_number: str
    name: str
    description: str = ""


class Route(BaseModel):
    id: str
    route_number: str
    name: str
    description: str = ""
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def summary(self) -> RouteSummary:
        return RouteSummary(
            route_number=self.route_number,
            name=self.name,
            description=self.description,
        )


class Bus(BaseModel):
    """
    A tracked vehicle.

    ``current_location`` holds the free-text label of the last report;
    speed and heading are null when the last report omitted them.
    """
    id: str
    bus_number: str
    route_id: str
    current_location: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    speed: Optional[float] = None
    heading: Optional[float] = None
    is_active: bool = True
    last_updated: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class BusWithRoute(Bus):
    route: Optional[RouteSummary] = None


class Schedule(BaseModel):
    id: str
    route_id: str
    departure_time: str = Field(description="Local departure time, HH:MM")
    arrival_time: str = Field(description="Local arrival time, HH:MM")
    frequency: str = "daily"
    days_of_week: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class ScheduleWithRoute(Schedule):
    route: Optional[RouteSummary] = None


class ApiKeyGrant(BaseModel):
    """Authorizes the holder of ``api_key`` to report positions for ``bus_id``."""
    model_config = ConfigDict(frozen=True)

    api_key: str
    bus_id: str
    is_active: bool = True


class ContactMessage(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    message: str
    status: str = "new"
    created_at: datetime = Field(default_factory=utc_now)


class BusPositionUpdate(BaseModel):
    """
    The fields one accepted position report overwrites on a bus.

    Speed and heading are written as given, including null.
    """
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    current_location: str
    speed: Optional[float] = None
    heading: Optional[float] = None
    last_updated: datetime = Field(default_factory=utc_now)

    def as_document(self) -> dict:
        """Partial document with every overwritten field, nulls included."""
        return self.model_dump(mode="json")
