"""
Location ingest service for bus tracking devices.

A device reports its position together with the API key it was issued.
The service checks that the key grants access to that bus, overwrites the
bus position in the store, and announces the new position on the
``bus_locations`` topic.

Order of checks:
1. payload shape and ranges (400)
2. API key grant: present, active, and bound to the reported bus (401)
3. store write (500 on failure, 404 if the bus row is missing)

Announcement failures are logged and never undo the write.
"""

import contextlib
import logging
import time
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from errors.exceptions import (
    AppException,
    internal_error,
    resource_not_found,
    store_write_failed,
    unauthorized,
    validation_error,
)
from realtime.broker import ChangeBroker, TOPIC_BUS_LOCATIONS
from store.base import BusStore
from store.models import ApiKeyGrant, Bus, BusPositionUpdate, utc_now
from telemetry.service import TelemetryService, get_telemetry_service

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_LABEL = "Unknown Location"
LOCATION_UPDATE_EVENT = "location_update"

MAX_BUS_ID_LENGTH = 100
MAX_LABEL_LENGTH = 200


class BusPositionReport(BaseModel):
    """
    One position report from a tracking device.

    The label may also be sent as ``current_location``, the name older
    device firmware uses.

    Attributes:
        bus_id: Id of the reporting bus
        latitude: GPS latitude (-90 to 90 degrees)
        longitude: GPS longitude (-180 to 180 degrees)
        speed: Optional speed in km/h, not negative
        heading: Optional heading in degrees (0 to 360)
        label: Optional human-readable location description
        api_key: Secret issued to the device for this bus
    """
    model_config = ConfigDict(allow_inf_nan=False, populate_by_name=True)

    bus_id: str
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    label: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("label", "current_location"),
    )
    api_key: str

    @field_validator("latitude", "longitude", "speed", "heading", mode="before")
    @classmethod
    def reject_booleans(cls, v: Any) -> Any:
        """JSON true/false would otherwise be read as 1.0/0.0."""
        if isinstance(v, bool):
            raise ValueError("must be a number")
        return v

    @field_validator("bus_id")
    @classmethod
    def validate_bus_id(cls, v: str) -> str:
        """
        Validate bus_id is not empty and has reasonable length.

        Raises:
            ValueError: If bus_id is empty or too long
        """
        v = v.strip()
        if not v:
            raise ValueError("bus_id cannot be empty")
        if len(v) > MAX_BUS_ID_LENGTH:
            raise ValueError(f"bus_id cannot exceed {MAX_BUS_ID_LENGTH} characters")
        return v

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: float) -> float:
        if not -90 <= v <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: float) -> float:
        if not -180 <= v <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        return v

    @field_validator("speed")
    @classmethod
    def validate_speed(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError("Speed cannot be negative")
        return v

    @field_validator("heading")
    @classmethod
    def validate_heading(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not 0 <= v <= 360:
            raise ValueError("Heading must be between 0 and 360 degrees")
        return v

    @field_validator("label")
    @classmethod
    def validate_label(cls, v: Optional[str]) -> Optional[str]:
        """
        Normalize the label: blank becomes None, control characters and
        over-long text are rejected.
        """
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) > MAX_LABEL_LENGTH:
            raise ValueError(f"label cannot exceed {MAX_LABEL_LENGTH} characters")
        if any(ord(ch) < 32 or ord(ch) == 127 for ch in v):
            raise ValueError("label cannot contain control characters")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("api_key cannot be empty")
        return v


def parse_report(payload: Any) -> BusPositionReport:
    """
    Validate a decoded JSON body as a BusPositionReport.

    Raises:
        AppException: VALIDATION_ERROR listing every offending field
    """
    try:
        return BusPositionReport.model_validate(payload)
    except ValidationError as e:
        errors = [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
            for err in e.errors()
        ]
        raise validation_error(
            "Invalid location payload",
            details={"validation_errors": errors},
        ) from e


class LocationIngestService:
    """
    Accepts position reports: authorize, write, announce.

    Attributes:
        store: Backing store for grants and bus rows
        broker: Broker receiving ``location_update`` events; optional
        telemetry: Telemetry service for spans, metrics and audit lines
        default_label: Label stored when a report carries none
    """

    def __init__(
        self,
        store: BusStore,
        broker: Optional[ChangeBroker] = None,
        telemetry: Optional[TelemetryService] = None,
        default_label: str = DEFAULT_LOCATION_LABEL,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.broker = broker
        self.telemetry = telemetry or get_telemetry_service()
        self.default_label = default_label
        self._clock = clock

    def _span(self, name: str, **attributes: Any):
        if self.telemetry is None:
            return contextlib.nullcontext()
        return self.telemetry.create_span(name, attributes=attributes)

    async def authorize(self, report: BusPositionReport) -> ApiKeyGrant:
        """
        Resolve the report's API key and check it covers the reported bus.

        Returns:
            The matching active grant

        Raises:
            AppException: UNAUTHORIZED for an unknown, inactive or
                mismatched key; INTERNAL_ERROR if the lookup itself failed
        """
        try:
            grant = await self.store.get_api_key_grant(report.api_key)
        except Exception as e:
            logger.error(
                "API key lookup failed",
                extra={"extra_data": {"bus_id": report.bus_id, "error": str(e)}}
            )
            raise internal_error() from e

        reason = None
        if grant is None:
            reason = "unknown_key"
        elif not grant.is_active:
            reason = "inactive_key"
        elif grant.bus_id != report.bus_id:
            reason = "bus_mismatch"

        if reason is not None:
            logger.warning(
                f"Location report rejected for bus {report.bus_id}",
                extra={"extra_data": {"bus_id": report.bus_id, "reason": reason}}
            )
            if self.telemetry:
                self.telemetry.log_audit_event(
                    event_type="auth_rejected",
                    actor=report.bus_id,
                    resource_type="bus",
                    resource_id=report.bus_id,
                    action="update_location",
                    details={"reason": reason},
                )
            raise unauthorized()

        return grant

    def build_update(self, report: BusPositionReport) -> BusPositionUpdate:
        """Map an accepted report to the fields it overwrites."""
        return BusPositionUpdate(
            latitude=report.latitude,
            longitude=report.longitude,
            current_location=report.label or self.default_label,
            speed=report.speed,
            heading=report.heading,
            last_updated=self._clock(),
        )

    async def ingest(self, report: BusPositionReport) -> Bus:
        """
        Process one position report.

        Args:
            report: A validated report

        Returns:
            The bus record after the update

        Raises:
            AppException: UNAUTHORIZED, RESOURCE_NOT_FOUND, STORE_WRITE_FAILED
                or INTERNAL_ERROR
        """
        start_time = time.perf_counter()

        with self._span("ingest.location_update", bus_id=report.bus_id):
            await self.authorize(report)
            update = self.build_update(report)

            try:
                bus = await self.store.update_bus_position(report.bus_id, update)
            except Exception as e:
                logger.error(
                    f"Failed to store location for bus {report.bus_id}",
                    extra={"extra_data": {
                        "bus_id": report.bus_id,
                        "error": str(e),
                        "error_code": e.error_code.value if isinstance(e, AppException) else None,
                    }}
                )
                raise store_write_failed(details={"bus_id": report.bus_id}) from e

            if bus is None:
                logger.warning(
                    f"Location report for unknown bus {report.bus_id}",
                    extra={"extra_data": {"bus_id": report.bus_id}}
                )
                raise resource_not_found(
                    f"Bus '{report.bus_id}' not found",
                    details={"bus_id": report.bus_id},
                )

            await self._publish_location(bus)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self.telemetry:
            self.telemetry.record_metric(
                "location_update_duration_ms",
                duration_ms,
                tags={"bus_id": bus.id}
            )

        logger.info(
            f"Location updated for bus {bus.id}",
            extra={"extra_data": {
                "bus_id": bus.id,
                "latitude": bus.latitude,
                "longitude": bus.longitude,
                "duration_ms": round(duration_ms, 2),
            }}
        )
        return bus

    async def _publish_location(self, bus: Bus) -> None:
        """
        Announce the new position on the ``bus_locations`` topic.

        Failures are logged; the stored position stands.
        """
        if self.broker is None:
            return

        payload = {
            "bus_id": bus.id,
            "latitude": bus.latitude,
            "longitude": bus.longitude,
            "label": bus.current_location,
            "last_updated": bus.last_updated.isoformat(),
        }

        try:
            delivered = await self.broker.publish(TOPIC_BUS_LOCATIONS, LOCATION_UPDATE_EVENT, payload)
        except Exception as e:
            logger.warning(
                f"Failed to broadcast location update: {e}",
                extra={"extra_data": {"bus_id": bus.id, "error": str(e)}}
            )
            if self.telemetry:
                self.telemetry.record_metric("location_broadcast_failures", 1, tags={"bus_id": bus.id})
            return

        logger.debug(
            f"Location update broadcast to {delivered} subscribers",
            extra={"extra_data": {"bus_id": bus.id, "subscribers": delivered}}
        )
