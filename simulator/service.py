"""
Location simulator for demos and load checks.

On every tick the simulator lists the active buses, invents a position
near the village centre for each, and posts one report per bus to the
ingest endpoint. Reports go through the real HTTP path, either to a
configured URL or to this application via its own ASGI transport, so API
key checks, storage and broadcast are all exercised.

Ticks run at a fixed rate. A tick that overruns the interval is followed
immediately by the next one; ticks never overlap.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import httpx

from store.base import BusStore
from store.models import Bus, BusPositionUpdate, utc_now
from telemetry.service import TelemetryService, get_telemetry_service, set_request_id

logger = logging.getLogger(__name__)

RESET_LABEL = "Village Center"


@dataclass
class TickResult:
    """Outcome of one simulator tick."""
    started_at: datetime
    buses: int
    succeeded: int
    failed: int
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["duration_ms"] = round(self.duration_ms, 2)
        return data


class LocationSimulator:
    """
    Posts synthetic position reports for every active bus on a fixed schedule.

    Args:
        store: Store listing the active buses and receiving resets
        client: HTTP client whose base URL points at the ingest service
        ingest_path: Path of the ingest endpoint on that client
        interval_seconds: Time between tick starts
        max_concurrency: Upper bound on in-flight reports
        center: (latitude, longitude) the positions are drawn around
        spread: Side of the square, in degrees, positions are drawn from
        api_key_template: Format string producing a bus's API key from ``bus_id``
        rng: Random source, seedable in tests
    """

    def __init__(
        self,
        store: BusStore,
        client: httpx.AsyncClient,
        ingest_path: str = "/location-updates",
        interval_seconds: float = 5.0,
        max_concurrency: int = 10,
        center: Tuple[float, float] = (40.7128, -74.0060),
        spread: float = 0.1,
        api_key_template: str = "simulation_key_{bus_id}",
        rng: Optional[random.Random] = None,
        telemetry: Optional[TelemetryService] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.store = store
        self.client = client
        self.ingest_path = ingest_path
        self.interval_seconds = interval_seconds
        self.max_concurrency = max_concurrency
        self.center = center
        self.spread = spread
        self.api_key_template = api_key_template
        self.rng = rng or random.Random()
        self.telemetry = telemetry or get_telemetry_service()

        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.last_tick: Optional[TickResult] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def api_key_for(self, bus_id: str) -> str:
        return self.api_key_template.format(bus_id=bus_id)

    def build_report(self, bus: Bus) -> Dict[str, Any]:
        """
        Invent one position report for ``bus``.

        The label is sent under ``current_location``, as tracking devices do.
        """
        center_lat, center_lon = self.center
        latitude = center_lat + (self.rng.random() - 0.5) * self.spread
        longitude = center_lon + (self.rng.random() - 0.5) * self.spread
        return {
            "bus_id": bus.id,
            "latitude": max(-90.0, min(90.0, latitude)),
            "longitude": max(-180.0, min(180.0, longitude)),
            "speed": self.rng.uniform(20.0, 80.0),
            "heading": self.rng.uniform(0.0, 360.0),
            "current_location": f"Simulated Location {self.rng.randrange(100)}",
            "api_key": self.api_key_for(bus.id),
        }

    async def _post_report(self, bus: Bus, semaphore: asyncio.Semaphore) -> bool:
        report = self.build_report(bus)
        async with semaphore:
            try:
                response = await self.client.post(self.ingest_path, json=report)
            except Exception as e:
                logger.warning(
                    f"Simulated report for bus {bus.bus_number} failed: {e}",
                    extra={"extra_data": {
                        "bus_id": bus.id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }}
                )
                return False

        if response.status_code != 200:
            logger.warning(
                f"Simulated report for bus {bus.bus_number} rejected",
                extra={"extra_data": {
                    "bus_id": bus.id,
                    "status_code": response.status_code,
                }}
            )
            return False
        return True

    async def tick(self) -> TickResult:
        """
        Post one report for every active bus.

        Per-bus failures are counted, never raised.
        """
        started_at = utc_now()
        start = time.perf_counter()

        buses = await self.store.list_active_buses_with_route()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._post_report(bus, semaphore) for bus in buses)
        )

        succeeded = sum(1 for ok in outcomes if ok)
        result = TickResult(
            started_at=started_at,
            buses=len(buses),
            succeeded=succeeded,
            failed=len(buses) - succeeded,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        self.ticks += 1
        self.last_tick = result

        if self.telemetry:
            self.telemetry.record_metric("simulator_tick_duration_ms", result.duration_ms)
            if result.failed:
                self.telemetry.record_metric("simulator_report_failures", result.failed)

        logger.info(
            f"Simulator tick: {succeeded}/{len(buses)} reports accepted",
            extra={"extra_data": result.to_dict()}
        )
        return result

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            set_request_id(f"simulator-tick-{self.ticks + 1}")
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Simulator tick failed: {e}",
                    exc_info=True,
                    extra={"extra_data": {"error": str(e)}}
                )

            next_tick += self.interval_seconds
            delay = next_tick - loop.time()
            if delay <= 0:
                # Overran the interval: start the next tick now and re-anchor
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def start(self) -> bool:
        """
        Start ticking.

        Returns:
            False if the simulator was already running
        """
        if self.is_running:
            return False

        self._task = asyncio.create_task(self._run())
        logger.info(
            "Location simulator started",
            extra={"extra_data": {
                "interval_seconds": self.interval_seconds,
                "max_concurrency": self.max_concurrency,
            }}
        )
        return True

    async def stop(self) -> bool:
        """
        Cancel the tick loop and wait for it to finish.

        Returns:
            False if the simulator was not running
        """
        if not self.is_running:
            self._task = None
            return False

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

        logger.info("Location simulator stopped", extra={"extra_data": {"ticks": self.ticks}})
        return True

    async def reset_locations(self) -> int:
        """
        Move every active bus back to the village centre.

        Writes go straight to the store; speed and heading are cleared.

        Returns:
            Number of buses reset
        """
        latitude, longitude = self.center
        buses = await self.store.list_active_buses_with_route()
        reset = 0
        for bus in buses:
            update = BusPositionUpdate(
                latitude=latitude,
                longitude=longitude,
                current_location=RESET_LABEL,
                speed=None,
                heading=None,
            )
            if await self.store.update_bus_position(bus.id, update) is not None:
                reset += 1

        if self.telemetry:
            self.telemetry.log_audit_event(
                event_type="simulator_reset",
                actor="simulator",
                resource_type="bus",
                resource_id=None,
                action="reset_location",
                details={"buses_reset": reset},
            )
        logger.info(f"Reset {reset} buses to {RESET_LABEL}")
        return reset

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "max_concurrency": self.max_concurrency,
            "ticks": self.ticks,
            "last_tick": self.last_tick.to_dict() if self.last_tick else None,
        }

    async def close(self) -> None:
        """Stop ticking and close the HTTP client."""
        await self.stop()
        await self.client.aclose()
