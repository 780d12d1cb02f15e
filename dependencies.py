"""
Per-application service container and FastAPI dependency getters.

``create_app`` builds one AppContext and stores it on ``app.state``;
endpoints reach the services through the getters below rather than
through module-level singletons.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from starlette.requests import HTTPConnection

from config.settings import Settings
from health.service import HealthCheckService
from ingestion.service import LocationIngestService
from realtime.broker import ChangeBroker
from realtime.connection_manager import ConnectionManager
from realtime.redis_relay import RedisChangeRelay
from simulator.service import LocationSimulator
from store.base import BusStore
from telemetry.service import TelemetryService


@dataclass
class AppContext:
    """Services shared by the endpoints of one application instance."""
    settings: Settings
    store: BusStore
    broker: ChangeBroker
    ingest_service: LocationIngestService
    connection_manager: ConnectionManager
    health_service: HealthCheckService
    simulator: LocationSimulator
    telemetry: Optional[TelemetryService] = None
    relay: Optional[RedisChangeRelay] = None


def get_context(connection: HTTPConnection) -> AppContext:
    """Works for both HTTP requests and WebSocket connections."""
    return connection.app.state.context


def get_store(request: Request) -> BusStore:
    return get_context(request).store


def get_ingest_service(request: Request) -> LocationIngestService:
    return get_context(request).ingest_service


def get_simulator(request: Request) -> LocationSimulator:
    return get_context(request).simulator


def get_health_service(request: Request) -> HealthCheckService:
    return get_context(request).health_service
