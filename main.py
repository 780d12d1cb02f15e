"""
Rural Bus Tracking API.

Tracking devices post positions to ``/location-updates``; the public site
reads buses and schedules from ``/api`` and follows live changes over
``/ws/{topic}``. ``create_app`` wires one independent application per call.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import data_endpoints
import ingest_endpoints
import simulator_endpoints
from config.settings import Settings, get_settings, validate_startup
from dependencies import AppContext, get_context, get_health_service
from errors.handlers import register_exception_handlers
from health.service import HealthCheckService
from ingestion.service import LocationIngestService
from middleware.cors import INGEST_PATH, IngestCORSMiddleware
from middleware.rate_limiter import setup_rate_limiting
from middleware.request_id import RequestIDMiddleware
from middleware.security_headers import setup_security_headers
from realtime.broker import KNOWN_TOPICS, ChangeBroker
from realtime.connection_manager import ConnectionManager
from realtime.redis_relay import RedisChangeRelay
from resilience.retry import RetryExhaustedException, retry_async
from simulator.service import LocationSimulator
from store import create_store
from store.base import BusStore
from telemetry.service import initialize_telemetry

logger = logging.getLogger(__name__)

SERVICE_NAME = "Rural Bus Tracking API"
SERVICE_VERSION = "1.0.0"

router = APIRouter()


def _build_simulator(app: FastAPI, settings: Settings, store: BusStore, telemetry) -> LocationSimulator:
    """
    Simulator posting to ``simulator_ingest_url`` or, when unset, to this
    application in-process.
    """
    timeout = httpx.Timeout(settings.simulator_request_timeout)
    if settings.simulator_ingest_url:
        client = httpx.AsyncClient(timeout=timeout)
        ingest_path = settings.simulator_ingest_url
    else:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://simulator.internal",
            timeout=timeout,
        )
        ingest_path = INGEST_PATH

    return LocationSimulator(
        store=store,
        client=client,
        ingest_path=ingest_path,
        interval_seconds=settings.simulator_interval_seconds,
        max_concurrency=settings.simulator_max_concurrency,
        center=(settings.simulator_center_latitude, settings.simulator_center_longitude),
        spread=settings.simulator_spread_degrees,
        api_key_template=settings.simulator_api_key_template,
        telemetry=telemetry,
    )


async def _start_relay(context: AppContext) -> None:
    """Start the Redis relay; without it events stay local to this process."""
    settings = context.settings
    relay = RedisChangeRelay.from_url(
        settings.redis_url, context.broker, channel=settings.realtime_channel
    )
    context.relay = relay
    context.health_service.relay = relay
    try:
        await retry_async(relay.start, operation_name="redis_relay_start")
    except RetryExhaustedException as e:
        logger.error(
            "Redis relay unavailable, live updates limited to this instance",
            extra={"extra_data": {"error": str(e.last_exception)}}
        )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BusStore] = None,
    broker: Optional[ChangeBroker] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; defaults to the cached environment settings
        store: Store to serve from; defaults to the one ``settings`` selects
        broker: Change broker; a fresh one is created when omitted

    Returns:
        A FastAPI app whose lifespan connects and closes its dependencies
    """
    settings = settings or get_settings()
    validate_startup(settings)

    telemetry = initialize_telemetry(settings)
    broker = broker or ChangeBroker(max_queue_size=settings.realtime_queue_size)
    store = store or create_store(settings)
    store.set_change_broker(broker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context: AppContext = app.state.context
        logger.info(
            f"Starting {SERVICE_NAME}...",
            extra={"extra_data": {
                "environment": settings.environment.value,
                "store_backend": settings.store_backend.value,
            }}
        )

        await retry_async(context.store.connect, operation_name="store_connect")

        if settings.redis_url:
            await _start_relay(context)

        if settings.simulator_enabled:
            await context.simulator.start()

        yield

        logger.info(f"Shutting down {SERVICE_NAME}...")
        await context.simulator.close()
        if context.relay is not None:
            await context.relay.stop()
        await context.store.close()

    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)

    app.state.context = AppContext(
        settings=settings,
        store=store,
        broker=broker,
        ingest_service=LocationIngestService(
            store=store,
            broker=broker,
            telemetry=telemetry,
            default_label=settings.default_location_label,
        ),
        connection_manager=ConnectionManager(
            broker, heartbeat_interval=settings.websocket_heartbeat_seconds
        ),
        health_service=HealthCheckService(store, check_timeout=settings.health_check_timeout),
        simulator=_build_simulator(app, settings, store, telemetry),
        telemetry=telemetry,
    )

    register_exception_handlers(app)

    # =========================================================================
    # Middleware (last added runs first)
    # =========================================================================

    setup_security_headers(app)

    app.add_middleware(RequestIDMiddleware)

    # Browsing API: configured frontend origins only
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Accept",
            "Accept-Language",
            "Content-Language",
            "Content-Type",
            "Authorization",
            "X-Request-ID",
            "X-Requested-With",
        ],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
        ],
        max_age=600,
    )

    # Devices post from anywhere; this must wrap everything else so preflights
    # and error responses on the ingest path carry the open CORS headers
    app.add_middleware(IngestCORSMiddleware)

    setup_rate_limiting(
        app,
        api_requests_per_minute=settings.rate_limit_requests_per_minute,
        ingest_requests_per_minute=settings.rate_limit_ingest_requests_per_minute,
        enabled=settings.rate_limit_enabled,
    )

    app.include_router(router)
    app.include_router(ingest_endpoints.router)
    app.include_router(data_endpoints.router)
    app.include_router(simulator_endpoints.router)

    return app


@router.get("/")
async def root():
    return {"message": SERVICE_NAME, "version": SERVICE_VERSION}


# =============================================================================
# Health Check Endpoints
# =============================================================================

@router.get("/health")
async def health_basic(health_service: HealthCheckService = Depends(get_health_service)):
    """
    Basic health check; dependencies are not consulted.

    Returns:
        dict: Basic health status with service information
    """
    result = await health_service.check_health()
    return {
        "status": result["status"],
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": result["timestamp"]
    }


@router.get("/health/ready")
async def health_ready(health_service: HealthCheckService = Depends(get_health_service)):
    """
    Readiness check with dependency verification.

    Returns:
        JSONResponse: Health status with dependency details
        - 200 OK: store healthy (relay may be degraded)
        - 503 Service Unavailable: store unhealthy
    """
    health_status = await health_service.check_readiness()
    response_data = {
        "status": health_status.status,
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": health_status.timestamp,
        "dependencies": [dep.to_dict() for dep in health_status.dependencies]
    }

    if health_status.status == "unhealthy":
        response_data["failure_reasons"] = [
            {"dependency": dep.name, "error": dep.error}
            for dep in health_status.dependencies
            if not dep.healthy
        ]
        return JSONResponse(status_code=503, content=response_data)

    return response_data


@router.get("/health/live")
async def health_live(health_service: HealthCheckService = Depends(get_health_service)):
    """
    Liveness check; 200 whenever the process is running.

    Returns:
        dict: Simple liveness status indicating the process is alive
    """
    result = await health_service.check_liveness()
    return {
        "status": result["status"],
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": result["timestamp"]
    }


# =============================================================================
# Live Updates
# =============================================================================

@router.websocket("/ws/{topic}")
async def topic_websocket(websocket: WebSocket, topic: str):
    """
    Stream change events for ``topic``.

    Topics:
        bus_locations: location_update events from the ingest endpoint
        buses_changes: row changes on the buses table

    Messages sent to clients:
        {"type": "connection", "status": "connected", "topic": ...}
        {"type": "<event>", "topic": ..., "data": {...}, "timestamp": ...}
        {"type": "heartbeat", "timestamp": ...}
        {"type": "pong", "timestamp": ...}

    Unknown topics are closed with code 1008.
    """
    manager = get_context(websocket).connection_manager
    if topic not in KNOWN_TOPICS:
        await manager.reject(websocket, f"Unknown topic: {topic}")
        return
    await manager.stream(websocket, topic)


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port, log_level="info")
