"""
Location ingest endpoint for bus tracking devices.

``POST /location-updates`` takes a BusPositionReport as JSON. Cross-origin
headers and preflight handling for this path come from
IngestCORSMiddleware; other verbs get the router's 405.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from dependencies import get_ingest_service
from errors.exceptions import AppException, internal_error
from ingestion.service import LocationIngestService, parse_report
from middleware.cors import INGEST_PATH
from middleware.rate_limiter import ingest_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


@router.post(INGEST_PATH)
@ingest_rate_limit()
async def update_bus_location(
    request: Request,
    service: LocationIngestService = Depends(get_ingest_service),
):
    """
    Accept one position report from a tracking device.

    Returns:
        200 with ``{success, message, data: <bus record>}``

    Raises:
        AppException: 400 invalid payload, 401 key not valid for the bus,
            404 bus row missing, 500 unreadable body or store failure
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.error(
            "Location report body is not valid JSON",
            extra={"extra_data": {"error": str(e)}}
        )
        raise internal_error() from e

    report = parse_report(payload)

    try:
        bus = await service.ingest(report)
    except AppException:
        raise
    except Exception as e:
        logger.error(
            f"Unexpected error ingesting location for bus {report.bus_id}",
            exc_info=True,
            extra={"extra_data": {"bus_id": report.bus_id, "error": str(e)}}
        )
        raise internal_error() from e

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": "Location updated successfully",
            "data": bus.model_dump(mode="json"),
        },
    )
