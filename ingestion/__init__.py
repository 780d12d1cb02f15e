"""
Location ingest for bus tracking devices: payload validation, API key
authorization, position write and broadcast.
"""

from ingestion.service import (
    BusPositionReport,
    LocationIngestService,
    parse_report,
    DEFAULT_LOCATION_LABEL,
)

__all__ = [
    "BusPositionReport",
    "LocationIngestService",
    "parse_report",
    "DEFAULT_LOCATION_LABEL",
]
