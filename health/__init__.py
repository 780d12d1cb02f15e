"""
Health checks for the rural bus backend: liveness, and readiness of the
store and the Redis change relay with per-dependency response times.
"""

from health.service import (
    HealthCheckService,
    HealthStatus,
    DependencyHealth,
)

__all__ = [
    "HealthCheckService",
    "HealthStatus",
    "DependencyHealth",
]
