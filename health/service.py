"""
Health check service for the rural bus backend.

Readiness probes the store (critical) and, when configured, the Redis
change relay (non-critical). A failed critical dependency makes the
service ``unhealthy``; a failed non-critical one makes it ``degraded``.
Every probe is bounded by a timeout and reports its response time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

STORE_DEPENDENCY = "store"
RELAY_DEPENDENCY = "redis_relay"

CRITICAL_DEPENDENCIES = frozenset({STORE_DEPENDENCY})


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class DependencyHealth:
    """
    Health status of a single dependency.

    Attributes:
        name: The name of the dependency (e.g., "store", "redis_relay")
        healthy: Whether the dependency is healthy and responding
        response_time_ms: The time taken to check the dependency in milliseconds
        error: Optional error message if the dependency check failed
    """
    name: str
    healthy: bool
    response_time_ms: float
    error: Optional[str] = None
    details: Optional[dict] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class HealthStatus:
    """
    Overall health status of the service.

    Attributes:
        status: Overall status - "healthy", "degraded", or "unhealthy"
        timestamp: ISO timestamp of the check
        dependencies: Individual dependency results
    """
    status: str
    timestamp: str
    dependencies: List[DependencyHealth] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


class HealthCheckService:
    """
    Checks readiness and liveness of the service.

    Attributes:
        store: The BusStore whose ``health_check`` is probed
        relay: Optional RedisChangeRelay
        check_timeout: Timeout in seconds for each probe
    """

    def __init__(
        self,
        store: Any,
        relay: Optional[Any] = None,
        check_timeout: float = 5.0
    ):
        self.store = store
        self.relay = relay
        self.check_timeout = check_timeout

    async def check_readiness(self) -> HealthStatus:
        """
        Probe every dependency concurrently.

        Returns:
            HealthStatus aggregating the individual probes
        """
        checks = [self._probe(STORE_DEPENDENCY, self._check_store)]
        if self.relay is not None:
            checks.append(self._probe(RELAY_DEPENDENCY, self._check_relay))

        dependencies = list(await asyncio.gather(*checks))

        return HealthStatus(
            status=self._determine_overall_status(dependencies),
            timestamp=_utc_timestamp(),
            dependencies=dependencies,
        )

    async def check_liveness(self) -> dict[str, Any]:
        """The process is up; dependencies are not consulted."""
        return {"status": "alive", "timestamp": _utc_timestamp()}

    async def check_health(self) -> dict[str, Any]:
        return {"status": "ok", "timestamp": _utc_timestamp()}

    async def _check_store(self) -> tuple:
        result = await self.store.health_check()
        details = {k: v for k, v in result.items() if k not in ("healthy", "error")}
        return bool(result.get("healthy")), result.get("error"), details

    async def _check_relay(self) -> tuple:
        return bool(await self.relay.health_check()), None, {"channel": self.relay.channel}

    async def _probe(
        self,
        name: str,
        check: Callable[[], Awaitable[tuple]],
    ) -> DependencyHealth:
        """
        Run one probe with the configured timeout.

        Args:
            name: Dependency name for the report
            check: Coroutine function returning (healthy, error, details)
        """
        start_time = time.perf_counter()

        try:
            healthy, error, details = await asyncio.wait_for(check(), timeout=self.check_timeout)
        except asyncio.TimeoutError:
            healthy, details = False, None
            error = f"{name} health check timed out after {self.check_timeout} seconds"
            logger.warning(error)
        except Exception as e:
            healthy, details = False, None
            error = f"{name} health check failed: {e}"
            logger.error(error)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if not healthy and error is None:
            error = f"{name} reported unhealthy"

        return DependencyHealth(
            name=name,
            healthy=healthy,
            response_time_ms=elapsed_ms,
            error=error,
            details=details,
        )

    def _determine_overall_status(self, dependencies: List[DependencyHealth]) -> str:
        """
        - "healthy": every dependency is healthy
        - "degraded": only non-critical dependencies are unhealthy
        - "unhealthy": a critical dependency is unhealthy
        """
        unhealthy = [dep for dep in dependencies if not dep.healthy]
        if not unhealthy:
            return "healthy"
        if any(dep.name in CRITICAL_DEPENDENCIES for dep in unhealthy):
            return "unhealthy"
        return "degraded"
