"""
Unit tests for the health check service.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from health.service import HealthCheckService


def relay(healthy: bool = True) -> MagicMock:
    mock = MagicMock()
    mock.channel = "ruralbus:changes"
    mock.health_check = AsyncMock(return_value=healthy)
    return mock


class TestReadiness:

    @pytest.mark.asyncio
    async def test_healthy_store_only(self, memory_store):
        service = HealthCheckService(memory_store)

        status = await service.check_readiness()

        assert status.status == "healthy"
        assert [dep.name for dep in status.dependencies] == ["store"]
        store_dep = status.dependencies[0].to_dict()
        assert store_dep["healthy"] is True
        assert store_dep["details"] == {"backend": "memory", "buses": 4}
        assert store_dep["response_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_unhealthy_store_is_unhealthy(self):
        store = MagicMock()
        store.health_check = AsyncMock(return_value={"healthy": False, "backend": "elasticsearch", "error": "refused"})
        service = HealthCheckService(store, relay=relay())

        status = await service.check_readiness()

        assert status.status == "unhealthy"
        assert status.dependencies[0].error == "refused"

    @pytest.mark.asyncio
    async def test_relay_failure_is_degraded(self, memory_store):
        service = HealthCheckService(memory_store, relay=relay(healthy=False))

        status = await service.check_readiness()

        assert status.status == "degraded"
        relay_dep = next(dep for dep in status.dependencies if dep.name == "redis_relay")
        assert relay_dep.error == "redis_relay reported unhealthy"

    @pytest.mark.asyncio
    async def test_probe_exception_is_reported(self, memory_store):
        broken = relay()
        broken.health_check = AsyncMock(side_effect=ConnectionError("redis down"))
        service = HealthCheckService(memory_store, relay=broken)

        status = await service.check_readiness()

        relay_dep = next(dep for dep in status.dependencies if dep.name == "redis_relay")
        assert "redis down" in relay_dep.error

    @pytest.mark.asyncio
    async def test_slow_probe_times_out(self):
        async def slow_check():
            await asyncio.sleep(1)
            return {"healthy": True}

        store = MagicMock()
        store.health_check = slow_check
        service = HealthCheckService(store, check_timeout=0.05)

        status = await service.check_readiness()

        assert status.status == "unhealthy"
        assert "timed out" in status.dependencies[0].error


class TestLiveness:

    @pytest.mark.asyncio
    async def test_liveness_ignores_dependencies(self):
        store = MagicMock()
        store.health_check = AsyncMock(side_effect=AssertionError("must not be called"))
        service = HealthCheckService(store)

        result = await service.check_liveness()

        assert result["status"] == "alive"
        assert result["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_basic_health(self, memory_store):
        result = await HealthCheckService(memory_store).check_health()

        assert result["status"] == "ok"
