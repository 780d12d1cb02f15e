"""
Unit tests for rate limiting.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import APIRouter, FastAPI, Request
from fastapi.testclient import TestClient

from middleware import rate_limiter
from middleware.rate_limiter import (
    api_rate_limit,
    get_client_ip,
    get_rate_limit_string,
    ingest_rate_limit,
    limiter,
    setup_rate_limiting,
)


@pytest.fixture
def restore_limiter():
    saved_limits = dict(rate_limiter._limits)
    saved_enabled = limiter.enabled
    limiter.reset()
    yield
    rate_limiter._limits.update(saved_limits)
    limiter.enabled = saved_enabled
    limiter.reset()


# Decorated once: slowapi registers limits per endpoint name, so redefining
# these in every app would stack the limits
router = APIRouter()


@router.get("/api/buses")
@api_rate_limit()
async def buses(request: Request):
    return {"ok": True}


@router.post("/location-updates")
@ingest_rate_limit()
async def ingest(request: Request):
    return {"ok": True}


def _build_app(enabled: bool = True) -> FastAPI:
    app = FastAPI()
    setup_rate_limiting(
        app,
        api_requests_per_minute=2,
        ingest_requests_per_minute=3,
        enabled=enabled,
    )
    app.include_router(router)
    return app


class TestGetClientIp:

    def test_prefers_forwarded_for(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

        assert get_client_ip(request) == "203.0.113.7"

    def test_uses_real_ip(self):
        request = MagicMock()
        request.headers = {"X-Real-IP": " 198.51.100.4 "}

        assert get_client_ip(request) == "198.51.100.4"

    def test_falls_back_to_client_address(self):
        request = MagicMock()
        request.headers = {}
        request.client.host = "192.0.2.10"

        assert get_client_ip(request) == "192.0.2.10"


class TestRateLimitString:

    def test_per_minute_format(self):
        assert get_rate_limit_string(120) == "120/minute"


class TestRateLimiting:

    def test_api_limit_enforced(self, restore_limiter):
        client = TestClient(_build_app())

        assert client.get("/api/buses").status_code == 200
        assert client.get("/api/buses").status_code == 200
        response = client.get("/api/buses")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "RATE_LIMITED"

    def test_budgets_are_separate(self, restore_limiter):
        client = TestClient(_build_app())

        for _ in range(2):
            client.get("/api/buses")

        statuses = [client.post("/location-updates").status_code for _ in range(3)]
        assert statuses == [200, 200, 200]
        assert client.post("/location-updates").status_code == 429

    def test_limits_are_per_client_ip(self, restore_limiter):
        client = TestClient(_build_app())

        for _ in range(2):
            client.get("/api/buses", headers={"X-Forwarded-For": "203.0.113.1"})

        response = client.get("/api/buses", headers={"X-Forwarded-For": "203.0.113.2"})
        assert response.status_code == 200
        blocked = client.get("/api/buses", headers={"X-Forwarded-For": "203.0.113.1"})
        assert blocked.status_code == 429

    def test_rebuilt_app_counts_each_request_once(self, restore_limiter):
        _build_app()
        client = TestClient(_build_app())

        statuses = [client.post("/location-updates").status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]

    def test_disabled_limiter_allows_everything(self, restore_limiter):
        client = TestClient(_build_app(enabled=False))

        statuses = {client.get("/api/buses").status_code for _ in range(5)}

        assert statuses == {200}

    def test_limiter_attached_to_app_state(self, restore_limiter):
        app = _build_app(enabled=False)

        assert app.state.limiter is limiter
