"""
Unit tests for error handlers.

Tests the error response model and exception handlers to ensure
they produce correctly structured responses.
"""

import json

import pytest
from unittest.mock import MagicMock
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from errors.codes import ErrorCode, error_code_for_status, get_default_status_code
from errors.exceptions import (
    AppException,
    circuit_open,
    internal_error,
    store_unavailable,
    store_write_failed,
    unauthorized,
    validation_error,
)
from errors.handlers import (
    GENERIC_ERROR_MESSAGE,
    ErrorResponse,
    get_request_id,
    handle_app_exception,
    register_exception_handlers,
)


class TestErrorResponse:
    """Tests for the ErrorResponse model."""

    def test_error_response_with_all_fields(self):
        response = ErrorResponse(
            error="Invalid input",
            error_code="VALIDATION_ERROR",
            details={"field": "latitude"},
            request_id="req-123",
        )

        assert response.success is False
        assert response.error == "Invalid input"
        assert response.error_code == "VALIDATION_ERROR"
        assert response.details == {"field": "latitude"}
        assert response.request_id == "req-123"

    def test_model_dump_excludes_missing_details(self):
        response = ErrorResponse(
            error="An error occurred",
            error_code="INTERNAL_ERROR",
            request_id="req-789",
        )

        dumped = response.model_dump(exclude_none=True)

        assert "details" not in dumped
        assert dumped["success"] is False


class TestErrorCodes:

    @pytest.mark.parametrize("code, status", [
        (ErrorCode.VALIDATION_ERROR, 400),
        (ErrorCode.UNAUTHORIZED, 401),
        (ErrorCode.RESOURCE_NOT_FOUND, 404),
        (ErrorCode.METHOD_NOT_ALLOWED, 405),
        (ErrorCode.RATE_LIMITED, 429),
        (ErrorCode.STORE_WRITE_FAILED, 500),
        (ErrorCode.INTERNAL_ERROR, 500),
        (ErrorCode.STORE_UNAVAILABLE, 503),
        (ErrorCode.CIRCUIT_OPEN, 503),
    ])
    def test_default_status_codes(self, code, status):
        assert get_default_status_code(code) == status

    def test_unknown_status_maps_to_internal_error(self):
        assert error_code_for_status(418) == ErrorCode.INTERNAL_ERROR
        assert error_code_for_status(405) == ErrorCode.METHOD_NOT_ALLOWED

    def test_factories_use_expected_codes(self):
        assert validation_error("bad").status_code == 400
        assert unauthorized().error_code == ErrorCode.UNAUTHORIZED
        assert store_write_failed().status_code == 500
        assert store_unavailable().status_code == 503
        assert circuit_open().error_code == ErrorCode.CIRCUIT_OPEN
        assert internal_error().message == GENERIC_ERROR_MESSAGE


class TestGetRequestId:

    def test_returns_request_id_from_state(self):
        request = MagicMock()
        request.state.request_id = "req-abc"

        assert get_request_id(request) == "req-abc"

    def test_generates_request_id_when_missing(self):
        request = MagicMock()
        request.state = object()

        request_id = get_request_id(request)

        assert len(request_id) == 36


class TestHandleAppException:

    @pytest.mark.asyncio
    async def test_renders_envelope(self):
        request = MagicMock()
        request.state.request_id = "req-1"
        request.url.path = "/location-updates"
        request.method = "POST"
        exc = AppException(
            error_code=ErrorCode.UNAUTHORIZED,
            message="Unauthorized",
        )

        response = await handle_app_exception(request, exc)
        body = json.loads(response.body)

        assert response.status_code == 401
        assert body == {
            "success": False,
            "error": "Unauthorized",
            "error_code": "UNAUTHORIZED",
            "request_id": "req-1",
        }


class Payload(BaseModel):
    value: int


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/app-error")
    async def app_error():
        raise validation_error("Invalid location payload", details={"field": "latitude"})

    @app.get("/crash")
    async def crash():
        raise RuntimeError("connection string postgres://secret")

    @app.post("/body")
    async def body(payload: Payload):
        return payload

    return TestClient(app, raise_server_exceptions=False)


class TestRegisteredHandlers:

    def test_app_exception_envelope(self, error_client):
        response = error_client.get("/app-error")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"] == {"field": "latitude"}
        assert body["request_id"]

    def test_unexpected_exception_hides_details(self, error_client):
        response = error_client.get("/crash")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == GENERIC_ERROR_MESSAGE
        assert body["error_code"] == "INTERNAL_ERROR"
        assert "secret" not in response.text

    def test_unknown_path_is_wrapped(self, error_client):
        response = error_client.get("/missing")

        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"

    def test_wrong_method_keeps_allow_header(self, error_client):
        response = error_client.delete("/app-error")

        assert response.status_code == 405
        assert response.json()["error_code"] == "METHOD_NOT_ALLOWED"
        assert "GET" in response.headers["allow"]

    def test_body_validation_is_400(self, error_client):
        response = error_client.post("/body", json={"value": "not a number"})

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"]["validation_errors"][0]["loc"] == ["body", "value"]
