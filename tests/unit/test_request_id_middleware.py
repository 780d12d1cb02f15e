"""
Unit tests for request ID middleware.

Tests the RequestIDMiddleware to ensure it correctly generates,
extracts, and propagates request IDs for correlation.
"""

import uuid

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from errors.exceptions import unauthorized
from errors.handlers import register_exception_handlers
from middleware.request_id import (
    MAX_REQUEST_ID_LENGTH,
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    get_request_id,
    request_id_var,
)


class TestRequestIDMiddleware:
    """Tests for the RequestIDMiddleware class."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app)
        app.add_middleware(RequestIDMiddleware)

        @app.get("/test")
        async def test_endpoint(request: Request):
            return {
                "request_id_from_state": request.state.request_id,
                "request_id_from_context": request_id_var.get(),
            }

        @app.get("/denied")
        async def denied():
            raise unauthorized()

        return TestClient(app)

    def test_generates_request_id_when_not_provided(self, client):
        response = client.get("/test")

        request_id = response.headers[REQUEST_ID_HEADER]
        uuid.UUID(request_id)
        assert response.json()["request_id_from_state"] == request_id

    def test_uses_provided_request_id(self, client):
        response = client.get("/test", headers={REQUEST_ID_HEADER: "device-42-req"})

        assert response.headers[REQUEST_ID_HEADER] == "device-42-req"
        assert response.json()["request_id_from_state"] == "device-42-req"

    def test_request_id_in_context_variable(self, client):
        response = client.get("/test", headers={REQUEST_ID_HEADER: "ctx-check"})

        assert response.json()["request_id_from_context"] == "ctx-check"

    def test_overlong_request_id_is_replaced(self, client):
        long_id = "x" * (MAX_REQUEST_ID_LENGTH + 1)

        response = client.get("/test", headers={REQUEST_ID_HEADER: long_id})

        assert response.headers[REQUEST_ID_HEADER] != long_id
        uuid.UUID(response.headers[REQUEST_ID_HEADER])

    def test_each_request_gets_a_new_id(self, client):
        first = client.get("/test").headers[REQUEST_ID_HEADER]
        second = client.get("/test").headers[REQUEST_ID_HEADER]

        assert first != second

    def test_error_body_carries_request_id(self, client):
        response = client.get("/denied", headers={REQUEST_ID_HEADER: "err-1"})

        assert response.status_code == 401
        assert response.json()["request_id"] == "err-1"
        assert response.headers[REQUEST_ID_HEADER] == "err-1"


class TestGetRequestId:

    def test_empty_outside_request(self):
        assert get_request_id() == ""

    def test_reads_context_variable(self):
        token = request_id_var.set("manual-id")
        try:
            assert get_request_id() == "manual-id"
        finally:
            request_id_var.reset(token)
