"""
Integration tests for API endpoints.

These run the full application (middleware, routers, lifespan) against
the in-memory store seeded with the demo data.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from store.models import ApiKeyGrant


# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration

INGEST = "/location-updates"


class TestLocationIngest:

    def test_accepted_report_updates_bus(self, client, memory_store, valid_report):
        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Location updated successfully"
        assert body["data"]["id"] == "bus-1"
        assert body["data"]["latitude"] == 40.75
        assert body["data"]["current_location"] == "Millbrook Stop"
        assert response.headers["access-control-allow-origin"] == "*"

        bus = client.portal.call(memory_store.get_bus, "bus-1")
        assert bus.longitude == -73.98
        assert bus.speed == 35.5
        assert bus.heading == 90.0

    def test_missing_label_uses_default(self, client, valid_report):
        del valid_report["label"]

        response = client.post(INGEST, json=valid_report)

        assert response.json()["data"]["current_location"] == "Unknown Location"

    def test_repeated_report_is_idempotent(self, client, valid_report):
        first = client.post(INGEST, json=valid_report).json()["data"]
        second = client.post(INGEST, json=valid_report).json()["data"]

        for field in ("latitude", "longitude", "speed", "heading", "current_location"):
            assert first[field] == second[field]

    @pytest.mark.parametrize("api_key,bus_id", [
        ("wrong-key", "bus-1"),
        ("simulation_key_bus-2", "bus-1"),
    ])
    def test_unauthorized_keys(self, client, valid_report, api_key, bus_id):
        valid_report.update(api_key=api_key, bus_id=bus_id)

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "UNAUTHORIZED"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_inactive_key_is_unauthorized(self, client, memory_store, valid_report):
        memory_store.add_api_key_grant(ApiKeyGrant(api_key="retired", bus_id="bus-1", is_active=False))
        valid_report["api_key"] = "retired"

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 401

    @pytest.mark.parametrize("field,value", [
        ("latitude", 91),
        ("longitude", -180.5),
        ("speed", -1),
        ("heading", 361),
    ])
    def test_out_of_range_values(self, client, valid_report, field, value):
        valid_report[field] = value

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_missing_field_is_rejected(self, client, valid_report):
        del valid_report["api_key"]

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 400

    def test_malformed_json_is_internal_error(self, client):
        response = client.post(
            INGEST, content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 500
        assert response.json()["error_code"] == "INTERNAL_ERROR"
        assert response.headers["access-control-allow-origin"] == "*"

    def test_grant_for_missing_bus_is_not_found(self, client, memory_store, valid_report):
        memory_store.add_api_key_grant(ApiKeyGrant(api_key="orphan", bus_id="bus-99"))
        valid_report.update(api_key="orphan", bus_id="bus-99")

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 404
        assert response.json()["error_code"] == "RESOURCE_NOT_FOUND"

    def test_store_failure_is_write_failed(self, client, memory_store, valid_report):
        memory_store.update_bus_position = AsyncMock(side_effect=RuntimeError("disk full"))

        response = client.post(INGEST, json=valid_report)

        assert response.status_code == 500
        body = response.json()
        assert body["error_code"] == "STORE_WRITE_FAILED"
        assert "data" not in body

    def test_preflight(self, client):
        response = client.options(INGEST)

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]
        assert "apikey" in response.headers["access-control-allow-headers"]

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_other_methods_not_allowed(self, client, method):
        response = getattr(client, method)(INGEST)

        assert response.status_code == 405
        assert response.json()["error_code"] == "METHOD_NOT_ALLOWED"
        assert response.headers["access-control-allow-origin"] == "*"


class TestDataEndpoints:

    def test_list_buses(self, client):
        response = client.get("/api/buses")

        assert response.status_code == 200
        buses = response.json()["data"]
        assert {bus["id"] for bus in buses} == {"bus-1", "bus-2", "bus-3"}
        assert all(bus["route"]["route_number"] for bus in buses)

    def test_list_schedules_ordered(self, client):
        response = client.get("/api/schedules")

        departures = [s["departure_time"] for s in response.json()["data"]]
        assert departures == sorted(departures)
        assert len(departures) == 4

    def test_contact_message(self, client, memory_store):
        response = client.post("/api/contact", json={
            "name": "Ada",
            "email": "ada@example.org",
            "message": "Does the school bus run on holidays?",
            "phone": "",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Message sent successfully"
        assert body["data"]["status"] == "new"
        assert len(memory_store.contact_messages) == 1
        assert memory_store.contact_messages[0].phone is None

    def test_contact_message_bad_email(self, client):
        response = client.post("/api/contact", json={
            "name": "Ada", "email": "not-an-email", "message": "Hi",
        })

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestHealthEndpoints:

    def test_root(self, client):
        assert client.get("/").json()["version"] == "1.0.0"

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["service"] == "Rural Bus Tracking API"

    def test_liveness(self, client):
        assert client.get("/health/live").json()["status"] == "alive"

    def test_readiness(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["dependencies"][0]["name"] == "store"

    def test_readiness_unhealthy_store(self, client, memory_store):
        memory_store.health_check = AsyncMock(
            return_value={"healthy": False, "backend": "memory", "error": "gone"}
        )

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["failure_reasons"]


class TestSimulatorEndpoints:

    def test_start_and_stop(self, client):
        started = client.post("/api/simulator/start").json()
        again = client.post("/api/simulator/start").json()
        stopped = client.post("/api/simulator/stop").json()
        idle = client.post("/api/simulator/stop").json()

        assert started["message"] == "Simulator started"
        assert again["message"] == "Simulator already running"
        assert stopped["message"] == "Simulator stopped"
        assert idle["message"] == "Simulator was not running"
        assert client.get("/api/simulator/status").json()["data"]["running"] is False

    def test_reset(self, client, memory_store):
        response = client.post("/api/simulator/reset")

        assert response.json()["data"] == {"buses_reset": 3}
        bus = client.portal.call(memory_store.get_bus, "bus-2")
        assert bus.latitude == 40.7128
        assert bus.speed is None


class TestWebSockets:

    def test_location_updates_are_streamed(self, client, valid_report):
        with client.websocket_connect("/ws/bus_locations") as websocket:
            hello = websocket.receive_json()
            assert hello["type"] == "connection"
            assert hello["topic"] == "bus_locations"

            client.post(INGEST, json=valid_report)

            message = websocket.receive_json()
            assert message["type"] == "location_update"
            assert message["data"]["bus_id"] == "bus-1"
            assert message["data"]["label"] == "Millbrook Stop"

    def test_row_changes_are_streamed(self, client, valid_report):
        with client.websocket_connect("/ws/buses_changes") as websocket:
            websocket.receive_json()

            client.post(INGEST, json=valid_report)

            message = websocket.receive_json()
            assert message["type"] == "UPDATE"
            assert message["data"]["record"]["latitude"] == 40.75

    def test_ping_pong(self, client, broker):
        with client.websocket_connect("/ws/bus_locations") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "ping"})

            assert websocket.receive_json()["type"] == "pong"

        assert broker.subscriber_count() == 0

    def test_unknown_topic_is_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/weather") as websocket:
                websocket.receive_json()

        assert exc_info.value.code == 1008


class TestResponseHeaders:

    def test_security_and_request_id_headers(self, client):
        response = client.get("/api/buses", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "X-Frame-Options" in response.headers

    def test_error_carries_request_id(self, client):
        response = client.get("/nope", headers={"X-Request-ID": "req-404"})

        assert response.status_code == 404
        assert response.json()["request_id"] == "req-404"


def test_lifespan_closes_store(app, memory_store):
    with TestClient(app):
        pass

    assert memory_store._connected is False
