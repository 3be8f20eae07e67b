"""Integration tests for API endpoints using FastAPI TestClient."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from seawater.config import get_settings
from seawater.dependencies import build_orchestrator
from seawater.main import create_app
from seawater.shared.providers import HttpTransport

ADMIN_KEY = "test-admin-key"


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.host == "earthquake.usgs.gov":
        return httpx.Response(200, json={"type": "FeatureCollection", "features": []})
    return httpx.Response(503, json={"error": "maintenance"})


@pytest.fixture
def settings():
    return get_settings(
        redis_url="",
        monitoring_enabled=False,
        admin_api_key=ADMIN_KEY,
        log_level="WARNING",
    )


@pytest.fixture
def client(settings):
    transport = HttpTransport(
        client=httpx.AsyncClient(transport=httpx.MockTransport(_upstream)),
        max_attempts=1,
    )
    orchestrator = build_orchestrator(settings, transport=transport)
    app = create_app(settings, orchestrator=orchestrator)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(settings):
    return {settings.api_key_header: ADMIN_KEY}


class TestHealthEndpoints:
    def test_health_check(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["services"] == {"redis": "disabled"}
        assert data["sources"]["overall_status"] == "unknown"
        assert data["sources"]["monitoring"] is False
        assert "total_requests" in data["stats"]
        assert resp.headers["X-Request-ID"]

    def test_app_uses_the_settings_it_was_built_with(self, client, settings):
        assert client.app.state.settings is settings

    def test_request_id_is_echoed(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "trace-123"})
        assert resp.headers["X-Request-ID"] == "trace-123"

    def test_metrics_endpoint(self, client):
        client.get("/api/v1/health")
        resp = client.get("/api/v1/metrics")
        assert resp.status_code == 200
        assert b"http_requests_total" in resp.content


class TestSourceEndpoints:
    def test_list_sources(self, client):
        resp = client.get("/api/v1/sources")
        assert resp.status_code == 200
        ids = {s["source_id"] for s in resp.json()}
        assert {"FEMA_NRI", "USGS_Earthquake", "Census_Geocoding"} <= ids
        assert len(ids) == 8

    def test_get_source(self, client):
        resp = client.get("/api/v1/sources/USGS_Earthquake")
        assert resp.status_code == 200
        data = resp.json()
        assert data["circuit_state"] == "closed"
        assert data["quota"]["capacity"] == 1000
        assert data["health"]["status"] == "unknown"

    def test_unknown_source(self, client):
        resp = client.get("/api/v1/sources/Nowhere")
        assert resp.status_code == 404
        assert resp.json()["code"] == "SOURCE_NOT_FOUND"

    def test_source_health(self, client):
        resp = client.get("/api/v1/sources/FEMA_NRI/health")
        assert resp.status_code == 200
        assert resp.json()["total_checks"] == 0

    def test_stats(self, client):
        resp = client.get("/api/v1/sources/stats")
        assert resp.status_code == 200
        assert resp.json()["sources"] == 8


class TestAdminEndpoints:
    def test_admin_requires_key(self, client):
        resp = client.put("/api/v1/sources/FEMA_NRI/enabled", json={"enabled": False})
        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTHENTICATION_ERROR"

        resp = client.put(
            "/api/v1/sources/FEMA_NRI/enabled",
            json={"enabled": False},
            headers={"X-API-Key": "wrong"},
        )
        assert resp.status_code == 401

    def test_disable_source(self, client, admin_headers):
        resp = client.put(
            "/api/v1/sources/FEMA_NRI/enabled",
            json={"enabled": False},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False
        assert resp.json()["health"]["enabled"] is False

    def test_update_priority(self, client, admin_headers):
        resp = client.put(
            "/api/v1/sources/USGS_Earthquake/priority",
            json={"priority": 7},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["priority"] == 7

    def test_update_priority_rejects_bad_input(self, client, admin_headers):
        resp = client.put(
            "/api/v1/sources/USGS_Earthquake/priority",
            json={"priority": 0},
            headers=admin_headers,
        )
        assert resp.status_code == 422

        resp = client.put(
            "/api/v1/sources/USGS_Earthquake/priority",
            json={"priority": 2, "category": "flood"},
            headers=admin_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_reset_circuit(self, client, admin_headers):
        resp = client.post(
            "/api/v1/sources/USGS_Earthquake/circuit/reset", headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json() == {"status": "reset", "source_id": "USGS_Earthquake"}

    def test_run_health_check(self, client, admin_headers):
        resp = client.post(
            "/api/v1/sources/USGS_Earthquake/health/check", headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

        resp = client.post("/api/v1/sources/FEMA_NRI/health/check", headers=admin_headers)
        assert resp.json()["status"] == "unhealthy"
        assert resp.json()["last_error"] == "Unexpected status code: 503"
