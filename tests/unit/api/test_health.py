"""Tests for health API routes."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from gameshaper import __version__
from gameshaper.api.routes.health import router
from gameshaper.main import create_app


class TestHealthRouteConfiguration:
    def test_router_has_health_tag(self) -> None:
        assert "Health" in router.tags


class TestHealthEndpoint:
    """Tests for GET /health endpoint."""

    def test_healthy_with_session_counters(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "gameshaper"
        assert data["version"] == __version__
        assert data["entity_count"] == 3
        assert data["pending_tasks"] == 0
        assert data["uptime_seconds"] is not None

    def test_degraded_without_session(self) -> None:
        # No lifespan: nothing binds a session
        response = TestClient(create_app()).get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    def test_health_works_on_bare_app(self) -> None:
        app = FastAPI()
        app.include_router(router)

        assert TestClient(app).get("/health").json()["entity_count"] == 0
