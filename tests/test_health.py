"""Tests for health endpoints."""

import pytest
from fastapi.testclient import TestClient

from voicedev.main import create_app


class TestHealthEndpoints:
    """Test suite for health check endpoints."""

    def test_healthz_always_returns_alive(self, client: TestClient):
        """Liveness probe should always return 200."""
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_readyz_when_running(self, client: TestClient):
        """Readiness follows the orchestrator; voice is optional."""
        response = client.get("/readyz")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "components": {"orchestrator": True, "voice": False},
        }

    def test_health_combined_endpoint(self, client: TestClient):
        """Combined health endpoint should provide session status."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["ready"] is True
        assert data["state"] == "idle"
        assert data["voice_connected"] is False
        assert data["observers"] == 0

    def test_metrics_endpoint(self, client: TestClient):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "voicedev_turns_total" in response.text


class TestHealthWithoutSession:
    """Endpoints before the lifespan has started a session."""

    @pytest.fixture
    def cold_client(self):
        # No context manager: lifespan does not run
        return TestClient(create_app())

    def test_healthz(self, cold_client):
        assert cold_client.get("/healthz").status_code == 200

    def test_readyz_not_ready(self, cold_client):
        response = cold_client.get("/readyz")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_health_degraded(self, cold_client):
        response = cold_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["state"] is None
