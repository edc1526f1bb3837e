"""Tests for health check route."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.api.deps import build_in_memory_services
from src.api.main import create_app


@pytest.fixture()
def client() -> TestClient:
    """Create a test client with in-memory gate services."""
    app = create_app(services=build_in_memory_services())
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client: TestClient) -> None:
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "0.1.0"

    def test_health_env(self, client: TestClient) -> None:
        response = client.get("/api/health")
        data = response.json()
        assert "environment" in data

    def test_health_not_gated(self, client: TestClient) -> None:
        response = client.get("/api/health")
        assert "X-RateLimit-Remaining" not in response.headers

    def test_health_without_services(self) -> None:
        client = TestClient(create_app())
        assert client.get("/api/health").status_code == 200

    def test_protected_path_without_services_is_unavailable(self) -> None:
        client = TestClient(create_app())
        response = client.get("/api/ai/chat")
        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"
