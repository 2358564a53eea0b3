"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.main import create_app


def test_healthz_endpoint(client):
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_with_memory_backends(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert "database" not in data["checks"]
    assert "redis" not in data["checks"]
    assert data["checks"]["verification"]["configured"] is True


def test_readyz_reports_unhealthy_database(build):
    container = build()
    container.config.EVENT_STORE_BACKEND = "postgres"

    with (
        patch("app.main._startup_services", AsyncMock()),
        patch(
            "app.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": False, "error": "Pool not initialized"}),
        ),
        TestClient(create_app(container)) as client,
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"
