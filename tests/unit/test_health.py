"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


@pytest.fixture
def pool():
    db = MagicMock()
    db.is_ready = True
    db.health_check = AsyncMock(
        return_value={
            "status": "healthy",
            "pool_stats": {"pool_size": 5, "pool_available": 4, "pool_utilization_percent": 20.0},
        }
    )
    app.state.db = db
    yield db
    del app.state.db


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "meeting-coordination"


def test_readyz_endpoint_all_services_healthy(pool):
    """Test readiness endpoint when the database and configuration are fine."""
    with (
        patch("app.routes.health.check_db", AsyncMock(return_value=True)),
        patch("app.routes.health.settings.TOKEN_HASHING_SECRET", "test-secret-0123456789"),
        patch("app.routes.health.settings.EMAIL_API_URL", None),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True

    checks = data["checks"]
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 5
    assert checks["notifications"]["mode"] == "log_only"
    assert checks["configuration"]["ok"] is True


def test_readyz_endpoint_database_unhealthy(pool):
    """Test readiness endpoint when Postgres is down."""
    with (
        patch("app.routes.health.check_db", AsyncMock(return_value="Connection failed")),
        patch("app.routes.health.settings.TOKEN_HASHING_SECRET", "test-secret-0123456789"),
    ):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_endpoint_missing_hashing_secret(pool):
    """Test readiness endpoint when the token hashing secret is missing."""
    with (
        patch("app.routes.health.check_db", AsyncMock(return_value=True)),
        patch("app.routes.health.settings.TOKEN_HASHING_SECRET", None),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "TOKEN_HASHING_SECRET not set" in data["checks"]["configuration"]["issues"]


def test_readyz_without_pool():
    """Readiness fails when the lifespan never created the pool."""
    response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Database pool not initialized"


def test_readyz_includes_latency_metrics(pool):
    with (
        patch("app.routes.health.check_db", AsyncMock(return_value=True)),
        patch("app.routes.health.settings.TOKEN_HASHING_SECRET", "test-secret-0123456789"),
    ):
        response = client.get("/readyz")

    latency = response.json()["checks"]["database"]["latency_ms"]
    assert isinstance(latency, (int, float))


def test_request_id_is_echoed():
    response = client.get("/healthz", headers={"X-Request-ID": "req-abc"})

    assert response.headers["X-Request-ID"] == "req-abc"


def test_request_id_is_generated():
    response = client.get("/healthz")

    assert response.headers["X-Request-ID"]


def test_readyz_reports_closed_pool(pool):
    """A pool that was closed (or never opened) is not ready."""
    pool.is_ready = False

    response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Database pool not ready"
    pool.health_check.assert_not_awaited()
