"""Tests for health check endpoints."""

import pytest
from fastapi.testclient import TestClient

from plumbcat.api import health
from plumbcat.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "plumbing-catalog"
    assert "version" in data


def test_readiness_check(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test readiness endpoint returns ready status."""

    async def reachable() -> bool:
        return True

    monkeypatch.setattr(health, "check_connection", reachable)
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "database": "ok"}


def test_readiness_without_database(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test readiness endpoint reports an unreachable database."""

    async def unreachable() -> bool:
        return False

    monkeypatch.setattr(health, "check_connection", unreachable)
    response = client.get("/ready")
    assert response.status_code == 503
    assert response.json()["database"] == "unreachable"
