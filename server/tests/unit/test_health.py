"""Unit tests for health endpoints."""

import pytest


@pytest.mark.asyncio
async def test_health_check(test_client):
    """Test the health check endpoint."""
    response = await test_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "travel-booking-api"
    assert "version" in data


@pytest.mark.asyncio
async def test_ready_check(test_client):
    """Ready when the database answers; workers are reported, not required."""
    response = await test_client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert data["checks"]["workers"] == {"hold_expiry": False, "idempotency_cleanup": False}


@pytest.mark.asyncio
async def test_info_endpoint(test_client):
    """Test the service info endpoint."""
    response = await test_client.get("/info")
    assert response.status_code == 200
    data = response.json()
    assert data["settings"]["hold_ttl_minutes"] == 15
    assert data["settings"]["default_currency"] == "USD"
    assert data["features"]["idempotency"] is True


@pytest.mark.asyncio
async def test_health_ping_rpc(test_client):
    """Test the RPC-style health ping endpoint."""
    response = await test_client.post("/v1/health/ping", json={})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["hold_ttl_minutes"] == 15
    assert data["currency"] == "USD"


@pytest.mark.asyncio
async def test_request_id_is_echoed(test_client):
    response = await test_client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client):
    """Test the Prometheus metrics endpoint."""
    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert "booking_holds_created_total" in response.text
