"""
Tests for operational endpoints.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_reports_database(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["cache"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient, test_event, auth_headers):
    await client.post("/api/v1/bookings/", json={"event_id": test_event.id, "quantity": 1}, headers=auth_headers)

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "reservation_attempts_total" in response.text
