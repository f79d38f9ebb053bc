"""Test health and root endpoints."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    """Test root endpoint returns API info."""
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Offline AI Chat API"
    assert "version" in data


@pytest.mark.asyncio
async def test_api_info(client: AsyncClient):
    response = await client.get("/api/info")
    assert response.status_code == 200
    assert response.json()["name"] == "Offline AI Chat API"


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_health_not_ready_without_model(client: AsyncClient):
    """Without a loaded model the backend reports not ready."""
    response = await client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "not_ready"
    assert data["services"]["model"] == "uninitialized"
    assert data["services"]["loaded_model"] is None


@pytest.mark.asyncio
async def test_health_ready(client: AsyncClient, ready_services):
    """Test health ready endpoint."""
    response = await client.get("/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["services"]["loaded_model"] == "qwen3-0.6b"
