"""Tests for the /health endpoint."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError


def _mock_session(execute: AsyncMock | None = None) -> AsyncMock:
    mock_session = AsyncMock()
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    mock_session.execute = execute or AsyncMock()
    return mock_session


def _mock_redis(ping: AsyncMock | None = None) -> MagicMock:
    redis_client = MagicMock()
    redis_client.ping = ping or AsyncMock(return_value=True)
    redis_client.aclose = AsyncMock()
    return redis_client


@pytest.mark.asyncio
async def test_health_all_connected(client: AsyncClient):
    with (
        patch("app.main.async_session", return_value=_mock_session()),
        patch("redis.asyncio.from_url", return_value=_mock_redis()),
    ):
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected", "redis": "connected"}


@pytest.mark.asyncio
async def test_health_redis_unavailable_is_not_fatal(client: AsyncClient):
    failing = _mock_redis(ping=AsyncMock(side_effect=RedisConnectionError("refused")))
    with (
        patch("app.main.async_session", return_value=_mock_session()),
        patch("redis.asyncio.from_url", return_value=failing),
    ):
        response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["redis"] == "unavailable"


@pytest.mark.asyncio
async def test_health_database_down(client: AsyncClient):
    broken = _mock_session(execute=AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down"))))
    with patch("app.main.async_session", return_value=broken):
        response = await client.get("/health")

    assert response.status_code == 503
    assert response.json()["database"] == "disconnected"
