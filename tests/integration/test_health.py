"""Health, readiness and circuit breaker operations endpoints."""

from unittest.mock import AsyncMock, patch

import pytest

from billing_engine.shared.core.circuit_breaker import PAYMENT_API

HEALTH = "/api/v1/health"


class TestProbes:

    @pytest.mark.asyncio
    async def test_basic_health(self, client):
        response = await client.get(HEALTH)

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "billing-engine"

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get(f"{HEALTH}/live")

        assert response.status_code == 200
        assert response.text == "OK"

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get(f"{HEALTH}/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestDetailedHealth:

    @pytest.mark.asyncio
    async def test_all_components_healthy(self, client):
        with patch("billing_engine.api.v1.health.check_redis_health", new=AsyncMock(return_value={"status": "healthy"})):
            response = await client.get(f"{HEALTH}/detailed")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["components"]["database"]["status"] == "healthy"
        assert body["components"]["circuit_breakers"]["open"] == []

    @pytest.mark.asyncio
    async def test_redis_down_degrades(self, client):
        redis_down = AsyncMock(return_value={"status": "unhealthy", "error": "connection refused"})

        with patch("billing_engine.api.v1.health.check_redis_health", new=redis_down):
            response = await client.get(f"{HEALTH}/detailed")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_open_breaker_degrades(self, client, breaker_registry):
        breaker = breaker_registry.get_or_create(PAYMENT_API)
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(failing)

        with patch("billing_engine.api.v1.health.check_redis_health", new=AsyncMock(return_value={"status": "healthy"})):
            response = await client.get(f"{HEALTH}/detailed")

        body = response.json()
        assert body["status"] == "degraded"
        assert body["components"]["circuit_breakers"]["open"] == [PAYMENT_API]


class TestCircuitBreakerEndpoints:

    @pytest.mark.asyncio
    async def test_lists_registered_breakers(self, client, breaker_registry):
        breaker_registry.get_or_create(PAYMENT_API)

        response = await client.get(f"{HEALTH}/circuit-breakers")

        breakers = response.json()["circuit_breakers"]
        assert list(breakers) == [PAYMENT_API]
        assert breakers[PAYMENT_API]["state"] == "closed"
        assert breakers[PAYMENT_API]["config"]["volume_threshold"] == 2

    @pytest.mark.asyncio
    async def test_reset_closes_open_breaker(self, client, breaker_registry):
        breaker = breaker_registry.get_or_create(PAYMENT_API)
        failing = AsyncMock(side_effect=ConnectionError("down"))
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.execute(failing)

        response = await client.post(f"{HEALTH}/circuit-breakers/{PAYMENT_API}/reset")

        assert response.status_code == 200
        assert response.json()["reset"] is True
        assert response.json()["status"]["state"] == "closed"
        assert response.json()["status"]["window"]["failures"] == 0

    @pytest.mark.asyncio
    async def test_reset_unknown_breaker(self, client):
        response = await client.post(f"{HEALTH}/circuit-breakers/no-such-service/reset")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"
