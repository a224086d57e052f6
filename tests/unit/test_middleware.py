"""Request ids, CORS and the optional Redis pool."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.exceptions
from httpx import AsyncClient

from realmquest import redis_client
from realmquest.config import get_settings
from realmquest.middleware.request_id import resolve_request_id


class TestRequestId:
    def test_keeps_well_formed_client_id(self):
        assert resolve_request_id("quest-run.42_a") == "quest-run.42_a"

    @pytest.mark.parametrize("value", [None, "", "has spaces", "x" * 65, "line\nbreak"])
    def test_replaces_missing_or_unsafe_id(self, value):
        request_id = resolve_request_id(value)
        assert request_id != value
        assert len(request_id) == 32

    @pytest.mark.asyncio
    async def test_unsafe_header_is_not_echoed(self, client: AsyncClient):
        response = await client.get("/health", headers={"X-Request-Id": "<script>"})
        assert response.headers["x-request-id"] != "<script>"


class TestCors:
    @pytest.mark.asyncio
    async def test_preflight_from_web_client(self, client: AsyncClient):
        response = await client.options(
            "/api/v1/users/me/stats",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "authorization",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    @pytest.mark.asyncio
    async def test_preflight_rejects_unknown_origin(self, client: AsyncClient):
        response = await client.options(
            "/api/v1/users/me/stats",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "GET"},
        )
        assert response.status_code == 400
        assert "access-control-allow-origin" not in response.headers


class TestRedisPool:
    @pytest.mark.asyncio
    async def test_unreachable_redis_leaves_no_pool(self, monkeypatch):
        fake = MagicMock()
        fake.ping = AsyncMock(side_effect=redis.exceptions.ConnectionError("refused"))
        fake.aclose = AsyncMock()
        monkeypatch.setattr(redis_client.redis, "from_url", MagicMock(return_value=fake))

        with pytest.raises(redis.exceptions.ConnectionError):
            await redis_client.init_redis(get_settings())

        fake.aclose.assert_awaited_once()
        assert redis_client.get_redis_or_none() is None
        with pytest.raises(RuntimeError):
            redis_client.get_redis()

    @pytest.mark.asyncio
    async def test_reachable_redis_is_kept_until_closed(self, monkeypatch):
        fake = MagicMock()
        fake.ping = AsyncMock(return_value=True)
        fake.aclose = AsyncMock()
        monkeypatch.setattr(redis_client.redis, "from_url", MagicMock(return_value=fake))

        await redis_client.init_redis(get_settings())
        assert redis_client.get_redis() is fake

        await redis_client.close_redis()
        assert redis_client.get_redis_or_none() is None
