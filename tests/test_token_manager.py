from __future__ import annotations

import asyncio

import httpx
import pytest

from availability_engine.auth.token_manager import Credential, TokenManager
from availability_engine.config.settings import Settings
from availability_engine.core.errors import AuthError

BASE_URL = "https://pms.test/v2"


class _Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _TokenEndpoint:
    """Counts refresh exchanges and hands out numbered tokens."""

    def __init__(self, *, status: int = 200, expires_in: int = 86400) -> None:
        self.calls = 0
        self.status = status
        self.expires_in = expires_in
        self.headers: list[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.headers.append(request.headers)
        if request.url.path.endswith("/authentication/setup"):
            return httpx.Response(
                200,
                json={"token": "setup-access", "refreshToken": "fresh-refresh", "expiresIn": 3600},
            )
        self.calls += 1
        if self.status != 200:
            return httpx.Response(self.status, json={"success": False, "error": "refresh denied"})
        return httpx.Response(200, json={"token": f"access-{self.calls}", "expiresIn": self.expires_in})


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_long_life_token_is_returned_without_refresh():
    endpoint = _TokenEndpoint()
    async with _client(endpoint) as client:
        manager = TokenManager(client, long_life_token="LONG-LIFE")

        assert await manager.get_valid_token() == "LONG-LIFE"
        assert manager.mode == "long_life"
        assert not manager.can_refresh
        with pytest.raises(AuthError):
            await manager.force_refresh("LONG-LIFE")
    assert endpoint.calls == 0


@pytest.mark.asyncio
async def test_missing_credentials_raise_auth_error():
    async with _client(_TokenEndpoint()) as client:
        manager = TokenManager(client)
        with pytest.raises(AuthError):
            await manager.get_valid_token()


@pytest.mark.asyncio
async def test_fresh_access_token_is_reused():
    endpoint = _TokenEndpoint()
    clock = _Clock()
    async with _client(endpoint) as client:
        manager = TokenManager(
            client,
            refresh_token="refresh",
            access_token="access-0",
            access_token_expires_in=3600,
            clock=clock,
        )
        assert await manager.get_valid_token() == "access-0"
    assert endpoint.calls == 0


@pytest.mark.asyncio
async def test_token_inside_safety_margin_refreshes_exactly_once():
    endpoint = _TokenEndpoint()
    clock = _Clock()
    async with _client(endpoint) as client:
        manager = TokenManager(
            client,
            refresh_token="refresh",
            access_token="access-0",
            access_token_expires_in=30,
            safety_margin=60,
            clock=clock,
        )

        tokens = await asyncio.gather(*(manager.get_valid_token() for _ in range(10)))

    assert set(tokens) == {"access-1"}
    assert endpoint.calls == 1
    assert endpoint.headers[0]["refreshToken"] == "refresh"
    assert manager.refresh_count == 1


@pytest.mark.asyncio
async def test_unknown_expiry_refreshes_on_first_use_then_caches():
    endpoint = _TokenEndpoint(expires_in=3600)
    clock = _Clock()
    async with _client(endpoint) as client:
        manager = TokenManager(client, refresh_token="refresh", clock=clock)

        assert await manager.get_valid_token() == "access-1"
        clock.now += 1_000
        assert await manager.get_valid_token() == "access-1"
        clock.now += 2_600
        assert await manager.get_valid_token() == "access-2"
    assert endpoint.calls == 2


@pytest.mark.asyncio
async def test_force_refresh_skips_exchange_when_token_already_replaced():
    endpoint = _TokenEndpoint()
    clock = _Clock()
    async with _client(endpoint) as client:
        manager = TokenManager(client, refresh_token="refresh", clock=clock)
        first = await manager.get_valid_token()

        second = await manager.force_refresh("stale-token")
        assert second == first
        assert endpoint.calls == 1

        third = await manager.force_refresh(first)
        assert third == "access-2"
    assert endpoint.calls == 2


@pytest.mark.asyncio
async def test_refresh_failure_raises_auth_error():
    async with _client(_TokenEndpoint(status=500)) as client:
        manager = TokenManager(client, refresh_token="refresh")
        with pytest.raises(AuthError):
            await manager.get_valid_token()


@pytest.mark.asyncio
async def test_refresh_timeout_raises_auth_error():
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={"token": "late"})

    async with _client(slow) as client:
        manager = TokenManager(client, refresh_token="refresh", refresh_timeout=0.01)
        with pytest.raises(AuthError, match="timed out"):
            await manager.get_valid_token()


@pytest.mark.asyncio
async def test_refresh_response_without_token_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"expiresIn": 100})

    async with _client(handler) as client:
        manager = TokenManager(client, refresh_token="refresh")
        with pytest.raises(AuthError):
            await manager.get_valid_token()


@pytest.mark.asyncio
async def test_exchange_invite_code_installs_refresh_credential():
    endpoint = _TokenEndpoint()
    async with _client(endpoint) as client:
        manager = TokenManager(client)
        credential = await manager.exchange_invite_code("INVITE-123")

        assert credential.refresh_token == "fresh-refresh"
        assert manager.mode == "refresh"
        assert await manager.get_valid_token() == "setup-access"
    assert endpoint.headers[0]["code"] == "INVITE-123"


@pytest.mark.asyncio
async def test_static_access_token_expires_without_refresh_token():
    clock = _Clock()
    async with _client(_TokenEndpoint()) as client:
        manager = TokenManager(client, access_token="static", access_token_expires_in=120, clock=clock)
        assert await manager.get_valid_token() == "static"
        clock.now += 90
        with pytest.raises(AuthError):
            await manager.get_valid_token()


@pytest.mark.asyncio
async def test_from_settings_prefers_long_life_token():
    settings = Settings(long_life_token="LL", refresh_token="RT", _env_file=None)
    async with _client(_TokenEndpoint()) as client:
        manager = TokenManager.from_settings(settings, client)
        assert manager.mode == "long_life"
        assert await manager.get_valid_token() == "LL"


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_raises_auth_error():
    endpoint = _TokenEndpoint()
    async with _client(endpoint) as client:
        manager = TokenManager(client, access_token="static")
        with pytest.raises(AuthError):
            await manager._refresh(Credential(access_token="static"))
    assert endpoint.calls == 0
