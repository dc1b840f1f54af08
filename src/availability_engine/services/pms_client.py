"""Async client for PMS inventory with endpoint fallback and token renewal."""
from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from availability_engine.auth.token_manager import TokenManager
from availability_engine.config.settings import Settings
from availability_engine.core.errors import (
    PmsRateLimitedError,
    PmsResponseError,
    PmsTransportError,
    PmsUnavailableError,
    ValidationError,
)
from availability_engine.inventory.models import AvailabilityResult, DateRange, RoomKey, RoomMetadata
from availability_engine.inventory.normalizer import parse_room_metadata_payload
from availability_engine.utils.throttling import RateLimiter

from .endpoints import EndpointStrategy, Fatal, InventoryQuery, Success, default_strategies

logger = logging.getLogger(__name__)

PROPERTIES_PATH = "/properties"


class RefreshState(enum.Enum):
    """Where a logical request stands with respect to 401 handling."""

    INITIAL = "initial"
    RETRIED_AFTER_REFRESH = "retried_after_refresh"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class _AuthAttempt:
    state: RefreshState = RefreshState.INITIAL


class PmsClient(AbstractAsyncContextManager["PmsClient"]):
    """Fetch inventory for one room, cascading offers → calendar → legacy bookings."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenManager,
        *,
        limiter: Optional[RateLimiter] = None,
        strategies: Optional[Sequence[EndpointStrategy]] = None,
        rate_limit_retries: int = 3,
        rate_limit_backoff_max: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        owns_client: bool = False,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._limiter = limiter or RateLimiter(min_interval=0.0)
        self._strategies = tuple(strategies) if strategies is not None else tuple(default_strategies())
        self._rate_limit_retries = max(1, rate_limit_retries)
        self._rate_limit_backoff_max = rate_limit_backoff_max
        self._jitter = wait_random_exponential(multiplier=1, max=rate_limit_backoff_max)
        self._sleep = sleep
        self._owns_client = owns_client
        self.request_count = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PmsClient":
        client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=settings.default_headers(),
            timeout=settings.request_timeout_s,
            transport=transport,
        )
        tokens = TokenManager.from_settings(settings, client)
        limiter = RateLimiter(
            min_interval=settings.min_request_interval_s,
            max_per_minute=settings.max_requests_per_minute,
        )
        return cls(
            client,
            tokens,
            limiter=limiter,
            rate_limit_retries=settings.rate_limit_retries,
            rate_limit_backoff_max=settings.rate_limit_backoff_max_s,
            owns_client=True,
        )

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aexit__(self, exc_type, exc, exc_tb) -> None:
        await self.aclose()

    async def get_inventory(
        self,
        room: RoomKey,
        date_range: DateRange,
        guest_count: int,
        *,
        child_count: int = 0,
        fallback_price: Optional[Decimal] = None,
    ) -> AvailabilityResult:
        if guest_count < 1:
            raise ValidationError("guest_count must be at least 1")
        if child_count < 0:
            raise ValidationError("child_count must not be negative")

        query = InventoryQuery(
            room=room,
            date_range=date_range,
            guest_count=guest_count,
            child_count=child_count,
            fallback_price=fallback_price,
        )
        auth = _AuthAttempt()

        async def send(endpoint: str, path: str, params: Mapping[str, Any]) -> Any:
            return await self._send(endpoint, path, params, auth)

        attempts: List[Tuple[str, str]] = []
        for strategy in self._strategies:
            outcome = await strategy.fetch(query, send)
            if isinstance(outcome, Success):
                logger.info(
                    "Inventory for %s %s served by %s endpoint (%s available, %s booked)",
                    room,
                    date_range,
                    strategy.name,
                    len(outcome.result.available),
                    len(outcome.result.booked),
                )
                return outcome.result
            if isinstance(outcome, Fatal):
                logger.error("%s endpoint failed fatally for %s: %s", strategy.name, room, outcome.reason)
                raise outcome.error
            logger.warning("%s endpoint unusable for %s: %s", strategy.name, room, outcome.reason)
            attempts.append((strategy.name, outcome.reason))

        raise PmsUnavailableError(attempts)

    async def get_room_metadata(self, room: RoomKey) -> RoomMetadata:
        """Fetch the PMS's static description of ``room`` (capacity, stay limits, name)."""
        auth = _AuthAttempt()
        payload = await self._send(
            "properties",
            PROPERTIES_PATH,
            {"id": room.property_id, "includeAllRooms": "true"},
            auth,
        )
        metadata = parse_room_metadata_payload(payload, room)
        if metadata is None:
            raise PmsResponseError(f"room {room} not found in properties payload", endpoint="properties")
        logger.info("Loaded PMS metadata for %s (%s)", room, metadata.name or "unnamed")
        return metadata

    async def _send(
        self,
        endpoint: str,
        path: str,
        params: Mapping[str, Any],
        auth: _AuthAttempt,
    ) -> Any:
        token = await self._tokens.get_valid_token()
        while True:
            response = await self._request_with_backoff(endpoint, path, params, token)
            if not _is_unauthorized(response):
                break
            if auth.state is RefreshState.INITIAL and self._tokens.can_refresh:
                auth.state = RefreshState.RETRIED_AFTER_REFRESH
                logger.warning("%s endpoint rejected the access token; refreshing once", endpoint)
                token = await self._tokens.force_refresh(token)
                continue
            auth.state = RefreshState.EXHAUSTED
            raise PmsResponseError("PMS rejected the access token", endpoint=endpoint, status=401)

        if response.status_code >= 400:
            raise PmsResponseError(
                f"HTTP {response.status_code}: {response.text[:256]}",
                endpoint=endpoint,
                status=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise PmsResponseError("invalid JSON", endpoint=endpoint, status=response.status_code) from exc
        if isinstance(payload, Mapping) and payload.get("success") is False:
            raise PmsResponseError(
                f"PMS reported failure: {payload.get('error') or payload.get('message') or 'unknown'}",
                endpoint=endpoint,
                status=response.status_code,
            )
        return payload

    async def _request_with_backoff(
        self,
        endpoint: str,
        path: str,
        params: Mapping[str, Any],
        token: str,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._rate_limit_retries),
            wait=self._rate_limit_wait,
            retry=retry_if_exception_type(PmsRateLimitedError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request_once(endpoint, path, params, token)

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        """Jittered exponential backoff, stretched to honour the PMS's Retry-After."""
        backoff = self._jitter(retry_state)
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        hinted = getattr(error, "retry_after", None) or 0.0
        return min(max(backoff, hinted), self._rate_limit_backoff_max)

    async def _request_once(
        self,
        endpoint: str,
        path: str,
        params: Mapping[str, Any],
        token: str,
    ) -> httpx.Response:
        await self._limiter.acquire()
        self.request_count += 1
        logger.debug("GET %s (%s endpoint) params=%s", path, endpoint, dict(params))
        try:
            response = await self._client.get(path, params=dict(params), headers={"token": token})
        except httpx.TimeoutException as exc:
            raise PmsTransportError(f"timeout calling {path}", endpoint=endpoint) from exc
        except httpx.HTTPError as exc:
            raise PmsTransportError(f"{type(exc).__name__}: {exc}", endpoint=endpoint) from exc

        self._limiter.update_from_headers(response.headers)
        if response.status_code == 429:
            raise PmsRateLimitedError(
                "PMS rate limit hit (429)",
                endpoint=endpoint,
                retry_after=_retry_after(response),
            )
        return response


def _is_unauthorized(response: httpx.Response) -> bool:
    if response.status_code == 401:
        return True
    if response.status_code not in (200, 400, 403):
        return False
    try:
        payload = response.json()
    except ValueError:
        return False
    if not isinstance(payload, Mapping) or payload.get("success") is not False:
        return False
    if payload.get("code") == 401:
        return True
    message = str(payload.get("error") or "").lower()
    return "token" in message and ("invalid" in message or "expired" in message)


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
