"""Access-token lifecycle for the PMS API."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import httpx

from availability_engine.config.settings import Settings
from availability_engine.core.errors import AuthError
from availability_engine.core.logging import mask_secret

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_S = 86400.0


@dataclass(slots=True)
class Credential:
    """Short-lived access token plus what is needed to renew it.

    ``expires_at`` is a reading of the owning manager's clock, not wall time.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None

    def is_fresh(self, now: float, margin: float) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - margin > now


class TokenManager:
    """Hand out PMS access tokens, refreshing them before they expire.

    Two modes are supported. With a long-life token every call returns it
    unchanged and nothing is ever refreshed. With a refresh token the manager
    keeps a :class:`Credential` and exchanges the refresh token whenever the
    access token is inside ``safety_margin`` of its expiry. Refreshes are
    serialised behind a lock so concurrent callers share one exchange.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        long_life_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
        access_token_expires_in: Optional[float] = None,
        token_path: str = "/authentication/token",
        setup_path: str = "/authentication/setup",
        safety_margin: float = 60.0,
        refresh_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._long_life_token = long_life_token
        self._token_path = token_path
        self._setup_path = setup_path
        self._safety_margin = safety_margin
        self._refresh_timeout = refresh_timeout
        self._clock = clock
        self._lock = asyncio.Lock()
        self._credential: Optional[Credential] = None
        self._static_expires_at: Optional[float] = None
        self.refresh_count = 0

        if refresh_token:
            expires_at = None
            if access_token and access_token_expires_in is not None:
                expires_at = clock() + access_token_expires_in
            self._credential = Credential(
                access_token=access_token or "",
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
        elif access_token:
            self._credential = Credential(access_token=access_token)
            if access_token_expires_in is not None:
                self._static_expires_at = clock() + access_token_expires_in

    @classmethod
    def from_settings(cls, settings: Settings, client: httpx.AsyncClient, **kwargs: Any) -> "TokenManager":
        if settings.long_life_token:
            return cls(
                client,
                long_life_token=settings.long_life_token,
                token_path=settings.auth_token_path,
                setup_path=settings.auth_setup_path,
                **kwargs,
            )
        return cls(
            client,
            refresh_token=settings.refresh_token,
            access_token=settings.access_token,
            access_token_expires_in=settings.access_token_expires_in_s,
            token_path=settings.auth_token_path,
            setup_path=settings.auth_setup_path,
            safety_margin=settings.token_safety_margin_s,
            refresh_timeout=settings.refresh_timeout_s,
            **kwargs,
        )

    @property
    def mode(self) -> str:
        if self._long_life_token:
            return "long_life"
        if self._credential and self._credential.refresh_token:
            return "refresh"
        if self._credential:
            return "static"
        return "unconfigured"

    @property
    def can_refresh(self) -> bool:
        return self.mode == "refresh"

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def get_valid_token(self) -> str:
        if self._long_life_token:
            return self._long_life_token
        credential = self._credential
        if credential is None:
            raise AuthError("No PMS credentials configured (set PMS_LONG_LIFE_TOKEN or PMS_REFRESH_TOKEN)")
        if not credential.refresh_token:
            return self._static_token(credential)
        if credential.access_token and credential.is_fresh(self._clock(), self._safety_margin):
            return credential.access_token

        async with self._lock:
            credential = self._credential
            if credential is None:
                raise AuthError("PMS credentials were cleared while waiting to refresh")
            if credential.access_token and credential.is_fresh(self._clock(), self._safety_margin):
                return credential.access_token
            return await self._refresh(credential)

    async def force_refresh(self, stale_token: str) -> str:
        """Renew the access token after the PMS rejected ``stale_token``.

        When another caller already replaced the stale token with a fresh one
        that token is returned and no second exchange happens.
        """
        if not self.can_refresh:
            raise AuthError(f"Cannot refresh a {self.mode} PMS token")
        async with self._lock:
            credential = self._credential
            if credential is None:
                raise AuthError("No PMS credential to refresh")
            if (
                credential.access_token
                and credential.access_token != stale_token
                and credential.is_fresh(self._clock(), self._safety_margin)
            ):
                logger.debug("Access token already refreshed by a concurrent request")
                return credential.access_token
            return await self._refresh(credential)

    async def exchange_invite_code(self, code: str) -> Credential:
        """Turn a one-time invite code into a refresh token and install it."""
        if not code or not code.strip():
            raise AuthError("Invite code must not be empty")
        logger.info("Exchanging PMS invite code %s", mask_secret(code))
        payload = await self._auth_request(self._setup_path, {"code": code.strip()})
        credential = self._credential_from_payload(payload, previous_refresh=None)
        if not credential.refresh_token:
            raise AuthError("Invite code exchange did not return a refresh token")
        async with self._lock:
            self._long_life_token = None
            self._static_expires_at = None
            self._credential = credential
        return credential

    def _static_token(self, credential: Credential) -> str:
        if self._static_expires_at is not None and self._static_expires_at - self._safety_margin <= self._clock():
            raise AuthError("Access token expired and no refresh token is configured")
        return credential.access_token

    async def _refresh(self, credential: Credential) -> str:
        if not credential.refresh_token:
            raise AuthError("No PMS refresh token configured")
        logger.info("Refreshing PMS access token")
        try:
            payload = await asyncio.wait_for(
                self._auth_request(self._token_path, {"refreshToken": credential.refresh_token}),
                timeout=self._refresh_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise AuthError(f"Token refresh timed out after {self._refresh_timeout:.0f}s") from exc
        fresh = self._credential_from_payload(payload, previous_refresh=credential.refresh_token)
        self._credential = fresh
        self.refresh_count += 1
        logger.info("Obtained PMS access token %s", mask_secret(fresh.access_token))
        return fresh.access_token

    async def _auth_request(self, path: str, headers: Mapping[str, str]) -> Mapping[str, Any]:
        try:
            response = await self._client.get(path, headers=dict(headers))
        except httpx.HTTPError as exc:
            raise AuthError(f"Token request failed: {exc}") from exc
        if response.status_code >= 400:
            raise AuthError(f"Token request rejected ({response.status_code}): {response.text[:256]}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Token response was not valid JSON") from exc
        if not isinstance(payload, Mapping):
            raise AuthError("Token response had an unexpected shape")
        return payload

    def _credential_from_payload(
        self,
        payload: Mapping[str, Any],
        *,
        previous_refresh: Optional[str],
    ) -> Credential:
        data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
        token = data.get("token") or data.get("accessToken")
        if not isinstance(token, str) or not token:
            raise AuthError("Token response did not include an access token")
        try:
            expires_in = float(data.get("expiresIn", DEFAULT_EXPIRES_IN_S))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_S
        return Credential(
            access_token=token,
            refresh_token=data.get("refreshToken") or previous_refresh,
            expires_at=self._clock() + expires_in,
        )
