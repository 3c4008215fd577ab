"""Bearer-token providers for the mail collaborator."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable

import httpx
from pydantic import BaseModel, ValidationError

from pocketassist.errors import AuthenticationRequired

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class CredentialProvider(ABC):
    @abstractmethod
    def has_credential(self) -> bool:
        """Whether a credential exists without contacting the provider."""
        pass

    @abstractmethod
    async def access_token(self) -> str:
        """Return a usable bearer token. Raises AuthenticationRequired."""
        pass

    async def sign_in(self) -> None:
        await self.access_token()


class StaticTokenProvider(CredentialProvider):
    def __init__(self, token: str | None) -> None:
        self._token = token

    def has_credential(self) -> bool:
        return bool(self._token)

    async def access_token(self) -> str:
        if not self._token:
            raise AuthenticationRequired("No access token configured")
        return self._token


class _TokenResponse(BaseModel):
    access_token: str
    expires_in: int = 3600
    token_type: str = "Bearer"


class OAuthRefreshTokenProvider(CredentialProvider):
    """
    Exchanges a stored refresh token for access tokens, lazily.

    Concurrent callers during a refresh share one in-flight task, so each
    refresh settles exactly once and every waiter sees the same outcome.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str | None,
        refresh_token: str | None,
        http_client: httpx.AsyncClient | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        expiry_margin_secs: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_url = token_url
        self._expiry_margin = expiry_margin_secs
        self._clock = clock
        self._http_client = http_client
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._inflight: asyncio.Task[str] | None = None

    def has_credential(self) -> bool:
        return bool(self.refresh_token)

    async def access_token(self) -> str:
        if self._token is not None and self._clock() < self._expires_at:
            return self._token
        if self._inflight is None:
            self._inflight = asyncio.create_task(self._refresh(), name="oauth-refresh")
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        # Callers may all have been cancelled; mark a failure as retrieved.
        if not task.cancelled():
            task.exception()
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self) -> str:
        if not self.refresh_token:
            raise AuthenticationRequired("No refresh token stored; sign in first")

        data = {
            "client_id": self.client_id,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            if self._http_client is not None:
                resp = await self._http_client.post(self.token_url, data=data)
            else:
                async with httpx.AsyncClient(timeout=15.0) as client:
                    resp = await client.post(self.token_url, data=data)
        except httpx.HTTPError as e:
            logger.warning(f"Token refresh request failed: {e}")
            raise AuthenticationRequired(f"Token refresh failed: {e}") from e

        if not resp.is_success:
            logger.warning(f"Token refresh rejected with status {resp.status_code}")
            raise AuthenticationRequired(
                f"Token refresh rejected with status {resp.status_code}"
            )
        try:
            decoded = _TokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthenticationRequired(f"Malformed token response: {e}") from e

        self._token = decoded.access_token
        self._expires_at = self._clock() + decoded.expires_in - self._expiry_margin
        logger.debug(f"Access token refreshed, valid for {decoded.expires_in}s")
        return self._token
