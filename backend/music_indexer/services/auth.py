"""Access token providers for the Microsoft Graph API."""

import asyncio
import logging
import time
from typing import Optional, Protocol

import httpx

from music_indexer.errors import AuthError

logger = logging.getLogger(__name__)

# Refresh a little before the server-side expiry
EXPIRY_MARGIN_SECONDS = 60


class TokenProvider(Protocol):
    async def get_access_token(self, force_refresh: bool = False) -> str:
        ...


class StaticTokenProvider:
    """Hands out a fixed token. ``force_refresh`` cannot produce anything new."""

    def __init__(self, token: str):
        self._token = token

    async def get_access_token(self, force_refresh: bool = False) -> str:
        if not self._token:
            raise AuthError("No access token configured")
        return self._token


class RefreshTokenProvider:
    """OAuth2 refresh-token grant against Azure AD, caching the access token until expiry."""

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        scope: str,
        access_token: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._scope = scope
        self._access_token = access_token
        # Unknown expiry for a pre-seeded token: trust it until the API says 401
        self._expires_at = float("inf") if access_token else 0.0
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = client is None
        self._lock = asyncio.Lock()

    @property
    def refresh_token(self) -> str:
        return self._refresh_token

    async def get_access_token(self, force_refresh: bool = False) -> str:
        async with self._lock:
            if not force_refresh and self._access_token and time.time() < self._expires_at:
                return self._access_token
            await self._refresh()
            return self._access_token

    async def _refresh(self):
        if not self._refresh_token:
            raise AuthError("NoRefreshToken")

        logger.info("Refreshing access token")
        try:
            response = await self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self._refresh_token,
                    "scope": self._scope,
                },
            )
        except httpx.HTTPError as e:
            raise AuthError(f"RefreshAccessTokenError: {e}") from e

        if response.status_code != 200:
            raise AuthError(f"RefreshAccessTokenError: HTTP {response.status_code}")

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise AuthError("RefreshAccessTokenError: no access_token in response")

        self._access_token = token
        self._expires_at = time.time() + int(data.get("expires_in") or 3600) - EXPIRY_MARGIN_SECONDS
        # Azure may rotate the refresh token
        self._refresh_token = data.get("refresh_token") or self._refresh_token

    async def close(self):
        """Close the HTTP client."""
        if self._owns_client:
            await self._client.aclose()
