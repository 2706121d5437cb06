"""OneDrive listing client on the Microsoft Graph API."""

import logging
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import httpx

from music_indexer.errors import TransportError, UnauthorizedError
from music_indexer.services.auth import TokenProvider

logger = logging.getLogger(__name__)

# Same characters encodeURIComponent leaves alone, so cached keys and URLs match the web app
_PATH_SAFE = "!'()*"


class GraphDriveClient:
    """Lists folder children with pagination and a one-shot token refresh on 401."""

    def __init__(
        self,
        tokens: TokenProvider,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @property
    def tokens(self) -> TokenProvider:
        return self._tokens

    def children_url(self, path: str) -> str:
        """Root listing for '' and the path-addressed children endpoint otherwise."""
        if path == "":
            return f"{self._base_url}/me/drive/root/children"
        return f"{self._base_url}/me/drive/root:/{quote(path, safe=_PATH_SAFE)}:/children"

    def item_url(self, item_id: str) -> str:
        return f"{self._base_url}/me/drive/items/{quote(item_id, safe='')}"

    async def list_all_children(self, path: str, access_token: Optional[str] = None) -> list[dict[str, Any]]:
        """
        Return every child of ``path``, following ``@odata.nextLink`` until exhausted.

        A missing path lists as empty. A 401 triggers one token refresh and a
        retry of the same page; the refreshed token is kept for later pages.
        """
        url: Optional[str] = self.children_url(path)
        token = access_token or await self._tokens.get_access_token()
        items: list[dict[str, Any]] = []

        while url:
            response = await self._get(url, token)

            if response.status_code == 401:
                logger.warning(f"Unauthorized listing {path or '/'}, refreshing token once")
                token = await self._tokens.get_access_token(force_refresh=True)
                response = await self._get(url, token)

            if response.status_code == 404:
                logger.info(f"Path not found, treating as empty: {path or '/'}")
                return []
            self._raise_for_status(response, path)

            data = response.json()
            items.extend(data.get("value", []))
            url = data.get("@odata.nextLink")

        return items

    async def get_item(self, item_id: str) -> dict[str, Any]:
        """Metadata for a single drive item."""
        url = f"{self.item_url(item_id)}?$select=id,name,size,lastModifiedDateTime,file,folder,parentReference"
        token = await self._tokens.get_access_token()
        response = await self._get(url, token)
        if response.status_code == 401:
            token = await self._tokens.get_access_token(force_refresh=True)
            response = await self._get(url, token)
        self._raise_for_status(response, item_id)
        return response.json()

    async def iter_content(self, item_id: str, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
        """Stream the bytes of a file."""
        url = f"{self.item_url(item_id)}/content"
        token = await self._tokens.get_access_token()

        for attempt in range(2):
            request = self._client.build_request("GET", url, headers=self._headers(token))
            try:
                response = await self._client.send(request, stream=True, follow_redirects=True)
            except httpx.HTTPError as e:
                raise TransportError(f"Graph API request failed: {e}") from e

            try:
                if response.status_code == 401 and attempt == 0:
                    token = await self._tokens.get_access_token(force_refresh=True)
                    continue
                self._raise_for_status(response, item_id)
                async for chunk in response.aiter_bytes(chunk_size):
                    yield chunk
                return
            finally:
                await response.aclose()

    async def _get(self, url: str, token: str) -> httpx.Response:
        try:
            return await self._client.get(url, headers=self._headers(token))
        except httpx.HTTPError as e:
            raise TransportError(f"Graph API request failed: {e}") from e

    @staticmethod
    def _headers(token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response, target: str):
        if response.is_success:
            return
        message = f"Graph API error: {response.status_code} {response.reason_phrase} ({target or '/'})"
        if response.status_code == 401:
            raise UnauthorizedError(message, status_code=401)
        raise TransportError(message, status_code=response.status_code)

    async def close(self):
        """Close the HTTP client."""
        if self._owns_client:
            await self._client.aclose()
