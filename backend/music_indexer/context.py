"""Explicit wiring of the collaborators a crawl needs."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from music_indexer.config import Settings
from music_indexer.services.auth import RefreshTokenProvider, StaticTokenProvider, TokenProvider
from music_indexer.services.graph_client import GraphDriveClient
from music_indexer.services.library_store import LibraryStore
from music_indexer.storage import Storage, build_storage

logger = logging.getLogger(__name__)


@dataclass
class IndexerContext:
    """Storage, listing client and tuning for one process. Nothing here is global."""

    config: Settings
    storage: Storage
    library: LibraryStore
    client: GraphDriveClient

    @property
    def tokens(self) -> TokenProvider:
        return self.client.tokens

    async def close(self):
        await self.client.close()
        tokens = self.tokens
        if isinstance(tokens, RefreshTokenProvider):
            await tokens.close()
        await self.storage.close()


def build_token_provider(config: Settings) -> TokenProvider:
    if config.refresh_token:
        return RefreshTokenProvider(
            token_url=config.token_url,
            client_id=config.azure_client_id,
            client_secret=config.azure_client_secret,
            refresh_token=config.refresh_token,
            scope=config.oauth_scope,
            access_token=config.access_token,
        )
    return StaticTokenProvider(config.access_token)


async def build_context(
    config: Settings,
    storage: Optional[Storage] = None,
    tokens: Optional[TokenProvider] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> IndexerContext:
    """Build and initialise a context. Pieces passed in are used as-is (tests inject fakes here)."""
    storage = storage or build_storage(config)
    await storage.init()

    client = GraphDriveClient(
        tokens or build_token_provider(config),
        base_url=config.graph_base_url,
        timeout=config.http_timeout_seconds,
        client=http_client,
    )
    logger.info(f"Indexer context ready (storage={type(storage).__name__})")
    return IndexerContext(
        config=config,
        storage=storage,
        library=LibraryStore(storage),
        client=client,
    )
