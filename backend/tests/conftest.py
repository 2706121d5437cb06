"""Shared fixtures: an in-memory OneDrive served through httpx.MockTransport."""

from typing import Optional
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from music_indexer.config import Settings
from music_indexer.context import build_context
from music_indexer.storage import MemoryStorage

GRAPH_BASE = "https://graph.test/v1.0"

_item_ids = iter(range(1, 1_000_000))


def folder(name: str, child_count: int = 0) -> dict:
    return {"id": f"folder-{next(_item_ids)}", "name": name, "folder": {"childCount": child_count}}


def file(name: str, size: int = 1024, modified: str = "2024-01-01T00:00:00Z") -> dict:
    return {
        "id": f"file-{next(_item_ids)}",
        "name": name,
        "size": size,
        "lastModifiedDateTime": modified,
        "file": {"mimeType": "application/octet-stream"},
    }


def normalize(path: str) -> str:
    return path.strip("/")


class FakeDrive:
    """Folder tree keyed by normalized path ('' is the drive root)."""

    def __init__(self, tree: Optional[dict[str, list[dict]]] = None, page_size: int = 100):
        self.tree = tree if tree is not None else {"": []}
        self.page_size = page_size
        self.valid_tokens = {"token-1", "token-2", "token-3"}
        self.fail_paths: dict[str, int] = {}
        self.reject: list[tuple[str, int]] = []
        self.requests: list[tuple[str, int]] = []
        self.content: dict[str, bytes] = {}

    @property
    def listed_paths(self) -> list[str]:
        return [path for path, page in self.requests if page == 0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        raw_path = request.url.raw_path.decode().split("?")[0]
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")

        if raw_path.endswith("/content"):
            item_id = raw_path.split("/items/")[1].split("/")[0]
            if token not in self.valid_tokens:
                return httpx.Response(401)
            if item_id not in self.content:
                return httpx.Response(404)
            return httpx.Response(200, content=self.content[item_id])

        if raw_path.endswith("/me/drive/root/children"):
            path = ""
        else:
            encoded = raw_path.split("/me/drive/root:/", 1)[1].rsplit(":/children", 1)[0]
            path = normalize(unquote(encoded))
        page = int(request.url.params.get("page", "0"))
        self.requests.append((path, page))

        if token not in self.valid_tokens or (path, page) in self.reject:
            if (path, page) in self.reject:
                self.reject.remove((path, page))
            return httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken"}})
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"error": {"code": "generalException"}})
        if path not in self.tree:
            return httpx.Response(404, json={"error": {"code": "itemNotFound"}})

        items = self.tree[path]
        start = page * self.page_size
        body = {"value": items[start:start + self.page_size]}
        if start + self.page_size < len(items):
            body["@odata.nextLink"] = f"https://graph.test{raw_path}?page={page + 1}"
        return httpx.Response(200, json=body)


class FakeTokens:
    """Token sequence; every forced refresh moves to the next token."""

    def __init__(self, tokens: Optional[list[str]] = None):
        self.tokens = tokens or ["token-1", "token-2", "token-3"]
        self.index = 0
        self.refreshes = 0

    async def get_access_token(self, force_refresh: bool = False) -> str:
        if force_refresh:
            self.refreshes += 1
            self.index = min(self.index + 1, len(self.tokens) - 1)
        return self.tokens[self.index]


def build_tree(depth: int, fan_out: int, prefix: str = "Top") -> dict[str, list[dict]]:
    """Root with ``fan_out`` folders, each level below adding ``fan_out`` children and one track."""
    tree: dict[str, list[dict]] = {}

    def grow(path: str, level: int):
        children = []
        if level < depth:
            for i in range(fan_out):
                name = f"{prefix}{level}-{i}"
                children.append(folder(name))
                grow(f"{path}/{name}" if path else name, level + 1)
        if path:
            children.append(file(f"track-{path.replace('/', '_')}.mp3"))
        tree[path] = children

    grow("", 0)
    return tree


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        graph_base_url=GRAPH_BASE,
        folder_throttle_seconds=0,
        subtree_throttle_seconds=0,
        progress_poll_seconds=0.01,
        progress_keepalive_seconds=0.05,
        stall_threshold_seconds=30,
        default_root_path="",
    )


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def tokens() -> FakeTokens:
    return FakeTokens()


@pytest_asyncio.fixture
async def http_client(drive):
    client = httpx.AsyncClient(transport=httpx.MockTransport(drive.handler))
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def indexer(config, tokens, http_client):
    ctx = await build_context(config, storage=MemoryStorage(), tokens=tokens, http_client=http_client)
    yield ctx
    await ctx.close()
