from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, List
from zoneinfo import ZoneInfo

import anysqlite
import httpx
import pytest
from inline_snapshot import snapshot
from time_machine import travel

from cellar import (
    AsyncInMemoryStorage,
    AsyncSqliteStorage,
    CacheConfig,
    Headers,
    NetworkUnavailable,
    Request,
    Response,
)
from cellar._utils import make_async_iterator
from cellar.httpx import AsyncOfflineCacheClient, OfflineCacheTransport, send_with_httpx

ORIGIN_BODIES = {
    "https://farm.example/": b"<html>shell</html>",
    "https://farm.example/index.html": b"<html>index</html>",
    "https://farm.example/manifest.json": b'{"name": "farm"}',
    "https://farm.example/icons/icon-192x192.png": b"icon-192",
    "https://farm.example/icons/icon-512x512.png": b"icon-512",
    "https://farm.example/api/harvests": b'[{"id": 1}]',
}


class Origin:
    def __init__(self) -> None:
        self.online = True
        self.calls: List[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if not self.online:
            raise httpx.ConnectError("network is down", request=request)
        body = ORIGIN_BODIES.get(str(request.url))
        if body is None:
            return httpx.Response(404, content=b"Not Found")
        return httpx.Response(200, headers={"content-type": "text/plain"}, content=body)


@pytest.mark.anyio
async def test_precached_asset_served_offline(config: CacheConfig) -> None:
    origin = Origin()
    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(origin), config=config)

    async with httpx.AsyncClient(transport=transport) as client:
        origin.online = False
        origin.calls.clear()
        response = await client.get("https://farm.example/icons/icon-512x512.png")

    assert response.status_code == 200
    assert response.content == b"icon-512"
    assert response.extensions["cellar_from_cache"] is True
    assert origin.calls == []


@pytest.mark.anyio
async def test_api_response_served_offline_after_online_visit(config: CacheConfig) -> None:
    origin = Origin()
    transport = OfflineCacheTransport(
        next_transport=httpx.MockTransport(origin),
        config=config,
        storage=AsyncSqliteStorage(connection=await anysqlite.connect(":memory:")),
    )

    async with httpx.AsyncClient(transport=transport) as client:
        online = await client.get("https://farm.example/api/harvests")
        origin.online = False
        offline = await client.get("https://farm.example/api/harvests")

    assert online.json() == [{"id": 1}]
    assert online.extensions["cellar_stored"] is True
    assert offline.json() == [{"id": 1}]
    assert offline.extensions["cellar_from_cache"] is True
    assert offline.extensions["cellar_strategy"] == "network-first"


@pytest.mark.anyio
async def test_offline_navigation_gets_shell(config: CacheConfig) -> None:
    origin = Origin()
    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(origin), config=config)

    async with httpx.AsyncClient(transport=transport) as client:
        origin.online = False
        by_extension = await client.get("https://farm.example/fields/7", extensions={"cellar_mode": "navigate"})
        by_header = await client.get("https://farm.example/fields/8", headers={"sec-fetch-mode": "navigate"})

    assert by_extension.text == "<html>shell</html>"
    assert by_header.text == "<html>shell</html>"


@pytest.mark.anyio
async def test_unanswerable_request_raises_connect_error(config: CacheConfig) -> None:
    origin = Origin()
    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(origin), config=config)

    async with httpx.AsyncClient(transport=transport) as client:
        origin.online = False
        with pytest.raises(httpx.ConnectError):
            await client.get("https://farm.example/api/prices")


@pytest.mark.anyio
async def test_transport_without_install(config: CacheConfig) -> None:
    origin = Origin()
    storage = AsyncInMemoryStorage()
    transport = OfflineCacheTransport(
        next_transport=httpx.MockTransport(origin), config=config, storage=storage, install=False
    )

    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.get("https://farm.example/api/harvests")

    assert response.status_code == 200
    assert origin.calls == ["https://farm.example/api/harvests"]
    assert await storage.list_namespaces() == ["agro-dynamic-v1.0.0"]


@pytest.mark.anyio
async def test_send_with_httpx() -> None:
    origin = Origin()

    response = await send_with_httpx(
        httpx.MockTransport(origin),
        Request(method="GET", url="https://farm.example/manifest.json", headers=Headers({"accept": "*/*"})),
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain"
    assert await response.aread() == b'{"name": "farm"}'


@pytest.mark.anyio
async def test_send_with_httpx_maps_transport_errors() -> None:
    origin = Origin()
    origin.online = False

    with pytest.raises(NetworkUnavailable):
        await send_with_httpx(httpx.MockTransport(origin), Request(method="GET", url="https://farm.example/"))


def test_client_wraps_default_transport(config: CacheConfig) -> None:
    storage = AsyncInMemoryStorage()

    client = AsyncOfflineCacheClient(config=config, storage=storage)

    assert isinstance(client._transport, OfflineCacheTransport)
    assert client._transport.worker.config is config
    assert client._transport.storage is storage


@pytest.mark.anyio
@travel(datetime(2024, 1, 1, 0, 0, 0, tzinfo=ZoneInfo("UTC")), tick=False)
async def test_cached_response_extensions(config: CacheConfig) -> None:
    origin = Origin()
    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(origin), config=config)

    async with httpx.AsyncClient(transport=transport) as client:
        fetched = await client.get("https://farm.example/assets/app.css")
        cached = await client.get("https://farm.example/icons/icon-192x192.png")

    assert fetched.status_code == 404
    assert fetched.extensions == snapshot(
        {"cellar_from_cache": False, "cellar_strategy": "cache-first", "cellar_stored": False}
    )
    assert cached.extensions == snapshot(
        {
            "cellar_from_cache": True,
            "cellar_strategy": "cache-first",
            "cellar_cache_name": "agro-static-v1.0.0",
            "cellar_stored": False,
            "cellar_created_at": 1704067200.0,
        }
    )


class BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield b"part-1;"
        raise httpx.ReadError("connection reset")


class TrackedStream(httpx.AsyncByteStream):
    def __init__(self, body: bytes) -> None:
        self.body = body
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.body

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_broken_body_falls_back_to_cached_copy(config: CacheConfig) -> None:
    origin = Origin()
    attempts: List[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == "https://farm.example/api/harvests":
            attempts.append(str(request.url))
            if len(attempts) > 1:
                return httpx.Response(200, headers={"content-type": "text/plain"}, stream=BrokenStream())
        return await origin(request)

    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(handler), config=config)

    async with httpx.AsyncClient(transport=transport) as client:
        first = await client.get("https://farm.example/api/harvests")
        second = await client.get("https://farm.example/api/harvests")

    assert first.json() == [{"id": 1}]
    assert second.json() == [{"id": 1}]
    assert second.extensions["cellar_from_cache"] is True
    assert len(attempts) == 2


@pytest.mark.anyio
async def test_broken_body_without_cached_copy_is_connect_error(config: CacheConfig) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=BrokenStream())

    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(handler), config=config, install=False)

    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get("https://farm.example/api/harvests")

    assert await transport.storage.list_namespaces() == []


@pytest.mark.anyio
async def test_failed_revalidation_releases_upstream_response(config: CacheConfig) -> None:
    origin = Origin()
    rejected = TrackedStream(b"Service Unavailable")
    storage = AsyncInMemoryStorage()
    request = Request(method="GET", url="https://farm.example/fields/7")
    await storage.put_entry(
        config.dynamic_cache_name,
        request.cache_key,
        request,
        Response(status_code=200, stream=make_async_iterator([b"<html>field 7</html>"])),
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == "https://farm.example/fields/7":
            return httpx.Response(503, stream=rejected)
        return await origin(request)

    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(handler), config=config, storage=storage)

    async with httpx.AsyncClient(transport=transport) as client:
        cached = await client.get("https://farm.example/fields/7", extensions={"cellar_mode": "navigate"})

    assert cached.text == "<html>field 7</html>"
    assert cached.extensions["cellar_from_cache"] is True
    assert rejected.closed


@pytest.mark.anyio
async def test_unentered_transport_fails_clearly(config: CacheConfig) -> None:
    transport = OfflineCacheTransport(next_transport=httpx.MockTransport(Origin()), config=config)
    client = httpx.AsyncClient(transport=transport)

    with pytest.raises(RuntimeError, match="async with"):
        await client.get("https://farm.example/fields/7", extensions={"cellar_mode": "navigate"})


@pytest.mark.anyio
async def test_unentered_client_fails_clearly(config: CacheConfig) -> None:
    client = AsyncOfflineCacheClient(config=config)

    with pytest.raises(RuntimeError, match="async with"):
        await client.get("https://farm.example/fields/7", extensions={"cellar_mode": "navigate"})
