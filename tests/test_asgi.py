from __future__ import annotations

from typing import Any, Dict, List

import anyio
import httpx
import pytest

from cellar import AsyncInMemoryStorage, CacheConfig
from cellar.asgi import ASGIOfflineProxy

ORIGIN_BODIES = {
    "https://farm.example/": b"<html>shell</html>",
    "https://farm.example/index.html": b"<html>index</html>",
    "https://farm.example/manifest.json": b'{"name": "farm"}',
    "https://farm.example/icons/icon-192x192.png": b"icon-192",
    "https://farm.example/icons/icon-512x512.png": b"icon-512",
    "https://farm.example/api/harvests?year=2024": b'[{"id": 1}]',
}


class Origin:
    def __init__(self) -> None:
        self.online = True
        self.requests: List[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.online:
            raise httpx.ConnectError("network is down", request=request)
        body = ORIGIN_BODIES.get(str(request.url))
        if body is None:
            return httpx.Response(404, content=b"Not Found")
        return httpx.Response(200, headers={"content-type": "text/plain"}, content=body)


@pytest.fixture()
def origin() -> Origin:
    return Origin()


@pytest.fixture()
def storage() -> AsyncInMemoryStorage:
    return AsyncInMemoryStorage()


@pytest.fixture()
def proxy(config: CacheConfig, origin: Origin, storage: AsyncInMemoryStorage) -> ASGIOfflineProxy:
    return ASGIOfflineProxy(config=config, storage=storage, transport=httpx.MockTransport(origin))


def make_client(proxy: ASGIOfflineProxy) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=proxy), base_url="http://testserver")


@pytest.mark.anyio
async def test_requests_are_forwarded_to_origin(proxy: ASGIOfflineProxy, origin: Origin) -> None:
    await proxy.startup()
    async with make_client(proxy) as client:
        response = await client.get("/api/harvests", params={"year": "2024"})
    await proxy.shutdown()

    assert response.status_code == 200
    assert response.json() == [{"id": 1}]
    forwarded = origin.requests[-1]
    assert str(forwarded.url) == "https://farm.example/api/harvests?year=2024"
    assert forwarded.headers.get("host") == "farm.example"


@pytest.mark.anyio
async def test_offline_requests_are_served_from_cache(proxy: ASGIOfflineProxy, origin: Origin) -> None:
    await proxy.startup()
    async with make_client(proxy) as client:
        await client.get("/api/harvests", params={"year": "2024"})
        origin.online = False
        api = await client.get("/api/harvests", params={"year": "2024"})
        icon = await client.get("/icons/icon-192x192.png")
        page = await client.get("/fields/3", headers={"sec-fetch-mode": "navigate"})
    await proxy.shutdown()

    assert api.json() == [{"id": 1}]
    assert icon.content == b"icon-192"
    assert page.text == "<html>shell</html>"


@pytest.mark.anyio
async def test_unanswerable_request_is_bad_gateway(proxy: ASGIOfflineProxy, origin: Origin) -> None:
    await proxy.startup()
    origin.online = False
    async with make_client(proxy) as client:
        response = await client.get("/api/prices")
    await proxy.shutdown()

    assert response.status_code == 502
    assert response.text == "Bad Gateway"


@pytest.mark.anyio
async def test_clear_cache_message(
    proxy: ASGIOfflineProxy, storage: AsyncInMemoryStorage, config: CacheConfig
) -> None:
    await proxy.startup()
    async with make_client(proxy) as client:
        await client.get("/api/harvests", params={"year": "2024"})
        assert config.dynamic_cache_name in await storage.list_namespaces()

        response = await client.post("/__cellar__/message", json={"type": "CLEAR_CACHE"})
    await proxy.shutdown()

    assert response.status_code == 202
    assert await storage.list_namespaces() == [config.static_cache_name]


@pytest.mark.anyio
async def test_invalid_and_unknown_messages(proxy: ASGIOfflineProxy, storage: AsyncInMemoryStorage) -> None:
    await proxy.startup()
    async with make_client(proxy) as client:
        invalid = await client.post("/__cellar__/message", content=b"{not json")
        unknown = await client.post("/__cellar__/message", json={"type": "RELOAD"})
    await proxy.shutdown()

    assert invalid.status_code == 400
    assert unknown.status_code == 202
    assert await storage.list_namespaces() == ["agro-static-v1.0.0"]


@pytest.mark.anyio
async def test_deploy_new_version(proxy: ASGIOfflineProxy, storage: AsyncInMemoryStorage, config: CacheConfig) -> None:
    await proxy.startup()

    assert await proxy.deploy(config.with_version("1.0.1"))
    assert proxy.registration.controller is not None
    assert proxy.registration.controller.config.version == "1.0.1"
    assert await storage.list_namespaces() == ["agro-static-v1.0.1"]

    await proxy.shutdown()


@pytest.mark.anyio
async def test_deploy_from_another_task(
    proxy: ASGIOfflineProxy, storage: AsyncInMemoryStorage, config: CacheConfig
) -> None:
    await proxy.startup()

    async with anyio.create_task_group() as tg:
        tg.start_soon(proxy.deploy, config.with_version("1.0.1"))

    async with make_client(proxy) as client:
        response = await client.get("/", headers={"sec-fetch-mode": "navigate"})

    await proxy.shutdown()

    assert response.status_code == 200
    assert proxy.registration.controller is not None
    assert proxy.registration.controller.config.version == "1.0.1"
    assert await storage.list_namespaces() == ["agro-static-v1.0.1", "agro-dynamic-v1.0.1"]


@pytest.mark.anyio
async def test_deploy_requires_startup(proxy: ASGIOfflineProxy, config: CacheConfig) -> None:
    with pytest.raises(RuntimeError, match="startup"):
        await proxy.deploy(config)


@pytest.mark.anyio
async def test_lifespan(proxy: ASGIOfflineProxy, storage: AsyncInMemoryStorage) -> None:
    incoming: List[Dict[str, Any]] = [{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}]
    sent: List[Dict[str, Any]] = []

    async def receive() -> Dict[str, Any]:
        return incoming.pop(0)

    async def send(message: Dict[str, Any]) -> None:
        sent.append(message)

    await proxy({"type": "lifespan"}, receive, send)

    assert sent == [{"type": "lifespan.startup.complete"}, {"type": "lifespan.shutdown.complete"}]
    assert await storage.list_namespaces() == ["agro-static-v1.0.0"]
