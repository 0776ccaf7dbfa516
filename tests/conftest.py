from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from cellar import CacheConfig, Headers, NetworkUnavailable, Request, Response
from cellar._utils import make_async_iterator

ORIGIN = "https://farm.example"

MANIFEST_BODIES = {
    f"{ORIGIN}/": b"<html>shell</html>",
    f"{ORIGIN}/index.html": b"<html>index</html>",
    f"{ORIGIN}/manifest.json": b'{"name": "farm"}',
    f"{ORIGIN}/icons/icon-192x192.png": b"icon-192",
    f"{ORIGIN}/icons/icon-512x512.png": b"icon-512",
}


class FakeNetwork:
    """
    Stands in for the network capability.

    Serves fixed bodies per URL, answers 404 for everything else, and raises
    ``NetworkUnavailable`` while ``online`` is False.
    """

    def __init__(self, routes: Optional[Dict[str, Tuple[int, bytes]]] = None) -> None:
        self.routes: Dict[str, Tuple[int, bytes]] = dict(routes or {})
        self.online = True
        self.calls: List[str] = []

    def serve(self, url: str, body: bytes, status_code: int = 200) -> None:
        self.routes[url] = (status_code, body)

    def serve_many(self, bodies: Iterable[Tuple[str, bytes]]) -> None:
        for url, body in bodies:
            self.serve(url, body)

    async def __call__(self, request: Request) -> Response:
        self.calls.append(request.url)
        if not self.online:
            raise NetworkUnavailable(f"Could not reach {request.url}")
        status_code, body = self.routes.get(request.url, (404, b"Not Found"))
        return Response(
            status_code=status_code,
            headers=Headers({"content-type": "text/plain"}),
            stream=make_async_iterator([body]),
        )


@pytest.fixture()
def config() -> CacheConfig:
    return CacheConfig(app_name="agro", version="1.0.0", origin=ORIGIN)


@pytest.fixture()
def network() -> FakeNetwork:
    fake = FakeNetwork()
    fake.serve_many(MANIFEST_BODIES.items())
    return fake


@pytest.fixture()
def use_temp_dir(tmpdir):
    cur_dir = os.getcwd()
    os.chdir(tmpdir)
    yield
    os.chdir(cur_dir)
