from __future__ import annotations

import json
import logging
import typing as t
from typing import AsyncIterator

import anyio
from anyio.abc import TaskGroup

from cellar._config import CacheConfig, get_default_config
from cellar._control import parse_control_message
from cellar._core._headers import Headers
from cellar._core._storages._base import AsyncBaseStorage
from cellar._core._storages._memory import AsyncInMemoryStorage
from cellar._core.models import Request, RequestMode, Response
from cellar._exceptions import NetworkUnavailable
from cellar._registration import Registration
from cellar._utils import make_async_iterator
from cellar._worker import OfflineCacheWorker

try:
    import httpx
except ImportError as e:
    raise ImportError(
        "httpx is required to use cellar.asgi module. "
        "Please install cellar with the 'httpx' extra, "
        "e.g., 'pip install cellar[httpx]'."
    ) from e

from cellar._async_httpx import send_with_httpx

# Configure logger for this module
logger = logging.getLogger("cellar.asgi")

HOP_BY_HOP_HEADERS = ("connection", "keep-alive", "transfer-encoding", "upgrade", "host")


class _ASGIScope(t.TypedDict, total=False):
    """ASGI HTTP scope type."""

    type: str
    asgi: dict[str, str]
    http_version: str
    method: str
    scheme: str
    path: str
    query_string: bytes
    root_path: str
    headers: list[tuple[bytes, bytes]]
    server: tuple[str, int | None] | None
    client: tuple[str, int] | None
    state: dict[str, t.Any]
    extensions: dict[str, t.Any]


_Scope = _ASGIScope
_Receive = t.Callable[[], t.Awaitable[dict[str, t.Any]]]
_Send = t.Callable[[dict[str, t.Any]], t.Awaitable[None]]


class ASGIOfflineProxy:
    """
    ASGI reverse proxy that keeps an application usable while its origin is unreachable.

    Every request is forwarded to ``config.origin`` through an ``OfflineCacheWorker``,
    which decides per request whether the answer comes from a cache namespace, the
    origin, or both. The ``lifespan`` protocol installs and activates the configured
    version on startup. Control messages are accepted as JSON on ``config.control_path``.

    Args:
        config: The version to serve. ``config.origin`` is the upstream origin.
        storage: The storage backend shared by all versions. Defaults to AsyncInMemoryStorage.
        transport: httpx transport used to reach the origin. Defaults to AsyncHTTPTransport.

    Example:
        ```python
        from cellar import CacheConfig
        from cellar.asgi import ASGIOfflineProxy

        app = ASGIOfflineProxy(CacheConfig(app_name="farm", version="1.0.0", origin="http://127.0.0.1:5173"))
        # uvicorn module:app
        ```
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        storage: AsyncBaseStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config if config is not None else get_default_config()
        self.storage = storage if storage is not None else AsyncInMemoryStorage()
        self.transport = transport if transport is not None else httpx.AsyncHTTPTransport()
        self.registration = Registration(request_sender=self.send_upstream)
        self._task_group: TaskGroup | None = None

        logger.info(
            "Initialized ASGIOfflineProxy with origin=%s, storage=%s",
            self.config.origin,
            type(self.storage).__name__,
        )

    async def send_upstream(self, request: Request) -> Response:
        request.headers = Headers(
            [(key, value) for key, value in request.headers.multi_items() if key.lower() not in HOP_BY_HOP_HEADERS]
        )
        logger.debug("Forwarding request upstream: url=%s", request.url)
        return await send_with_httpx(self.transport, request)

    async def startup(self) -> None:
        """
        Open the task group that carries background writes of every version, then deploy
        the configured version. Must run in the same task as ``shutdown``.
        """
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        try:
            await self.deploy(self.config)
        except BaseException as exc:
            self._task_group = None
            await task_group.__aexit__(type(exc), exc, exc.__traceback__)
            raise

    async def deploy(self, config: CacheConfig) -> bool:
        """
        Install a version next to the running one. It takes over according to the usual
        lifecycle; a failed installation leaves the running version serving.

        May be called from any task once ``startup`` has run.
        """
        if self._task_group is None:
            raise RuntimeError("ASGIOfflineProxy.deploy requires startup to have run")
        worker = OfflineCacheWorker(
            config=config,
            request_sender=self.send_upstream,
            storage=self.storage,
            task_group=self._task_group,
        )
        return await self.registration.register(worker)

    async def shutdown(self) -> None:
        logger.info("Closing ASGIOfflineProxy and storage backend")
        task_group, self._task_group = self._task_group, None
        if task_group is not None:
            await task_group.__aexit__(None, None, None)
        await self.transport.aclose()
        await self.storage.close()

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        """
        Handle an ASGI request.

        Args:
            scope: The ASGI scope dictionary.
            receive: The ASGI receive callable.
            send: The ASGI send callable.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        if scope["type"] != "http":
            logger.debug("Skipping non-HTTP request: type=%s", scope["type"])
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "/")

        if method == "POST" and path == self.config.control_path:
            await self._handle_control_message(receive, send)
            return

        request = self._asgi_to_internal_request(scope, receive)
        logger.debug("Incoming HTTP request: method=%s url=%s mode=%s", method, request.url, request.mode)

        try:
            response = await self.registration.handle(request)
        except NetworkUnavailable as e:
            logger.warning("Request failed: url=%s error=%s", request.url, str(e))
            response = Response(
                status_code=502,
                headers=Headers({"content-type": "text/plain; charset=utf-8"}),
                stream=make_async_iterator([b"Bad Gateway"]),
            )

        await self._send_internal_response(response, send)

    async def _handle_lifespan(self, receive: _Receive, send: _Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as e:
                    logger.error("Startup failed: %s", str(e), exc_info=True)
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    async def _handle_control_message(self, receive: _Receive, send: _Send) -> None:
        body = b""
        while True:
            message = await receive()
            if message["type"] != "http.request":
                break
            body += message.get("body", b"")
            if not message.get("more_body", False):
                break

        try:
            payload = json.loads(body or b"null")
        except ValueError:
            logger.debug("Rejecting control message with invalid JSON")
            await self._send_internal_response(Response(status_code=400), send)
            return

        control_message = parse_control_message(payload)
        worker = self.registration.waiting or self.registration.active
        if control_message is None:
            logger.debug("Ignoring unknown control message: %r", payload)
        elif worker is not None:
            await self.registration.post_message(worker, control_message)
        await self._send_internal_response(Response(status_code=202), send)

    def _asgi_to_internal_request(self, scope: _Scope, receive: _Receive) -> Request:
        """
        Convert an ASGI HTTP scope to an internal Request aimed at the origin.

        Args:
            scope: The ASGI scope dictionary.
            receive: The ASGI receive callable.

        Returns:
            The internal Request object.
        """
        path = scope.get("path", "/")
        query_string = scope.get("query_string", b"")
        if query_string:
            path = f"{path}?{query_string.decode('latin1')}"

        url = f"{self.config.origin.rstrip('/')}{path}"
        method = scope.get("method", "GET")
        headers = Headers([(key.decode("latin1"), value.decode("latin1")) for key, value in scope.get("headers", [])])

        mode = headers.get("sec-fetch-mode", "cors")
        if mode not in ("navigate", "same-origin", "no-cors", "cors"):
            mode = "cors"

        async def request_stream() -> AsyncIterator[bytes]:
            while True:
                message = await receive()
                if message["type"] == "http.request":
                    body = message.get("body", b"")
                    if body:
                        yield body
                    if not message.get("more_body", False):
                        break
                elif message["type"] == "http.disconnect":
                    logger.debug("Client disconnected during request body streaming")
                    break

        return Request(
            method=method,
            url=url,
            headers=headers,
            stream=request_stream(),
            mode=t.cast(RequestMode, mode),
        )

    async def _send_internal_response(self, response: Response, send: _Send) -> None:
        """
        Send an internal Response to the ASGI send callable.

        Args:
            response: The internal Response object.
            send: The ASGI send callable.
        """
        headers: list[tuple[bytes, bytes]] = [
            (key.encode("latin1"), value.encode("latin1"))
            for key, value in response.headers.multi_items()
            if key.lower() not in ("connection", "transfer-encoding")
        ]

        await send(
            {
                "type": "http.response.start",
                "status": response.status_code,
                "headers": headers,
            }
        )

        bytes_sent = 0
        async for chunk in response._aiter_stream():
            await send(
                {
                    "type": "http.response.body",
                    "body": chunk,
                    "more_body": True,
                }
            )
            bytes_sent += len(chunk)

        await send(
            {
                "type": "http.response.body",
                "body": b"",
                "more_body": False,
            }
        )
        logger.info(
            "Response sent: status=%d total_bytes=%d from_cache=%s",
            response.status_code,
            bytes_sent,
            response.metadata.get("cellar_from_cache", False),
        )
