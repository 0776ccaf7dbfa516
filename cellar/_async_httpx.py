from __future__ import annotations

import ssl
import types
import typing as t
from typing import (
    AsyncIterable,
    AsyncIterator,
    Union,
    cast,
    overload,
)

from cellar._config import CacheConfig, get_default_config
from cellar._core._headers import Headers
from cellar._core._storages._base import AsyncBaseStorage
from cellar._core.models import Request, RequestMode, Response
from cellar._exceptions import NetworkUnavailable
from cellar._utils import filter_mapping, make_async_iterator
from cellar._worker import OfflineCacheWorker

try:
    import httpx
except ImportError as e:
    raise ImportError(
        "httpx is required to use cellar.httpx module. "
        "Please install cellar with the 'httpx' extra, "
        "e.g., 'pip install cellar[httpx]'."
    ) from e

# 128 KB
CHUNK_SIZE = 131072

REQUEST_MODES = ("navigate", "same-origin", "no-cors", "cors")


def _request_mode(request: httpx.Request) -> RequestMode:
    mode = request.extensions.get("cellar_mode") or request.headers.get("sec-fetch-mode")
    if mode in REQUEST_MODES:
        return cast(RequestMode, mode)
    return "cors"


@overload
def _internal_to_httpx(
    value: Request,
) -> httpx.Request: ...
@overload
def _internal_to_httpx(
    value: Response,
) -> httpx.Response: ...
def _internal_to_httpx(
    value: Union[Request, Response],
) -> Union[httpx.Request, httpx.Response]:
    """
    Convert internal Request/Response to httpx.Request/httpx.Response.
    """
    if isinstance(value, Request):
        return httpx.Request(
            method=value.method,
            url=value.url,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._aiter_stream()),
            extensions={"cellar_mode": value.mode},
        )
    elif isinstance(value, Response):
        return httpx.Response(
            status_code=value.status_code,
            headers=value.headers.multi_items(),
            stream=_IteratorStream(value._aiter_stream(), on_close=value.aclose),
            extensions=dict(value.metadata),
        )


@overload
def _httpx_to_internal(
    value: httpx.Request,
) -> Request: ...
@overload
def _httpx_to_internal(
    value: httpx.Response,
) -> Response: ...
def _httpx_to_internal(
    value: Union[httpx.Request, httpx.Response],
) -> Union[Request, Response]:
    """
    Convert httpx.Request/httpx.Response to internal Request/Response.
    """
    headers = Headers(
        [
            (key, header_value)
            for key, header_value in value.headers.multi_items()
            if key.lower() != "transfer-encoding"
        ]
    )
    if isinstance(value, httpx.Request):
        try:
            stream = make_async_iterator([value.content])
        except httpx.RequestNotRead:
            stream = cast(AsyncIterator[bytes], value.stream)

        return Request(
            method=value.method,
            url=str(value.url),
            headers=headers,
            stream=stream,
            mode=_request_mode(value),
        )
    elif isinstance(value, httpx.Response):
        stream = (
            make_async_iterator([value.content]) if value.is_stream_consumed else _ResponseStream(value)
        )

        if value.is_stream_consumed and "content-encoding" in value.headers:
            # If the stream was consumed and we don't know about
            # the original data and its size, fix the Content-Length
            # header and remove Content-Encoding so we can recreate it later properly.
            headers = Headers(
                {
                    **filter_mapping(
                        headers,
                        ["content-encoding"],
                    ),
                    "content-length": str(len(value.content)),
                }
            )

        return Response(
            status_code=value.status_code,
            headers=headers,
            stream=stream,
            metadata={},
        )


class _IteratorStream(httpx.AsyncByteStream):
    def __init__(
        self,
        iterator: AsyncIterator[bytes],
        on_close: t.Callable[[], t.Awaitable[None]] | None = None,
    ) -> None:
        self.iterator = iterator
        self.on_close = on_close

    async def __aiter__(self) -> AsyncIterator[bytes]:
        assert isinstance(self.iterator, (AsyncIterator, AsyncIterable))
        async for chunk in self.iterator:
            yield chunk

    async def aclose(self) -> None:
        if self.on_close is not None:
            await self.on_close()


class _ResponseStream:
    """
    Raw body of an upstream httpx response.

    Transport errors while reading become ``NetworkUnavailable``. Closing it releases the
    upstream response, also when it was never read.
    """

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self._chunks = response.aiter_raw(chunk_size=CHUNK_SIZE)

    def __aiter__(self) -> "_ResponseStream":
        return self

    async def __anext__(self) -> bytes:
        try:
            return await self._chunks.__anext__()
        except httpx.TransportError as exc:
            await self.aclose()
            raise NetworkUnavailable(f"Reading the response body failed: {exc}") from exc

    async def aclose(self) -> None:
        await self.response.aclose()


async def send_with_httpx(transport: httpx.AsyncBaseTransport, request: Request) -> Response:
    """
    Perform a real network request through an httpx transport.

    Raises:
        NetworkUnavailable: When the transport could not produce a response.
    """
    httpx_request = _internal_to_httpx(request)
    try:
        httpx_response = await transport.handle_async_request(httpx_request)
    except httpx.TransportError as exc:
        raise NetworkUnavailable(f"Could not reach {request.url}: {exc}") from exc
    return _httpx_to_internal(httpx_response)


class OfflineCacheTransport(httpx.AsyncBaseTransport):
    """
    httpx transport that answers requests through an ``OfflineCacheWorker``.

    Entering the transport installs and activates the configured version unless
    ``install=False``, so it (or the client owning it) must be used with ``async with``.
    Requests that cannot be answered from any source fail with ``httpx.ConnectError``.
    """

    def __init__(
        self,
        next_transport: httpx.AsyncBaseTransport,
        config: CacheConfig | None = None,
        storage: AsyncBaseStorage | None = None,
        install: bool = True,
    ) -> None:
        self.next_transport = next_transport
        self.install = install
        self.worker = OfflineCacheWorker(
            config=config if config is not None else get_default_config(),
            request_sender=self.request_sender,
            storage=storage,
        )
        self.storage = self.worker.storage

    async def __aenter__(self) -> "OfflineCacheTransport":
        await self.next_transport.__aenter__()
        await self.worker.__aenter__()
        if self.install and await self.worker.on_install():
            await self.worker.on_activate()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        await self.worker.__aexit__(exc_type, exc_value, traceback)
        await self.aclose()

    async def handle_async_request(
        self,
        request: httpx.Request,
    ) -> httpx.Response:
        if not self.worker.running:
            raise RuntimeError(
                "OfflineCacheTransport is not running. "
                "Use `async with AsyncOfflineCacheClient(...)` or `async with OfflineCacheTransport(...)`."
            )
        internal_request = _httpx_to_internal(request)
        try:
            internal_response = await self.worker.handle(internal_request)
        except NetworkUnavailable as exc:
            raise httpx.ConnectError(str(exc), request=request) from exc
        return _internal_to_httpx(internal_response)

    async def aclose(self) -> None:
        await self.next_transport.aclose()
        await self.storage.close()

    async def request_sender(self, request: Request) -> Response:
        return await send_with_httpx(self.next_transport, request)


class AsyncOfflineCacheClient(httpx.AsyncClient):
    def __init__(self, *args: t.Any, **kwargs: t.Any) -> None:
        self.config: CacheConfig | None = kwargs.pop("config", None)
        self.storage: AsyncBaseStorage | None = kwargs.pop("storage", None)
        super().__init__(*args, **kwargs)

    def _init_transport(
        self,
        verify: ssl.SSLContext | str | bool = True,
        cert: t.Union[str, t.Tuple[str, str], t.Tuple[str, str, str], None] = None,
        trust_env: bool = True,
        http1: bool = True,
        http2: bool = False,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: t.Any,
    ) -> httpx.AsyncBaseTransport:
        if transport is not None:
            return transport

        return OfflineCacheTransport(
            next_transport=httpx.AsyncHTTPTransport(
                verify=verify,
                cert=cert,
                trust_env=trust_env,
                http1=http1,
                http2=http2,
                limits=limits,
            ),
            config=self.config,
            storage=self.storage,
        )
