from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Mapping,
    TypedDict,
    cast,
)

from typing_extensions import Literal

from cellar._core._headers import Headers
from cellar._utils import make_async_iterator, normalize_url

RequestMode = Literal["navigate", "same-origin", "no-cors", "cors"]

NAVIGATE: RequestMode = "navigate"


def _empty_stream() -> AsyncIterator[bytes]:
    return make_async_iterator([])


class ResponseMetadata(TypedDict, total=False):
    # All the names here should be prefixed with "cellar_" to avoid collisions with user data
    cellar_from_cache: bool
    """Indicates whether the response was served from a cache namespace."""

    cellar_strategy: str
    """The strategy that produced the response."""

    cellar_cache_name: str
    """Name of the namespace the response was read from."""

    cellar_stored: bool
    """Indicates whether the response was written to a namespace."""

    cellar_created_at: float
    """Timestamp when the served entry was cached."""


@dataclass
class Request:
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    stream: AsyncIterator[bytes] = field(default_factory=_empty_stream)
    mode: RequestMode = "cors"
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_navigation(self) -> bool:
        return self.mode == NAVIGATE

    @property
    def cache_key(self) -> str:
        return normalize_url(self.url)

    async def _aiter_stream(self) -> AsyncIterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (AsyncIterator, AsyncIterable)):
            async for chunk in self.stream:
                yield chunk
            return
        raise TypeError("Request stream is not an AsyncIterator")

    async def aread(self) -> bytes:
        """
        Asynchronously reads the entire request body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, (AsyncIterator, AsyncIterable)):
            raise TypeError("Request stream is not an AsyncIterator")

        collected = b"".join([chunk async for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_async_iterator([collected])
        return collected


@dataclass
class Response:
    status_code: int
    headers: Headers = field(default_factory=Headers)
    stream: AsyncIterator[bytes] = field(default_factory=_empty_stream)
    metadata: ResponseMetadata | Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    async def _aiter_stream(self) -> AsyncIterator[bytes]:
        if hasattr(self, "collected_body"):
            yield getattr(self, "collected_body")
            return
        if isinstance(self.stream, (AsyncIterator, AsyncIterable)):
            async for chunk in self.stream:
                yield chunk
        else:
            raise TypeError("Response stream is not an AsyncIterator")

    async def aread(self) -> bytes:
        """
        Asynchronously reads the entire response body without consuming the stream.
        """
        if hasattr(self, "collected_body"):
            return cast(bytes, getattr(self, "collected_body"))

        if not isinstance(self.stream, (AsyncIterator, AsyncIterable)):
            raise TypeError("Response stream is not an AsyncIterator")

        collected = b"".join([chunk async for chunk in self.stream])
        setattr(self, "collected_body", collected)
        self.stream = make_async_iterator([collected])
        return collected

    async def aclose(self) -> None:
        """
        Release the response without reading it, e.g. giving its connection back to the pool.
        """
        close = getattr(self.stream, "aclose", None)
        if close is not None:
            await close()

    async def aclone(self) -> "Response":
        """
        Returns an independent copy of the response.

        The body is collected first, so both the original and the clone can still be read.
        """
        body = await self.aread()
        return replace(
            self,
            headers=self.headers.copy(),
            stream=make_async_iterator([body]),
            metadata=dict(self.metadata),
        )


@dataclass
class EntryMeta:
    created_at: float = field(default_factory=time.time)


@dataclass
class Entry:
    id: uuid.UUID
    cache_name: str
    key: str
    request: Request
    response: Response
    meta: EntryMeta = field(default_factory=EntryMeta)
