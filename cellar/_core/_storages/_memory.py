from __future__ import annotations

import time
import typing as tp
import uuid
from dataclasses import replace

import anyio

from cellar._core._storages._base import AsyncBaseStorage
from cellar._core.models import Entry, EntryMeta, Request, Response
from cellar._utils import make_async_iterator


class AsyncInMemoryStorage(AsyncBaseStorage):
    """
    A simple in-memory storage.

    Namespaces live for as long as the storage object does. Bodies are kept as bytes,
    so every read hands out a new stream.
    """

    def __init__(self) -> None:
        # Insertion order of the outer dict is the namespace creation order.
        self._namespaces: tp.Dict[str, tp.Dict[str, tp.Tuple[Entry, bytes]]] = {}
        self._lock = anyio.Lock()

    async def open_namespace(self, cache_name: str) -> None:
        async with self._lock:
            self._namespaces.setdefault(cache_name, {})

    async def put_entry(self, cache_name: str, key: str, request: Request, response: Response) -> Entry:
        body = await response.aread()
        entry = Entry(
            id=uuid.uuid4(),
            cache_name=cache_name,
            key=key,
            request=Request(method=request.method, url=request.url, headers=request.headers.copy()),
            response=replace(response, headers=response.headers.copy(), stream=make_async_iterator([]), metadata={}),
            meta=EntryMeta(created_at=time.time()),
        )

        async with self._lock:
            self._namespaces.setdefault(cache_name, {})[key] = (entry, body)
        return self._with_stream(entry, body)

    async def get_entry(self, cache_name: str, key: str) -> tp.Optional[Entry]:
        async with self._lock:
            stored = self._namespaces.get(cache_name, {}).get(key)
        if stored is None:
            return None
        return self._with_stream(*stored)

    async def delete_namespace(self, cache_name: str) -> bool:
        async with self._lock:
            return self._namespaces.pop(cache_name, None) is not None

    async def list_namespaces(self) -> tp.List[str]:
        async with self._lock:
            return list(self._namespaces)

    async def keys(self, cache_name: str) -> tp.List[str]:
        async with self._lock:
            return list(self._namespaces.get(cache_name, {}))

    @staticmethod
    def _with_stream(entry: Entry, body: bytes) -> Entry:
        return replace(
            entry,
            response=replace(
                entry.response,
                headers=entry.response.headers.copy(),
                stream=make_async_iterator([body]),
                metadata={},
            ),
        )
