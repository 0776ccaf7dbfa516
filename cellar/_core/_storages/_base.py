from __future__ import annotations

import abc
import typing as tp
from abc import ABC

from cellar._core.models import Entry, Request, Response


class AsyncBaseStorage(ABC):
    """
    Key-value store over named namespaces holding request to response snapshots.

    Entries are whole-value snapshots: writing a key replaces the previous entry,
    so concurrent writers race only on which snapshot wins.
    """

    @abc.abstractmethod
    async def open_namespace(self, cache_name: str) -> None:
        """
        Create an empty namespace if it does not exist yet.

        Args:
            cache_name: Name of the namespace, e.g. ``app-static-v1.0.0``.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def put_entry(self, cache_name: str, key: str, request: Request, response: Response) -> Entry:
        """
        Store a snapshot of the response under the given key.

        The response body is read completely before anything is written. The namespace is
        created when it does not exist. An existing entry with the same key is replaced.

        Args:
            cache_name: Namespace to write into.
            key: Normalized request URL.
            request: The request the response answers.
            response: The response to snapshot.

        Returns:
            The stored entry. Its response can be read independently of ``response``.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def get_entry(self, cache_name: str, key: str) -> tp.Optional[Entry]:
        """
        Retrieve the entry stored under the key in one namespace.

        Every call returns a fresh, readable response stream.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def delete_namespace(self, cache_name: str) -> bool:
        """
        Delete a namespace with all of its entries.

        Returns:
            True if the namespace existed.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def list_namespaces(self) -> tp.List[str]:
        """
        List namespace names in creation order.
        """
        raise NotImplementedError()

    @abc.abstractmethod
    async def keys(self, cache_name: str) -> tp.List[str]:
        """
        List the keys stored in one namespace. Unknown namespaces have no keys.
        """
        raise NotImplementedError()

    async def match(self, key: str) -> tp.Optional[Entry]:
        """
        Look the key up in every namespace, oldest namespace first.
        """
        for cache_name in await self.list_namespaces():
            entry = await self.get_entry(cache_name, key)
            if entry is not None:
                return entry
        return None

    async def close(self) -> None:
        return None
