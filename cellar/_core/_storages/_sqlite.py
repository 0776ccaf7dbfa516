from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Union

import anyio

from cellar._core._storages._base import AsyncBaseStorage
from cellar._core._storages._packing import pack, unpack
from cellar._core.models import Entry, EntryMeta, Request, Response
from cellar._exceptions import CacheWriteFailure
from cellar._utils import ensure_cache_dict, make_async_iterator

logger = logging.getLogger("cellar.storages")

try:
    import anysqlite

    class AsyncSqliteStorage(AsyncBaseStorage):
        """
        A persistent sqlite storage, so namespaces survive restarts.

        Args:
            connection: An already opened connection. When given, no directory is created.
            database_path: File name of the database, placed in ``.cache/cellar`` when it has
                no parent directory.
        """

        def __init__(
            self,
            *,
            connection: Optional[anysqlite.Connection] = None,
            database_path: Union[str, Path] = "cellar_cache.db",
        ) -> None:
            self.connection = connection
            self.database_path: Path = database_path if isinstance(database_path, Path) else Path(database_path)
            self._initialized = False
            self._setup_lock = anyio.Lock()

        async def _ensure_connection(self) -> anysqlite.Connection:
            """Ensure connection is established and database is initialized."""
            async with self._setup_lock:
                if self.connection is None:
                    parent = self.database_path.parent if self.database_path.parent != Path(".") else None
                    full_path = ensure_cache_dict(parent) / self.database_path.name
                    self.connection = await anysqlite.connect(str(full_path), check_same_thread=False)
                if not self._initialized:
                    await self._initialize_database()
                    self._initialized = True
                return self.connection

        async def _initialize_database(self) -> None:
            """Initialize the database schema."""
            assert self.connection is not None
            cursor = await self.connection.cursor()

            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS namespaces (
                    name TEXT PRIMARY KEY,
                    created_at REAL NOT NULL
                )
            """)

            # One row per (namespace, key); replacing a row is the whole write.
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    data BLOB NOT NULL,
                    body BLOB NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (namespace, key),
                    FOREIGN KEY (namespace) REFERENCES namespaces(name) ON DELETE CASCADE
                )
            """)

            await self.connection.commit()

        async def open_namespace(self, cache_name: str) -> None:
            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            await cursor.execute(
                "INSERT OR IGNORE INTO namespaces (name, created_at) VALUES (?, ?)",
                (cache_name, time.time()),
            )
            await connection.commit()

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

            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            try:
                await cursor.execute(
                    "INSERT OR IGNORE INTO namespaces (name, created_at) VALUES (?, ?)",
                    (cache_name, entry.meta.created_at),
                )
                await cursor.execute(
                    "INSERT OR REPLACE INTO entries (namespace, key, data, body, created_at) VALUES (?, ?, ?, ?, ?)",
                    (cache_name, key, pack(entry), body, entry.meta.created_at),
                )
                await connection.commit()
            except sqlite3.Error as exc:
                raise CacheWriteFailure(f"Could not store {key} in {cache_name}") from exc
            logger.debug(f"Stored {key} in {cache_name}")

            return replace(entry, response=replace(entry.response, stream=make_async_iterator([body])))

        async def get_entry(self, cache_name: str, key: str) -> Optional[Entry]:
            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            await cursor.execute(
                "SELECT data, body FROM entries WHERE namespace = ? AND key = ?",
                (cache_name, key),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            entry = unpack(row[0])
            return replace(entry, response=replace(entry.response, stream=make_async_iterator([row[1]])))

        async def delete_namespace(self, cache_name: str) -> bool:
            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            await cursor.execute("SELECT 1 FROM namespaces WHERE name = ? LIMIT 1", (cache_name,))
            existed = await cursor.fetchone() is not None
            await cursor.execute("DELETE FROM entries WHERE namespace = ?", (cache_name,))
            await cursor.execute("DELETE FROM namespaces WHERE name = ?", (cache_name,))
            await connection.commit()
            return existed

        async def list_namespaces(self) -> List[str]:
            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            await cursor.execute("SELECT name FROM namespaces ORDER BY created_at, rowid")
            return [row[0] for row in await cursor.fetchall()]

        async def keys(self, cache_name: str) -> List[str]:
            connection = await self._ensure_connection()
            cursor = await connection.cursor()
            await cursor.execute("SELECT key FROM entries WHERE namespace = ? ORDER BY rowid", (cache_name,))
            return [row[0] for row in await cursor.fetchall()]

        async def close(self) -> None:
            if self.connection is not None:
                await self.connection.close()
                self.connection = None
                self._initialized = False

except ImportError:

    class AsyncSqliteStorage:  # type: ignore[no-redef]
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            raise ImportError(
                "The 'anysqlite' library is required to use the `AsyncSqliteStorage` integration. "
                "Install cellar with 'pip install cellar[sqlite]'."
            )
