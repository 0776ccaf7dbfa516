from cellar._core._storages._base import AsyncBaseStorage as AsyncBaseStorage
from cellar._core._storages._memory import AsyncInMemoryStorage as AsyncInMemoryStorage
from cellar._core._storages._sqlite import AsyncSqliteStorage as AsyncSqliteStorage

__all__ = (
    "AsyncBaseStorage",
    "AsyncInMemoryStorage",
    "AsyncSqliteStorage",
)
