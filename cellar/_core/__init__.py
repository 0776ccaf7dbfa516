from cellar._core._headers import Headers as Headers
from cellar._core._storages import (
    AsyncBaseStorage as AsyncBaseStorage,
    AsyncInMemoryStorage as AsyncInMemoryStorage,
    AsyncSqliteStorage as AsyncSqliteStorage,
)
from cellar._core.models import (
    Entry as Entry,
    EntryMeta as EntryMeta,
    Request as Request,
    RequestMode as RequestMode,
    Response as Response,
    ResponseMetadata as ResponseMetadata,
)

__all__ = (
    ## Models
    "Request",
    "RequestMode",
    "Response",
    "ResponseMetadata",
    "Entry",
    "EntryMeta",
    ## Headers
    "Headers",
    ## Storages
    "AsyncBaseStorage",
    "AsyncInMemoryStorage",
    "AsyncSqliteStorage",
)
