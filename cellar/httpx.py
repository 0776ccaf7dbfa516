try:
    import httpx  # noqa: F401
except ImportError as e:
    raise ImportError(
        "httpx is required to use cellar.httpx module. "
        "Please install cellar with the 'httpx' extra, "
        "e.g., 'pip install cellar[httpx]'."
    ) from e


from ._async_httpx import (
    AsyncOfflineCacheClient as AsyncOfflineCacheClient,
    OfflineCacheTransport as OfflineCacheTransport,
    send_with_httpx as send_with_httpx,
)

__all__ = ("AsyncOfflineCacheClient", "OfflineCacheTransport", "send_with_httpx")
