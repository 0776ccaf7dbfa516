#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "cellar[httpx, sqlite]",
#     "uvicorn",
# ]
#
# [tool.uv.sources]
# cellar = { path = "../", editable = true }
# ///

import uvicorn

from cellar import AsyncSqliteStorage, CacheConfig
from cellar.asgi import ASGIOfflineProxy

# Serves the app running on port 5173 through the offline cache.
# Clear the dynamic cache with:
#   curl -X POST localhost:8000/__cellar__/message -d '{"type": "CLEAR_CACHE"}'
app = ASGIOfflineProxy(
    config=CacheConfig(app_name="agrocontador", version="1.0.0", origin="http://127.0.0.1:5173"),
    storage=AsyncSqliteStorage(),
)

if __name__ == "__main__":
    uvicorn.run(app, port=8000)
