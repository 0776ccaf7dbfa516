#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "cellar[httpx, sqlite]",
# ]
#
# [tool.uv.sources]
# cellar = { path = "../", editable = true }
# ///

import asyncio
from typing import cast

import anysqlite

from cellar import CacheConfig, ResponseMetadata
from cellar._core._storages._sqlite import AsyncSqliteStorage
from cellar.httpx import AsyncOfflineCacheClient


async def fetch_and_print(client, url: str):
    print(f"\n➡ Sending request to {url}...")
    response = await client.get(url)
    meta = cast(ResponseMetadata, response.extensions)

    print(f"🧭 Strategy: {meta.get('cellar_strategy')}")
    print(f"🔄 From Cache: {meta.get('cellar_from_cache')}")
    print(f"🚀 Was Stored: {meta.get('cellar_stored', False)}")


async def main():
    config = CacheConfig(
        app_name="example",
        version="1.0.0",
        origin="https://www.example.com",
        static_assets=("/",),
    )
    storage = AsyncSqliteStorage(connection=await anysqlite.connect(":memory:"))
    async with AsyncOfflineCacheClient(config=config, storage=storage) as client:
        await fetch_and_print(client, "https://www.example.com/")
        await fetch_and_print(client, "https://www.example.com/api/status")


if __name__ == "__main__":
    asyncio.run(main())
