from __future__ import annotations

import pytest

from cellar import AsyncInMemoryStorage, CacheConfig, ClearCache, ControlChannel, Purpose, SkipWaiting
from cellar import parse_control_message
from cellar._control import to_payload


@pytest.mark.parametrize(
    "data, expected",
    [
        ({"type": "SKIP_WAITING"}, SkipWaiting()),
        ({"type": "CLEAR_CACHE"}, ClearCache()),
        ({"type": "CLEAR_CACHE", "extra": 1}, ClearCache()),
        ({"type": "RELOAD"}, None),
        ({}, None),
        ("SKIP_WAITING", None),
        (None, None),
    ],
)
def test_parse_control_message(data, expected) -> None:
    assert parse_control_message(data) == expected


def test_to_payload() -> None:
    assert to_payload(SkipWaiting()) == {"type": "SKIP_WAITING"}
    assert to_payload(ClearCache()) == {"type": "CLEAR_CACHE"}


@pytest.mark.anyio
async def test_clear_cache_only_touches_dynamic_namespaces(config: CacheConfig) -> None:
    storage = AsyncInMemoryStorage()
    for cache_name in [
        "agro-static-v1.0.0",
        "agro-dynamic-v1.0.0",
        "agro-dynamic-v0.9.0",
        "agro-v1.0.0",
        "other-dynamic-v1.0.0",
    ]:
        await storage.open_namespace(cache_name)

    async def skip_waiting() -> None:
        raise AssertionError("not expected")

    channel = ControlChannel(config, storage, skip_waiting=skip_waiting)
    await channel.on_message(ClearCache())

    assert await storage.list_namespaces() == ["agro-static-v1.0.0", "agro-v1.0.0", "other-dynamic-v1.0.0"]


@pytest.mark.anyio
async def test_clear_cache_ignores_other_scopes(config: CacheConfig) -> None:
    storage = AsyncInMemoryStorage()
    await storage.open_namespace("agro-static-v1.0.0")

    async def skip_waiting() -> None: ...

    channel = ControlChannel(config, storage, skip_waiting=skip_waiting)

    assert await channel.clear_cache(Purpose.STATIC) == []
    assert await storage.list_namespaces() == ["agro-static-v1.0.0"]


@pytest.mark.anyio
async def test_skip_waiting_message(config: CacheConfig) -> None:
    calls = []

    async def skip_waiting() -> None:
        calls.append("skip")

    channel = ControlChannel(config, AsyncInMemoryStorage(), skip_waiting=skip_waiting)
    await channel.on_message(SkipWaiting())

    assert calls == ["skip"]
