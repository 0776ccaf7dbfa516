from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass, field

from cellar._config import CacheConfig, Purpose
from cellar._core._storages._base import AsyncBaseStorage

logger = logging.getLogger("cellar.control")

__all__ = (
    "SkipWaiting",
    "ClearCache",
    "ControlMessage",
    "ControlChannel",
    "parse_control_message",
)

SKIP_WAITING = "SKIP_WAITING"
CLEAR_CACHE = "CLEAR_CACHE"


@dataclass(frozen=True)
class SkipWaiting:
    type: t.ClassVar[str] = SKIP_WAITING


@dataclass(frozen=True)
class ClearCache:
    type: t.ClassVar[str] = CLEAR_CACHE

    scope: Purpose = field(default=Purpose.DYNAMIC)


ControlMessage = t.Union[SkipWaiting, ClearCache]


def parse_control_message(data: t.Any) -> t.Optional[ControlMessage]:
    """
    Turn a ``{"type": ...}`` payload into a control message.

    Anything that is not a known message shape is ignored and yields ``None``.
    """
    if not isinstance(data, t.Mapping):
        return None
    message_type = data.get("type")
    if message_type == SKIP_WAITING:
        return SkipWaiting()
    if message_type == CLEAR_CACHE:
        return ClearCache()
    return None


def to_payload(message: ControlMessage) -> t.Dict[str, str]:
    return {"type": message.type}


class ControlChannel:
    """
    Applies out-of-band commands to a running instance.

    Messages are fire-and-forget; nothing is sent back to the sender.
    """

    def __init__(
        self,
        config: CacheConfig,
        storage: AsyncBaseStorage,
        skip_waiting: t.Callable[[], t.Awaitable[None]],
    ) -> None:
        self.config = config
        self.storage = storage
        self.skip_waiting = skip_waiting

    async def on_message(self, message: ControlMessage) -> None:
        if isinstance(message, SkipWaiting):
            logger.info("Skip waiting requested")
            await self.skip_waiting()
        elif isinstance(message, ClearCache):
            await self.clear_cache(message.scope)
        else:
            logger.debug(f"Ignoring unknown control message {message!r}")

    async def clear_cache(self, scope: Purpose) -> t.List[str]:
        # Only the dynamic scope exists on the wire; static content is versioned instead.
        if scope is not Purpose.DYNAMIC:
            logger.debug(f"Ignoring clear request for scope {scope.value}")
            return []

        deleted: t.List[str] = []
        for cache_name in await self.storage.list_namespaces():
            if cache_name.startswith(self.config.dynamic_prefix):
                await self.storage.delete_namespace(cache_name)
                deleted.append(cache_name)
        logger.info(f"Cleared {len(deleted)} dynamic namespaces")
        return deleted
