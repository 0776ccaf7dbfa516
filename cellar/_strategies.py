from __future__ import annotations

import abc
import logging
import typing as t
from dataclasses import dataclass

from cellar._config import CacheConfig
from cellar._core._storages._base import AsyncBaseStorage
from cellar._core.models import Entry, Request, Response, ResponseMetadata
from cellar._exceptions import NetworkUnavailable
from cellar._routing import Strategy

logger = logging.getLogger("cellar.strategies")

__all__ = (
    "StrategyContext",
    "StrategyExecutor",
    "NetworkFirst",
    "CacheFirst",
    "StaleWhileRevalidate",
    "EXECUTORS",
)

RequestSender = t.Callable[[Request], t.Awaitable[Response]]
Spawner = t.Callable[[t.Callable[[], t.Awaitable[None]]], None]


@dataclass
class StrategyContext:
    config: CacheConfig
    storage: AsyncBaseStorage
    send_request: RequestSender
    spawn: Spawner


def _mark(response: Response, metadata: ResponseMetadata) -> Response:
    response.metadata = {**response.metadata, **metadata}
    return response


def _from_entry(entry: Entry, strategy: Strategy) -> Response:
    return _mark(
        entry.response,
        ResponseMetadata(
            cellar_from_cache=True,
            cellar_strategy=strategy.value,
            cellar_cache_name=entry.cache_name,
            cellar_stored=False,
            cellar_created_at=entry.meta.created_at,
        ),
    )


def _from_network(response: Response, strategy: Strategy) -> Response:
    return _mark(response, ResponseMetadata(cellar_from_cache=False, cellar_strategy=strategy.value))


async def fetch(context: StrategyContext, request: Request) -> Response:
    """
    Call the network and, for an ok response, read the whole body.

    A body that breaks off halfway counts as no response at all, so the caller falls back
    exactly as if the request itself had failed.

    Raises:
        NetworkUnavailable: When no complete response could be obtained.
    """
    response = await context.send_request(request)
    if not response.ok:
        return response
    try:
        await response.aread()
    except NetworkUnavailable:
        await response.aclose()
        raise
    return response


async def store_response(context: StrategyContext, request: Request, response: Response) -> bool:
    """
    Write a clone of a completely read response into the dynamic namespace.

    Storage failures are logged and reported as ``False``; they never reach the caller.
    """
    if not response.ok:
        return False
    cache_name = context.config.dynamic_cache_name
    clone = await response.aclone()
    try:
        await context.storage.put_entry(cache_name, request.cache_key, request, clone)
    except Exception:
        logger.warning(f"Could not store {request.cache_key} in {cache_name}", exc_info=True)
        return False
    logger.debug(f"Stored {request.cache_key} in {cache_name}")
    return True


def spawn_guarded(context: StrategyContext, request: Request, func: t.Callable[[], t.Awaitable[None]]) -> None:
    """
    Run work that outlives the response. Its failures are logged and never reach the task group.
    """

    async def run() -> None:
        try:
            await func()
        except Exception:
            logger.warning(f"Background update of {request.url} failed", exc_info=True)

    context.spawn(run)


async def shell_response(context: StrategyContext, strategy: Strategy) -> Response:
    """The cached root document, served when a navigation cannot be satisfied otherwise."""
    entry = await context.storage.match(context.config.shell_url)
    if entry is None:
        raise NetworkUnavailable(f"No cached shell for {context.config.shell_url}")
    logger.debug("Serving cached shell")
    return _from_entry(entry, strategy)


class StrategyExecutor(abc.ABC):
    strategy: Strategy

    @abc.abstractmethod
    async def execute(self, request: Request, context: StrategyContext) -> Response:
        """
        Produce a response for the request.

        Raises:
            NetworkUnavailable: When neither the network nor any fallback can answer.
        """
        raise NotImplementedError()


class NetworkFirst(StrategyExecutor):
    strategy = Strategy.NETWORK_FIRST

    async def execute(self, request: Request, context: StrategyContext) -> Response:
        try:
            response = await fetch(context, request)
        except NetworkUnavailable:
            logger.info(f"Network unavailable, trying cache for {request.url}")
            entry = await context.storage.match(request.cache_key)
            if entry is not None:
                return _from_entry(entry, self.strategy)
            if request.is_navigation:
                return await shell_response(context, self.strategy)
            raise

        stored = await store_response(context, request, response)
        return _mark(_from_network(response, self.strategy), ResponseMetadata(cellar_stored=stored))


class CacheFirst(StrategyExecutor):
    strategy = Strategy.CACHE_FIRST

    async def execute(self, request: Request, context: StrategyContext) -> Response:
        entry = await context.storage.match(request.cache_key)
        if entry is not None:
            logger.debug(f"Cache hit for {request.url}")
            return _from_entry(entry, self.strategy)

        logger.debug(f"Cache miss for {request.url}")
        try:
            response = await fetch(context, request)
        except NetworkUnavailable:
            logger.error(f"Could not fetch {request.url}", exc_info=True)
            if request.is_navigation:
                return await shell_response(context, self.strategy)
            raise

        stored = await store_response(context, request, response)
        return _mark(_from_network(response, self.strategy), ResponseMetadata(cellar_stored=stored))


class StaleWhileRevalidate(StrategyExecutor):
    strategy = Strategy.STALE_WHILE_REVALIDATE

    async def execute(self, request: Request, context: StrategyContext) -> Response:
        entry = await context.storage.get_entry(context.config.dynamic_cache_name, request.cache_key)

        if entry is not None:
            logger.debug(f"Cache hit for {request.url}, revalidating in background")

            async def revalidate() -> None:
                try:
                    response = await fetch(context, request)
                except NetworkUnavailable:
                    logger.info(f"Network error while revalidating {request.url}")
                    return
                if not response.ok:
                    logger.debug(f"Revalidating {request.url} answered with status {response.status_code}")
                    await response.aclose()
                    return
                await store_response(context, request, response)

            spawn_guarded(context, request, revalidate)
            return _from_entry(entry, self.strategy)

        logger.debug(f"Cache miss for {request.url}")
        try:
            response = await fetch(context, request)
        except NetworkUnavailable:
            logger.info(f"Network error for {request.url}, falling back to shell")
            return await shell_response(context, self.strategy)

        if response.ok:
            clone = await response.aclone()

            async def write() -> None:
                await store_response(context, request, clone)

            spawn_guarded(context, request, write)
        return _from_network(response, self.strategy)


EXECUTORS: t.Dict[Strategy, StrategyExecutor] = {
    Strategy.NETWORK_FIRST: NetworkFirst(),
    Strategy.CACHE_FIRST: CacheFirst(),
    Strategy.STALE_WHILE_REVALIDATE: StaleWhileRevalidate(),
}
