from __future__ import annotations

import logging
import typing as t

from cellar._config import CacheConfig
from cellar._core._storages._base import AsyncBaseStorage
from cellar._core.models import Request, Response
from cellar._exceptions import ActivateFailure, InstallFailure, NetworkUnavailable
from cellar._utils import partition

logger = logging.getLogger("cellar.lifecycle")

__all__ = ("LifecycleController",)


class LifecycleController:
    """
    Governs namespace versioning for one configuration.

    ``install`` fills the static namespace from the manifest, all or nothing.
    ``activate`` removes every namespace left behind by other versions of the application.
    """

    def __init__(
        self,
        config: CacheConfig,
        storage: AsyncBaseStorage,
        send_request: t.Callable[[Request], t.Awaitable[Response]],
    ) -> None:
        self.config = config
        self.storage = storage
        self.send_request = send_request

    async def install(self) -> None:
        """
        Fetch every manifest path and store it in the static namespace.

        Nothing is written until every asset has been fetched with a 2xx status. When any
        step fails, a static namespace created by this call is removed again.

        Raises:
            InstallFailure: When an asset is unreachable, not ok, or cannot be stored.
        """
        cache_name = self.config.static_cache_name
        existed = cache_name in await self.storage.list_namespaces()

        await self.storage.open_namespace(cache_name)
        logger.debug(f"Opened static namespace {cache_name}")

        try:
            fetched: t.List[t.Tuple[Request, Response]] = []
            for url in self.config.manifest_urls():
                request = Request(method="GET", url=url)
                try:
                    response = await self.send_request(request)
                except NetworkUnavailable as exc:
                    raise InstallFailure(f"Could not fetch {url}") from exc
                if not response.ok:
                    await response.aclose()
                    raise InstallFailure(f"Fetching {url} answered with status {response.status_code}")
                try:
                    await response.aread()
                except NetworkUnavailable as exc:
                    await response.aclose()
                    raise InstallFailure(f"Could not read {url}") from exc
                fetched.append((request, response))

            for request, response in fetched:
                try:
                    await self.storage.put_entry(cache_name, request.cache_key, request, response)
                except Exception as exc:
                    raise InstallFailure(f"Could not store {request.url} in {cache_name}") from exc
        except InstallFailure:
            if not existed:
                await self.storage.delete_namespace(cache_name)
            raise

        logger.info(f"Cached {len(fetched)} static assets in {cache_name}")

    def is_stale(self, cache_name: str) -> bool:
        return cache_name.startswith(self.config.prefix) and cache_name not in self.config.current_cache_names

    async def _delete(self, cache_name: str) -> None:
        try:
            await self.storage.delete_namespace(cache_name)
        except Exception as exc:
            raise ActivateFailure(f"Could not delete namespace {cache_name}") from exc

    async def activate(self) -> t.List[str]:
        """
        Delete every namespace owned by the application that the current version does not use.

        A failing deletion is logged and does not stop the remaining ones.

        Returns:
            Names of the deleted namespaces.
        """
        stale, _ = partition(await self.storage.list_namespaces(), self.is_stale)
        deleted: t.List[str] = []

        for cache_name in stale:
            logger.info(f"Removing old namespace {cache_name}")
            try:
                await self._delete(cache_name)
            except ActivateFailure:
                logger.error(f"Could not delete namespace {cache_name}", exc_info=True)
                continue
            deleted.append(cache_name)
        return deleted
