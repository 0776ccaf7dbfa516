from __future__ import annotations

import inspect
import logging
import typing as t

from cellar._control import SkipWaiting
from cellar._registration import Registration
from cellar._worker import OfflineCacheWorker, WorkerState

logger = logging.getLogger("cellar.coordinator")

__all__ = ("UpdateCoordinator",)

Prompt = t.Callable[[], t.Union[bool, t.Awaitable[bool]]]


class UpdateCoordinator:
    """
    Offers a freshly installed version to the user and reloads once it took control.

    Reloading after a controller change is mandatory: the page would otherwise mix
    assets of the new version with code of the old one.

    Args:
        registration: The registration to observe.
        prompt: Asks the user whether to update now. May be a coroutine function.
        reload: Reloads the page.
    """

    def __init__(self, registration: Registration, prompt: Prompt, reload: t.Callable[[], t.Any]) -> None:
        self.registration = registration
        self.prompt = prompt
        self.reload = reload
        self.reloaded = False
        registration.add_listener("statechange", self._on_statechange)
        registration.add_listener("controllerchange", self._on_controllerchange)

    async def register(self, worker: OfflineCacheWorker) -> bool:
        return await self.registration.register(worker)

    async def _on_statechange(self, worker: OfflineCacheWorker) -> None:
        if worker.state is not WorkerState.INSTALLED:
            return
        if self.registration.controller is None or self.registration.waiting is not worker:
            return
        if worker.skip_waiting_requested:
            return

        logger.info(f"New version available: {worker.config.version}")
        accepted = self.prompt()
        if inspect.isawaitable(accepted):
            accepted = await accepted
        if not accepted:
            logger.debug("Update postponed by the user")
            return
        await self.registration.post_message(worker, SkipWaiting())

    async def _on_controllerchange(
        self,
        previous: OfflineCacheWorker | None,
        current: OfflineCacheWorker,
    ) -> None:
        # The first claim of an uncontrolled page is not an update.
        if previous is None or self.reloaded:
            return
        self.reloaded = True
        logger.info(f"Controller changed to {current.config.version}, reloading")
        self.reload()
