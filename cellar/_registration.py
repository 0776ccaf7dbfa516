from __future__ import annotations

import logging
import typing as t

from typing_extensions import Literal

from cellar._control import ControlMessage
from cellar._core.models import Request, Response
from cellar._worker import OfflineCacheWorker, WorkerState

logger = logging.getLogger("cellar.registration")

__all__ = ("Registration", "RegistrationEvent")

RegistrationEvent = Literal["updatefound", "statechange", "controllerchange"]
Listener = t.Callable[..., t.Awaitable[None]]


class Registration:
    """
    Host-side bookkeeping of the installed worker versions.

    Tracks the ``installing``, ``waiting`` and ``active`` workers and the ``controller``
    currently answering requests, and notifies listeners about:

    - ``updatefound(worker)`` when a new version starts installing,
    - ``statechange(worker)`` after a version was installed, failed or activated,
    - ``controllerchange(previous, current)`` when a version claims the clients.

    Args:
        request_sender: Used for requests that arrive while no version controls the clients.
    """

    def __init__(self, request_sender: t.Callable[[Request], t.Awaitable[Response]]) -> None:
        self.send_request = request_sender
        self.installing: OfflineCacheWorker | None = None
        self.waiting: OfflineCacheWorker | None = None
        self.active: OfflineCacheWorker | None = None
        self.controller: OfflineCacheWorker | None = None
        self._listeners: t.Dict[str, t.List[Listener]] = {}

    def add_listener(self, event: RegistrationEvent, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    async def _emit(self, event: RegistrationEvent, *args: t.Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            await listener(*args)

    async def register(self, worker: OfflineCacheWorker) -> bool:
        """
        Install a new version and activate it when it may take over right away.

        A version takes over immediately when it asked to skip waiting or when nothing is
        active yet. Otherwise it stays ``waiting`` until it receives ``SkipWaiting``.

        Returns:
            False when the installation failed. The previous version keeps serving.
        """
        worker.set_claim_handler(self._claim)
        worker.add_skip_waiting_listener(self._on_skip_waiting)

        self.installing = worker
        worker.state = WorkerState.INSTALLING
        await self._emit("updatefound", worker)

        installed = await worker.on_install()
        self.installing = None

        if not installed:
            logger.warning(f"{worker!r} failed to install, keeping {self.active!r}")
            await self._emit("statechange", worker)
            return False

        self.waiting = worker
        await self._emit("statechange", worker)

        # A listener may already have activated it in response to the state change.
        if self.waiting is worker and (worker.skip_waiting_requested or self.active is None):
            await self._activate(worker)
        return True

    async def post_message(self, worker: OfflineCacheWorker, message: ControlMessage) -> None:
        logger.debug(f"Posting {message!r} to {worker!r}")
        await worker.on_message(message)

    async def handle(self, request: Request) -> Response:
        if self.controller is None:
            return await self.send_request(request)
        return await self.controller.handle(request)

    async def _on_skip_waiting(self, worker: OfflineCacheWorker) -> None:
        if self.waiting is worker and worker.state is WorkerState.INSTALLED:
            await self._activate(worker)

    async def _activate(self, worker: OfflineCacheWorker) -> None:
        previous = self.active
        self.waiting = None
        self.active = worker
        await worker.on_activate()
        if previous is not None and previous is not worker:
            previous.state = WorkerState.REDUNDANT
        await self._emit("statechange", worker)

    async def _claim(self, worker: OfflineCacheWorker) -> None:
        previous = self.controller
        if previous is worker:
            return
        self.controller = worker
        logger.info(f"{worker!r} now controls the clients")
        await self._emit("controllerchange", previous, worker)
