from __future__ import annotations

import enum
import logging
import types
import typing as t

import anyio
from anyio.abc import TaskGroup

from cellar._config import CacheConfig
from cellar._control import ControlChannel, ControlMessage
from cellar._core._storages._base import AsyncBaseStorage
from cellar._core._storages._memory import AsyncInMemoryStorage
from cellar._core.models import Request, Response
from cellar._exceptions import InstallFailure
from cellar._lifecycle import LifecycleController
from cellar._routing import RouteClassifier, Strategy, is_fetchable
from cellar._strategies import EXECUTORS, StrategyContext, StrategyExecutor

logger = logging.getLogger("cellar.worker")

__all__ = ("OfflineCacheWorker", "WorkerState")


class WorkerState(str, enum.Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class OfflineCacheWorker:
    """
    The request-interception engine for one application version.

    It classifies every request, runs the matching strategy against the storage and the
    network, and exposes the lifecycle hooks and the control channel.

    Writes that finish after a response was returned run in a task group. The worker
    opens its own when used as an async context manager, and leaving the context waits for
    those writes. A host that already owns a task group can pass it in instead.

    Args:
        config: Namespaces, manifest and routing tables of this version.
        request_sender: Callable performing a real network request. It must raise
            ``NetworkUnavailable`` when no response can be obtained.
        storage: Storage backend shared by every version. Defaults to AsyncInMemoryStorage.
        classifier: Route classifier. Defaults to one built from ``config``.
        task_group: Task group owned by the host. The worker then never opens or closes one.

    Example:
        ```python
        async with OfflineCacheWorker(config, request_sender=send) as worker:
            if await worker.on_install():
                await worker.on_activate()
            response = await worker.handle(Request(method="GET", url="http://localhost/"))
        ```
    """

    def __init__(
        self,
        config: CacheConfig,
        request_sender: t.Callable[[Request], t.Awaitable[Response]],
        storage: AsyncBaseStorage | None = None,
        classifier: RouteClassifier | None = None,
        task_group: TaskGroup | None = None,
    ) -> None:
        self.config = config
        self.send_request = request_sender
        self.storage = storage if storage is not None else AsyncInMemoryStorage()
        self.classifier = classifier if classifier is not None else RouteClassifier.from_config(config)
        self.lifecycle = LifecycleController(config, self.storage, request_sender)
        self.control = ControlChannel(config, self.storage, skip_waiting=self.skip_waiting)

        self.state = WorkerState.PARSED
        self.skip_waiting_requested = False
        self._skip_waiting_listeners: t.List[t.Callable[["OfflineCacheWorker"], t.Awaitable[None]]] = []
        self._claim: t.Callable[["OfflineCacheWorker"], t.Awaitable[None]] | None = None
        self._task_group: TaskGroup | None = task_group
        self._owns_task_group = task_group is None

    def __repr__(self) -> str:
        return f"<OfflineCacheWorker {self.config.cache_name} [{self.state.value}]>"

    @property
    def running(self) -> bool:
        return self._task_group is not None

    async def __aenter__(self) -> "OfflineCacheWorker":
        if self._owns_task_group:
            self._task_group = anyio.create_task_group()
            await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        if not self._owns_task_group:
            return
        assert self._task_group is not None
        task_group, self._task_group = self._task_group, None
        await task_group.__aexit__(exc_type, exc_value, traceback)

    def spawn(self, func: t.Callable[[], t.Awaitable[None]]) -> None:
        if self._task_group is None:
            raise RuntimeError("OfflineCacheWorker must be used as an async context manager or given a task group")
        self._task_group.start_soon(func)

    def executor_for(self, strategy: Strategy) -> StrategyExecutor:
        return EXECUTORS[strategy]

    async def handle(self, request: Request) -> Response:
        """
        Answer an intercepted request.

        Raises:
            NetworkUnavailable: When the request cannot be answered from any source.
        """
        if not is_fetchable(request):
            logger.debug(f"Passing through {request.method} {request.url}")
            return await self.send_request(request)

        strategy = self.classifier.classify(request)
        logger.debug(f"Handling {request.url} with {strategy.value}")
        context = StrategyContext(
            config=self.config,
            storage=self.storage,
            send_request=self.send_request,
            spawn=self.spawn,
        )
        return await self.executor_for(strategy).execute(request, context)

    async def on_install(self) -> bool:
        """
        Install this version. Failures are logged and leave the previous version serving.

        Returns:
            True when the static namespace was filled.
        """
        logger.info(f"Installing {self.config.cache_name}")
        self.state = WorkerState.INSTALLING
        try:
            await self.lifecycle.install()
        except InstallFailure:
            logger.error(f"Installation of {self.config.cache_name} failed", exc_info=True)
            self.state = WorkerState.REDUNDANT
            return False

        self.state = WorkerState.INSTALLED
        if self.config.skip_waiting_on_install:
            await self.skip_waiting()
        return True

    async def on_activate(self) -> t.List[str]:
        """
        Activate this version: remove stale namespaces, then claim the open clients.

        Returns:
            Names of the deleted namespaces.
        """
        logger.info(f"Activating {self.config.cache_name}")
        self.state = WorkerState.ACTIVATING
        deleted = await self.lifecycle.activate()
        self.state = WorkerState.ACTIVATED
        await self.claim()
        return deleted

    async def on_message(self, message: ControlMessage) -> None:
        await self.control.on_message(message)

    async def skip_waiting(self) -> None:
        self.skip_waiting_requested = True
        for listener in list(self._skip_waiting_listeners):
            await listener(self)

    def add_skip_waiting_listener(self, listener: t.Callable[["OfflineCacheWorker"], t.Awaitable[None]]) -> None:
        self._skip_waiting_listeners.append(listener)

    def set_claim_handler(self, handler: t.Callable[["OfflineCacheWorker"], t.Awaitable[None]]) -> None:
        self._claim = handler

    async def claim(self) -> None:
        if self._claim is None:
            logger.debug("No host to claim clients from")
            return
        await self._claim(self)
