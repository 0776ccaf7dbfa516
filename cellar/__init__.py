from cellar._config import (
    CacheConfig as CacheConfig,
    CacheNamespace as CacheNamespace,
    Purpose as Purpose,
    get_default_config as get_default_config,
    load_config as load_config,
)
from cellar._control import (
    ClearCache as ClearCache,
    ControlChannel as ControlChannel,
    ControlMessage as ControlMessage,
    SkipWaiting as SkipWaiting,
    parse_control_message as parse_control_message,
)
from cellar._coordinator import UpdateCoordinator as UpdateCoordinator
from cellar._core import (
    AsyncBaseStorage as AsyncBaseStorage,
    AsyncInMemoryStorage as AsyncInMemoryStorage,
    AsyncSqliteStorage as AsyncSqliteStorage,
    Entry as Entry,
    EntryMeta as EntryMeta,
    Headers as Headers,
    Request as Request,
    RequestMode as RequestMode,
    Response as Response,
    ResponseMetadata as ResponseMetadata,
)
from cellar._exceptions import (
    ActivateFailure as ActivateFailure,
    CacheWriteFailure as CacheWriteFailure,
    CellarError as CellarError,
    ConfigError as ConfigError,
    InstallFailure as InstallFailure,
    NetworkUnavailable as NetworkUnavailable,
)
from cellar._lifecycle import LifecycleController as LifecycleController
from cellar._registration import Registration as Registration
from cellar._routing import (
    RouteClassifier as RouteClassifier,
    RouteRule as RouteRule,
    Strategy as Strategy,
    contains as contains,
    is_fetchable as is_fetchable,
)
from cellar._strategies import (
    CacheFirst as CacheFirst,
    NetworkFirst as NetworkFirst,
    StaleWhileRevalidate as StaleWhileRevalidate,
    StrategyContext as StrategyContext,
    StrategyExecutor as StrategyExecutor,
)
from cellar._worker import OfflineCacheWorker as OfflineCacheWorker, WorkerState as WorkerState

__all__ = (
    ## Configuration
    "CacheConfig",
    "CacheNamespace",
    "Purpose",
    "get_default_config",
    "load_config",
    ## Models
    "Request",
    "RequestMode",
    "Response",
    "ResponseMetadata",
    "Entry",
    "EntryMeta",
    ## Headers
    "Headers",
    ## Storages
    "AsyncBaseStorage",
    "AsyncInMemoryStorage",
    "AsyncSqliteStorage",
    ## Routing
    "Strategy",
    "RouteRule",
    "RouteClassifier",
    "contains",
    "is_fetchable",
    ## Strategies
    "StrategyContext",
    "StrategyExecutor",
    "NetworkFirst",
    "CacheFirst",
    "StaleWhileRevalidate",
    ## Lifecycle and control
    "LifecycleController",
    "ControlChannel",
    "ControlMessage",
    "SkipWaiting",
    "ClearCache",
    "parse_control_message",
    ## Worker and host
    "OfflineCacheWorker",
    "WorkerState",
    "Registration",
    "UpdateCoordinator",
    ## Errors
    "CellarError",
    "NetworkUnavailable",
    "CacheWriteFailure",
    "InstallFailure",
    "ActivateFailure",
    "ConfigError",
)
