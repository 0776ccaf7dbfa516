__all__ = (
    "CellarError",
    "NetworkUnavailable",
    "CacheWriteFailure",
    "InstallFailure",
    "ActivateFailure",
    "ConfigError",
)


class CellarError(Exception): ...


class NetworkUnavailable(CellarError): ...


class CacheWriteFailure(CellarError): ...


class InstallFailure(CellarError): ...


class ActivateFailure(CellarError): ...


class ConfigError(CellarError): ...
