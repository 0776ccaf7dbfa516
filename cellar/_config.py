from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

from cellar._exceptions import ConfigError
from cellar._utils import resolve_url

try:
    import yaml
except ImportError:  # pragma: no cover
    yaml = None  # type: ignore

__all__ = (
    "CacheConfig",
    "CacheNamespace",
    "Purpose",
    "DEFAULT_STATIC_ASSETS",
    "DEFAULT_NETWORK_FIRST_ROUTES",
    "DEFAULT_CACHE_FIRST_ROUTES",
    "get_default_config",
    "load_config",
)

DEFAULT_STATIC_ASSETS: Tuple[str, ...] = (
    "/",
    "/index.html",
    "/manifest.json",
    "/icons/icon-192x192.png",
    "/icons/icon-512x512.png",
)

# Always fetched from the network first.
DEFAULT_NETWORK_FIRST_ROUTES: Tuple[str, ...] = (
    "/api/",
    "https://api.supabase.co/",
    "https://supabase.co/",
)

# Served from a cache namespace whenever possible.
DEFAULT_CACHE_FIRST_ROUTES: Tuple[str, ...] = (
    "/static/",
    "/assets/",
    "/icons/",
    ".js",
    ".css",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
)


class Purpose(str, enum.Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    GENERIC = "generic"


@dataclass(frozen=True)
class CacheNamespace:
    name: str
    purpose: Purpose
    version: str


@dataclass(frozen=True)
class CacheConfig:
    """
    Immutable description of the cache namespaces, the static manifest and the routing tables.

    One value is built per running version and shared by every component, so several
    configurations (tests, several applications) can live side by side.

    Args:
        app_name: Prefix of every namespace name owned by the application.
        version: Version embedded in the namespace names. Bumping it is the only way to
            invalidate previously cached content.
        origin: Origin the static manifest paths are resolved against.
        static_assets: Paths that must be cached at install time, in order.
        network_first_routes: URL substrings routed to the network-first strategy.
        cache_first_routes: URL substrings routed to the cache-first strategy.
        skip_waiting_on_install: Activate right after a successful install instead of
            waiting for the previous version to be released.
        control_path: Path the ASGI proxy accepts control messages on.
    """

    app_name: str = "app"
    version: str = "1.0.0"
    origin: str = "http://localhost"
    static_assets: Tuple[str, ...] = DEFAULT_STATIC_ASSETS
    network_first_routes: Tuple[str, ...] = DEFAULT_NETWORK_FIRST_ROUTES
    cache_first_routes: Tuple[str, ...] = DEFAULT_CACHE_FIRST_ROUTES
    skip_waiting_on_install: bool = True
    control_path: str = field(default="/__cellar__/message")

    def __post_init__(self) -> None:
        if not self.app_name:
            raise ConfigError("app_name must not be empty")
        if not self.version:
            raise ConfigError("version must not be empty")
        # Accept any iterable of strings, but keep the stored value hashable.
        for name in ("static_assets", "network_first_routes", "cache_first_routes"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def prefix(self) -> str:
        return f"{self.app_name}-"

    @property
    def cache_name(self) -> str:
        return f"{self.app_name}-v{self.version}"

    @property
    def static_prefix(self) -> str:
        return f"{self.app_name}-{Purpose.STATIC.value}-"

    @property
    def dynamic_prefix(self) -> str:
        return f"{self.app_name}-{Purpose.DYNAMIC.value}-"

    @property
    def static_cache_name(self) -> str:
        return f"{self.static_prefix}v{self.version}"

    @property
    def dynamic_cache_name(self) -> str:
        return f"{self.dynamic_prefix}v{self.version}"

    @property
    def current_cache_names(self) -> Tuple[str, str]:
        return (self.static_cache_name, self.dynamic_cache_name)

    @property
    def shell_url(self) -> str:
        return resolve_url(self.origin, "/")

    def manifest_urls(self) -> Tuple[str, ...]:
        return tuple(resolve_url(self.origin, path) for path in self.static_assets)

    def parse_namespace(self, name: str) -> Optional[CacheNamespace]:
        """
        Recover the structured namespace from one of this application's namespace names.

        Returns ``None`` for names that do not carry the application prefix.
        """
        if not name.startswith(self.prefix):
            return None
        for purpose in (Purpose.STATIC, Purpose.DYNAMIC):
            marker = f"{self.prefix}{purpose.value}-v"
            if name.startswith(marker):
                return CacheNamespace(name=name, purpose=purpose, version=name[len(marker) :])
        marker = f"{self.prefix}v"
        if name.startswith(marker):
            return CacheNamespace(name=name, purpose=Purpose.GENERIC, version=name[len(marker) :])
        return None

    def with_version(self, version: str) -> "CacheConfig":
        return replace(self, version=version)


def get_default_config() -> CacheConfig:
    """Get the default configuration, honouring the ``CELLAR_*`` environment variables."""

    APP_NAME = os.getenv("CELLAR_APP_NAME", "app")
    VERSION = os.getenv("CELLAR_VERSION", "1.0.0")
    ORIGIN = os.getenv("CELLAR_ORIGIN", "http://localhost")

    return CacheConfig(app_name=APP_NAME, version=VERSION, origin=ORIGIN)


def config_from_mapping(data: Mapping[str, Any]) -> CacheConfig:
    known = {f.name for f in fields(CacheConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    values = dict(data)
    if "version" in values:
        values["version"] = str(values["version"])
    return CacheConfig(**values)


def load_config(path: Union[str, Path]) -> CacheConfig:
    """
    Load a configuration from a YAML document whose keys are the ``CacheConfig`` fields.

    :raises RuntimeError: When used without the `yaml` extension installed
    :raises ConfigError: When the file is unreadable or holds unknown keys
    """
    if yaml is None:  # pragma: no cover
        raise RuntimeError(
            "`load_config` was used, but the required packages were not found. "
            "Check that you have `Cellar` installed with the `yaml` extension as shown.\n"
            "```pip install cellar[yaml]```"
        )
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read configuration from {path}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration in {path} must be a mapping")
    return config_from_mapping(data)
