from __future__ import annotations

import typing as tp
from pathlib import Path
from typing import AsyncIterator, Iterable
from urllib.parse import urljoin, urlsplit, urlunsplit

T = tp.TypeVar("T")

DEFAULT_PORTS = {"http": 80, "https": 443}


def partition(iterable: tp.Iterable[T], predicate: tp.Callable[[T], bool]) -> tp.Tuple[tp.List[T], tp.List[T]]:
    """
    Partition an iterable into two lists: one for matching items and one for non-matching items.

    Args:
        iterable (tp.Iterable[T]): The input iterable to partition.
        predicate (tp.Callable[[T], bool]): A function that evaluates each item in the iterable.

    Returns:
        tp.Tuple[tp.List[T], tp.List[T]]: A tuple containing two lists: the first for matching items,
        and the second for non-matching items.
    Example:
        ```
        names = ["app-static-v1", "other-cache", "app-dynamic-v1"]
        ours, foreign = partition(names, lambda name: name.startswith("app-"))
        ```
    """
    matching, non_matching = [], []
    for item in iterable:
        if predicate(item):
            matching.append(item)
        else:
            non_matching.append(item)
    return matching, non_matching


async def make_async_iterator(
    iterable: Iterable[bytes],
) -> AsyncIterator[bytes]:
    for item in iterable:
        yield item


def filter_mapping(mapping: tp.Mapping[str, T], keys_to_exclude: tp.Iterable[str]) -> tp.Dict[str, T]:
    """
        Filter out specified keys from a string-keyed mapping using case-insensitive comparison.

        Args:
            mapping: The input mapping with string keys to filter.
            keys_to_exclude: An iterable of string keys to exclude (case-insensitive).

        Returns:
            A new dictionary with the specified keys excluded.

        Example:
    ```python
            original = {'a': 1, 'B': 2, 'c': 3}
            filtered = filter_mapping(original, ['b'])
            # filtered will be {'a': 1, 'c': 3}
    ```
    """
    exclude_set = {k.lower() for k in keys_to_exclude}
    return {k: v for k, v in mapping.items() if k.lower() not in exclude_set}


def normalize_url(url: str) -> str:
    """
    Normalize a URL so equivalent spellings share one cache key.

    The scheme and host are lowercased, default ports and the fragment are dropped,
    and an empty path becomes ``/``. The query string is kept verbatim.

    Examples:
        >>> normalize_url("HTTPS://Example.COM:443/a?b=1#top")
        'https://example.com/a?b=1'
        >>> normalize_url("http://localhost:8000")
        'http://localhost:8000/'
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    netloc = host
    if parts.port is not None and DEFAULT_PORTS.get(scheme) != parts.port:
        netloc = f"{host}:{parts.port}"
    if parts.username:
        userinfo = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def resolve_url(origin: str, path: str) -> str:
    """Resolve a manifest path against the application origin and normalize it."""
    return normalize_url(urljoin(origin, path))


def ensure_cache_dict(base_path: Path | None = None) -> Path:
    _base_path = base_path if base_path is not None else Path(".cache/cellar")
    _gitignore_file = _base_path / ".gitignore"

    _base_path.mkdir(parents=True, exist_ok=True)

    if not _gitignore_file.is_file():
        with open(_gitignore_file, "w", encoding="utf-8") as f:
            f.write("# Automatically created by Cellar\n*")
    return _base_path
