from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union

HeadersInit = Union[Mapping[str, Union[str, List[str]]], Iterable[Tuple[str, str]]]


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive multi-value header mapping.

    Reading a header joins repeated values with ``", "``; assigning appends a value.
    """

    def __init__(self, headers: HeadersInit | None = None) -> None:
        self._headers: Dict[str, List[str]] = {}
        if headers is None:
            return
        if isinstance(headers, Mapping):
            for key, value in headers.items():
                self._headers[key.lower()] = [value] if isinstance(value, str) else list(value)
        else:
            for key, value in headers:
                self._headers.setdefault(key.lower(), []).append(value)

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(key, value) for key, values in self._headers.items() for value in values]

    def raw(self) -> Dict[str, List[str]]:
        return {key: values[:] for key, values in self._headers.items()}

    def copy(self) -> "Headers":
        return Headers(self.raw())

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers.setdefault(key.lower(), []).append(value)

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._headers

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"Headers({self._headers!r})"

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers
