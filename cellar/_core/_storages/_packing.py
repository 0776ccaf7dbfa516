from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional, cast, overload

import msgpack

from cellar._core._headers import Headers
from cellar._core.models import Entry, EntryMeta, Request, Response


def filter_out_cellar_metadata(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if not k.startswith("cellar_")}


def pack(value: Entry, /) -> bytes:
    """
    Serialize everything about an entry except the response body.
    """
    return cast(
        bytes,
        msgpack.packb(
            {
                "id": value.id.bytes,
                "cache_name": value.cache_name,
                "key": value.key,
                "request": {
                    "method": value.request.method,
                    "url": value.request.url,
                    "headers": value.request.headers.raw(),
                },
                "response": {
                    "status_code": value.response.status_code,
                    "headers": value.response.headers.raw(),
                    "extra": filter_out_cellar_metadata(value.response.metadata),
                },
                "meta": {
                    "created_at": value.meta.created_at,
                },
            }
        ),
    )


@overload
def unpack(value: bytes, /) -> Entry: ...


@overload
def unpack(value: Optional[bytes], /) -> Optional[Entry]: ...


def unpack(value: Optional[bytes], /) -> Optional[Entry]:
    if value is None:
        return None
    data = msgpack.unpackb(value)
    return Entry(
        id=uuid.UUID(bytes=data["id"]),
        cache_name=data["cache_name"],
        key=data["key"],
        request=Request(
            method=data["request"]["method"],
            url=data["request"]["url"],
            headers=Headers(data["request"]["headers"]),
        ),
        response=Response(
            status_code=data["response"]["status_code"],
            headers=Headers(data["response"]["headers"]),
            metadata=data["response"]["extra"],
        ),
        meta=EntryMeta(
            created_at=data["meta"]["created_at"],
        ),
    )
