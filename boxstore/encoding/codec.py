from __future__ import annotations

"""
Codec contract + JSON reference codec
-------------------------------------

A codec turns application values into stored bytes and back, and knows how
to splice N independently stored elements into one encoded collection:

    codec.unmarshal(codec.join([codec.marshal(v) for v in vs])) == list(vs)

The storage layer never holds an encoded collection, only N separate
entries, so `join` is format-aware (JSON array literal, CBOR array header),
never plain concatenation. `join([])` must produce an empty collection.

Failures surface as `EncodeError` / `DecodeError` with the library exception
as cause. Absent (None) or empty input is malformed for both reference codecs.
"""

import json
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, runtime_checkable

from ..errors import DecodeError, EncodeError

JSON_ARRAY_START = b"["
JSON_ARRAY_END = b"]"
JSON_ARRAY_SEPARATOR = b","


@runtime_checkable
class Codec(Protocol):
    def marshal(self, value: Any) -> bytes:
        """Encode one value. Raises EncodeError for unsupported shapes."""
        ...

    def unmarshal(self, data: Optional[bytes]) -> Any:
        """Decode bytes produced by `marshal` or `join`. Raises DecodeError."""
        ...

    def join(self, items: Sequence[bytes]) -> bytes:
        """Combine N marshaled elements into one encoded collection of N elements."""
        ...


def _json_default(o: Any) -> Any:
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")


class JSONCodec:
    """
    Compact UTF-8 JSON. Dataclass instances encode as objects; everything else
    follows the stdlib `json` rules. Decoding returns plain dicts/lists.
    """

    name = "json"

    def __init__(self, *, sort_keys: bool = False) -> None:
        self.sort_keys = sort_keys

    def marshal(self, value: Any) -> bytes:
        try:
            raw = json.dumps(
                value,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
                sort_keys=self.sort_keys,
                default=_json_default,
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncodeError(str(e), cause=e, codec=self.name) from e
        return raw

    def unmarshal(self, data: Optional[bytes]) -> Any:
        if not data:
            raise DecodeError("unexpected end of JSON input", codec=self.name)
        try:
            return json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(str(e), cause=e, codec=self.name) from e

    def join(self, items: Sequence[bytes]) -> bytes:
        if not items:
            return JSON_ARRAY_START + JSON_ARRAY_END
        return JSON_ARRAY_START + JSON_ARRAY_SEPARATOR.join(items) + JSON_ARRAY_END

    def __repr__(self) -> str:
        return f"JSONCodec(sort_keys={self.sort_keys})"


def _cbor_factory() -> Codec:
    from .cbor import CBORCodec

    return CBORCodec()


_REGISTRY: Dict[str, Callable[[], Codec]] = {
    "json": JSONCodec,
    "cbor": _cbor_factory,
}


def get_codec(name: str) -> Codec:
    """Build a codec by name ("json" | "cbor")."""
    try:
        factory = _REGISTRY[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"unknown codec {name!r}; expected one of {sorted(_REGISTRY)}"
        ) from None
    return factory()


def codec_names() -> list[str]:
    return sorted(_REGISTRY)
