from __future__ import annotations

"""
CBOR codec
----------

Binary alternative to the JSON reference codec, backed by `cbor2` in
canonical mode (RFC 8949 deterministic encoding: sorted map keys, shortest
integer forms).

`join` builds a definite-length array: the major-type-4 head for N followed
by the N encoded items back to back. That is exactly how CBOR lays out an
array, so no re-encoding happens. `join([])` is the single byte 0x80.
"""

from dataclasses import asdict, is_dataclass
from typing import Any, Optional, Sequence

import cbor2

from ..errors import DecodeError, EncodeError

MAJOR_ARRAY = 4


def _head(major: int, n: int) -> bytes:
    """Initial byte + argument for a non-negative length/value (RFC 8949 §3)."""
    if n < 24:
        return bytes([(major << 5) | n])
    if n <= 0xFF:
        return bytes([(major << 5) | 24, n])
    if n <= 0xFFFF:
        return bytes([(major << 5) | 25]) + n.to_bytes(2, "big")
    if n <= 0xFFFFFFFF:
        return bytes([(major << 5) | 26]) + n.to_bytes(4, "big")
    if n <= 0xFFFFFFFFFFFFFFFF:
        return bytes([(major << 5) | 27]) + n.to_bytes(8, "big")
    raise OverflowError("length too large for a CBOR head")


def _default(encoder: cbor2.CBOREncoder, value: Any) -> None:
    if is_dataclass(value) and not isinstance(value, type):
        encoder.encode(asdict(value))
        return
    raise cbor2.CBOREncodeError(f"cannot serialize type {type(value).__name__}")


class CBORCodec:
    name = "cbor"

    def __init__(self, *, canonical: bool = True) -> None:
        self.canonical = canonical

    def marshal(self, value: Any) -> bytes:
        try:
            return cbor2.dumps(value, canonical=self.canonical, default=_default)
        except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
            raise EncodeError(str(e), cause=e, codec=self.name) from e

    def unmarshal(self, data: Optional[bytes]) -> Any:
        if not data:
            raise DecodeError("unexpected end of CBOR input", codec=self.name)
        try:
            return cbor2.loads(bytes(data))
        except (cbor2.CBORDecodeError, EOFError, ValueError) as e:
            raise DecodeError(str(e), cause=e, codec=self.name) from e

    def join(self, items: Sequence[bytes]) -> bytes:
        return _head(MAJOR_ARRAY, len(items)) + b"".join(items)

    def __repr__(self) -> str:
        return f"CBORCodec(canonical={self.canonical})"
