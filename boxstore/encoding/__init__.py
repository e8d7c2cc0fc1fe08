"""
boxstore.encoding
=================

Value codecs for Boxes.

- codec.py: the `Codec` protocol, `JSONCodec` (reference) and `get_codec`
- cbor.py:  `CBORCodec`, canonical CBOR via cbor2

Any object with `marshal` / `unmarshal` / `join` works as a codec; Box never
looks inside the bytes.
"""

from __future__ import annotations

from .cbor import CBORCodec
from .codec import Codec, JSONCodec, codec_names, get_codec

__all__ = [
    "Codec",
    "JSONCodec",
    "CBORCodec",
    "get_codec",
    "codec_names",
]
