"""
boxstore: nested, transactional key-value namespaces ("boxes") over an
embedded SQLite engine, with pluggable value codecs.

    from boxstore import Box, JSONCodec, open_store

    store = open_store("sqlite:///app.db")
    inbox = Box(store, "mail", JSONCodec()).nested("inbox")
    inbox.put_encoded("0001", {"subject": "hi"})
    inbox.get_all_decoded()     # [{'subject': 'hi'}]
"""

from __future__ import annotations

from .box import Box, BoxTx, box_factory, open_box
from .db import open_store, open_store_from_config
from .encoding import CBORCodec, Codec, JSONCodec, get_codec
from .errors import (
    BoxError,
    CodecError,
    ConfigError,
    DecodeError,
    EncodeError,
    EngineError,
    NamespaceNotFound,
    NoCodec,
    TxNotWritable,
)
from .version import __version__

__all__ = [
    "__version__",
    "Box",
    "BoxTx",
    "box_factory",
    "open_box",
    "open_store",
    "open_store_from_config",
    "Codec",
    "JSONCodec",
    "CBORCodec",
    "get_codec",
    "BoxError",
    "CodecError",
    "ConfigError",
    "DecodeError",
    "EncodeError",
    "EngineError",
    "NamespaceNotFound",
    "NoCodec",
    "TxNotWritable",
]
