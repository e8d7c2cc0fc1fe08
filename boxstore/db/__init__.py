from __future__ import annotations

"""
boxstore.db
===========

Facade for the storage engine the Box layer runs on.

URIs
----
- "sqlite:///path/to/box.db"   -> SQLite file
- "sqlite:///:memory:"         -> private in-memory SQLite (tests)
- "memory://"                  -> alias of "sqlite:///:memory:"
- bare path                    -> SQLite file

The engine protocols live in `boxstore.db.engine`; this module only selects
and opens a backend.

>>> from boxstore.db import open_store
>>> store = open_store("memory://")
>>> with store.update() as tx:
...     tx.create_bucket_if_not_exists(b"b").put(b"k", b"v")
"""

import os
from typing import Optional, Tuple, Union

from .engine import Bucket, Cursor, Store, Tx, iter_bucket
from .sqlite import DEFAULT_BUSY_TIMEOUT, SQLiteStore, open_sqlite_store


def _parse_uri(uri: Union[str, "os.PathLike[str]"]) -> Tuple[str, str]:
    """Return (backend, path) for a store URI."""
    u = os.fspath(uri).strip()
    if u.startswith("sqlite:///"):
        return ("sqlite", u[len("sqlite:///") :] or ":memory:")
    if u.startswith("memory://"):
        return ("sqlite", ":memory:")
    if "://" in u:
        raise ValueError(f"Unsupported store URI: {u!r}")
    if not u:
        raise ValueError("store URI must be non-empty")
    return ("sqlite", u)


def open_store(
    uri: Union[str, "os.PathLike[str]"],
    *,
    create: bool = True,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    pragmas: Optional[dict] = None,
) -> SQLiteStore:
    """
    Open a store by URI. See module docstring for supported forms.

    Raises:
        ValueError for unsupported URIs.
        FileNotFoundError when `create=False` and the file is missing.
    """
    _backend, path = _parse_uri(uri)
    return open_sqlite_store(path, create=create, busy_timeout=busy_timeout, pragmas=pragmas)


def open_store_from_config(cfg) -> SQLiteStore:
    """Open the store described by a `boxstore.config.Config`."""
    return open_store(
        cfg.store.uri,
        busy_timeout=cfg.store.busy_timeout,
        pragmas=dict(cfg.store.pragmas) or None,
    )


__all__ = [
    "Store",
    "Tx",
    "Bucket",
    "Cursor",
    "iter_bucket",
    "open_store",
    "open_store_from_config",
    "SQLiteStore",
]
