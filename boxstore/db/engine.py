from __future__ import annotations

"""
Engine interface
================

Backend-agnostic surface of the ordered, transactional key-value engine the
Box layer runs on. Backends (currently `boxstore.db.sqlite`) implement these
protocols; nothing here performs I/O.

Model
-----
- A *store* hands out transactions: `view()` (read-only) and `update()`
  (read-write). Both are context managers; `update()` commits on a clean exit
  and rolls back when an exception escapes. Writers are serialized; readers
  see a consistent snapshot and do not block each other.
- Inside a transaction, *buckets* (namespaces) are opened by name from the
  transaction (top level) or from another bucket (nested). Names are byte
  strings, unique among siblings.
- A bucket maps byte keys to byte values, ordered by unsigned bytewise
  comparison, and owns a monotonic 64-bit counter.
- Bucket and cursor handles are valid only while their transaction is open.

>>> with store.update() as tx:
...     b = tx.create_bucket_if_not_exists(b"users")
...     b.put(b"alice", b"1")
>>> with store.view() as tx:
...     tx.bucket(b"users").get(b"alice")
b'1'
"""

from typing import ContextManager, Iterator, Optional, Protocol, Tuple, Union, runtime_checkable

BytesLike = Union[bytes, bytearray, memoryview]
Item = Tuple[bytes, bytes]

MAX_SEQUENCE = (1 << 64) - 1


@runtime_checkable
class Cursor(Protocol):
    """Ordered iteration over the values of one bucket (child buckets are not visited)."""

    def first(self) -> Optional[Item]:
        """Move to the smallest key; None when the bucket has no values."""
        ...

    def next(self) -> Optional[Item]:
        """Move past the current key; None at the end."""
        ...

    def seek(self, key: bytes) -> Optional[Item]:
        """Move to the first key >= `key`; None when there is none."""
        ...


@runtime_checkable
class Bucket(Protocol):
    name: bytes

    @property
    def writable(self) -> bool: ...

    def get(self, key: bytes) -> Optional[bytes]: ...

    def put(self, key: bytes, value: bytes) -> None:
        """Upsert. Requires a writable transaction."""
        ...

    def delete(self, key: bytes) -> None:
        """Remove if present (idempotent). Requires a writable transaction."""
        ...

    def cursor(self) -> Cursor: ...

    def bucket(self, name: bytes) -> Optional["Bucket"]:
        """Open a nested bucket; None if missing."""
        ...

    def create_bucket_if_not_exists(self, name: bytes) -> "Bucket": ...

    def sequence(self) -> int:
        """Current counter value without advancing it (0 for a fresh bucket)."""
        ...

    def next_sequence(self) -> int:
        """Advance the counter and return the new value (1 for a fresh bucket)."""
        ...


@runtime_checkable
class Tx(Protocol):
    @property
    def writable(self) -> bool: ...

    def bucket(self, name: bytes) -> Optional[Bucket]:
        """Open a top-level bucket; None if missing."""
        ...

    def create_bucket_if_not_exists(self, name: bytes) -> Bucket: ...


@runtime_checkable
class Store(Protocol):
    def view(self) -> ContextManager[Tx]: ...

    def update(self) -> ContextManager[Tx]: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Portable helpers built atop the interface
# ---------------------------------------------------------------------------


def iter_bucket(bucket: Bucket, prefix: bytes = b"") -> Iterator[Item]:
    """
    Yield `(key, value)` pairs whose key starts with `prefix`, ascending.
    Seeks to the prefix and stops at the first key outside it.
    """
    c = bucket.cursor()
    item = c.seek(prefix) if prefix else c.first()
    while item is not None and item[0].startswith(prefix):
        yield item
        item = c.next()


def be_u64(n: int) -> bytes:
    if not (0 <= n <= MAX_SEQUENCE):
        raise ValueError("be_u64 out of range")
    return n.to_bytes(8, "big")


def to_bytes(x: Union[BytesLike, str], what: str = "key") -> bytes:
    """
    Normalize a name or key: bytes-like as-is, str as UTF-8. Empty is rejected,
    matching the engine's rule that names and keys are non-empty.
    """
    if isinstance(x, (bytes, bytearray, memoryview)):
        b = bytes(x)
    elif isinstance(x, str):
        b = x.encode("utf-8")
    else:
        raise TypeError(f"{what} must be bytes or str, got {type(x).__name__}")
    if not b:
        raise ValueError(f"{what} must be non-empty")
    return b


__all__ = [
    "BytesLike",
    "Item",
    "MAX_SEQUENCE",
    "Cursor",
    "Bucket",
    "Tx",
    "Store",
    "iter_bucket",
    "be_u64",
    "to_bytes",
]
