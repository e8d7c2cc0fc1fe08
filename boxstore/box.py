"""
boxstore.box
------------

A `Box` is a named handle for a (possibly nested) namespace in a store,
plus an optional codec for structured values.

    store = open_store("sqlite:///data/app.db")
    users = Box(store, b"users", JSONCodec())
    sessions = users.nested(b"sessions")       # users/sessions, same codec

    users.put_encoded(b"alice", {"age": 31})
    users.get_decoded(b"alice")                # {'age': 31}
    sessions.next_sequence()                   # 1

Every Box method runs in its own transaction: reads in a read-only one,
writes in a read-write one. The path is resolved from the root ancestor
inward inside that transaction; writes create missing namespaces, reads
treat a missing namespace as empty.

To compose several steps atomically, open the transaction yourself:

    with users.update() as tx:
        n = tx.next_sequence()
        tx.put_encoded(b"user:%d" % n, {"id": n})

`tx` is a `BoxTx`: the same operations, bound to one open transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Tuple, Union

from .db.engine import Bucket, BytesLike, Store, Tx, iter_bucket, to_bytes
from .encoding.codec import Codec
from .errors import NamespaceNotFound, NoCodec, TxNotWritable, format_path
from .logging import get_logger

log = get_logger(__name__)

Name = Union[BytesLike, str]


class Box:
    """
    Named namespace handle.

    A Box holds no transaction and no open resource, so it is cheap to create,
    safe to share between threads and needs no teardown. Boxes whose paths are
    byte-identical on the same store address the same namespace (and compare
    equal).
    """

    __slots__ = ("_store", "name", "codec", "parent", "_path")

    def __init__(
        self,
        store: Store,
        name: Name,
        codec: Optional[Codec] = None,
        *,
        parent: Optional["Box"] = None,
    ) -> None:
        self._store = store
        self.name = to_bytes(name, "box name")
        self.codec = codec
        self.parent = parent
        self._path: Tuple[bytes, ...] = (
            parent.path + (self.name,) if parent is not None else (self.name,)
        )

    @property
    def store(self) -> Store:
        return self._store

    @property
    def path(self) -> Tuple[bytes, ...]:
        """Names from the root ancestor down to this box."""
        return self._path

    def nested(self, name: Name, codec: Optional[Codec] = None) -> "Box":
        """Child box one level down. Inherits this box's codec unless `codec` is given."""
        return Box(
            self._store,
            name,
            codec if codec is not None else self.codec,
            parent=self,
        )

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    def tx_bucket(self, tx: Tx, create: bool) -> Bucket:
        """
        Resolve this box's path to a bucket inside `tx`, walking root first.

        With `create`, missing namespaces along the path are created; without
        it, the first missing one raises NamespaceNotFound. The bucket is only
        valid while `tx` is open.
        """
        names: List[bytes] = []
        node: Optional[Box] = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        names.reverse()

        if create:
            bkt = tx.create_bucket_if_not_exists(names[0])
            for name in names[1:]:
                bkt = bkt.create_bucket_if_not_exists(name)
            return bkt

        found = tx.bucket(names[0])
        if found is None:
            raise NamespaceNotFound(names, 0)
        for depth, name in enumerate(names[1:], start=1):
            found = found.bucket(name)
            if found is None:
                raise NamespaceNotFound(names, depth)
        return found

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def view(self) -> Iterator["BoxTx"]:
        """Read-only transaction scoped to this box."""
        with self._store.view() as tx:
            yield BoxTx(self, tx)

    @contextmanager
    def update(self) -> Iterator["BoxTx"]:
        """Read-write transaction scoped to this box; commits on clean exit."""
        with self._store.update() as tx:
            yield BoxTx(self, tx)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: Name) -> Optional[bytes]:
        with self.view() as tx:
            return tx.get(key)

    def get_decoded(self, key: Name) -> Any:
        codec = self._require_codec()
        return codec.unmarshal(self.get(key))

    def get_all(self) -> List[bytes]:
        with self.view() as tx:
            return tx.get_all()

    def get_all_decoded(self) -> List[Any]:
        codec = self._require_codec()
        return codec.unmarshal(codec.join(self.get_all()))

    def prefix_scan(self, prefix: Union[BytesLike, str]) -> List[bytes]:
        with self.view() as tx:
            return tx.prefix_scan(prefix)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, key: Name, value: BytesLike) -> None:
        with self.update() as tx:
            tx.put(key, value)

    def put_encoded(self, key: Name, value: Any) -> None:
        encoded = self._require_codec().marshal(value)
        self.put(key, encoded)

    def delete(self, key: Name) -> None:
        with self.update() as tx:
            tx.delete(key)

    def delete_returning(self, key: Name) -> Optional[bytes]:
        """Delete `key` and return the value it held (None if absent), atomically."""
        with self.update() as tx:
            return tx.delete_returning(key)

    def delete_returning_decoded(self, key: Name) -> Any:
        codec = self._require_codec()
        return codec.unmarshal(self.delete_returning(key))

    def next_sequence(self) -> int:
        with self.update() as tx:
            return tx.next_sequence()

    # ------------------------------------------------------------------

    def _require_codec(self) -> Codec:
        if self.codec is None:
            raise NoCodec(self._path)
        return self.codec

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Box):
            return NotImplemented
        return self._store is other._store and self._path == other._path

    def __hash__(self) -> int:
        return hash((id(self._store), self._path))

    def __repr__(self) -> str:
        return f"Box({format_path(self._path)!r}, codec={self.codec!r})"


class BoxTx:
    """
    A Box bound to one open transaction.

    Obtained from `Box.view()` / `Box.update()`. Operations run directly in
    that transaction, so everything done through one BoxTx commits or rolls
    back together. Writes through a read-only BoxTx raise TxNotWritable.
    The path is resolved once per operation; the handle is unusable after the
    `with` block ends.
    """

    __slots__ = ("box", "tx")

    def __init__(self, box: Box, tx: Tx) -> None:
        self.box = box
        self.tx = tx

    @property
    def writable(self) -> bool:
        return self.tx.writable

    @property
    def codec(self) -> Optional[Codec]:
        return self.box.codec

    def nested(self, name: Name, codec: Optional[Codec] = None) -> "BoxTx":
        return BoxTx(self.box.nested(name, codec), self.tx)

    def bucket(self, create: bool = False) -> Optional[Bucket]:
        """Resolved bucket, or None when missing and `create` is false."""
        try:
            return self.box.tx_bucket(self.tx, create)
        except NamespaceNotFound as e:
            log.debug("namespace missing, read as empty", extra={"box": format_path(e.path)})
            return None

    # --- reads ---

    def get(self, key: Name) -> Optional[bytes]:
        k = to_bytes(key)
        bkt = self.bucket()
        return bkt.get(k) if bkt is not None else None

    def get_decoded(self, key: Name) -> Any:
        return self.box._require_codec().unmarshal(self.get(key))

    def get_all(self) -> List[bytes]:
        bkt = self.bucket()
        if bkt is None:
            return []
        return [v for _k, v in iter_bucket(bkt)]

    def get_all_decoded(self) -> List[Any]:
        codec = self.box._require_codec()
        return codec.unmarshal(codec.join(self.get_all()))

    def prefix_scan(self, prefix: Union[BytesLike, str]) -> List[bytes]:
        p = prefix.encode("utf-8") if isinstance(prefix, str) else bytes(prefix)
        bkt = self.bucket()
        if bkt is None:
            return []
        return [v for _k, v in iter_bucket(bkt, p)]

    # --- writes ---

    def put(self, key: Name, value: BytesLike) -> None:
        k = to_bytes(key)
        self.box.tx_bucket(self.tx, True).put(k, value)

    def put_encoded(self, key: Name, value: Any) -> None:
        self.put(key, self.box._require_codec().marshal(value))

    def delete(self, key: Name) -> None:
        k = to_bytes(key)
        self.box.tx_bucket(self.tx, True).delete(k)

    def delete_returning(self, key: Name) -> Optional[bytes]:
        k = to_bytes(key)
        if not self.tx.writable:
            raise TxNotWritable("delete")
        bkt = self.bucket()
        if bkt is None:
            return None
        prev = bkt.get(k)
        if prev is not None:
            bkt.delete(k)
        return prev

    def delete_returning_decoded(self, key: Name) -> Any:
        codec = self.box._require_codec()
        return codec.unmarshal(self.delete_returning(key))

    def next_sequence(self) -> int:
        return self.box.tx_bucket(self.tx, True).next_sequence()

    def __repr__(self) -> str:
        mode = "rw" if self.writable else "ro"
        return f"BoxTx({format_path(self.box.path)!r}, {mode})"


def open_box(store: Store, name: Name, codec: Optional[Codec] = None) -> Box:
    """Root box on `store`."""
    return Box(store, name, codec)


def box_factory(store: Store, codec: Optional[Codec] = None) -> Callable[[Name], Box]:
    """Bind a store and default codec; the result builds root boxes by name."""

    def make(name: Name) -> Box:
        return Box(store, name, codec)

    return make


__all__ = ["Box", "BoxTx", "open_box", "box_factory"]
