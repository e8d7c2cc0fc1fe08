from __future__ import annotations

"""
SQLite-backed engine
====================

Nested buckets, ordered cursors and per-bucket sequences on top of stdlib
`sqlite3`, implementing the protocols in `boxstore.db.engine`.

Schema
------
- buckets(id INTEGER PK, parent INTEGER, name BLOB, seq BLOB)  UNIQUE(parent, name)
  parent = 0 for top-level buckets; seq is a big-endian u64.
- kv(bucket INTEGER, k BLOB, v BLOB)  PRIMARY KEY(bucket, k), WITHOUT ROWID
  BLOB comparison is memcmp, so `ORDER BY k` is unsigned bytewise order.

Transactions
------------
- `view()`   -> BEGIN (deferred); WAL gives each reader a stable snapshot.
- `update()` -> BEGIN IMMEDIATE under a process-local writer lock; other
  processes wait up to `busy_timeout` seconds.
- File stores check a connection out of a bounded pool per transaction.
  A thread may hold one open transaction at a time.
- `:memory:` stores share a single connection, so all transactions on them
  are serialized.
"""

import os
import sqlite3
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import EngineError, TxNotWritable
from ..logging import get_logger
from .engine import MAX_SEQUENCE, BytesLike, Item, be_u64, to_bytes

log = get_logger(__name__)

ROOT_ID = 0

DEFAULT_BUSY_TIMEOUT = 5.0

DEFAULT_MAX_IDLE = 4

DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "temp_store": "MEMORY",
    "foreign_keys": "OFF",
}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS buckets (
        id     INTEGER PRIMARY KEY AUTOINCREMENT,
        parent INTEGER NOT NULL,
        name   BLOB NOT NULL,
        seq    BLOB NOT NULL,
        UNIQUE (parent, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kv (
        bucket INTEGER NOT NULL,
        k      BLOB NOT NULL,
        v      BLOB NOT NULL,
        PRIMARY KEY (bucket, k)
    ) WITHOUT ROWID
    """,
)

_END = object()


def _is_busy(e: sqlite3.Error) -> bool:
    name = getattr(e, "sqlite_errorname", "") or ""
    if name.startswith(("SQLITE_BUSY", "SQLITE_LOCKED")):
        return True
    msg = str(e).lower()
    return "locked" in msg or "busy" in msg


def _run(conn: sqlite3.Connection, sql: str, args: Sequence[Any] = ()) -> sqlite3.Cursor:
    try:
        return conn.execute(sql, args)
    except sqlite3.Error as e:
        retryable = _is_busy(e)
        log.warning("sqlite statement failed", extra={"error": str(e), "retryable": retryable})
        raise EngineError(str(e), retryable=retryable, cause=e) from e


def _rollback(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        # Nothing to undo when SQLite already ended the transaction itself.
        log.debug("rollback skipped", extra={"error": str(e)})


class SQLiteCursor:
    __slots__ = ("_bucket", "_key")

    def __init__(self, bucket: "SQLiteBucket") -> None:
        self._bucket = bucket
        self._key: Any = None

    def first(self) -> Optional[Item]:
        return self._step("SELECT k, v FROM kv WHERE bucket = ? ORDER BY k LIMIT 1", ())

    def seek(self, key: BytesLike) -> Optional[Item]:
        return self._step(
            "SELECT k, v FROM kv WHERE bucket = ? AND k >= ? ORDER BY k LIMIT 1",
            (memoryview(bytes(key)),),
        )

    def next(self) -> Optional[Item]:
        if self._key is _END:
            return None
        if self._key is None:
            return self.first()
        return self._step(
            "SELECT k, v FROM kv WHERE bucket = ? AND k > ? ORDER BY k LIMIT 1",
            (memoryview(self._key),),
        )

    def _step(self, sql: str, args: Tuple[Any, ...]) -> Optional[Item]:
        row = self._bucket._tx._one(sql, (self._bucket._id, *args))
        if row is None:
            self._key = _END
            return None
        k, v = bytes(row[0]), bytes(row[1])
        self._key = k
        return k, v


class SQLiteBucket:
    __slots__ = ("_tx", "_id", "name")

    def __init__(self, tx: "SQLiteTx", bucket_id: int, name: bytes) -> None:
        self._tx = tx
        self._id = bucket_id
        self.name = name

    @property
    def writable(self) -> bool:
        return self._tx.writable

    def get(self, key: Union[BytesLike, str]) -> Optional[bytes]:
        row = self._tx._one(
            "SELECT v FROM kv WHERE bucket = ? AND k = ?",
            (self._id, memoryview(to_bytes(key))),
        )
        return bytes(row[0]) if row is not None else None

    def put(self, key: Union[BytesLike, str], value: BytesLike) -> None:
        self._tx._require_writable("put")
        k = to_bytes(key)
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"value must be bytes-like, got {type(value).__name__}")
        self._tx._exec(
            "INSERT INTO kv(bucket, k, v) VALUES(?, ?, ?) "
            "ON CONFLICT(bucket, k) DO UPDATE SET v=excluded.v",
            (self._id, memoryview(k), memoryview(bytes(value))),
        )

    def delete(self, key: Union[BytesLike, str]) -> None:
        self._tx._require_writable("delete")
        self._tx._exec(
            "DELETE FROM kv WHERE bucket = ? AND k = ?",
            (self._id, memoryview(to_bytes(key))),
        )

    def cursor(self) -> SQLiteCursor:
        self._tx._check_open()
        return SQLiteCursor(self)

    def bucket(self, name: Union[BytesLike, str]) -> Optional["SQLiteBucket"]:
        return self._tx._find(self._id, to_bytes(name, "bucket name"))

    def create_bucket_if_not_exists(self, name: Union[BytesLike, str]) -> "SQLiteBucket":
        return self._tx._find_or_create(self._id, to_bytes(name, "bucket name"))

    def sequence(self) -> int:
        row = self._tx._one("SELECT seq FROM buckets WHERE id = ?", (self._id,))
        if row is None:
            raise EngineError("bucket vanished inside transaction", bucket=self.name)
        return int.from_bytes(bytes(row[0]), "big")

    def next_sequence(self) -> int:
        self._tx._require_writable("next_sequence")
        cur = self.sequence()
        if cur >= MAX_SEQUENCE:
            raise EngineError("sequence overflow", bucket=self.name)
        nxt = cur + 1
        self._tx._exec(
            "UPDATE buckets SET seq = ? WHERE id = ?", (memoryview(be_u64(nxt)), self._id)
        )
        return nxt

    def __repr__(self) -> str:
        return f"SQLiteBucket(name={self.name!r}, id={self._id})"


class SQLiteTx:
    __slots__ = ("_conn", "_writable", "_open_flag")

    def __init__(self, conn: sqlite3.Connection, writable: bool) -> None:
        self._conn = conn
        self._writable = writable
        self._open_flag = True

    @property
    def writable(self) -> bool:
        return self._writable

    def bucket(self, name: Union[BytesLike, str]) -> Optional[SQLiteBucket]:
        return self._find(ROOT_ID, to_bytes(name, "bucket name"))

    def create_bucket_if_not_exists(self, name: Union[BytesLike, str]) -> SQLiteBucket:
        return self._find_or_create(ROOT_ID, to_bytes(name, "bucket name"))

    # --- internals shared with buckets/cursors ---

    def _check_open(self) -> None:
        if not self._open_flag:
            raise EngineError("transaction closed")

    def _require_writable(self, op: str) -> None:
        self._check_open()
        if not self._writable:
            raise TxNotWritable(op)

    def _exec(self, sql: str, args: Sequence[Any]) -> sqlite3.Cursor:
        self._check_open()
        return _run(self._conn, sql, args)

    def _one(self, sql: str, args: Sequence[Any]) -> Optional[tuple]:
        cur = self._exec(sql, args)
        try:
            return cur.fetchone()
        finally:
            cur.close()

    def _find(self, parent: int, name: bytes) -> Optional[SQLiteBucket]:
        row = self._one(
            "SELECT id FROM buckets WHERE parent = ? AND name = ?", (parent, memoryview(name))
        )
        return SQLiteBucket(self, int(row[0]), name) if row is not None else None

    def _find_or_create(self, parent: int, name: bytes) -> SQLiteBucket:
        found = self._find(parent, name)
        if found is not None:
            return found
        self._require_writable("create_bucket")
        cur = self._exec(
            "INSERT INTO buckets(parent, name, seq) VALUES(?, ?, ?)",
            (parent, memoryview(name), memoryview(be_u64(0))),
        )
        log.debug("bucket created", extra={"bucket": name, "parent_id": parent})
        return SQLiteBucket(self, int(cur.lastrowid), name)


class SQLiteStore:
    """
    SQLite-backed store. Safe to share between threads; a thread holds at most
    one open transaction.

    File stores check a connection out of a small pool for each transaction
    and return it afterwards. At most `max_idle` connections stay open between
    transactions; the rest are closed on return.

    Use `open_sqlite_store(path)` to construct.
    """

    def __init__(
        self,
        path: Union[str, "os.PathLike[str]"],
        *,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
        pragmas: Optional[dict] = None,
        max_idle: int = DEFAULT_MAX_IDLE,
    ) -> None:
        self.path = os.fspath(path)
        self.busy_timeout = float(busy_timeout)
        self.max_idle = max(1, int(max_idle))
        self._pragmas = {**DEFAULT_PRAGMAS, **(pragmas or {})}
        self._memory = self.path == ":memory:"
        self._local = threading.local()
        self._conns: List[sqlite3.Connection] = []
        self._idle: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._serial_lock = threading.RLock() if self._memory else None
        self._shared: Optional[sqlite3.Connection] = None
        self._closed = False

        conn = self._checkout()
        try:
            for stmt in _SCHEMA:
                _run(conn, stmt)
        finally:
            self._checkin(conn)
        log.info("store opened", extra={"store": self.path})

    # --- connections ---

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout,
                isolation_level=None,     # autocommit; transactions are explicit
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise EngineError(f"cannot open store: {e}", cause=e, store=self.path) from e
        try:
            for name, value in self._pragmas.items():
                _run(conn, f"PRAGMA {name}={value}")
        except EngineError:
            conn.close()
            raise
        with self._conns_lock:
            self._conns.append(conn)
        return conn

    def _checkout(self) -> sqlite3.Connection:
        if self._closed:
            raise EngineError("store is closed", store=self.path)
        if self._memory:
            if self._shared is None:
                self._shared = self._connect()
            return self._shared
        with self._conns_lock:
            if self._idle:
                return self._idle.pop()
        return self._connect()

    def _checkin(self, conn: sqlite3.Connection) -> None:
        if self._memory:
            return
        with self._conns_lock:
            keep = (
                not self._closed
                and not conn.in_transaction
                and len(self._idle) < self.max_idle
            )
            if keep:
                self._idle.append(conn)
                return
            if conn in self._conns:
                self._conns.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as e:
            log.warning("closing connection failed", extra={"error": str(e)})

    @property
    def open_connections(self) -> int:
        """Connections currently open, idle or in use."""
        with self._conns_lock:
            return len(self._conns)

    # --- transactions ---

    @contextmanager
    def _transaction(self, writable: bool) -> Iterator[SQLiteTx]:
        if getattr(self._local, "tx", None) is not None:
            raise EngineError("a transaction is already open on this thread", store=self.path)
        with ExitStack() as stack:
            if self._serial_lock is not None:
                stack.enter_context(self._serial_lock)
            if writable:
                stack.enter_context(self._write_lock)
            conn = self._checkout()
            stack.callback(self._checkin, conn)
            _run(conn, "BEGIN IMMEDIATE" if writable else "BEGIN")
            tx = SQLiteTx(conn, writable)
            self._local.tx = tx
            try:
                yield tx
            except BaseException:
                _rollback(conn)
                raise
            else:
                if writable:
                    try:
                        _run(conn, "COMMIT")
                    except EngineError:
                        _rollback(conn)
                        raise
                else:
                    _rollback(conn)
            finally:
                tx._open_flag = False
                self._local.tx = None

    def view(self):
        """Read-only transaction context."""
        return self._transaction(False)

    def update(self):
        """Read-write transaction context; commits on clean exit."""
        return self._transaction(True)

    # --- lifecycle ---

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._conns_lock:
            if self._closed:
                return
            self._closed = True
            conns, self._conns = self._conns, []
            self._idle = []
        for c in conns:
            try:
                c.close()
            except sqlite3.Error as e:
                log.warning("closing connection failed", extra={"error": str(e)})
        log.info("store closed", extra={"store": self.path})

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SQLiteStore(path={self.path!r})"


def open_sqlite_store(
    path: Union[str, "os.PathLike[str]"],
    *,
    create: bool = True,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    pragmas: Optional[dict] = None,
    max_idle: int = DEFAULT_MAX_IDLE,
) -> SQLiteStore:
    """
    Open (or create) a store at `path`. `":memory:"` gives a private in-memory store.

    - `create=False` raises FileNotFoundError if the file does not exist.
    - `max_idle` caps the connections kept open between transactions.
    """
    path_str = os.fspath(path)
    if path_str != ":memory:":
        if not create and not os.path.exists(path_str):
            raise FileNotFoundError(f"store not found at {path_str}")
        parent = os.path.dirname(os.path.abspath(path_str))
        os.makedirs(parent, exist_ok=True)
    return SQLiteStore(
        path_str, busy_timeout=busy_timeout, pragmas=pragmas, max_idle=max_idle
    )


__all__ = [
    "SQLiteStore",
    "SQLiteTx",
    "SQLiteBucket",
    "SQLiteCursor",
    "open_sqlite_store",
    "DEFAULT_PRAGMAS",
]
