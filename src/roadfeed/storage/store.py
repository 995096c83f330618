"""Ordered, namespaced key-value store on SQLite.

Keys and values are ``bytes``. SQLite compares BLOBs with ``memcmp``, so
keys order bytewise and prefix scans are plain range queries.

All writes go through :meth:`VersionedStore.commit_batch`, which applies
a list of operations in one transaction. Every use of the connection holds
one lock, so async code can run commits in a worker thread with
:meth:`VersionedStore.commit_batch_async` without blocking the event loop.
A commit in flight always runs to completion, even when the awaiting task
is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import threading
from collections.abc import AsyncIterator, Iterable, Iterator
from pathlib import Path

from roadfeed.exceptions import StoreCommitError, StoreError
from roadfeed.storage.batch import BatchOperation, Delete, Put, WriteBatch
from roadfeed.storage.namespaces import Namespace, resolve_namespace

_logger = logging.getLogger(__name__)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS namespaces (name TEXT PRIMARY KEY)",
    """
    CREATE TABLE IF NOT EXISTS entries (
        namespace TEXT NOT NULL,
        key BLOB NOT NULL,
        value BLOB NOT NULL,
        PRIMARY KEY (namespace, key)
    ) WITHOUT ROWID
    """,
)

# SQLite limits the number of bound parameters per statement.
_MAX_PARAMS = 500
DEFAULT_SCAN_PAGE_SIZE = 1000


def prefix_upper_bound(prefix: bytes) -> bytes | None:
    """Smallest key greater than every key starting with *prefix*.

    Returns ``None`` when no such key exists (empty prefix or all ``0xFF``).
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return None
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


class VersionedStore:
    """Embedded ordered key-value store with atomic multi-namespace batches.

    Parameters
    ----------
    path : Path or str
        Database file; ``":memory:"`` for a throwaway store.
    scan_page_size : int
        Rows fetched per query while iterating a prefix.
    """

    def __init__(self, path: Path | str, *, scan_page_size: int = DEFAULT_SCAN_PAGE_SIZE) -> None:
        self._path = str(path)
        self._scan_page_size = scan_page_size
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> VersionedStore:
        """Open the database, create the schema and validate the namespace registry."""
        if self._conn is not None:
            return self
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            for statement in _SCHEMA:
                conn.execute(statement)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open store at {self._path}: {exc}") from exc
        self._conn = conn
        try:
            with self._lock:
                self._sync_registry()
        except Exception:
            self.close()
            raise
        _logger.debug("Opened store at %s", self._path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                _logger.debug("Closed store at %s", self._path)

    def __enter__(self) -> VersionedStore:
        return self.open()

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Store is not open")
        return self._conn

    def _sync_registry(self) -> None:
        registered = {row[0] for row in self._db.execute("SELECT name FROM namespaces")}
        known = {ns.value for ns in Namespace}
        unknown = sorted(registered - known)
        if unknown:
            raise StoreError(f"Store at {self._path} contains unknown namespaces: {', '.join(unknown)}")
        missing = sorted(known - registered)
        if missing:
            self._db.executemany("INSERT INTO namespaces (name) VALUES (?)", [(name,) for name in missing])
            _logger.info("Registered namespaces: %s", ", ".join(missing))

    def open_namespace(self, name: str | Namespace) -> Namespace:
        """Validate *name* against the registry and return its handle."""
        namespace = resolve_namespace(name)
        with self._lock:
            row = self._db.execute("SELECT 1 FROM namespaces WHERE name = ?", (namespace.value,)).fetchone()
        if row is None:
            raise StoreError(f"Namespace {namespace.value!r} is not registered")
        return namespace

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, namespace: Namespace, key: bytes, *, batch: WriteBatch | None = None) -> bytes | None:
        """Return the value at *key*.

        When *batch* is given, a pending write in that batch takes precedence
        over the committed value.
        """
        if batch is not None and batch.contains(namespace, key):
            return batch.pending_value(namespace, key)
        with self._lock:
            row = self._db.execute(
                "SELECT value FROM entries WHERE namespace = ? AND key = ?",
                (namespace.value, key),
            ).fetchone()
        return bytes(row[0]) if row is not None else None

    def get_many(
        self,
        namespace: Namespace,
        keys: Iterable[bytes],
        *,
        batch: WriteBatch | None = None,
    ) -> dict[bytes, bytes]:
        """Return the values of all present *keys*; absent keys are left out."""
        found: dict[bytes, bytes] = {}
        lookup: list[bytes] = []
        for key in dict.fromkeys(keys):
            if batch is not None and batch.contains(namespace, key):
                pending = batch.pending_value(namespace, key)
                if pending is not None:
                    found[key] = pending
            else:
                lookup.append(key)

        for start in range(0, len(lookup), _MAX_PARAMS):
            chunk = lookup[start : start + _MAX_PARAMS]
            placeholders = ",".join("?" * len(chunk))
            with self._lock:
                rows = self._db.execute(
                    f"SELECT key, value FROM entries WHERE namespace = ? AND key IN ({placeholders})",
                    (namespace.value, *chunk),
                ).fetchall()
            for key, value in rows:
                found[bytes(key)] = bytes(value)
        return found

    def _scan(
        self,
        namespace: Namespace,
        prefix: bytes,
        start_after: bytes | None,
        columns: str,
    ) -> Iterator[tuple[bytes, ...]]:
        upper = prefix_upper_bound(prefix)
        if start_after is not None and start_after >= prefix:
            lower, lower_op = start_after, ">"
        else:
            lower, lower_op = prefix, ">="

        while True:
            sql = f"SELECT {columns} FROM entries WHERE namespace = ? AND key {lower_op} ?"
            params: list[object] = [namespace.value, lower]
            if upper is not None:
                sql += " AND key < ?"
                params.append(upper)
            sql += " ORDER BY key LIMIT ?"
            params.append(self._scan_page_size)

            with self._lock:
                rows = self._db.execute(sql, params).fetchall()
            for row in rows:
                yield tuple(bytes(column) for column in row)
            if len(rows) < self._scan_page_size:
                return
            lower, lower_op = bytes(rows[-1][0]), ">"

    def iterate_prefix(
        self,
        namespace: Namespace,
        prefix: bytes = b"",
        *,
        start_after: bytes | None = None,
    ) -> Iterator[tuple[bytes, bytes]]:
        """Yield ``(key, value)`` for keys starting with *prefix*, in key order.

        Rows are read a page at a time and no cursor is held between pages,
        so writes made while iterating do not invalidate the iterator.
        Iteration can be resumed from any key with *start_after*.
        """
        for key, value in self._scan(namespace, prefix, start_after, "key, value"):
            yield key, value

    def iterate_keys(
        self,
        namespace: Namespace,
        prefix: bytes = b"",
        *,
        start_after: bytes | None = None,
    ) -> Iterator[bytes]:
        for (key,) in self._scan(namespace, prefix, start_after, "key"):
            yield key

    def count_prefix(self, namespace: Namespace, prefix: bytes = b"") -> int:
        sql = "SELECT COUNT(*) FROM entries WHERE namespace = ? AND key >= ?"
        params: list[object] = [namespace.value, prefix]
        upper = prefix_upper_bound(prefix)
        if upper is not None:
            sql += " AND key < ?"
            params.append(upper)
        with self._lock:
            (count,) = self._db.execute(sql, params).fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, namespace: Namespace, key: bytes, value: bytes) -> None:
        self.commit_batch([(namespace, Put(key, value))])

    def delete(self, namespace: Namespace, key: bytes) -> None:
        self.commit_batch([(namespace, Delete(key))])

    def commit_batch(self, operations: Iterable[tuple[Namespace, BatchOperation]]) -> None:
        """Apply *operations* in order, all or nothing.

        Raises
        ------
        StoreCommitError
            If any operation fails. The transaction is rolled back and
            nothing from the batch is visible.
        """
        ops = list(operations)
        if not ops:
            return
        with self._lock:
            db = self._db
            try:
                db.execute("BEGIN IMMEDIATE")
                for namespace, op in ops:
                    if isinstance(op, Put):
                        db.execute(
                            "INSERT OR REPLACE INTO entries (namespace, key, value) VALUES (?, ?, ?)",
                            (namespace.value, op.key, op.value),
                        )
                    elif isinstance(op, Delete):
                        db.execute(
                            "DELETE FROM entries WHERE namespace = ? AND key = ?",
                            (namespace.value, op.key),
                        )
                    else:
                        raise TypeError(f"Unsupported batch operation: {op!r}")
                db.execute("COMMIT")
            except (sqlite3.Error, TypeError, AttributeError) as exc:
                if db.in_transaction:
                    db.execute("ROLLBACK")
                raise StoreCommitError(f"Batch of {len(ops)} operations failed: {exc}") from exc
        _logger.debug("Committed batch of %d operations", len(ops))

    async def commit_batch_async(self, operations: Iterable[tuple[Namespace, BatchOperation]]) -> None:
        """Run :meth:`commit_batch` in a worker thread."""
        await asyncio.to_thread(self.commit_batch, list(operations))

    @contextlib.contextmanager
    def write_batch(self) -> Iterator[WriteBatch]:
        """Collect writes and commit them atomically on clean exit.

        If the body raises, the batch is discarded and nothing is written.
        """
        batch = WriteBatch()
        yield batch
        self.commit_batch(batch.operations)

    @contextlib.asynccontextmanager
    async def async_write_batch(self) -> AsyncIterator[WriteBatch]:
        """Like :meth:`write_batch`, committing off the event loop."""
        batch = WriteBatch()
        yield batch
        await self.commit_batch_async(batch.operations)

    def batch_scope(self, batch: WriteBatch | None) -> contextlib.AbstractContextManager[WriteBatch]:
        """Use *batch* when given, otherwise a fresh batch committed on exit."""
        if batch is None:
            return self.write_batch()
        return contextlib.nullcontext(batch)

    def delete_prefix(self, namespace: Namespace, prefix: bytes) -> int:
        """Delete every key starting with *prefix* atomically; returns the count."""
        sql = "DELETE FROM entries WHERE namespace = ? AND key >= ?"
        params: list[object] = [namespace.value, prefix]
        upper = prefix_upper_bound(prefix)
        if upper is not None:
            sql += " AND key < ?"
            params.append(upper)
        with self._lock:
            db = self._db
            try:
                db.execute("BEGIN IMMEDIATE")
                cursor = db.execute(sql, params)
                db.execute("COMMIT")
            except sqlite3.Error as exc:
                if db.in_transaction:
                    db.execute("ROLLBACK")
                raise StoreCommitError(f"Deleting prefix in {namespace.value} failed: {exc}") from exc
        return cursor.rowcount

    def clear_namespace(self, namespace: Namespace) -> int:
        return self.delete_prefix(namespace, b"")
