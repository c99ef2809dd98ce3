"""Key-value persistence backends for fip-voting.

Both backends expose the same small surface: point reads, an atomic multi-key
``commit`` and a named ``lock`` that serializes read-modify-write sequences.
"""

from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

import redis

from .errors import StoreError


class KeyValueStore:
    """Interface shared by the sqlite and Redis backends."""

    def initialize(self) -> None:
        pass

    def get(self, key: bytes) -> Optional[bytes]:
        raise NotImplementedError

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    def commit(
        self,
        sets: Optional[Dict[bytes, bytes]] = None,
        deletes: Iterable[bytes] = (),
    ) -> None:
        """Apply all ``sets`` and ``deletes`` atomically."""
        raise NotImplementedError

    def set(self, key: bytes, value: bytes) -> None:
        self.commit(sets={key: value})

    def delete(self, key: bytes) -> None:
        self.commit(deletes=[key])

    def lock(self, name: bytes):
        raise NotImplementedError

    def close(self) -> None:
        pass


_LOCKS: Dict[Tuple[str, bytes], List[Any]] = {}
_LOCKS_GUARD = threading.Lock()


@contextmanager
def _named_lock(scope: str, name: bytes) -> Iterator[None]:
    """Hold the process-wide lock for (scope, name).

    Entries are refcounted by waiters and holders and dropped once unused.
    """
    key = (scope, name)
    with _LOCKS_GUARD:
        entry = _LOCKS.get(key)
        if entry is None:
            entry = [threading.RLock(), 0]
            _LOCKS[key] = entry
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _LOCKS_GUARD:
            entry[1] -= 1
            if entry[1] == 0:
                del _LOCKS[key]


class SqliteKeyValueStore(KeyValueStore):
    """SQLite-backed flat key-value table.

    Locks are process-wide per (database path, name), so every handle opened on
    the same file inside one process serializes on the same critical sections.
    """

    def __init__(self, db_path: str, logger: Optional[Callable[[str, str], None]] = None):
        self.db_path = os.path.abspath(os.path.expanduser(db_path))
        self._logger = logger
        self._local = threading.local()

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            db_dir = os.path.dirname(self.db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                isolation_level=None,
                timeout=30.0,
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
        return conn

    def initialize(self) -> None:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key BLOB PRIMARY KEY,
                    value BLOB NOT NULL
                ) WITHOUT ROWID
                """
            )
        except sqlite3.Error as exc:
            raise StoreError(f"sqlite initialize failed: {exc}") from exc

    def get(self, key: bytes) -> Optional[bytes]:
        try:
            row = self._get_connection().execute(
                "SELECT value FROM kv WHERE key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"sqlite read failed: {exc}") from exc
        return bytes(row[0]) if row else None

    def commit(
        self,
        sets: Optional[Dict[bytes, bytes]] = None,
        deletes: Iterable[bytes] = (),
    ) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            raise StoreError(f"sqlite commit failed: {exc}") from exc
        try:
            if sets:
                conn.executemany(
                    """
                    INSERT INTO kv (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value
                    """,
                    list(sets.items()),
                )
            keys = [(key,) for key in deletes]
            if keys:
                conn.executemany("DELETE FROM kv WHERE key = ?", keys)
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error as rollback_exc:
                    self._log(f"fip-voting: sqlite rollback failed: {rollback_exc}", "error")
            raise StoreError(f"sqlite commit failed: {exc}") from exc

    @contextmanager
    def lock(self, name: bytes) -> Iterator[None]:
        with _named_lock(self.db_path, name):
            yield

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store; locks are Redis leases so they hold across processes."""

    LOCK_LEASE_SECONDS = 30
    LOCK_WAIT_SECONDS = 10

    def __init__(
        self,
        url: str,
        logger: Optional[Callable[[str, str], None]] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self._logger = logger
        self._client = client if client is not None else redis.Redis.from_url(url)

    def _log(self, message: str, level: str = "info") -> None:
        if self._logger:
            self._logger(message, level)

    def initialize(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise StoreError(f"redis unreachable at {self.url}: {exc}") from exc

    def get(self, key: bytes) -> Optional[bytes]:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise StoreError(f"redis read failed: {exc}") from exc

    def commit(
        self,
        sets: Optional[Dict[bytes, bytes]] = None,
        deletes: Iterable[bytes] = (),
    ) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            for key, value in (sets or {}).items():
                pipe.set(key, value)
            for key in deletes:
                pipe.delete(key)
            pipe.execute()
        except redis.RedisError as exc:
            raise StoreError(f"redis commit failed: {exc}") from exc

    @contextmanager
    def lock(self, name: bytes) -> Iterator[None]:
        lease = self._client.lock(
            f"lock:{name.hex()}",
            timeout=self.LOCK_LEASE_SECONDS,
            blocking_timeout=self.LOCK_WAIT_SECONDS,
        )
        try:
            acquired = lease.acquire()
        except redis.RedisError as exc:
            raise StoreError(f"redis lock failed: {exc}") from exc
        if not acquired:
            raise StoreError(f"timed out waiting for lock {name.hex()}")
        try:
            yield
        finally:
            try:
                lease.release()
            except redis.exceptions.LockError as exc:
                self._log(f"fip-voting: lock {name.hex()} expired before release: {exc}", "warn")

    def close(self) -> None:
        self._client.close()


def open_store(
    store_url: str,
    logger: Optional[Callable[[str, str], None]] = None,
) -> KeyValueStore:
    """Pick a backend from the URL scheme and initialize it."""
    parsed = urlparse(store_url)
    if parsed.scheme in ("redis", "rediss", "unix"):
        store: KeyValueStore = RedisKeyValueStore(store_url, logger=logger)
    elif parsed.scheme == "sqlite":
        # sqlite:///relative.db or sqlite:////absolute/path.db
        if not store_url.startswith("sqlite:///"):
            raise ValueError(f"unsupported store url: {store_url}")
        store = SqliteKeyValueStore(store_url[len("sqlite:///"):], logger=logger)
    elif not parsed.scheme:
        store = SqliteKeyValueStore(store_url, logger=logger)
    else:
        raise ValueError(f"unsupported store url: {store_url}")
    store.initialize()
    return store
