"""Durable key-value persistence for configuration snapshots."""

import sqlite3
import threading
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

import structlog

from remote_config.store.errors import (
    CacheCorruptError,
    CacheError,
    CacheReadError,
    CacheWriteError,
)
from remote_config.store.migrations import CURRENT_VERSION, MigrationManager
from remote_config.store.models import CacheEntry, compute_checksum


logger = structlog.get_logger()


class ConfigStore(Protocol):
    """Protocol for durable cache storage.

    Any durable key-value medium satisfies it. Saves are all-or-nothing:
    a failed save must leave the previous record for the key intact.
    """

    def save(self, key: str, payload: bytes, timestamp: datetime) -> None:
        """Persist a payload and its fetch timestamp under ``key``.

        Raises:
            CacheWriteError: If the record could not be written.
        """
        ...

    def load(self, key: str) -> CacheEntry | None:
        """Load the record for ``key``, or None when absent.

        Raises:
            CacheReadError: If the medium could not be read.
            CacheCorruptError: If the record fails verification.
        """
        ...

    def delete(self, key: str) -> bool:
        """Delete the record for ``key``; return whether one existed."""
        ...


class MemoryConfigStore:
    """In-process store for tests and hosts without durable storage."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def save(self, key: str, payload: bytes, timestamp: datetime) -> None:
        """Store a payload."""
        entry = CacheEntry(
            key=key,
            payload=payload,
            timestamp=timestamp,
            checksum=compute_checksum(payload),
        )
        with self._lock:
            self._entries[key] = entry

    def load(self, key: str) -> CacheEntry | None:
        """Return the stored entry for ``key``.

        Raises:
            CacheCorruptError: If the stored payload fails its checksum.
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and not entry.is_intact():
            raise CacheCorruptError(key, "checksum mismatch")
        return entry

    def delete(self, key: str) -> bool:
        """Delete the entry for ``key``."""
        with self._lock:
            return self._entries.pop(key, None) is not None


class SqliteConfigStore:
    """SQLite-backed config cache.

    One row per cache key holding the serialized payload, its fetch
    timestamp and a checksum. Uses WAL mode and schema migrations.
    The connection is shared across threads behind a lock because
    refreshes run on a worker thread.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._log = logger.bind(component="store", db_path=str(self._db_path))

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._conn is not None

    def connect(self) -> None:
        """Open the database and apply migrations.

        Creates the database file and parent directories if needed.

        Raises:
            CacheError: If the database cannot be opened or migrated.
        """
        with self._lock:
            if self._conn is not None:
                return

            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._log.info("connecting_to_database")

            try:
                conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                migration_mgr = MigrationManager(conn)
                old_version = migration_mgr.get_current_version()
                applied = migration_mgr.apply_migrations()
            except sqlite3.Error as e:
                msg = f"Failed to open cache database {self._db_path}: {e}"
                raise CacheError(msg) from e

            self._conn = conn
            self._log.info(
                "database_connected",
                old_version=old_version,
                new_version=CURRENT_VERSION,
                migrations_applied=applied,
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._log.info("database_closed")

    def __enter__(self) -> "SqliteConfigStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = "Cache database not connected. Call connect() first."
            raise CacheError(msg)
        return self._conn

    @contextmanager
    def _transaction(self, operation: str) -> Generator[sqlite3.Connection]:
        """Run a block in a single transaction with timing and logging.

        Args:
            operation: Name of the operation for logging.

        Yields:
            The connection, with the store lock held.
        """
        with self._lock:
            conn = self._ensure_connected()
            tx_id = str(uuid.uuid4())[:8]
            start_ns = time.perf_counter_ns()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                self._log.error("transaction_failed", tx_id=tx_id, op=operation)
                raise
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            self._log.debug(
                "transaction_complete",
                tx_id=tx_id,
                op=operation,
                duration_ms=round(duration_ms, 2),
            )

    def save(self, key: str, payload: bytes, timestamp: datetime) -> None:
        """Persist a payload atomically.

        Raises:
            CacheWriteError: If the write fails; the previous record is kept.
        """
        try:
            with self._transaction("save") as conn:
                conn.execute(
                    """
                    INSERT INTO config_cache
                        (cache_key, payload, fetched_at, checksum, saved_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        payload = excluded.payload,
                        fetched_at = excluded.fetched_at,
                        checksum = excluded.checksum,
                        saved_at = excluded.saved_at
                    """,
                    (
                        key,
                        payload,
                        timestamp.isoformat(),
                        compute_checksum(payload),
                        datetime.now(UTC).isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise CacheWriteError(key, str(e)) from e

    def load(self, key: str) -> CacheEntry | None:
        """Load and verify the record for ``key``.

        Raises:
            CacheReadError: If the query fails.
            CacheCorruptError: If the record fails verification.
        """
        try:
            with self._lock:
                conn = self._ensure_connected()
                row = conn.execute(
                    """
                    SELECT cache_key, payload, fetched_at, checksum, saved_at
                    FROM config_cache WHERE cache_key = ?
                    """,
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise CacheReadError(key, str(e)) from e

        if row is None:
            return None

        payload = row["payload"]
        if not isinstance(payload, bytes):
            raise CacheCorruptError(key, "payload is not a blob")
        try:
            entry = CacheEntry(
                key=row["cache_key"],
                payload=payload,
                timestamp=datetime.fromisoformat(row["fetched_at"]),
                checksum=row["checksum"],
                saved_at=datetime.fromisoformat(row["saved_at"]),
            )
        except ValueError as e:
            raise CacheCorruptError(key, str(e)) from e

        if not entry.is_intact():
            raise CacheCorruptError(key, "checksum mismatch")
        return entry

    def delete(self, key: str) -> bool:
        """Delete the record for ``key``.

        Raises:
            CacheWriteError: If the delete fails.
        """
        try:
            with self._transaction("delete") as conn:
                cursor = conn.execute(
                    "DELETE FROM config_cache WHERE cache_key = ?", (key,)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheWriteError(key, str(e)) from e
