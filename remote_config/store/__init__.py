"""Durable cache for configuration snapshots and experiment assignments.

This module provides:
- The ConfigStore protocol (save/load/delete of checksummed records)
- An SQLite implementation with WAL mode and schema migrations
- An in-memory implementation for tests
"""

from remote_config.store.errors import (
    CacheCorruptError,
    CacheError,
    CacheReadError,
    CacheWriteError,
    MigrationError,
)
from remote_config.store.models import (
    CacheEntry,
    assignments_key,
    compute_checksum,
    snapshot_key,
)
from remote_config.store.store import ConfigStore, MemoryConfigStore, SqliteConfigStore


__all__ = [
    # Errors
    "CacheCorruptError",
    "CacheError",
    "CacheReadError",
    "CacheWriteError",
    "MigrationError",
    # Models
    "CacheEntry",
    "assignments_key",
    "compute_checksum",
    "snapshot_key",
    # Stores
    "ConfigStore",
    "MemoryConfigStore",
    "SqliteConfigStore",
]
