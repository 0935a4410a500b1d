"""Exceptions for the configuration cache.

Cache failures never crash the host: the manager logs them and falls
back to defaults. They are still typed so callers can tell a missing
database from a corrupt record.
"""

from remote_config.errors import RemoteConfigError


class CacheError(RemoteConfigError):
    """Base exception for all cache errors."""


class CacheReadError(CacheError):
    """Raised when a cache record cannot be read."""

    def __init__(self, key: str, message: str) -> None:
        """Initialize the error.

        Args:
            key: Cache key being read.
            message: Human-readable error message.
        """
        self.key = key
        super().__init__(f"Failed to read cache key '{key}': {message}")


class CacheWriteError(CacheError):
    """Raised when a cache record cannot be written.

    Writes are transactional, so a failed write leaves the previous
    record intact.
    """

    def __init__(self, key: str, message: str) -> None:
        """Initialize the error.

        Args:
            key: Cache key being written.
            message: Human-readable error message.
        """
        self.key = key
        super().__init__(f"Failed to write cache key '{key}': {message}")


class CacheCorruptError(CacheError):
    """Raised when a stored record fails its checksum or cannot be decoded."""

    def __init__(self, key: str, message: str) -> None:
        """Initialize the error.

        Args:
            key: Cache key whose record is corrupt.
            message: Description of the corruption.
        """
        self.key = key
        super().__init__(f"Corrupt cache record '{key}': {message}")


class MigrationError(CacheError):
    """Raised when a schema migration fails."""

    def __init__(self, version: int, message: str) -> None:
        """Initialize the migration error.

        Args:
            version: The migration version that failed.
            message: Human-readable error message.
        """
        self.version = version
        super().__init__(f"Migration {version} failed: {message}")
