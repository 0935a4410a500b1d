"""Metrics collection for the remote fetch layer."""

from dataclasses import dataclass, field
from threading import Lock
from typing import ClassVar

from remote_config.fetch.models import FetchErrorClass


@dataclass
class FetchMetrics:
    """Thread-safe counters for fetch operations.

    Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    fetch_requests_total: dict[int, int] = field(default_factory=dict)
    fetch_not_modified_total: int = 0
    fetch_failures_total: dict[str, int] = field(default_factory=dict)
    fetch_bytes_total: int = 0
    fetch_duration_ms_total: float = 0.0
    fetch_count: int = 0

    _instance: ClassVar["FetchMetrics | None"] = None
    _instance_lock: ClassVar[Lock] = Lock()

    @classmethod
    def get_instance(cls) -> "FetchMetrics":
        """Get singleton metrics instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        with cls._instance_lock:
            cls._instance = None

    def record_response(self, status_code: int, bytes_received: int) -> None:
        """Record a response received from the backend.

        Args:
            status_code: HTTP status code.
            bytes_received: Number of body bytes read.
        """
        with self._lock:
            self.fetch_requests_total[status_code] = (
                self.fetch_requests_total.get(status_code, 0) + 1
            )
            self.fetch_bytes_total += bytes_received

    def record_not_modified(self) -> None:
        """Record a 304 answer."""
        with self._lock:
            self.fetch_not_modified_total += 1

    def record_failure(self, error_class: FetchErrorClass) -> None:
        """Record a fetch failure.

        Args:
            error_class: Classification of the failure.
        """
        key = error_class.value
        with self._lock:
            self.fetch_failures_total[key] = self.fetch_failures_total.get(key, 0) + 1

    def record_duration(self, duration_ms: float) -> None:
        """Record a completed fetch attempt's duration."""
        with self._lock:
            self.fetch_duration_ms_total += duration_ms
            self.fetch_count += 1

    def to_dict(self) -> dict[str, int | float | dict[str, int] | dict[int, int]]:
        """Convert metrics to dictionary."""
        with self._lock:
            return {
                "fetch_requests_total": dict(self.fetch_requests_total),
                "fetch_not_modified_total": self.fetch_not_modified_total,
                "fetch_failures_total": dict(self.fetch_failures_total),
                "fetch_bytes_total": self.fetch_bytes_total,
                "fetch_duration_ms_total": self.fetch_duration_ms_total,
                "fetch_count": self.fetch_count,
            }

    @property
    def avg_duration_ms(self) -> float:
        """Average fetch duration in milliseconds."""
        if self.fetch_count == 0:
            return 0.0
        return self.fetch_duration_ms_total / self.fetch_count
