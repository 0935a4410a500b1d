"""Metrics for the configuration manager."""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


# Module-level singleton state
_metrics_instance: "ConfigMetrics | None" = None
_metrics_lock: Lock = Lock()


@dataclass
class ConfigMetrics:
    """Thread-safe counters for refreshes, cache use and flag evaluations.

    Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    refreshes_by_outcome: Counter[str] = field(default_factory=Counter)
    refresh_duration_ms_total: float = 0.0
    snapshot_swaps_total: int = 0
    cache_hits_total: int = 0
    cache_misses_total: int = 0
    cache_errors_total: int = 0
    kill_switch_overrides_total: int = 0
    flag_evaluations_total: int = 0
    coalesced_refreshes_total: int = 0

    @classmethod
    def get_instance(cls) -> "ConfigMetrics":
        """Get the singleton instance (thread-safe)."""
        global _metrics_instance  # noqa: PLW0603
        if _metrics_instance is None:
            with _metrics_lock:
                if _metrics_instance is None:
                    _metrics_instance = cls()
        return _metrics_instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        global _metrics_instance  # noqa: PLW0603
        with _metrics_lock:
            _metrics_instance = None

    def record_refresh(self, outcome: str, duration_ms: float) -> None:
        """Record a finished refresh.

        Args:
            outcome: One of "changed", "unchanged", "skipped", "failed".
            duration_ms: Wall time of the refresh.
        """
        with self._lock:
            self.refreshes_by_outcome[outcome] += 1
            self.refresh_duration_ms_total += duration_ms

    def record_swap(self) -> None:
        """Record an active snapshot swap."""
        with self._lock:
            self.snapshot_swaps_total += 1

    def record_cache_hit(self) -> None:
        """Record a snapshot loaded from cache at bootstrap."""
        with self._lock:
            self.cache_hits_total += 1

    def record_cache_miss(self) -> None:
        """Record a bootstrap with no usable cache."""
        with self._lock:
            self.cache_misses_total += 1

    def record_cache_error(self) -> None:
        """Record a cache read or write failure."""
        with self._lock:
            self.cache_errors_total += 1

    def record_kill_switch_override(self) -> None:
        """Record a flag evaluation decided by a kill switch."""
        with self._lock:
            self.kill_switch_overrides_total += 1

    def record_flag_evaluation(self) -> None:
        """Record a flag evaluation."""
        with self._lock:
            self.flag_evaluations_total += 1

    def record_coalesced_refresh(self) -> None:
        """Record a refresh request that joined an in-flight fetch."""
        with self._lock:
            self.coalesced_refreshes_total += 1

    def to_dict(self) -> dict[str, int | float | dict[str, int]]:
        """Convert metrics to dictionary."""
        with self._lock:
            return {
                "refreshes_by_outcome": dict(self.refreshes_by_outcome),
                "refresh_duration_ms_total": self.refresh_duration_ms_total,
                "snapshot_swaps_total": self.snapshot_swaps_total,
                "cache_hits_total": self.cache_hits_total,
                "cache_misses_total": self.cache_misses_total,
                "cache_errors_total": self.cache_errors_total,
                "kill_switch_overrides_total": self.kill_switch_overrides_total,
                "flag_evaluations_total": self.flag_evaluations_total,
                "coalesced_refreshes_total": self.coalesced_refreshes_total,
            }
