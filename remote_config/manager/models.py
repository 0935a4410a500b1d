"""Settings and result models for the configuration manager."""

from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, model_validator

from remote_config.changes.detector import ChangeSet
from remote_config.errors import FetchFailedError
from remote_config.fetch.models import FetchError
from remote_config.parser.models import ConfigSnapshot


DEFAULT_REFRESH_INTERVAL_SECONDS = 3600.0
DEFAULT_MINIMUM_FETCH_INTERVAL_SECONDS = 60.0
DEFAULT_CACHE_TTL_SECONDS = 12 * 3600.0
DEFAULT_FOREGROUND_REFRESH_THRESHOLD_SECONDS = 300.0
DEFAULT_MAX_BACKOFF_SECONDS = 6 * 3600.0


class ManagerSettings(BaseModel):
    """Tunables for a ConfigManager."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: Annotated[str, Field(min_length=1)] = "default"
    refresh_interval_seconds: float | None = Field(
        default=DEFAULT_REFRESH_INTERVAL_SECONDS,
        gt=0.0,
        description="Periodic refresh interval; None disables the scheduler",
    )
    minimum_fetch_interval_seconds: float = Field(
        default=DEFAULT_MINIMUM_FETCH_INTERVAL_SECONDS,
        ge=0.0,
        description="Non-forced refreshes this soon after a success are skipped",
    )
    cache_ttl_seconds: float = Field(
        default=DEFAULT_CACHE_TTL_SECONDS,
        gt=0.0,
        description="Cached snapshots older than this are used but marked stale",
    )
    cache_max_age_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Cached snapshots older than this are ignored",
    )
    foreground_refresh_threshold_seconds: float = Field(
        default=DEFAULT_FOREGROUND_REFRESH_THRESHOLD_SECONDS, ge=0.0
    )
    max_backoff_seconds: float = Field(default=DEFAULT_MAX_BACKOFF_SECONDS, gt=0.0)
    fetch_on_initialize: bool = True

    @model_validator(mode="after")
    def check_cache_ages(self) -> "ManagerSettings":
        """Ensure the absolute ceiling is not below the soft TTL."""
        if (
            self.cache_max_age_seconds is not None
            and self.cache_max_age_seconds < self.cache_ttl_seconds
        ):
            msg = "cache_max_age_seconds must be >= cache_ttl_seconds"
            raise ValueError(msg)
        return self


class RefreshOutcome(str, Enum):
    """How a refresh ended.

    - CHANGED: A new snapshot was applied
    - UNCHANGED: Fetch succeeded but nothing observable changed
    - SKIPPED: Not attempted (minimum fetch interval, or stopped)
    - FAILED: Fetch or parse failed; the active snapshot was kept
    """

    CHANGED = "changed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


class RefreshFailure(BaseModel):
    """Failure details delivered to failure subscribers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    error: FetchError
    occurred_at: datetime
    consecutive_failures: int = Field(ge=1)
    degraded: bool = Field(description="No cached or default configuration is active")


class RefreshResult(BaseModel):
    """Result of one refresh attempt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    outcome: RefreshOutcome
    snapshot: ConfigSnapshot | None = Field(
        default=None, description="Active snapshot after the refresh"
    )
    change_set: ChangeSet | None = None
    error: FetchError | None = None
    duration_ms: float = Field(default=0.0, ge=0.0)

    @property
    def success(self) -> bool:
        """Check if the refresh did not fail."""
        return self.outcome != RefreshOutcome.FAILED

    @property
    def changed(self) -> bool:
        """Check if a new snapshot was applied."""
        return self.outcome == RefreshOutcome.CHANGED

    def raise_for_error(self) -> "RefreshResult":
        """Raise FetchFailedError if the refresh failed.

        Returns:
            This result, for chaining.

        Raises:
            FetchFailedError: If the refresh failed.
        """
        if self.error is not None:
            raise FetchFailedError(self.error.error_class.value, self.error.message)
        return self
