"""Data models for the configuration cache."""

import hashlib
from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


SNAPSHOT_KEY_PREFIX = "snapshot"
ASSIGNMENTS_KEY_PREFIX = "assignments"


def compute_checksum(payload: bytes) -> str:
    """Compute the SHA-256 checksum stored alongside a payload."""
    return hashlib.sha256(payload).hexdigest()


def snapshot_key(namespace: str) -> str:
    """Cache key holding the last good snapshot for a namespace."""
    return f"{SNAPSHOT_KEY_PREFIX}:{namespace}"


def assignments_key(namespace: str) -> str:
    """Cache key holding persisted experiment assignments for a namespace."""
    return f"{ASSIGNMENTS_KEY_PREFIX}:{namespace}"


class CacheEntry(BaseModel):
    """One persisted record: serialized payload plus its fetch timestamp."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: Annotated[str, Field(min_length=1, description="Cache key")]
    payload: bytes = Field(description="Serialized payload")
    timestamp: datetime = Field(description="When the payload was fetched")
    checksum: Annotated[str, Field(min_length=64, max_length=64)]
    saved_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the record was written",
    )

    def is_intact(self) -> bool:
        """Check the payload against its stored checksum."""
        return compute_checksum(self.payload) == self.checksum

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed since the payload was fetched."""
        return (now - self.timestamp).total_seconds()
