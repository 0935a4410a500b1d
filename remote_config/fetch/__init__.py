"""Remote fetch boundary.

This module provides the single-shot fetch used by the manager:
- RawSnapshot with typed, defaulting getters
- FetchResult/FetchError result values (no exceptions cross the boundary)
- An httpx-based fetcher with ETag support and size limits
"""

from remote_config.fetch.client import HttpConfigFetcher, ResponseSizeExceededError
from remote_config.fetch.config import FetchConfig
from remote_config.fetch.metrics import FetchMetrics
from remote_config.fetch.models import (
    FetchError,
    FetchErrorClass,
    FetchResult,
    RawSnapshot,
)
from remote_config.fetch.protocols import RemoteFetcher
from remote_config.fetch.redact import redact_headers, redact_url_credentials


__all__ = [
    # Client
    "HttpConfigFetcher",
    "RemoteFetcher",
    "ResponseSizeExceededError",
    # Config
    "FetchConfig",
    # Models
    "FetchError",
    "FetchErrorClass",
    "FetchResult",
    "RawSnapshot",
    # Metrics
    "FetchMetrics",
    # Redaction
    "redact_headers",
    "redact_url_credentials",
]
