"""Observability module for logging and metrics."""

from remote_config.observability.logging import (
    bind_namespace_context,
    clear_namespace_context,
    configure_logging,
    get_logger,
)
from remote_config.observability.metrics import ConfigMetrics


__all__ = [
    "ConfigMetrics",
    "bind_namespace_context",
    "clear_namespace_context",
    "configure_logging",
    "get_logger",
]
