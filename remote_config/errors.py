"""Domain exceptions for the remote configuration client.

Refresh-time failures are recovered inside the manager and reported to
subscribers; only bootstrap failures propagate to the host application.
"""


class RemoteConfigError(Exception):
    """Base exception for all remote configuration errors."""


class ParseError(RemoteConfigError):
    """Raised when a payload is structurally unparseable.

    Per-field problems never raise; they fall back to documented defaults.
    Only an unreadable root (invalid JSON or a non-object root) is an error.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        """Initialize the parse error.

        Args:
            message: Human-readable error message.
            source: Source tag of the payload being parsed.
        """
        self.message = message
        self.source = source
        super().__init__(message)


class NoConfigAvailableError(RemoteConfigError):
    """Raised when bootstrap finds neither a usable cache nor defaults."""

    def __init__(self, namespace: str, reason: str) -> None:
        """Initialize the error.

        Args:
            namespace: Configuration namespace that failed to bootstrap.
            reason: Why no configuration could be loaded.
        """
        self.namespace = namespace
        self.reason = reason
        super().__init__(
            f"No configuration available for namespace '{namespace}': {reason}"
        )


class FetchFailedError(RemoteConfigError):
    """Raised on request when a refresh failed to obtain a new snapshot."""

    def __init__(self, error_class: str, message: str) -> None:
        """Initialize the error.

        Args:
            error_class: Classification of the underlying failure.
            message: Human-readable error message.
        """
        self.error_class = error_class
        self.message = message
        super().__init__(f"{error_class}: {message}")
