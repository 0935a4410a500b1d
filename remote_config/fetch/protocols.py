"""Protocol for the remote fetch boundary."""

from typing import Protocol

from remote_config.fetch.models import FetchResult
from remote_config.types import ConfigScalar


class RemoteFetcher(Protocol):
    """Performs one configuration fetch.

    Implementations must complete or fail within a bounded timeout,
    must not retry internally, and must report failures as a
    FetchResult carrying a FetchError rather than raising.
    """

    def fetch(
        self,
        user_attributes: dict[str, ConfigScalar],
        app_attributes: dict[str, ConfigScalar],
    ) -> FetchResult:
        """Fetch the current configuration for the given attributes."""
        ...

    def close(self) -> None:
        """Release resources and abort any in-flight request."""
        ...
