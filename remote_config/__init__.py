"""Remote configuration, feature flag and experimentation client.

Fetches configuration from a backend, reconciles it with a durable local
cache and hardcoded defaults, buckets users into rollouts and experiment
variants, and supports kill switches that override everything else.
"""

from remote_config.attributes import AttributeProvider, StaticAttributeProvider
from remote_config.errors import (
    FetchFailedError,
    NoConfigAvailableError,
    ParseError,
    RemoteConfigError,
)
from remote_config.manager import (
    ConfigManager,
    ManagerSettings,
    ManagerState,
    ManagerStateError,
    RefreshResult,
)


__version__ = "0.1.0"

__all__ = [
    "AttributeProvider",
    "ConfigManager",
    "FetchFailedError",
    "ManagerSettings",
    "ManagerState",
    "ManagerStateError",
    "NoConfigAvailableError",
    "ParseError",
    "RefreshResult",
    "RemoteConfigError",
    "StaticAttributeProvider",
    "__version__",
]
