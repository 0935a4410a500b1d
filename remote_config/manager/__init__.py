"""Configuration manager: lifecycle, refresh orchestration and query API."""

from remote_config.manager.lifecycle import (
    LifecycleEvent,
    LifecycleEventSource,
    ManualLifecycleSource,
)
from remote_config.manager.manager import ConfigManager
from remote_config.manager.models import (
    ManagerSettings,
    RefreshFailure,
    RefreshOutcome,
    RefreshResult,
)
from remote_config.manager.scheduler import RefreshScheduler
from remote_config.manager.state_machine import (
    ManagerState,
    ManagerStateError,
    ManagerStateMachine,
)


__all__ = [
    "ConfigManager",
    "LifecycleEvent",
    "LifecycleEventSource",
    "ManagerSettings",
    "ManagerState",
    "ManagerStateError",
    "ManagerStateMachine",
    "ManualLifecycleSource",
    "RefreshFailure",
    "RefreshOutcome",
    "RefreshResult",
    "RefreshScheduler",
]
