"""Configuration manager lifecycle state machine."""

import threading
from enum import Enum, auto
from typing import ClassVar

import structlog

from remote_config.errors import RemoteConfigError


logger = structlog.get_logger()


class ManagerState(Enum):
    """Configuration manager lifecycle states.

    State transitions:
        UNINITIALIZED -> BOOTSTRAPPING: initialize() called
        BOOTSTRAPPING -> READY: Cached or default snapshot applied
        BOOTSTRAPPING -> DEGRADED: Nothing usable could be loaded
        READY -> REFRESHING: Remote fetch started
        DEGRADED -> REFRESHING: Remote fetch started
        REFRESHING -> READY: Fetch succeeded, or failed with real data in place
        REFRESHING -> DEGRADED: Fetch failed with no cache or defaults active
        any non-terminal -> STOPPED: shutdown() called
    """

    UNINITIALIZED = auto()
    BOOTSTRAPPING = auto()
    READY = auto()
    REFRESHING = auto()
    DEGRADED = auto()
    STOPPED = auto()


class ManagerStateError(RemoteConfigError):
    """Raised when an invalid manager state transition is attempted."""

    def __init__(self, from_state: ManagerState, to_state: ManagerState) -> None:
        """Initialize the error.

        Args:
            from_state: The current state.
            to_state: The attempted target state.
        """
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid manager state transition: {from_state.name} -> {to_state.name}"
        )


class ManagerStateMachine:
    """State machine for the configuration manager lifecycle.

    Transitions may come from the fetch worker and from host threads, so
    the current state is guarded by a lock.
    """

    VALID_TRANSITIONS: ClassVar[dict[ManagerState, set[ManagerState]]] = {
        ManagerState.UNINITIALIZED: {
            ManagerState.BOOTSTRAPPING,
            ManagerState.STOPPED,
        },
        ManagerState.BOOTSTRAPPING: {
            ManagerState.READY,
            ManagerState.DEGRADED,
            ManagerState.STOPPED,
        },
        ManagerState.READY: {
            ManagerState.REFRESHING,
            ManagerState.STOPPED,
        },
        ManagerState.REFRESHING: {
            ManagerState.READY,
            ManagerState.DEGRADED,
            ManagerState.STOPPED,
        },
        ManagerState.DEGRADED: {
            ManagerState.REFRESHING,
            ManagerState.STOPPED,
        },
        ManagerState.STOPPED: set(),  # Terminal state
    }

    def __init__(self, namespace: str) -> None:
        """Initialize the state machine in UNINITIALIZED state.

        Args:
            namespace: Configuration namespace for logging.
        """
        self._namespace = namespace
        self._state = ManagerState.UNINITIALIZED
        self._lock = threading.Lock()
        self._log = logger.bind(namespace=namespace, component="manager")

    @property
    def state(self) -> ManagerState:
        """Get the current state."""
        with self._lock:
            return self._state

    def can_transition(self, to_state: ManagerState) -> bool:
        """Check if a transition to the given state is valid.

        Args:
            to_state: The target state.

        Returns:
            True if the transition is valid, False otherwise.
        """
        with self._lock:
            return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def transition(self, to_state: ManagerState) -> None:
        """Transition to a new state.

        Args:
            to_state: The target state.

        Raises:
            ManagerStateError: If the transition is invalid.
        """
        with self._lock:
            old_state = self._state
            if to_state not in self.VALID_TRANSITIONS.get(old_state, set()):
                self._log.error(
                    "invariant_violation",
                    error_type="illegal_state_transition",
                    from_state=old_state.name,
                    to_state=to_state.name,
                )
                raise ManagerStateError(old_state, to_state)
            self._state = to_state

        self._log.debug(
            "manager_state_transition",
            from_state=old_state.name,
            to_state=to_state.name,
        )

    def try_transition(self, to_state: ManagerState) -> bool:
        """Transition if valid, without raising.

        Used on paths that race with shutdown, where a refused
        transition just means the manager has stopped.

        Returns:
            True if the transition happened.
        """
        with self._lock:
            old_state = self._state
            if to_state not in self.VALID_TRANSITIONS.get(old_state, set()):
                return False
            self._state = to_state

        self._log.debug(
            "manager_state_transition",
            from_state=old_state.name,
            to_state=to_state.name,
        )
        return True

    def is_terminal(self) -> bool:
        """Check if the manager has been stopped."""
        return self.state == ManagerState.STOPPED

    def is_started(self) -> bool:
        """Check if initialize() has completed bootstrap."""
        return self.state in (
            ManagerState.READY,
            ManagerState.REFRESHING,
            ManagerState.DEGRADED,
        )

    def is_degraded(self) -> bool:
        """Check if only defaults (or nothing) are available."""
        return self.state == ManagerState.DEGRADED
