"""In-memory administrative overrides for feature flags."""

import threading

import structlog


logger = structlog.get_logger()


class KillSwitchController:
    """Holds forced feature states that beat fetched values and rollouts.

    Overrides live for the process lifetime and are only removed by an
    explicit ``clear``; configuration refreshes never touch them.
    """

    def __init__(self) -> None:
        """Initialize with no overrides."""
        self._overrides: dict[str, bool] = {}
        self._lock = threading.Lock()
        self._log = logger.bind(component="killswitch")

    def set(self, feature: str, forced_value: bool) -> bool | None:
        """Force a feature's state.

        Args:
            feature: Feature name.
            forced_value: State to force.

        Returns:
            The previous override, or None if there was none.
        """
        if not feature:
            msg = "feature name must be a non-empty string"
            raise ValueError(msg)
        with self._lock:
            previous = self._overrides.get(feature)
            self._overrides[feature] = forced_value
        self._log.warning(
            "kill_switch_set",
            feature=feature,
            forced_value=forced_value,
            previous=previous,
        )
        return previous

    def clear(self, feature: str) -> bool | None:
        """Remove a feature's override.

        Returns:
            The removed override, or None if there was none.
        """
        with self._lock:
            previous = self._overrides.pop(feature, None)
        if previous is not None:
            self._log.info("kill_switch_cleared", feature=feature)
        return previous

    def clear_all(self) -> dict[str, bool]:
        """Remove every override and return what was removed."""
        with self._lock:
            removed = self._overrides
            self._overrides = {}
        if removed:
            self._log.info("kill_switches_cleared", features=sorted(removed))
        return removed

    def get(self, feature: str) -> bool | None:
        """Return the override for a feature, if any."""
        with self._lock:
            return self._overrides.get(feature)

    def resolve(self, feature: str, computed_value: bool) -> bool:
        """Apply an override on top of a computed value.

        Args:
            feature: Feature name.
            computed_value: Value from config and rollout.

        Returns:
            The override if one is set, else ``computed_value``.
        """
        with self._lock:
            override = self._overrides.get(feature)
        return computed_value if override is None else override

    def overrides(self) -> dict[str, bool]:
        """Return a copy of all overrides."""
        with self._lock:
            return dict(self._overrides)
