"""Kill switches: administrative overrides for feature flags."""

from remote_config.killswitch.controller import KillSwitchController


__all__ = ["KillSwitchController"]
