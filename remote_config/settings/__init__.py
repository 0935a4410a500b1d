"""Client settings loading."""

from .app import RemoteConfigSettings, get_settings


__all__ = ["RemoteConfigSettings", "get_settings"]
