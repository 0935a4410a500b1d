"""Client settings powered by Pydantic BaseSettings."""

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from remote_config.fetch.config import FetchConfig
from remote_config.fetch.constants import (
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
)
from remote_config.manager.models import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_FOREGROUND_REFRESH_THRESHOLD_SECONDS,
    DEFAULT_MAX_BACKOFF_SECONDS,
    DEFAULT_MINIMUM_FETCH_INTERVAL_SECONDS,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    ManagerSettings,
)


class RemoteConfigSettings(BaseSettings):
    """Environment configuration (``REMOTE_CONFIG_*`` variables or ``.env``)."""

    model_config = SettingsConfigDict(
        env_prefix="REMOTE_CONFIG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: str = "http://localhost:8080/config"
    api_key: SecretStr | None = None
    namespace: str = "default"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_response_size_bytes: int = DEFAULT_MAX_RESPONSE_SIZE_BYTES
    cache_path: Path = Path("remote_config_cache.db")
    refresh_interval_seconds: float | None = DEFAULT_REFRESH_INTERVAL_SECONDS
    minimum_fetch_interval_seconds: float = DEFAULT_MINIMUM_FETCH_INTERVAL_SECONDS
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    cache_max_age_seconds: float | None = None
    foreground_refresh_threshold_seconds: float = (
        DEFAULT_FOREGROUND_REFRESH_THRESHOLD_SECONDS
    )
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    fetch_on_initialize: bool = True
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    json_logs: bool = True

    def to_fetch_config(self) -> FetchConfig:
        """Build the fetch layer configuration."""
        return FetchConfig(
            endpoint=self.endpoint,
            api_key=self.api_key,
            namespace=self.namespace,
            timeout_seconds=self.timeout_seconds,
            max_response_size_bytes=self.max_response_size_bytes,
        )

    def to_manager_settings(self) -> ManagerSettings:
        """Build the manager tunables."""
        return ManagerSettings(
            namespace=self.namespace,
            refresh_interval_seconds=self.refresh_interval_seconds,
            minimum_fetch_interval_seconds=self.minimum_fetch_interval_seconds,
            cache_ttl_seconds=self.cache_ttl_seconds,
            cache_max_age_seconds=self.cache_max_age_seconds,
            foreground_refresh_threshold_seconds=(
                self.foreground_refresh_threshold_seconds
            ),
            max_backoff_seconds=self.max_backoff_seconds,
            fetch_on_initialize=self.fetch_on_initialize,
        )


def get_settings() -> RemoteConfigSettings:
    """Get a settings instance."""
    return RemoteConfigSettings()
