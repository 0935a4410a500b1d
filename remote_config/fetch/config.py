"""Configuration model for the remote fetch layer."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from remote_config.fetch.constants import (
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
)


class FetchConfig(BaseModel):
    """Configuration for remote configuration fetches.

    Fetches are bounded by a short timeout; retry policy lives in the
    manager, so there are no retry settings here.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    endpoint: Annotated[str, Field(min_length=1, description="Backend URL")]
    api_key: SecretStr | None = Field(
        default=None, description="API key sent in the X-Api-Key header"
    )
    namespace: Annotated[str, Field(min_length=1, max_length=100)] = "default"
    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        "remote-config-client/1.0"
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=60.0)] = DEFAULT_TIMEOUT_SECONDS
    max_response_size_bytes: Annotated[int, Field(ge=1024, le=50 * 1024 * 1024)] = (
        DEFAULT_MAX_RESPONSE_SIZE_BYTES
    )
    extra_headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("endpoint")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        """Require an http(s) endpoint."""
        if not v.startswith(("http://", "https://")):
            msg = f"Endpoint must start with http:// or https://, got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("extra_headers")
    @classmethod
    def validate_no_auth_headers(cls, v: dict[str, str]) -> dict[str, str]:
        """Keep credentials out of plain header config."""
        forbidden = {"authorization", "cookie", "x-api-key"}
        for key in v:
            if key.lower() in forbidden:
                msg = (
                    f"Header '{key}' must not be stored in extra_headers; "
                    "use api_key"
                )
                raise ValueError(msg)
        return v
