"""User and application context used for fetches and bucketing."""

from dataclasses import dataclass, field
from typing import Protocol

from remote_config.types import ConfigScalar, is_scalar


class AttributeProvider(Protocol):
    """Protocol for supplying the current user/app context.

    The stable identifier must not change across sessions for the same
    user; it is the input to rollout and experiment bucketing.
    """

    def stable_id(self) -> str:
        """Return the stable per-user identifier."""
        ...

    def user_attributes(self) -> dict[str, ConfigScalar]:
        """Return user-level attributes sent with fetch requests."""
        ...

    def app_attributes(self) -> dict[str, ConfigScalar]:
        """Return app-level attributes sent with fetch requests."""
        ...


def _validate_attributes(attributes: dict[str, ConfigScalar], kind: str) -> None:
    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            msg = f"{kind} attribute keys must be non-empty strings, got {key!r}"
            raise ValueError(msg)
        if not is_scalar(value):
            msg = (
                f"{kind} attribute '{key}' must be int, float, bool or str, "
                f"got {type(value).__name__}"
            )
            raise ValueError(msg)


@dataclass(frozen=True)
class StaticAttributeProvider:
    """Attribute provider backed by fixed values.

    Attributes:
        user_id: Stable user identifier.
        platform: Host platform name (e.g. "android").
        app_version: Application version string.
        custom_user: Extra user segmentation fields.
        custom_app: Extra app-level fields.
    """

    user_id: str
    platform: str = "unknown"
    app_version: str = "0.0.0"
    custom_user: dict[str, ConfigScalar] = field(default_factory=dict)
    custom_app: dict[str, ConfigScalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate identifiers and attribute values."""
        if not self.user_id:
            msg = "user_id must be a non-empty string"
            raise ValueError(msg)
        _validate_attributes(self.custom_user, "user")
        _validate_attributes(self.custom_app, "app")

    def stable_id(self) -> str:
        """Return the user identifier."""
        return self.user_id

    def user_attributes(self) -> dict[str, ConfigScalar]:
        """Return the user id plus custom user fields."""
        return {"userId": self.user_id, **self.custom_user}

    def app_attributes(self) -> dict[str, ConfigScalar]:
        """Return platform, version and custom app fields."""
        return {
            "platform": self.platform,
            "appVersion": self.app_version,
            **self.custom_app,
        }
