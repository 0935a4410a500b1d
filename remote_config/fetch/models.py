"""Data models for the remote fetch boundary."""

from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    GetCoreSchemaHandler,
    model_validator,
)
from pydantic_core import core_schema

from remote_config.types import ConfigScalar, to_float


class FetchErrorClass(str, Enum):
    """Classification of fetch errors.

    - NETWORK_UNAVAILABLE: Could not reach the backend
    - TIMEOUT: Request did not complete within the configured timeout
    - SERVER_REJECTED: Backend answered with a non-2xx status
    - MALFORMED_RESPONSE: Body was not a JSON object or exceeded size limits
    """

    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    SERVER_REJECTED = "SERVER_REJECTED"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"


class FetchError(BaseModel):
    """Typed error from a fetch operation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    error_class: FetchErrorClass = Field(description="Classification of the error")
    message: Annotated[str, Field(min_length=1, description="Human-readable message")]
    status_code: int | None = Field(
        default=None, description="HTTP status code for SERVER_REJECTED"
    )


class RawSnapshot(Mapping[str, Any]):
    """Read-only view over a decoded configuration payload.

    Typed getters return the supplied default when a key is absent or
    holds a value of the wrong type. Bools are never accepted as ints,
    and ints are accepted where a float is requested.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        """Initialize the snapshot view.

        Args:
            data: Decoded JSON object. Copied shallowly.
        """
        self._data: dict[str, Any] = dict(data or {})

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RawSnapshot({self._data!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RawSnapshot):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        """Validate by instance check only."""
        return core_schema.is_instance_schema(cls)

    def get_int(self, key: str, default: int) -> int:
        """Get an integer value.

        Args:
            key: Key to look up.
            default: Value returned when absent or not an int.

        Returns:
            The stored int, or the default.
        """
        value = self._data.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return default

    def get_float(self, key: str, default: float) -> float:
        """Get a float value (ints are widened, oversized ints rejected)."""
        widened = to_float(self._data.get(key))
        return widened if widened is not None else default

    def get_bool(self, key: str, default: bool) -> bool:
        """Get a boolean value."""
        value = self._data.get(key)
        return value if isinstance(value, bool) else default

    def get_string(self, key: str, default: str) -> str:
        """Get a string value."""
        value = self._data.get(key)
        return value if isinstance(value, str) else default

    def get_optional_string(self, key: str) -> str | None:
        """Get a string value, or None when absent or mistyped."""
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    def get_section(self, key: str) -> "RawSnapshot":
        """Get a nested object as a RawSnapshot (empty when absent)."""
        value = self._data.get(key)
        if isinstance(value, Mapping):
            return RawSnapshot(value)
        return RawSnapshot()

    def get_list(self, key: str) -> list[Any]:
        """Get a list value (empty when absent or mistyped)."""
        value = self._data.get(key)
        if isinstance(value, list):
            return list(value)
        return []

    def scalars(self) -> dict[str, ConfigScalar]:
        """Return only the entries whose values are scalars."""
        return {
            key: value
            for key, value in self._data.items()
            if isinstance(value, bool | int | float | str)
        }

    def to_dict(self) -> dict[str, Any]:
        """Return a shallow copy of the underlying mapping."""
        return dict(self._data)


class FetchResult(BaseModel):
    """Result of one fetch: a raw snapshot, a not-modified marker, or an error."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    raw: RawSnapshot | None = Field(default=None, description="Decoded payload")
    error: FetchError | None = Field(
        default=None, description="Error details if fetch failed"
    )
    not_modified: bool = Field(
        default=False, description="Backend reported no change since last fetch"
    )
    status_code: int | None = Field(default=None, description="HTTP status code")
    etag: str | None = Field(default=None, description="Validator for next fetch")
    duration_ms: float = Field(default=0.0, ge=0.0)

    @model_validator(mode="after")
    def check_exclusive(self) -> "FetchResult":
        """Ensure exactly one outcome is populated."""
        outcomes = sum(
            (self.raw is not None, self.error is not None, self.not_modified)
        )
        if outcomes != 1:
            msg = "FetchResult must carry exactly one of raw, error or not_modified"
            raise ValueError(msg)
        return self

    @property
    def is_success(self) -> bool:
        """Check if the fetch produced usable data (or a not-modified answer)."""
        return self.error is None

    @classmethod
    def failure(
        cls,
        error_class: FetchErrorClass,
        message: str,
        status_code: int | None = None,
        duration_ms: float = 0.0,
    ) -> "FetchResult":
        """Build a failed result.

        Args:
            error_class: Classification of the failure.
            message: Human-readable message.
            status_code: HTTP status if one was received.
            duration_ms: Time spent on the request.

        Returns:
            FetchResult carrying the error.
        """
        return cls(
            error=FetchError(
                error_class=error_class, message=message, status_code=status_code
            ),
            status_code=status_code,
            duration_ms=duration_ms,
        )
