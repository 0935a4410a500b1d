"""Conversion of raw payloads into typed configuration snapshots.

Parsing is forgiving: every field that is absent or of the wrong type
falls back to its documented default, and malformed list elements are
skipped. Only a structurally unreadable root raises ParseError.
"""

import json
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from remote_config.errors import ParseError
from remote_config.fetch.models import RawSnapshot
from remote_config.parser import defaults
from remote_config.parser.models import (
    ConfigSnapshot,
    ConfigSource,
    DebugConfig,
    ExperimentDefinition,
    ExperimentVariant,
    FeatureFlag,
    FeatureFlagSet,
    GameBalanceConfig,
    LiveEvent,
    LiveMessage,
    LiveOpsConfig,
    MonetizationConfig,
    PerformanceConfig,
)
from remote_config.types import ConfigScalar, is_scalar, to_float


logger = structlog.get_logger()

SectionT = TypeVar("SectionT", bound=BaseModel)

META_KEY = "_meta"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware datetime.

    Naive timestamps are taken as UTC.

    Args:
        value: Raw timestamp value.

    Returns:
        Aware datetime, or None if the value is not a timestamp.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    return None


def _typed_get(raw: RawSnapshot, key: str, default: ConfigScalar) -> ConfigScalar:
    if isinstance(default, bool):
        return raw.get_bool(key, default)
    if isinstance(default, int):
        return raw.get_int(key, default)
    if isinstance(default, float):
        return raw.get_float(key, default)
    return raw.get_string(key, str(default))


def _clamp_percentage(value: float) -> float:
    return max(defaults.MIN_PERCENTAGE, min(defaults.MAX_PERCENTAGE, value))


class ConfigParser:
    """Validates raw payloads and builds ConfigSnapshot values."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize the parser.

        Args:
            clock: Source of the current time, used when a payload carries
                no fetch timestamp.
        """
        self._clock = clock
        self._log = logger.bind(component="parser")

    def default_snapshot(self) -> ConfigSnapshot:
        """Build the hardcoded default snapshot."""
        return ConfigSnapshot(fetched_at=self._clock(), source=ConfigSource.DEFAULT)

    def parse(
        self,
        raw: RawSnapshot | Mapping[str, Any] | bytes | str,
        *,
        source: ConfigSource,
        fetched_at: datetime | None = None,
    ) -> ConfigSnapshot:
        """Parse a payload into a snapshot.

        Args:
            raw: Decoded payload, or JSON text/bytes.
            source: Source tag for the resulting snapshot.
            fetched_at: Fetch time; defaults to the payload's ``_meta``
                timestamp, then to the clock.

        Returns:
            The parsed snapshot.

        Raises:
            ParseError: If the root is not a readable JSON object.
        """
        root = self._load_root(raw, source)
        log = self._log.bind(source=source.value)

        meta = root.get_section(META_KEY)
        if fetched_at is None:
            fetched_at = parse_timestamp(meta.get("fetchedAt")) or self._clock()

        config_version = root.get("configVersion")
        if isinstance(config_version, int) and not isinstance(config_version, bool):
            config_version = str(config_version)
        if not isinstance(config_version, str):
            config_version = None

        snapshot = ConfigSnapshot(
            game_balance=self._scalar_section(
                GameBalanceConfig, root, "gameBalance", log
            ),
            feature_flags=self._feature_flags(root, log),
            monetization=self._scalar_section(
                MonetizationConfig, root, "monetization", log
            ),
            experiments=self._experiments(root, log),
            live_ops=self._live_ops(root, log),
            performance=self._scalar_section(
                PerformanceConfig, root, "performance", log
            ),
            debug=self._scalar_section(DebugConfig, root, "debug", log),
            values=self._values(root, log),
            fetched_at=fetched_at,
            source=source,
            config_version=config_version,
        )

        log.debug(
            "snapshot_parsed",
            config_version=config_version,
            flags=len(snapshot.feature_flags.flags),
            experiments=len(snapshot.experiments),
        )
        return snapshot

    def _load_root(
        self,
        raw: RawSnapshot | Mapping[str, Any] | bytes | str,
        source: ConfigSource,
    ) -> RawSnapshot:
        if isinstance(raw, RawSnapshot):
            return raw
        if isinstance(raw, Mapping):
            return RawSnapshot(raw)
        if isinstance(raw, bytes | str):
            try:
                decoded = json.loads(raw)
            except ValueError as e:
                msg = f"Payload is not valid JSON: {e}"
                raise ParseError(msg, source=source.value) from e
            if not isinstance(decoded, dict):
                msg = f"Payload root must be an object, got {type(decoded).__name__}"
                raise ParseError(msg, source=source.value)
            return RawSnapshot(decoded)
        msg = f"Unsupported payload type {type(raw).__name__}"
        raise ParseError(msg, source=source.value)

    def _section(
        self, root: RawSnapshot, key: str, log: structlog.stdlib.BoundLogger
    ) -> RawSnapshot:
        if key in root and not isinstance(root[key], Mapping):
            log.warning("section_defaulted", section=key, reason="not_an_object")
        return root.get_section(key)

    def _scalar_section(
        self,
        model_cls: type[SectionT],
        root: RawSnapshot,
        key: str,
        log: structlog.stdlib.BoundLogger,
    ) -> SectionT:
        """Build a scalar section, defaulting each bad field individually."""
        raw = self._section(root, key, log)
        values: dict[str, Any] = {}
        alias_to_name: dict[str, str] = {}

        for name, info in model_cls.model_fields.items():
            alias = info.alias or name
            alias_to_name[alias] = name
            alias_to_name[name] = name
            default = info.default
            wire_key = alias if alias in raw else name
            value = _typed_get(raw, wire_key, default)
            if wire_key in raw and raw[wire_key] != value:
                log.warning(
                    "field_defaulted",
                    section=key,
                    field=alias,
                    reason="wrong_type",
                )
            values[name] = value

        try:
            return model_cls.model_validate(values)
        except ValidationError as e:
            for error in e.errors():
                if not error["loc"]:
                    continue
                name = alias_to_name.get(str(error["loc"][0]))
                if name is None:
                    continue
                values[name] = model_cls.model_fields[name].default
                log.warning(
                    "field_defaulted",
                    section=key,
                    field=str(error["loc"][0]),
                    reason="out_of_range",
                )
            return model_cls.model_validate(values)

    def _feature_flags(
        self, root: RawSnapshot, log: structlog.stdlib.BoundLogger
    ) -> FeatureFlagSet:
        raw = self._section(root, "featureFlags", log)
        flags: dict[str, FeatureFlag] = {}

        for name, value in raw.items():
            if not name:
                continue
            if isinstance(value, bool):
                flags[name] = FeatureFlag(name=name, enabled=value)
                continue
            if not isinstance(value, Mapping):
                log.warning("flag_skipped", flag=name, reason="invalid_value")
                continue

            entry = RawSnapshot(value)
            enabled = entry.get("enabled")
            raw_percentage = entry.get("rolloutPercentage")
            percentage = to_float(raw_percentage)
            if percentage is not None:
                percentage = _clamp_percentage(percentage)
            elif raw_percentage is not None:
                log.warning(
                    "field_defaulted",
                    section="featureFlags",
                    field=f"{name}.rolloutPercentage",
                    reason="wrong_type",
                )

            flags[name] = FeatureFlag(
                name=name,
                enabled=enabled if isinstance(enabled, bool) else None,
                rollout_percentage=percentage,
                variant=entry.get_optional_string("variant"),
            )

        return FeatureFlagSet(flags=flags)

    def _experiments(
        self, root: RawSnapshot, log: structlog.stdlib.BoundLogger
    ) -> tuple[ExperimentDefinition, ...]:
        experiments: list[ExperimentDefinition] = []
        seen: set[str] = set()

        for index, item in enumerate(root.get_list("experiments")):
            if not isinstance(item, Mapping):
                log.warning("experiment_skipped", index=index, reason="not_an_object")
                continue
            entry = RawSnapshot(item)
            experiment_id = entry.get_string("experimentId", "")
            if not experiment_id:
                log.warning("experiment_skipped", index=index, reason="missing_id")
                continue
            if experiment_id in seen:
                log.warning(
                    "experiment_skipped",
                    experiment_id=experiment_id,
                    reason="duplicate_id",
                )
                continue

            experiment = ExperimentDefinition(
                experiment_id=experiment_id,
                variants=self._variants(entry, experiment_id, log),
                is_active=entry.get_bool("isActive", False),
                start_time=parse_timestamp(entry.get("startTime")),
                end_time=parse_timestamp(entry.get("endTime")),
            )
            if experiment.total_allocation > defaults.MAX_PERCENTAGE:
                log.warning(
                    "experiment_overallocated",
                    experiment_id=experiment_id,
                    total_allocation=experiment.total_allocation,
                )
                experiment = experiment.model_copy(update={"is_active": False})

            seen.add(experiment_id)
            experiments.append(experiment)

        return tuple(experiments)

    def _variants(
        self,
        entry: RawSnapshot,
        experiment_id: str,
        log: structlog.stdlib.BoundLogger,
    ) -> tuple[ExperimentVariant, ...]:
        variants: list[ExperimentVariant] = []
        for index, item in enumerate(entry.get_list("variants")):
            if not isinstance(item, Mapping):
                log.warning(
                    "variant_skipped",
                    experiment_id=experiment_id,
                    index=index,
                    reason="not_an_object",
                )
                continue
            raw_variant = RawSnapshot(item)
            variant_id = raw_variant.get_string("variantId", "")
            if not variant_id:
                log.warning(
                    "variant_skipped",
                    experiment_id=experiment_id,
                    index=index,
                    reason="missing_id",
                )
                continue
            variants.append(
                ExperimentVariant(
                    variant_id=variant_id,
                    traffic_allocation=_clamp_percentage(
                        raw_variant.get_float("trafficAllocation", 0.0)
                    ),
                    parameters=raw_variant.get_section("parameters").scalars(),
                )
            )
        return tuple(variants)

    def _live_ops(
        self, root: RawSnapshot, log: structlog.stdlib.BoundLogger
    ) -> LiveOpsConfig:
        raw = self._section(root, "liveOps", log)

        events: list[LiveEvent] = []
        for index, item in enumerate(raw.get_list("events")):
            entry = RawSnapshot(item) if isinstance(item, Mapping) else None
            event_id = entry.get_string("eventId", "") if entry is not None else ""
            if entry is None or not event_id:
                log.warning("live_event_skipped", index=index)
                continue
            events.append(
                LiveEvent(
                    event_id=event_id,
                    name=entry.get_string("name", "") or event_id,
                    start_time=parse_timestamp(entry.get("startTime")),
                    end_time=parse_timestamp(entry.get("endTime")),
                    parameters=entry.get_section("parameters").scalars(),
                )
            )

        messages: list[LiveMessage] = []
        for index, item in enumerate(raw.get_list("messages")):
            entry = RawSnapshot(item) if isinstance(item, Mapping) else None
            message_id = entry.get_string("messageId", "") if entry is not None else ""
            if entry is None or not message_id:
                log.warning("live_message_skipped", index=index)
                continue
            messages.append(
                LiveMessage(
                    message_id=message_id,
                    title=entry.get_string("title", ""),
                    body=entry.get_string("body", ""),
                    priority=entry.get_int(
                        "priority", defaults.DEFAULT_MESSAGE_PRIORITY
                    ),
                    start_time=parse_timestamp(entry.get("startTime")),
                    end_time=parse_timestamp(entry.get("endTime")),
                )
            )

        return LiveOpsConfig(events=tuple(events), messages=tuple(messages))

    def _values(
        self, root: RawSnapshot, log: structlog.stdlib.BoundLogger
    ) -> dict[str, ConfigScalar]:
        raw = self._section(root, "values", log)
        skipped = [key for key, value in raw.items() if not is_scalar(value)]
        if skipped:
            log.warning("values_skipped", keys=sorted(skipped))
        return raw.scalars()


def serialize_snapshot(snapshot: ConfigSnapshot) -> bytes:
    """Serialize a snapshot into the wire format the parser reads.

    Args:
        snapshot: Snapshot to serialize.

    Returns:
        UTF-8 JSON bytes, including a ``_meta`` block with fetch time
        and source.
    """
    wire: dict[str, Any] = {
        META_KEY: {
            "fetchedAt": snapshot.fetched_at.isoformat(),
            "source": snapshot.source.value,
        },
        "gameBalance": snapshot.game_balance.model_dump(mode="json", by_alias=True),
        "featureFlags": {
            name: flag.model_dump(
                mode="json", by_alias=True, exclude={"name"}, exclude_none=True
            )
            for name, flag in snapshot.feature_flags.flags.items()
        },
        "monetization": snapshot.monetization.model_dump(mode="json", by_alias=True),
        "experiments": [
            experiment.model_dump(mode="json", by_alias=True, exclude_none=True)
            for experiment in snapshot.experiments
        ],
        "liveOps": snapshot.live_ops.model_dump(
            mode="json", by_alias=True, exclude_none=True
        ),
        "performance": snapshot.performance.model_dump(mode="json", by_alias=True),
        "debug": snapshot.debug.model_dump(mode="json", by_alias=True),
        "values": dict(snapshot.values),
    }
    if snapshot.config_version is not None:
        wire["configVersion"] = snapshot.config_version
    return json.dumps(wire, sort_keys=True).encode("utf-8")
