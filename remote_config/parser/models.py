"""Typed configuration snapshot schema.

Section models serialize with camelCase aliases, which is also the wire
format the parser reads.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from remote_config.parser import defaults
from remote_config.types import ConfigScalar


SECTION_NAMES: tuple[str, ...] = (
    "game_balance",
    "feature_flags",
    "monetization",
    "experiments",
    "live_ops",
    "performance",
    "debug",
)

# Sections whose fields are plain scalars addressable by config key
SCALAR_SECTIONS: tuple[str, ...] = (
    "game_balance",
    "monetization",
    "performance",
    "debug",
)


class ConfigSource(str, Enum):
    """Where a snapshot came from.

    - REMOTE: Parsed from a backend fetch
    - CACHE: Loaded from the local cache
    - DEFAULT: Hardcoded defaults
    """

    REMOTE = "remote"
    CACHE = "cache"
    DEFAULT = "default"


class _Section(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class GameBalanceConfig(_Section):
    """Balance tunables."""

    player_health: Annotated[int, Field(ge=1)] = defaults.DEFAULT_PLAYER_HEALTH
    player_speed: Annotated[float, Field(gt=0.0)] = defaults.DEFAULT_PLAYER_SPEED
    difficulty_multiplier: Annotated[float, Field(gt=0.0)] = (
        defaults.DEFAULT_DIFFICULTY_MULTIPLIER
    )
    enemy_spawn_rate: Annotated[float, Field(ge=0.0)] = (
        defaults.DEFAULT_ENEMY_SPAWN_RATE
    )
    experience_multiplier: Annotated[float, Field(ge=0.0)] = (
        defaults.DEFAULT_EXPERIENCE_MULTIPLIER
    )
    currency_multiplier: Annotated[float, Field(ge=0.0)] = (
        defaults.DEFAULT_CURRENCY_MULTIPLIER
    )
    max_level: Annotated[int, Field(ge=1)] = defaults.DEFAULT_MAX_LEVEL


class MonetizationConfig(_Section):
    """Ads and in-app purchase tunables."""

    ads_enabled: bool = defaults.DEFAULT_ADS_ENABLED
    interstitial_frequency: Annotated[int, Field(ge=0)] = (
        defaults.DEFAULT_INTERSTITIAL_FREQUENCY
    )
    rewarded_ad_multiplier: Annotated[float, Field(ge=0.0)] = (
        defaults.DEFAULT_REWARDED_AD_MULTIPLIER
    )
    starter_pack_discount: Annotated[float, Field(ge=0.0, le=1.0)] = (
        defaults.DEFAULT_STARTER_PACK_DISCOUNT
    )
    price_tier: Annotated[str, Field(min_length=1)] = defaults.DEFAULT_PRICE_TIER
    show_offer_wall: bool = defaults.DEFAULT_SHOW_OFFER_WALL


class PerformanceConfig(_Section):
    """Runtime performance tunables."""

    target_frame_rate: Annotated[int, Field(ge=1, le=240)] = (
        defaults.DEFAULT_TARGET_FRAME_RATE
    )
    quality_level: Annotated[str, Field(min_length=1)] = defaults.DEFAULT_QUALITY_LEVEL
    max_particles: Annotated[int, Field(ge=0)] = defaults.DEFAULT_MAX_PARTICLES
    enable_vsync: bool = defaults.DEFAULT_ENABLE_VSYNC
    texture_quality: Annotated[str, Field(min_length=1)] = (
        defaults.DEFAULT_TEXTURE_QUALITY
    )


class DebugConfig(_Section):
    """Debug switches."""

    enable_logging: bool = defaults.DEFAULT_ENABLE_LOGGING
    show_fps: bool = defaults.DEFAULT_SHOW_FPS
    log_level: Annotated[str, Field(min_length=1)] = defaults.DEFAULT_LOG_LEVEL
    enable_cheats: bool = defaults.DEFAULT_ENABLE_CHEATS


class FeatureFlag(_Section):
    """One feature flag.

    ``enabled`` is None when the backend only supplied a rollout
    percentage; the percentage then decides on its own.
    """

    name: Annotated[str, Field(min_length=1)]
    enabled: bool | None = None
    rollout_percentage: (
        Annotated[
            float, Field(ge=defaults.MIN_PERCENTAGE, le=defaults.MAX_PERCENTAGE)
        ]
        | None
    ) = None
    variant: str | None = None


class FeatureFlagSet(_Section):
    """Feature flags keyed by unique name."""

    flags: dict[str, FeatureFlag] = Field(default_factory=dict)

    def get(self, name: str) -> FeatureFlag | None:
        """Get a flag by name."""
        return self.flags.get(name)

    def names(self) -> frozenset[str]:
        """Return all flag names."""
        return frozenset(self.flags)

    def __contains__(self, name: object) -> bool:
        return name in self.flags


def _in_window(
    now: datetime, start_time: datetime | None, end_time: datetime | None
) -> bool:
    if start_time is not None and now < start_time:
        return False
    return not (end_time is not None and now > end_time)


class ExperimentVariant(_Section):
    """A variant and its share of traffic."""

    variant_id: Annotated[str, Field(min_length=1)]
    traffic_allocation: Annotated[
        float, Field(ge=defaults.MIN_PERCENTAGE, le=defaults.MAX_PERCENTAGE)
    ]
    parameters: dict[str, ConfigScalar] = Field(default_factory=dict)


class ExperimentDefinition(_Section):
    """An A/B experiment.

    Variants are walked in declared order; allocations sum to at most 100.
    """

    experiment_id: Annotated[str, Field(min_length=1)]
    variants: tuple[ExperimentVariant, ...] = ()
    is_active: bool = False
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def total_allocation(self) -> float:
        """Sum of all variant allocations."""
        return sum(v.traffic_allocation for v in self.variants)

    def is_running(self, now: datetime) -> bool:
        """Check whether the experiment yields assignments at ``now``."""
        return self.is_active and _in_window(now, self.start_time, self.end_time)

    def get_variant(self, variant_id: str) -> ExperimentVariant | None:
        """Find a variant by id."""
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None

    def fingerprint(self) -> str:
        """Stable hash of the definition, used to detect changes."""
        content = json.dumps(
            self.model_dump(mode="json", by_alias=True), sort_keys=True
        )
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class LiveEvent(_Section):
    """A time-boxed live-ops event."""

    event_id: Annotated[str, Field(min_length=1)]
    name: Annotated[str, Field(min_length=1)]
    start_time: datetime | None = None
    end_time: datetime | None = None
    parameters: dict[str, ConfigScalar] = Field(default_factory=dict)

    def is_active(self, now: datetime) -> bool:
        """Check whether the event is running at ``now``."""
        return _in_window(now, self.start_time, self.end_time)


class LiveMessage(_Section):
    """An in-app message shown during its window."""

    message_id: Annotated[str, Field(min_length=1)]
    title: str = ""
    body: str = ""
    priority: int = defaults.DEFAULT_MESSAGE_PRIORITY
    start_time: datetime | None = None
    end_time: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        """Check whether the message should be shown at ``now``."""
        return _in_window(now, self.start_time, self.end_time)


class LiveOpsConfig(_Section):
    """Live-ops events and messages."""

    events: tuple[LiveEvent, ...] = ()
    messages: tuple[LiveMessage, ...] = ()


def _scalar_fields(section: BaseModel) -> dict[str, ConfigScalar]:
    """Map both field names and camelCase aliases to scalar values."""
    fields: dict[str, ConfigScalar] = {}
    for name, info in type(section).model_fields.items():
        value = getattr(section, name)
        if isinstance(value, bool | int | float | str):
            fields[name] = value
            if info.alias:
                fields[info.alias] = value
    return fields


def _normalize_section_name(name: str) -> str | None:
    for section in SECTION_NAMES:
        if name in (section, to_camel(section)):
            return section
    return None


class ConfigSnapshot(BaseModel):
    """One complete, internally consistent configuration state.

    Immutable; refreshes produce a new snapshot instead of mutating one.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    game_balance: GameBalanceConfig = Field(default_factory=GameBalanceConfig)
    feature_flags: FeatureFlagSet = Field(default_factory=FeatureFlagSet)
    monetization: MonetizationConfig = Field(default_factory=MonetizationConfig)
    experiments: tuple[ExperimentDefinition, ...] = ()
    live_ops: LiveOpsConfig = Field(default_factory=LiveOpsConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)
    values: dict[str, ConfigScalar] = Field(default_factory=dict)
    fetched_at: datetime
    source: ConfigSource
    config_version: str | None = None

    def sections(self) -> dict[str, Any]:
        """Return the section values keyed by section name."""
        return {name: getattr(self, name) for name in SECTION_NAMES}

    def content_equals(self, other: "ConfigSnapshot") -> bool:
        """Compare configuration content, ignoring source and fetch time."""
        return self.sections() == other.sections() and self.values == other.values

    def get_experiment(self, experiment_id: str) -> ExperimentDefinition | None:
        """Find an experiment definition by id."""
        for experiment in self.experiments:
            if experiment.experiment_id == experiment_id:
                return experiment
        return None

    def lookup(self, key: str) -> ConfigScalar | None:
        """Resolve a config key to a scalar.

        Accepts ``section.field`` paths (camelCase or snake_case, including
        ``featureFlags.<name>`` and ``values.<key>``), or a bare field name
        searched across the scalar sections in order, then ``values``.

        Args:
            key: Config key to resolve.

        Returns:
            The scalar value, or None if the key is unknown.
        """
        if "." in key:
            head, tail = key.split(".", 1)
            if head == "values":
                return self.values.get(tail)
            section = _normalize_section_name(head)
            if section == "feature_flags":
                flag = self.feature_flags.get(tail)
                return flag.enabled if flag is not None else None
            if section in SCALAR_SECTIONS:
                return _scalar_fields(getattr(self, section)).get(tail)
            return self.values.get(key)

        for section in SCALAR_SECTIONS:
            fields = _scalar_fields(getattr(self, section))
            if key in fields:
                return fields[key]
        return self.values.get(key)
