"""Typed configuration schema, per-field defaulting parser and serializer."""

from remote_config.errors import ParseError
from remote_config.parser.defaults import CONTROL_VARIANT
from remote_config.parser.models import (
    SECTION_NAMES,
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
from remote_config.parser.parser import (
    ConfigParser,
    parse_timestamp,
    serialize_snapshot,
    utc_now,
)


__all__ = [
    "CONTROL_VARIANT",
    "SECTION_NAMES",
    # Parser
    "ConfigParser",
    "ParseError",
    "parse_timestamp",
    "serialize_snapshot",
    "utc_now",
    # Models
    "ConfigSnapshot",
    "ConfigSource",
    "DebugConfig",
    "ExperimentDefinition",
    "ExperimentVariant",
    "FeatureFlag",
    "FeatureFlagSet",
    "GameBalanceConfig",
    "LiveEvent",
    "LiveMessage",
    "LiveOpsConfig",
    "MonetizationConfig",
    "PerformanceConfig",
]
