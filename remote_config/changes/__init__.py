"""Change detection between configuration snapshots."""

from remote_config.changes.detector import (
    ChangeDetector,
    ChangeSet,
    ChangeTrigger,
    FlagResolver,
)


__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "ChangeTrigger",
    "FlagResolver",
]
