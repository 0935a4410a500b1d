"""Structured diffs between configuration snapshots."""

from collections.abc import Callable
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field

from remote_config.parser.models import SECTION_NAMES, ConfigSnapshot


logger = structlog.get_logger()

FlagResolver = Callable[[ConfigSnapshot, str], bool]


class ChangeTrigger(str, Enum):
    """What caused a change set.

    - BOOTSTRAP: First snapshot applied
    - REFRESH: A fetched snapshot replaced the active one
    - KILL_SWITCH: An administrative override changed flag resolution
    """

    BOOTSTRAP = "bootstrap"
    REFRESH = "refresh"
    KILL_SWITCH = "kill_switch"


class ChangeSet(BaseModel):
    """Differences between two snapshots."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    trigger: ChangeTrigger = ChangeTrigger.REFRESH
    changed_sections: frozenset[str] = Field(default_factory=frozenset)
    changed_flags: frozenset[str] = Field(default_factory=frozenset)
    changed_experiments: frozenset[str] = Field(default_factory=frozenset)
    values_changed: bool = False
    config_version: str | None = None

    @property
    def is_bootstrap(self) -> bool:
        """True for the first snapshot ever applied."""
        return self.trigger == ChangeTrigger.BOOTSTRAP

    @property
    def has_changes(self) -> bool:
        """True if anything observable changed."""
        return bool(
            self.changed_sections
            or self.changed_flags
            or self.changed_experiments
            or self.values_changed
        )

    def section_changed(self, section: str) -> bool:
        """Check whether a section changed."""
        return section in self.changed_sections


def _explicit_flag_value(snapshot: ConfigSnapshot, name: str) -> bool:
    flag = snapshot.feature_flags.get(name)
    return bool(flag is not None and flag.enabled)


class ChangeDetector:
    """Computes ChangeSets between the active and a candidate snapshot."""

    def diff(
        self,
        old: ConfigSnapshot | None,
        new: ConfigSnapshot,
        resolve: FlagResolver | None = None,
    ) -> ChangeSet:
        """Diff two snapshots.

        Args:
            old: Currently active snapshot, or None before the first apply.
            new: Candidate snapshot.
            resolve: Resolves a flag's effective state for a snapshot
                (value, rollout and kill switch). Defaults to the flag's
                explicit value.

        Returns:
            The ChangeSet. With no old snapshot, every section and flag
            is reported and the trigger is BOOTSTRAP.
        """
        resolve = resolve or _explicit_flag_value

        if old is None:
            return ChangeSet(
                trigger=ChangeTrigger.BOOTSTRAP,
                changed_sections=frozenset(SECTION_NAMES),
                changed_flags=new.feature_flags.names(),
                changed_experiments=frozenset(
                    e.experiment_id for e in new.experiments
                ),
                values_changed=bool(new.values),
                config_version=new.config_version,
            )

        old_sections = old.sections()
        new_sections = new.sections()
        changed_sections = frozenset(
            name for name in SECTION_NAMES if old_sections[name] != new_sections[name]
        )

        changed_flags: set[str] = set()
        if "feature_flags" in changed_sections:
            for name in old.feature_flags.names() | new.feature_flags.names():
                if resolve(old, name) != resolve(new, name):
                    changed_flags.add(name)

        changed_experiments: set[str] = set()
        if "experiments" in changed_sections:
            old_prints = {e.experiment_id: e.fingerprint() for e in old.experiments}
            new_prints = {e.experiment_id: e.fingerprint() for e in new.experiments}
            for experiment_id in old_prints.keys() | new_prints.keys():
                if old_prints.get(experiment_id) != new_prints.get(experiment_id):
                    changed_experiments.add(experiment_id)

        change_set = ChangeSet(
            trigger=ChangeTrigger.REFRESH,
            changed_sections=changed_sections,
            changed_flags=frozenset(changed_flags),
            changed_experiments=frozenset(changed_experiments),
            values_changed=old.values != new.values,
            config_version=new.config_version,
        )
        logger.debug(
            "snapshot_diffed",
            component="changes",
            changed_sections=sorted(change_set.changed_sections),
            changed_flags=sorted(change_set.changed_flags),
        )
        return change_set
