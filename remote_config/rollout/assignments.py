"""Per-identity cache of experiment assignments."""

import json
import threading
from datetime import datetime

import structlog
from pydantic import ValidationError

from remote_config.parser.models import ConfigSnapshot, ExperimentDefinition
from remote_config.rollout.experiments import ExperimentAssigner, ExperimentAssignment
from remote_config.store.errors import CacheCorruptError


logger = structlog.get_logger()


class AssignmentCache:
    """Remembers assignments so repeated queries are idempotent.

    An entry is reused while the experiment keeps the same definition
    fingerprint and stays running. It is dropped when the definition
    changes, the experiment disappears, or it is seen inactive, so a
    later reactivation assigns afresh.
    """

    def __init__(self) -> None:
        """Initialize an empty cache."""
        self._entries: dict[tuple[str, str], ExperimentAssignment] = {}
        self._lock = threading.Lock()
        self._log = logger.bind(component="assignments")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, stable_id: str, experiment_id: str) -> ExperimentAssignment | None:
        """Return the cached assignment, if any."""
        with self._lock:
            return self._entries.get((stable_id, experiment_id))

    def get_or_assign(
        self,
        stable_id: str,
        experiment: ExperimentDefinition,
        assigner: ExperimentAssigner,
        now: datetime,
    ) -> ExperimentAssignment | None:
        """Return the cached assignment or compute and cache a new one.

        Args:
            stable_id: Stable per-user identifier.
            experiment: Current experiment definition.
            assigner: Assigner used on a cache miss.
            now: Evaluation time.

        Returns:
            The assignment, or None if the user is not in a variant.
        """
        key = (stable_id, experiment.experiment_id)

        if not experiment.is_running(now):
            with self._lock:
                self._entries.pop(key, None)
            return None

        fingerprint = experiment.fingerprint()
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and cached.definition_fingerprint == fingerprint:
                return cached

        assignment = assigner.assign(stable_id, experiment, now=now)
        with self._lock:
            if assignment is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = assignment
        if cached is not None and assignment is not None:
            self._log.info(
                "experiment_reassigned",
                experiment_id=experiment.experiment_id,
                old_variant=cached.variant_id,
                new_variant=assignment.variant_id,
            )
        return assignment

    def sync_with(self, snapshot: ConfigSnapshot, now: datetime) -> list[str]:
        """Drop entries that no longer match the snapshot.

        Args:
            snapshot: Newly applied snapshot.
            now: Evaluation time for activity windows.

        Returns:
            Experiment ids whose entries were dropped.
        """
        current = {e.experiment_id: e for e in snapshot.experiments}
        dropped: set[str] = set()
        with self._lock:
            for key, assignment in list(self._entries.items()):
                experiment = current.get(assignment.experiment_id)
                if (
                    experiment is None
                    or not experiment.is_running(now)
                    or experiment.fingerprint() != assignment.definition_fingerprint
                ):
                    del self._entries[key]
                    dropped.add(assignment.experiment_id)
        return sorted(dropped)

    def clear(self) -> None:
        """Forget all assignments."""
        with self._lock:
            self._entries.clear()

    def to_bytes(self) -> bytes:
        """Serialize entries for persistence."""
        with self._lock:
            records = [
                {"stableId": stable_id, **assignment.model_dump(mode="json")}
                for (stable_id, _), assignment in sorted(self._entries.items())
            ]
        return json.dumps(records, sort_keys=True).encode("utf-8")

    def load_bytes(self, payload: bytes) -> int:
        """Replace entries with previously persisted ones.

        Args:
            payload: Bytes produced by ``to_bytes``.

        Returns:
            Number of entries loaded.

        Raises:
            CacheCorruptError: If the payload cannot be decoded.
        """
        try:
            records = json.loads(payload)
            if not isinstance(records, list):
                msg = "assignment payload must be a list"
                raise TypeError(msg)
            entries = {}
            for record in records:
                stable_id = record.pop("stableId")
                assignment = ExperimentAssignment.model_validate(record)
                entries[(stable_id, assignment.experiment_id)] = assignment
        except (
            UnicodeDecodeError,
            json.JSONDecodeError,
            TypeError,
            KeyError,
            AttributeError,
            ValidationError,
        ) as e:
            raise CacheCorruptError("assignments", str(e)) from e

        with self._lock:
            self._entries = entries
        return len(entries)
