"""Experiment variant assignment."""

from collections.abc import Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict, Field

from remote_config.parser.models import ExperimentDefinition
from remote_config.parser.parser import utc_now
from remote_config.rollout.engine import BucketFunction
from remote_config.rollout.hashing import stable_bucket


logger = structlog.get_logger()


class ExperimentAssignment(BaseModel):
    """A user's variant in one experiment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    experiment_id: str = Field(min_length=1)
    variant_id: str = Field(min_length=1)
    assigned_at: datetime
    definition_fingerprint: str = Field(
        description="Fingerprint of the definition the assignment was made under"
    )


class ExperimentAssigner:
    """Assigns identifiers to experiment variants.

    Uses the same bucketing as rollouts, salted with the experiment id,
    and walks variants in declared order. Buckets beyond the total
    allocation are left unassigned (control).
    """

    def __init__(
        self,
        bucket_fn: BucketFunction = stable_bucket,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the assigner.

        Args:
            bucket_fn: Maps (stable_id, salt) to a bucket in [0, 99].
            clock: Source of the current time for window checks.
        """
        self._bucket_fn = bucket_fn
        self._clock = clock

    def assign(
        self,
        stable_id: str,
        experiment: ExperimentDefinition,
        now: datetime | None = None,
    ) -> ExperimentAssignment | None:
        """Assign an identifier to a variant.

        Args:
            stable_id: Stable per-user identifier.
            experiment: Experiment definition.
            now: Evaluation time (defaults to the clock).

        Returns:
            The assignment, or None when the experiment is not running or
            the bucket is beyond the allocated traffic.
        """
        now = now or self._clock()
        if not experiment.is_running(now):
            return None

        bucket = self._bucket_fn(stable_id, experiment.experiment_id)
        cumulative = 0.0
        for variant in experiment.variants:
            cumulative += variant.traffic_allocation
            if cumulative > bucket:
                return ExperimentAssignment(
                    experiment_id=experiment.experiment_id,
                    variant_id=variant.variant_id,
                    assigned_at=now,
                    definition_fingerprint=experiment.fingerprint(),
                )

        logger.debug(
            "experiment_unassigned",
            component="experiments",
            experiment_id=experiment.experiment_id,
            bucket=bucket,
            total_allocation=cumulative,
        )
        return None
