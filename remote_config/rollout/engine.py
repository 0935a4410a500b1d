"""Percentage rollouts by deterministic bucketing."""

from collections.abc import Callable
from dataclasses import dataclass

from remote_config.parser.defaults import MAX_PERCENTAGE, MIN_PERCENTAGE
from remote_config.rollout.hashing import stable_bucket


BucketFunction = Callable[[str, str], int]


@dataclass(frozen=True)
class RolloutRule:
    """A feature's rollout percentage.

    Attributes:
        feature_name: Feature being rolled out.
        percentage: Share of the identifier space, 0 (never) to 100 (always).
    """

    feature_name: str
    percentage: float

    def __post_init__(self) -> None:
        """Validate the percentage range."""
        if not MIN_PERCENTAGE <= self.percentage <= MAX_PERCENTAGE:
            msg = f"Rollout percentage must be in [0, 100], got {self.percentage}"
            raise ValueError(msg)


class RolloutEngine:
    """Answers whether an identifier falls inside a rollout.

    Stateless apart from the bucket function, so one instance can be
    shared across threads.
    """

    def __init__(self, bucket_fn: BucketFunction = stable_bucket) -> None:
        """Initialize the engine.

        Args:
            bucket_fn: Maps (stable_id, salt) to a bucket in [0, 99].
        """
        self._bucket_fn = bucket_fn

    def is_in_rollout(
        self, stable_id: str, feature_name: str, percentage: float
    ) -> bool:
        """Check whether ``stable_id`` is inside the feature's rollout.

        Args:
            stable_id: Stable per-user identifier.
            feature_name: Feature name (mixed into the hash).
            percentage: Rollout percentage.

        Returns:
            True if the identifier's bucket is below the percentage.
        """
        if percentage <= MIN_PERCENTAGE:
            return False
        if percentage >= MAX_PERCENTAGE:
            return True
        return self._bucket_fn(stable_id, feature_name) < percentage

    def evaluate(self, stable_id: str, rule: RolloutRule) -> bool:
        """Evaluate a RolloutRule for an identifier."""
        return self.is_in_rollout(stable_id, rule.feature_name, rule.percentage)
