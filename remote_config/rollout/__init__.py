"""Deterministic rollout bucketing and experiment assignment."""

from remote_config.rollout.assignments import AssignmentCache
from remote_config.rollout.engine import BucketFunction, RolloutEngine, RolloutRule
from remote_config.rollout.experiments import ExperimentAssigner, ExperimentAssignment
from remote_config.rollout.hashing import BUCKET_COUNT, stable_bucket, stable_hash32


__all__ = [
    "AssignmentCache",
    "BUCKET_COUNT",
    "BucketFunction",
    "ExperimentAssigner",
    "ExperimentAssignment",
    "RolloutEngine",
    "RolloutRule",
    "stable_bucket",
    "stable_hash32",
]
