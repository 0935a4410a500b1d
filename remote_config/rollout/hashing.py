"""Deterministic hashing for stable bucketing.

Buckets are derived from the first 32 bits of SHA-256 over the UTF-8
bytes of the key, which is stable across processes, platforms and
Python hash randomization.
"""

import hashlib


BUCKET_COUNT = 100


def stable_hash32(key: str) -> int:
    """Compute an unsigned 32-bit hash of ``key``.

    Args:
        key: Input string.

    Returns:
        Integer in [0, 2**32).
    """
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


def stable_bucket(stable_id: str, salt: str) -> int:
    """Map an identifier into one of 100 buckets.

    The salt (a feature name or experiment id) is concatenated to the
    identifier before hashing, so buckets for different features are
    independent.

    Args:
        stable_id: Stable per-user identifier.
        salt: Feature name or experiment id.

    Returns:
        Bucket in [0, 99].

    Examples:
        >>> a = stable_bucket("user-42", "new_feature")
        >>> a == stable_bucket("user-42", "new_feature")
        True
    """
    return stable_hash32(stable_id + salt) % BUCKET_COUNT
