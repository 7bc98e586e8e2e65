"""
Deterministic variant assignment.

An identity is hashed with SHA-256 and the first 8 bytes are mapped onto
[0, 1). The same identity always lands in the same bucket, so a caller keeps
its arm for the lifetime of an experiment.
"""

from __future__ import annotations

import hashlib

from ai_resilience.experiments.types import Variant

_BUCKET_SPACE = float(1 << 64)


def assignment_bucket(identity: str) -> float:
    """Map ``identity`` uniformly onto [0, 1)."""
    digest = hashlib.sha256(identity.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _BUCKET_SPACE


def choose_variant(identity: str, split_ratio: float) -> Variant:
    """Bucket below ``split_ratio`` gets A, the rest gets B.

    Example:
        >>> choose_variant("user123", 1.0)
        <Variant.A: 'A'>
    """
    return Variant.A if assignment_bucket(identity) < split_ratio else Variant.B
