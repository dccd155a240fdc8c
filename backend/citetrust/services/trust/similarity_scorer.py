"""
Similarity Scorer.

WHAT THIS DOES:
Compares a claim vector with a source vector and turns the result into a
verification status plus a hallucination-risk label.

FORMULA:
similarity = clamp(dot(claim_vec, source_vec), 0, 1)

Both vectors come out of the EmbeddingEngine already L2-normalized, so the
dot product IS the cosine similarity. Negative cosines (opposite meaning)
are clamped to 0.

CLASSIFICATION (defaults, configurable):
    similarity >= 0.75  → verified,     risk low
    similarity >= 0.50  → verified,     risk medium
    similarity >= 0.25  → unverified,   risk high
    otherwise           → conflicting,  risk very_high

USAGE:
    scorer = SimilarityScorer()
    result = scorer.score(claim_vec, source_vec)
    # result.similarity = 0.82, result.status = verified, result.risk = low
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from citetrust.config import Settings
from citetrust.models.schemas import HallucinationRisk, VerificationStatus


@dataclass(frozen=True)
class ClassificationThresholds:
    """Lower bounds for each band, highest first."""

    verified_low: float = 0.75
    verified_medium: float = 0.5
    unverified: float = 0.25

    def __post_init__(self):
        bounds = (self.verified_low, self.verified_medium, self.unverified)
        if not all(0.0 <= b <= 1.0 for b in bounds):
            raise ValueError(f"Thresholds must lie in [0, 1], got {bounds}")
        if not self.verified_low > self.verified_medium > self.unverified:
            raise ValueError(f"Thresholds must be strictly decreasing, got {bounds}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClassificationThresholds":
        return cls(
            verified_low=settings.verified_low_threshold,
            verified_medium=settings.verified_medium_threshold,
            unverified=settings.unverified_threshold,
        )


@dataclass(frozen=True)
class SimilarityResult:
    """Similarity plus the status and risk derived from it."""
    similarity: float
    status: VerificationStatus
    risk: HallucinationRisk


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Dot product of two normalized vectors, clamped to [0, 1].

    Raises:
        ValueError: if the vectors have different lengths
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    return float(np.clip(np.dot(va, vb), 0.0, 1.0))


def classify(
    similarity: float,
    thresholds: ClassificationThresholds = ClassificationThresholds(),
) -> tuple[VerificationStatus, HallucinationRisk]:
    """Map a similarity value to (status, risk). Monotonic in similarity."""
    if similarity >= thresholds.verified_low:
        return VerificationStatus.VERIFIED, HallucinationRisk.LOW
    if similarity >= thresholds.verified_medium:
        return VerificationStatus.VERIFIED, HallucinationRisk.MEDIUM
    if similarity >= thresholds.unverified:
        return VerificationStatus.UNVERIFIED, HallucinationRisk.HIGH
    return VerificationStatus.CONFLICTING, HallucinationRisk.VERY_HIGH


class SimilarityScorer:
    """Scores claim/source vector pairs against configured thresholds."""

    def __init__(self, thresholds: ClassificationThresholds | None = None):
        self.thresholds = thresholds or ClassificationThresholds()

    def score(self, claim_vec: Sequence[float], source_vec: Sequence[float]) -> SimilarityResult:
        similarity = cosine_similarity(claim_vec, source_vec)
        status, risk = classify(similarity, self.thresholds)
        return SimilarityResult(similarity=similarity, status=status, risk=risk)
