"""Similarity-to-confidence mapping.

Similarity values arriving here are already bounded to [0, 1]. Strong
matches are pulled towards 1 while mid and low scores are compressed.
"""
from typing import Literal

SIMILARITY_TIER_VERY_HIGH = 0.9
SIMILARITY_TIER_HIGH = 0.8
SIMILARITY_TIER_MEDIUM = 0.7

SIMILARITY_CONFIDENCE_VERY_HIGH_BASE = 0.95
SIMILARITY_CONFIDENCE_VERY_HIGH_MULT = 0.5
SIMILARITY_CONFIDENCE_HIGH_BASE = 0.85
SIMILARITY_CONFIDENCE_HIGH_MULT = 1.0
SIMILARITY_CONFIDENCE_MEDIUM_BASE = 0.70
SIMILARITY_CONFIDENCE_MEDIUM_MULT = 1.5
SIMILARITY_CONFIDENCE_LOW_MULT = 0.9

CONFIDENCE_LABEL_HIGH_THRESHOLD = 0.8
CONFIDENCE_LABEL_MEDIUM_THRESHOLD = 0.6

ConfidenceLabel = Literal["high", "medium", "low"]


def confidence_score(similarity: float) -> float:
    """Map a [0, 1] similarity to a [0, 1] confidence."""

    if similarity >= SIMILARITY_TIER_VERY_HIGH:
        value = SIMILARITY_CONFIDENCE_VERY_HIGH_BASE + (
            similarity - SIMILARITY_TIER_VERY_HIGH
        ) * SIMILARITY_CONFIDENCE_VERY_HIGH_MULT
    elif similarity >= SIMILARITY_TIER_HIGH:
        value = SIMILARITY_CONFIDENCE_HIGH_BASE + (
            similarity - SIMILARITY_TIER_HIGH
        ) * SIMILARITY_CONFIDENCE_HIGH_MULT
    elif similarity >= SIMILARITY_TIER_MEDIUM:
        value = SIMILARITY_CONFIDENCE_MEDIUM_BASE + (
            similarity - SIMILARITY_TIER_MEDIUM
        ) * SIMILARITY_CONFIDENCE_MEDIUM_MULT
    else:
        value = max(0.0, similarity * SIMILARITY_CONFIDENCE_LOW_MULT)
    # float error at sim == 1.0 must not leak past the bound
    return min(1.0, value)


def confidence_label(
    confidence: float,
    *,
    high: float = CONFIDENCE_LABEL_HIGH_THRESHOLD,
    medium: float = CONFIDENCE_LABEL_MEDIUM_THRESHOLD,
) -> ConfidenceLabel:
    if confidence >= high:
        return "high"
    if confidence >= medium:
        return "medium"
    return "low"
