"""
Weighted multi-channel similarity and match ranking.

Similarity between two FeatureVectors is a weighted sum of per-channel
cosine similarities. Color carries the most weight; shape the least,
since aspect ratio and fill vary with how tightly a region was cropped.

Channel weights are loaded from environment variables so they can be
tuned without code changes. They should sum to 1.0 so that a vector's
similarity with itself is exactly 1.
"""

import os
import logging
from enum import Enum
from typing import Dict, List, Sequence

import numpy as np

from .config import DEFAULT_THRESHOLDS, DetectionThresholds
from .features import FeatureVector

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "color":   float(os.environ.get("SCORE_COLOR_W", "0.30")),
    "edge":    float(os.environ.get("SCORE_EDGE_W", "0.25")),
    "texture": float(os.environ.get("SCORE_TEXTURE_W", "0.25")),
    "shape":   float(os.environ.get("SCORE_SHAPE_W", "0.20")),
}


class MatchType(str, Enum):
    """Confidence tier of a match."""

    EXACT = "exact"
    SIMILAR = "similar"
    PARTIAL = "partial"


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """
    Cosine of the angle between two vectors, clamped to [-1, 1].

    Returns 0 when either vector is all zeros or the lengths differ.
    A non-zero vector compared with itself gives exactly 1.0.
    """
    vec1 = np.asarray(vec1, dtype=np.float64)
    vec2 = np.asarray(vec2, dtype=np.float64)
    if vec1.shape != vec2.shape:
        return 0.0

    sq1 = float(np.dot(vec1, vec1))
    sq2 = float(np.dot(vec2, vec2))
    if sq1 == 0 or sq2 == 0:
        return 0.0
    # sqrt(x * x) == x in IEEE arithmetic, so identical inputs divide to 1.0
    cosine = float(np.dot(vec1, vec2)) / np.sqrt(sq1 * sq2)
    return float(min(max(cosine, -1.0), 1.0))


def feature_similarity(features1: FeatureVector,
                       features2: FeatureVector,
                       weights: Dict[str, float] = None) -> float:
    """
    Weighted mean of per-channel cosine similarities.

    Args:
        features1: First vector.
        features2: Second vector.
        weights: Optional override for DEFAULT_WEIGHTS.

    Returns:
        Similarity, exactly 1.0 for identical vectors with no zero channel.
    """
    weights = weights or DEFAULT_WEIGHTS
    channels1 = features1.channels()
    channels2 = features2.channels()
    weight_total = sum(weights.values())
    if weight_total <= 0:
        return 0.0
    weighted = sum(
        weight * cosine_similarity(channels1[name], channels2[name])
        for name, weight in weights.items()
    )
    return float(weighted / weight_total)


def determine_match_type(confidence: float,
                         thresholds: DetectionThresholds = DEFAULT_THRESHOLDS) -> MatchType:
    """Exact at >= 0.9, Similar at >= 0.7, otherwise Partial (defaults)."""
    if confidence >= thresholds.exact_confidence:
        return MatchType.EXACT
    if confidence >= thresholds.similar_confidence:
        return MatchType.SIMILAR
    return MatchType.PARTIAL


def deduplicate_matches(matches: Sequence) -> list:
    """Keep the first match per reference item id, preserving order."""
    seen = set()
    unique = []
    for match in matches:
        if match.item.id in seen:
            continue
        seen.add(match.item.id)
        unique.append(match)
    return unique


def rank_matches(matches: Sequence) -> list:
    """
    Sort matches by confidence, highest first.

    The sort is stable, so equal confidences keep their region order and
    the ranking is deterministic for a given image.
    """
    return sorted(matches, key=lambda m: -m.confidence)


def total_confidence(matches: Sequence) -> float:
    """Mean confidence of the matches, 0 when there are none."""
    if not matches:
        return 0.0
    return float(sum(m.confidence for m in matches) / len(matches))


def channel_scales(weights: Dict[str, float] = None) -> Dict[str, float]:
    """
    Per-channel multipliers that turn weighted cosine into an inner product.

    If each channel is scaled to unit length and multiplied by
    sqrt(weight), the dot product of two concatenated vectors equals
    sum(weight * cosine). This is what lets a flat inner-product index
    rank by feature_similarity.
    """
    weights = weights or DEFAULT_WEIGHTS
    return {name: float(np.sqrt(max(weight, 0.0))) for name, weight in weights.items()}


def embed_features(features: FeatureVector, weights: Dict[str, float] = None) -> np.ndarray:
    """Concatenated, unit-normalized, weight-scaled channels as float32."""
    scales = channel_scales(weights)
    parts: List[np.ndarray] = []
    for name, values in features.channels().items():
        values = values.astype(np.float32)
        norm = np.linalg.norm(values)
        if norm > 0:
            values = values / norm
        else:
            values = np.zeros_like(values)
        parts.append(values * scales.get(name, 0.0))
    return np.concatenate(parts).astype(np.float32)
