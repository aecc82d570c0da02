"""Tests for the weighted similarity and match ranking module."""

from types import SimpleNamespace

import numpy as np
import pytest

from item_recognition.features import FeatureVector, extract_features
from item_recognition.raster import RasterImage
from item_recognition.scoring import (
    DEFAULT_WEIGHTS, MatchType, cosine_similarity, deduplicate_matches,
    determine_match_type, embed_features, feature_similarity, rank_matches,
    total_confidence,
)


def _match(item_id, confidence):
    return SimpleNamespace(item=SimpleNamespace(id=item_id), confidence=confidence)


class TestCosineSimilarity:
    """Tests for plain cosine similarity."""

    def test_identical_vectors(self):
        v = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(v, v) == 1.0

    def test_identical_unnormalized_histogram_is_exactly_one(self):
        v = np.random.default_rng(3).random(256).astype(np.float32)
        v /= v.sum()
        assert cosine_similarity(v, v.copy()) == 1.0

    def test_opposite_vectors(self):
        v = np.array([0.5, -1.5, 2.0])
        assert cosine_similarity(v, -v) == -1.0

    def test_orthogonal_vectors(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_length_mismatch(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0


class TestFeatureSimilarity:
    """Tests for the weighted multi-channel score."""

    def test_weights_sum_to_one(self):
        assert sum(DEFAULT_WEIGHTS.values()) == pytest.approx(1.0)

    def test_self_similarity_is_one(self, textured_raster):
        features = extract_features(textured_raster)
        assert feature_similarity(features, features) == 1.0

    def test_self_similarity_is_one_for_any_weights(self, textured_raster):
        features = extract_features(textured_raster)
        weights = {"color": 0.7, "edge": 0.1, "texture": 0.3, "shape": 0.05}
        assert feature_similarity(features, features, weights) == 1.0

    def test_symmetric(self, red_square_image, blue_circle_image):
        a = extract_features(RasterImage.from_array(red_square_image))
        b = extract_features(RasterImage.from_array(blue_circle_image))
        assert feature_similarity(a, b) == pytest.approx(feature_similarity(b, a))

    def test_zero_channel_contributes_nothing(self):
        color = np.ones(256)
        a = FeatureVector(color, np.zeros(16), np.zeros(9), np.zeros(3))
        assert feature_similarity(a, a) == pytest.approx(DEFAULT_WEIGHTS["color"])

    def test_different_images_score_lower(self, textured_raster, noise_image):
        a = extract_features(textured_raster)
        b = extract_features(RasterImage.from_array(noise_image))
        assert feature_similarity(a, b) < feature_similarity(a, a)

    def test_inner_product_of_embeddings(self, red_square_image, textured_raster):
        a = extract_features(RasterImage.from_array(red_square_image))
        b = extract_features(textured_raster)
        dot = float(np.dot(embed_features(a), embed_features(b)))
        assert dot == pytest.approx(feature_similarity(a, b), abs=1e-4)


class TestDetermineMatchType:
    """Tests for confidence tiers."""

    @pytest.mark.parametrize("confidence, expected", [
        (1.0, MatchType.EXACT),
        (0.9, MatchType.EXACT),
        (0.89999, MatchType.SIMILAR),
        (0.7, MatchType.SIMILAR),
        (0.69999, MatchType.PARTIAL),
        (0.0, MatchType.PARTIAL),
    ])
    def test_boundaries(self, confidence, expected):
        assert determine_match_type(confidence) == expected


class TestRankMatches:
    """Tests for result ranking."""

    def test_ranks_by_confidence_descending(self):
        ranked = rank_matches([_match("a", 0.5), _match("b", 0.8), _match("c", 0.3)])
        assert [m.item.id for m in ranked] == ["b", "a", "c"]

    def test_ties_keep_input_order(self):
        ranked = rank_matches([_match("a", 0.7), _match("b", 0.7)])
        assert [m.item.id for m in ranked] == ["a", "b"]

    def test_empty_list(self):
        assert rank_matches([]) == []


class TestDeduplicate:
    """Tests for per-item deduplication."""

    def test_first_occurrence_wins(self):
        unique = deduplicate_matches([_match("a", 0.6), _match("b", 0.7), _match("a", 0.9)])
        assert [(m.item.id, m.confidence) for m in unique] == [("a", 0.6), ("b", 0.7)]

    def test_total_confidence_is_mean(self):
        assert total_confidence([_match("a", 0.6), _match("b", 0.8)]) == pytest.approx(0.7)
        assert total_confidence([]) == 0.0
