"""Tests for recognition settings and presets."""

import pytest

from item_recognition.config import DEFAULT_THRESHOLDS, PRESETS, RecognitionConfig, preset_config


class TestRecognitionConfig:
    """Tests for clamping and overrides."""

    def test_defaults(self):
        config = RecognitionConfig()
        assert config.confidence_threshold == pytest.approx(0.6)
        assert config.max_results == 10
        assert config.enable_multi_region
        assert config.min_region_area == 1000
        assert config.max_region_area_ratio == pytest.approx(0.3)

    def test_values_clamped(self):
        config = RecognitionConfig(confidence_threshold=1.7, max_results=0,
                                   min_region_area=5, max_region_area_ratio=0.01)
        assert config.confidence_threshold == 1.0
        assert config.max_results == 1
        assert config.min_region_area == 100
        assert config.max_region_area_ratio == pytest.approx(0.1)

    def test_negative_threshold_clamped(self):
        assert RecognitionConfig(confidence_threshold=-0.5).confidence_threshold == 0.0

    def test_non_positive_timeout_disables_it(self):
        assert RecognitionConfig(timeout_seconds=0).timeout_seconds is None

    def test_replace_revalidates(self):
        config = RecognitionConfig().replace(max_region_area_ratio=3.0)
        assert config.max_region_area_ratio == 1.0

    def test_replace_unknown_field(self):
        with pytest.raises(ValueError):
            RecognitionConfig().replace(threshold=0.5)

    def test_equality_by_value(self):
        assert RecognitionConfig(max_results=5) == RecognitionConfig(max_results=5)
        assert RecognitionConfig(max_results=5) != RecognitionConfig(max_results=6)


class TestPresets:
    """Tests for named presets."""

    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_presets_build(self, name):
        assert isinstance(preset_config(name), RecognitionConfig)

    def test_fast_preset(self):
        config = preset_config("fast")
        assert config.confidence_threshold == pytest.approx(0.8)
        assert config.max_results == 5
        assert not config.enable_multi_region
        assert not config.enable_color_analysis

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            preset_config("turbo")


class TestDetectionThresholds:
    """Tests for the empirical constants."""

    def test_match_tiers_ordered(self):
        t = DEFAULT_THRESHOLDS
        assert t.selection_confidence < t.similar_confidence < t.exact_confidence

    def test_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_THRESHOLDS.slot_size = 32
