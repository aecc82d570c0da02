"""
Recognition configuration.

Two layers:
    RecognitionConfig    per-call knobs (threshold, result cap, which region
                         strategies run, area limits, timeout). Clamped on
                         every write, so an engine never holds an invalid one.
    DetectionThresholds  the empirical constants behind region proposal,
                         feature extraction and match tiers. They were tuned
                         by eye on inventory screenshots and are exposed here
                         for calibration rather than hard-coded.

Defaults are read from environment variables at import time.
"""

import os
import logging
from dataclasses import dataclass, asdict, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class RecognitionConfig:
    """Per-call recognition settings. Values are clamped in __post_init__."""

    confidence_threshold: float = float(os.environ.get("RECOGNITION_CONFIDENCE", "0.6"))
    max_results: int = int(os.environ.get("RECOGNITION_MAX_RESULTS", "10"))
    enable_multi_region: bool = True
    enable_edge_detection: bool = True
    enable_color_analysis: bool = True
    min_region_area: int = int(os.environ.get("RECOGNITION_MIN_REGION_AREA", "1000"))
    max_region_area_ratio: float = float(os.environ.get("RECOGNITION_MAX_REGION_RATIO", "0.3"))
    timeout_seconds: Optional[float] = float(os.environ.get("RECOGNITION_TIMEOUT_S", "30"))

    def __post_init__(self):
        self.confidence_threshold = max(0.0, min(1.0, float(self.confidence_threshold)))
        self.max_results = max(1, int(self.max_results))
        self.min_region_area = max(100, int(self.min_region_area))
        self.max_region_area_ratio = max(0.1, min(1.0, float(self.max_region_area_ratio)))
        self.enable_multi_region = bool(self.enable_multi_region)
        self.enable_edge_detection = bool(self.enable_edge_detection)
        self.enable_color_analysis = bool(self.enable_color_analysis)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            self.timeout_seconds = None

    def replace(self, **overrides) -> "RecognitionConfig":
        """
        Return a copy with the given fields overridden (and re-validated).

        Raises:
            ValueError: If an override names an unknown field.
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DetectionThresholds:
    # Slot-grid strategy
    slot_size: int = int(os.environ.get("SLOT_SIZE", "64"))
    slot_margin: int = 10
    slot_inset: int = 2
    slot_fill_ratio: float = 0.1
    content_alpha: int = 50
    background_tolerance: int = 24

    # Edge-contour strategy
    edge_grid_step: int = int(os.environ.get("EDGE_GRID_STEP", "20"))
    edge_intensity: int = int(os.environ.get("EDGE_INTENSITY_THRESHOLD", "128"))
    edge_density: float = 0.1

    # Color-saturation strategy
    color_block_size: int = 20
    color_sample_stride: int = 10
    saturation: float = float(os.environ.get("SATURATION_THRESHOLD", "0.3"))
    colorful_fraction: float = 0.2

    # Region growth and merging
    growth_step: int = 5
    max_extent_ratio: float = 0.8
    min_region_dimension: int = 30
    overlap: float = float(os.environ.get("REGION_OVERLAP_THRESHOLD", "0.5"))

    # Feature extraction
    feature_edge_intensity: int = 100
    fill_alpha: int = 128

    # Match tiers
    exact_confidence: float = 0.9
    similar_confidence: float = 0.7
    selection_confidence: float = 0.4


DEFAULT_THRESHOLDS = DetectionThresholds()


# Named presets. "optimized" is what the application shipped with.
PRESETS = {
    "default": {},
    "optimized": {
        "confidence_threshold": 0.7,
        "max_results": 15,
        "min_region_area": 800,
        "max_region_area_ratio": 0.25,
    },
    "fast": {
        "confidence_threshold": 0.8,
        "max_results": 5,
        "enable_multi_region": False,
        "enable_color_analysis": False,
        "min_region_area": 1000,
        "max_region_area_ratio": 0.2,
    },
    "precise": {
        "confidence_threshold": 0.6,
        "max_results": 20,
        "min_region_area": 500,
        "max_region_area_ratio": 0.4,
    },
}


def preset_config(name: str = "default") -> RecognitionConfig:
    """
    Build a RecognitionConfig from a named preset.

    Raises:
        KeyError: If the preset name is unknown.
    """
    if name not in PRESETS:
        raise KeyError(f"Unknown preset '{name}' (expected one of {sorted(PRESETS)})")
    return RecognitionConfig().replace(**PRESETS[name])
