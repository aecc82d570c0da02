"""
item_recognition — Visual recognition of game items in inventory screenshots.

Proposes candidate regions with three detectors (slot grid, Sobel edge
contours, color saturation), describes each region with color, edge,
texture and shape features, and matches them against a reference
catalog indexed with FAISS.

Modules:
    engine         Main RecognitionEngine class
    raster         RGBA raster images, bounding boxes, decoding
    edges          Sobel edge maps + contour tracing
    regions        Candidate region proposal and merging
    features       Per-region feature extraction
    scoring        Weighted similarity and match ranking
    catalog        Reference items + FAISS nearest-neighbor index
    preprocessing  Selection enhancement and image metadata
    cache          Content-addressed LRU result cache
    metrics        Processing statistics and memory telemetry
    config         Recognition settings, thresholds and presets
"""

from .catalog import ReferenceCatalog, ReferenceItem
from .config import DetectionThresholds, RecognitionConfig, preset_config
from .engine import (
    MatchResult, RecognitionEngine, RecognitionResult, RecognitionState, create_engine,
)
from .errors import CacheUnavailable, DecodeError, InvalidRegion, OutOfBounds, RecognitionError
from .features import FeatureVector
from .raster import BoundingBox, RasterImage
from .regions import DetectionRegion, RegionType
from .scoring import MatchType

__version__ = "1.0.0"
