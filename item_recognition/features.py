"""
Fixed-shape visual feature vectors for item regions.

A FeatureVector has four independently normalized parts:
    color    [256]  luma histogram, normalized by pixel count (sums to 1)
    edge     [16]   4×4 grid, fraction of pixels with edge intensity > 100
    texture  [9]    3×3 grid, luma variance / 255²
    shape    [3]    aspect ratio, fill ratio, compactness

Every extraction produces the same shapes, so any two vectors can be
compared directly (see scoring.feature_similarity).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Sequence

import numpy as np

from .config import DEFAULT_THRESHOLDS, DetectionThresholds
from .edges import detect_edges
from .errors import InvalidRegion
from .raster import BoundingBox, RasterImage

logger = logging.getLogger(__name__)

COLOR_BINS = 256
EDGE_GRID = 4
TEXTURE_GRID = 3
SHAPE_DIM = 3

CHANNEL_DIMS = {
    "color": COLOR_BINS,
    "edge": EDGE_GRID * EDGE_GRID,
    "texture": TEXTURE_GRID * TEXTURE_GRID,
    "shape": SHAPE_DIM,
}

COMPACTNESS_SCALE = 1000.0


@dataclass(eq=False)
class FeatureVector:
    """Color, edge, texture and shape descriptors of one image region."""

    color: np.ndarray
    edge: np.ndarray
    texture: np.ndarray
    shape: np.ndarray

    def __post_init__(self):
        for name, dim in CHANNEL_DIMS.items():
            values = np.array(getattr(self, name), dtype=np.float32).reshape(-1)
            if values.shape != (dim,):
                raise ValueError(f"Feature '{name}' must have {dim} values, got {values.size}")
            if not np.all(np.isfinite(values)):
                raise ValueError(f"Feature '{name}' contains NaN or inf")
            setattr(self, name, values)

    @classmethod
    def zeros(cls) -> "FeatureVector":
        return cls(**{name: np.zeros(dim, dtype=np.float32) for name, dim in CHANNEL_DIMS.items()})

    @classmethod
    def from_dict(cls, data: Mapping[str, Sequence[float]]) -> "FeatureVector":
        missing = [name for name in CHANNEL_DIMS if name not in data]
        if missing:
            raise ValueError(f"Feature data missing channels: {', '.join(missing)}")
        return cls(**{name: data[name] for name in CHANNEL_DIMS})

    def channels(self) -> Dict[str, np.ndarray]:
        return {name: getattr(self, name) for name in CHANNEL_DIMS}

    def freeze(self) -> "FeatureVector":
        """Make the underlying arrays read-only (catalog-owned vectors)."""
        for values in self.channels().values():
            values.flags.writeable = False
        return self

    def to_dict(self) -> Dict[str, list]:
        return {name: [float(v) for v in values] for name, values in self.channels().items()}


def _grid_bounds(length: int, cells: int):
    """Cell boundaries floor(i * length / cells) for i in 0..cells."""
    return [(i * length) // cells for i in range(cells + 1)]


def _color_histogram(gray: np.ndarray) -> np.ndarray:
    hist = np.bincount(gray.reshape(-1), minlength=COLOR_BINS).astype(np.float64)
    return (hist / gray.size).astype(np.float32)


def _edge_density_grid(edge_map: np.ndarray, threshold: int) -> np.ndarray:
    h, w = edge_map.shape
    ys, xs = _grid_bounds(h, EDGE_GRID), _grid_bounds(w, EDGE_GRID)
    strong = edge_map > threshold
    features = []
    for ry in range(EDGE_GRID):
        for rx in range(EDGE_GRID):
            cell = strong[ys[ry]:ys[ry + 1], xs[rx]:xs[rx + 1]]
            features.append(float(cell.mean()) if cell.size else 0.0)
    return np.array(features, dtype=np.float32)


def _texture_grid(gray: np.ndarray) -> np.ndarray:
    h, w = gray.shape
    ys, xs = _grid_bounds(h, TEXTURE_GRID), _grid_bounds(w, TEXTURE_GRID)
    features = []
    for ry in range(TEXTURE_GRID):
        for rx in range(TEXTURE_GRID):
            cell = gray[ys[ry]:ys[ry + 1], xs[rx]:xs[rx + 1]].astype(np.float64)
            variance = float(cell.var()) if cell.size else 0.0
            features.append(min(variance / (255.0 ** 2), 1.0))
    return np.array(features, dtype=np.float32)


def _shape_features(image: RasterImage, edge_map: np.ndarray,
                    thresholds: DetectionThresholds) -> np.ndarray:
    total = image.area
    aspect_ratio = image.width / image.height

    fill_pixels = int(np.count_nonzero(image.array[:, :, 3] > thresholds.fill_alpha))
    fill_ratio = fill_pixels / total

    perimeter_pixels = int(np.count_nonzero(edge_map > thresholds.feature_edge_intensity))
    if perimeter_pixels > 0 and fill_pixels > 0:
        compactness = (perimeter_pixels * perimeter_pixels) / fill_pixels
    else:
        compactness = 0.0

    return np.array([
        aspect_ratio,
        fill_ratio,
        min(compactness / COMPACTNESS_SCALE, 1.0),
    ], dtype=np.float32)


def extract_features(image: RasterImage,
                     thresholds: DetectionThresholds = DEFAULT_THRESHOLDS) -> FeatureVector:
    """
    Extract a FeatureVector from a (cropped) image.

    Args:
        image: Region to describe.
        thresholds: Edge and alpha cutoffs.

    Returns:
        FeatureVector with fixed channel shapes.

    Raises:
        InvalidRegion: If the image has zero area.
    """
    if image.width <= 0 or image.height <= 0:
        raise InvalidRegion(f"Cannot extract features from {image.width}x{image.height} region")

    gray = image.luma()
    edge_map = detect_edges(gray)

    return FeatureVector(
        color=_color_histogram(gray),
        edge=_edge_density_grid(edge_map, thresholds.feature_edge_intensity),
        texture=_texture_grid(gray),
        shape=_shape_features(image, edge_map, thresholds),
    )


def extract_region_features(image: RasterImage, box: BoundingBox,
                            thresholds: DetectionThresholds = DEFAULT_THRESHOLDS) -> FeatureVector:
    """Crop box out of image and extract its features."""
    return extract_features(image.crop(box), thresholds)


def profile_histogram(dominant_rgb: Sequence[int], spread: float) -> np.ndarray:
    """
    Gaussian luma histogram centered on a dominant color.

    Used to author reference entries by hand when no icon image is at
    hand: the bin weight falls off with the normalized luma distance
    from the dominant color's luma.

    Args:
        dominant_rgb: (r, g, b) of the item's dominant color.
        spread: Standard deviation in normalized luma units (0-1).

    Returns:
        256-bin float32 histogram summing to 1.
    """
    if spread <= 0:
        raise ValueError(f"Spread must be positive, got {spread}")
    r, g, b = dominant_rgb
    center = int(np.floor(0.299 * r + 0.587 * g + 0.114 * b + 0.5))

    distance = np.abs(np.arange(COLOR_BINS) - center) / 255.0
    weights = np.exp(-(distance ** 2) / (2 * spread ** 2))
    return (weights / weights.sum()).astype(np.float32)
