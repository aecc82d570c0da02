"""
Image enhancement and whole-image metadata.

Enhancement is applied to user-selected regions before feature
extraction: a manual selection is usually a tight crop of a single
icon, and a small contrast and brightness boost separates the icon
from the dark inventory background.

Metadata (background type, sharpness, whether several items seem to
be present) is computed on a copy scaled down to METADATA_MAX_DIM, so
it costs the same for a 4K screenshot as for a small crop.
"""

import logging
from dataclasses import dataclass, asdict

import numpy as np

from .edges import contour_bounding_box, detect_edges, trace_contours
from .raster import RasterImage

logger = logging.getLogger(__name__)

SELECTION_CONTRAST = 1.2
SELECTION_BRIGHTNESS = 1.1

METADATA_MAX_DIM = 400

# Fraction of pixels with luma below DARK_LUMA that marks a background type
DARK_LUMA = 85
INVENTORY_DARK_RATIO = 0.6
STASH_DARK_RATIO = 0.3

# Item-sized contours for the multi-item check
MIN_ITEM_SIZE = 20
MAX_ITEM_SIZE_RATIO = 0.8


@dataclass
class ImageMetadata:
    """Coarse whole-image properties reported alongside matches."""

    width: int
    height: int
    quality: float
    background_type: str
    has_multiple_items: bool

    def to_dict(self) -> dict:
        return asdict(self)


def enhance_contrast(image: RasterImage, factor: float = 1.5) -> RasterImage:
    """
    Stretch RGB around mid-gray: (c - 128) * factor + 128, rounded to the
    nearest integer and clamped to [0, 255].

    Alpha is unchanged. Returns a new image.
    """
    data = image.array.copy()
    rgb = data[:, :, :3].astype(np.float32)
    data[:, :, :3] = np.rint(np.clip((rgb - 128.0) * factor + 128.0, 0, 255)).astype(np.uint8)
    return RasterImage(image.width, image.height, data)


def adjust_brightness(image: RasterImage, factor: float) -> RasterImage:
    """Scale RGB by factor, rounded and clamped to [0, 255]. Alpha is unchanged."""
    data = image.array.copy()
    rgb = data[:, :, :3].astype(np.float32)
    data[:, :, :3] = np.rint(np.clip(rgb * factor, 0, 255)).astype(np.uint8)
    return RasterImage(image.width, image.height, data)


def enhance_selection(image: RasterImage,
                      contrast: float = SELECTION_CONTRAST,
                      brightness: float = SELECTION_BRIGHTNESS) -> RasterImage:
    """Contrast then brightness pass for manually selected regions."""
    return adjust_brightness(enhance_contrast(image, contrast), brightness)


def _downscale(image: RasterImage, max_dim: int) -> RasterImage:
    scale = max_dim / max(image.width, image.height)
    if scale >= 1.0:
        return image
    return image.resize(max(1, int(image.width * scale)), max(1, int(image.height * scale)))


def classify_background(gray: np.ndarray) -> str:
    """
    Guess the screen the screenshot came from by how dark it is.

    Inventory screens are mostly near-black; stash screens are mixed;
    anything brighter is assumed to be an in-raid ground view.
    """
    if gray.size == 0:
        return "unknown"
    dark_ratio = float(np.count_nonzero(gray < DARK_LUMA)) / gray.size
    if dark_ratio > INVENTORY_DARK_RATIO:
        return "inventory"
    if dark_ratio > STASH_DARK_RATIO:
        return "stash"
    return "ground"


def estimate_quality(edge_map: np.ndarray) -> float:
    """Sharpness proxy in [0, 1]: mean edge intensity / 50, capped."""
    if edge_map.size == 0:
        return 0.0
    return float(min(edge_map.mean() / 50.0, 1.0))


def count_item_contours(edge_map: np.ndarray) -> int:
    """Number of traced contours whose bounding box is item-sized."""
    h, w = edge_map.shape
    count = 0
    for contour in trace_contours(edge_map):
        box = contour_bounding_box(contour)
        if (box.width >= MIN_ITEM_SIZE and box.height >= MIN_ITEM_SIZE
                and box.width <= w * MAX_ITEM_SIZE_RATIO
                and box.height <= h * MAX_ITEM_SIZE_RATIO):
            count += 1
    return count


def analyze_image(image: RasterImage) -> ImageMetadata:
    """
    Compute ImageMetadata for a full screenshot.

    Args:
        image: Decoded source image (any size).

    Returns:
        ImageMetadata with the original image dimensions.
    """
    if image.area == 0:
        return ImageMetadata(image.width, image.height, 0.0, "unknown", False)

    small = _downscale(image, METADATA_MAX_DIM)
    gray = small.luma()
    edge_map = detect_edges(gray)

    metadata = ImageMetadata(
        width=image.width,
        height=image.height,
        quality=round(estimate_quality(edge_map), 4),
        background_type=classify_background(gray),
        has_multiple_items=count_item_contours(edge_map) > 1,
    )
    logger.debug(f"Image metadata: {metadata}")
    return metadata


def quality_adjusted_confidence(mean_confidence: float, metadata: ImageMetadata) -> float:
    """
    Scale a mean match confidence by image quality and size.

    Small or blurry screenshots earn less trust: the size factor reaches
    1 at 512×512 pixels.
    """
    size_factor = min(metadata.width * metadata.height / (512 * 512), 1.0)
    return float(mean_confidence * metadata.quality * size_factor)
