"""
Candidate region proposal for inventory screenshots.

Three independent strategies each emit candidate boxes:

    1. Slot-grid         walks the image in inventory-cell steps and keeps
                         cells with enough foreground content.
    2. Edge-contour      seeds on coarse grid cells dense in Sobel edges and
                         grows each seed outward while its border strips
                         stay edge-dense.
    3. Color-saturation  seeds on blocks with many saturated pixels and grows
                         them the same way.

Candidates are merged (overlap above 0.5 of the smaller box collapses to
the first one seen), filtered by area, and if nothing is left the whole
image becomes the single candidate, so the engine always has something
to analyze.

Density checks run against summed-area tables, so every box or strip
count is O(1) regardless of its size.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .config import DEFAULT_THRESHOLDS, DetectionThresholds, RecognitionConfig
from .edges import detect_edges
from .raster import BoundingBox, RasterImage

logger = logging.getLogger(__name__)


class RegionType(str, Enum):
    """Coarse hint for the presentation layer."""

    INVENTORY_SLOT = "inventory_slot"
    ITEM_ICON = "item_icon"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class DetectionRegion:
    """A candidate box plus where it came from."""

    box: BoundingBox
    type: RegionType = RegionType.UNKNOWN
    score: float = 0.0
    source: str = "fallback"

    def to_dict(self) -> dict:
        data = self.box.to_dict()
        data.update({
            "confidence": round(float(self.score), 4),
            "type": self.type.value,
            "source": self.source,
        })
        return data


def overlap_ratio(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection area over the smaller box's area."""
    return a.overlap_ratio(b)


def merge_regions(regions: Sequence[DetectionRegion],
                  threshold: float = DEFAULT_THRESHOLDS.overlap) -> List[DetectionRegion]:
    """
    Collapse duplicate candidates.

    A region is a duplicate of an already-kept region when their overlap
    ratio exceeds threshold; the earlier region survives.
    """
    unique: List[DetectionRegion] = []
    for region in regions:
        if any(overlap_ratio(region.box, kept.box) > threshold for kept in unique):
            continue
        unique.append(region)
    return unique


def _integral(mask: np.ndarray) -> np.ndarray:
    """Summed-area table with a zero row and column prepended."""
    h, w = mask.shape
    table = np.zeros((h + 1, w + 1), dtype=np.int64)
    if h and w:
        table[1:, 1:] = mask.astype(np.int64).cumsum(axis=0).cumsum(axis=1)
    return table


def _box_sum(table: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> int:
    """Count of set mask pixels in [x0, x1) × [y0, y1), clipped to the table."""
    h, w = table.shape[0] - 1, table.shape[1] - 1
    x0, x1 = max(0, x0), min(w, x1)
    y0, y1 = max(0, y0), min(h, y1)
    if x1 <= x0 or y1 <= y0:
        return 0
    return int(table[y1, x1] - table[y0, x1] - table[y1, x0] + table[y0, x0])


def _density(table: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> float:
    h, w = table.shape[0] - 1, table.shape[1] - 1
    area = (min(w, x1) - max(0, x0)) * (min(h, y1) - max(0, y0))
    if area <= 0:
        return 0.0
    return _box_sum(table, x0, y0, x1, y1) / area


class RegionProposer:
    """
    Runs the three proposal strategies and merges their output.

    Args:
        thresholds: Empirical detection constants (see config.DetectionThresholds).
    """

    def __init__(self, thresholds: DetectionThresholds = DEFAULT_THRESHOLDS):
        self.thresholds = thresholds

    def propose(self, image: RasterImage,
                edge_map: Optional[np.ndarray] = None,
                config: Optional[RecognitionConfig] = None) -> List[DetectionRegion]:
        """
        Propose candidate item regions.

        Args:
            image: Source image.
            edge_map: Precomputed detect_edges() output. Computed here when
                edge detection is enabled and none is given.
            config: Which strategies run and the area limits.

        Returns:
            At least one region; every box lies inside the image.
        """
        config = config or RecognitionConfig()
        t = self.thresholds
        candidates: List[DetectionRegion] = []

        if config.enable_edge_detection:
            if edge_map is None:
                edge_map = detect_edges(image)
            candidates.extend(self.edge_contour_regions(edge_map))

        candidates.extend(self.slot_grid_regions(image))

        if config.enable_color_analysis:
            candidates.extend(self.color_regions(image))

        merged = merge_regions(candidates, t.overlap)

        max_area = config.max_region_area_ratio * image.area
        regions = [
            r for r in merged
            if config.min_region_area <= r.box.area <= max_area
        ]

        logger.debug(
            f"Region proposal: {len(candidates)} candidates, {len(merged)} after merge, "
            f"{len(regions)} after area filter"
        )

        if not regions and image.area > 0:
            regions = [DetectionRegion(image.full_box(), RegionType.UNKNOWN, 0.0, "fallback")]
        return regions

    # -- Strategy 1: slot grid ------------------------------------------------

    def foreground_mask(self, image: RasterImage) -> np.ndarray:
        """
        Pixels that count as slot content.

        With real transparency, content is any pixel with alpha above the
        content threshold. Fully opaque screenshots have no transparency to
        go on, so there content is any opaque pixel that differs from the
        median (background) color by more than the tolerance.
        """
        t = self.thresholds
        rgba = image.array
        opaque = rgba[:, :, 3] > t.content_alpha
        if image.area == 0 or not opaque.all():
            return opaque

        rgb = rgba[:, :, :3].astype(np.int16)
        background = np.median(rgb.reshape(-1, 3), axis=0)
        deviation = np.abs(rgb - background).max(axis=2)
        return opaque & (deviation > t.background_tolerance)

    def slot_grid_regions(self, image: RasterImage) -> List[DetectionRegion]:
        t = self.thresholds
        step = t.slot_size
        table = _integral(self.foreground_mask(image))
        regions = []

        for y in range(t.slot_margin, image.height - step + 1, step):
            for x in range(t.slot_margin, image.width - step + 1, step):
                fill = _density(table, x, y, x + step, y + step)
                if fill > t.slot_fill_ratio:
                    box = BoundingBox(x + t.slot_inset, y + t.slot_inset,
                                      step - 2 * t.slot_inset, step - 2 * t.slot_inset)
                    regions.append(DetectionRegion(box, RegionType.INVENTORY_SLOT,
                                                   fill, "slot_grid"))
        return regions

    # -- Strategy 2: edge contours --------------------------------------------

    def edge_contour_regions(self, edge_map: np.ndarray) -> List[DetectionRegion]:
        t = self.thresholds
        step = t.edge_grid_step
        h, w = edge_map.shape
        table = _integral(edge_map > t.edge_intensity)
        visited = np.zeros((h // step + 1, w // step + 1), dtype=bool)
        regions = []

        for y in range(0, h - step, step):
            for x in range(0, w - step, step):
                if visited[y // step, x // step]:
                    continue
                if _box_sum(table, x, y, x + step, y + step) <= 2 * step:
                    continue

                box = self._grow(table, x, y, step, w, h, t.edge_density)
                if box is None:
                    continue
                score = _density(table, box.x, box.y, box.right, box.bottom)
                regions.append(DetectionRegion(box, RegionType.ITEM_ICON, score, "edge_contour"))
                self._mark_visited(visited, box, step)

        return regions

    # -- Strategy 3: color saturation -----------------------------------------

    def saturation_mask(self, image: RasterImage) -> np.ndarray:
        """HSV saturation (max - min) / max above the saturation threshold."""
        rgb = image.array[:, :, :3].astype(np.float32)
        high = rgb.max(axis=2)
        low = rgb.min(axis=2)
        saturation = np.divide(high - low, high, out=np.zeros_like(high), where=high > 0)
        return saturation > self.thresholds.saturation

    def color_regions(self, image: RasterImage) -> List[DetectionRegion]:
        t = self.thresholds
        block = t.color_block_size
        stride = t.color_sample_stride
        w, h = image.width, image.height
        table = _integral(self.saturation_mask(image))
        visited = np.zeros((h // block + 1, w // block + 1), dtype=bool)
        regions = []

        for y in range(0, h - block, stride):
            for x in range(0, w - block, stride):
                if visited[y // block, x // block]:
                    continue
                if _density(table, x, y, x + block, y + block) <= t.colorful_fraction:
                    continue

                box = self._grow(table, x, y, block, w, h, t.colorful_fraction)
                if box is None:
                    continue
                score = _density(table, box.x, box.y, box.right, box.bottom)
                regions.append(DetectionRegion(box, RegionType.ITEM_ICON, score, "color_saturation"))
                self._mark_visited(visited, box, block)

        return regions

    # -- Shared region growth -------------------------------------------------

    def _grow(self, table: np.ndarray, x: int, y: int, size: int,
              width: int, height: int, density: float) -> Optional[BoundingBox]:
        """
        Grow a seed cell outward while the strip beyond each side is dense.

        Each side moves by growth_step pixels at a time, in the order left,
        right, up, down. Growth stops at the image border and never makes
        the box wider or taller than max_extent_ratio of the image.

        Returns:
            The grown box if both sides exceed min_region_dimension, else None.
        """
        t = self.thresholds
        inc = t.growth_step
        max_w = int(width * t.max_extent_ratio)
        max_h = int(height * t.max_extent_ratio)

        min_x, min_y = x, y
        max_x, max_y = min(width, x + size), min(height, y + size)

        while (min_x > 0 and max_x - min_x < max_w
               and _density(table, min_x - inc, min_y, min_x, max_y) > density):
            min_x = max(0, min_x - inc, max_x - max_w)

        while (max_x < width and max_x - min_x < max_w
               and _density(table, max_x, min_y, max_x + inc, max_y) > density):
            max_x = min(width, max_x + inc, min_x + max_w)

        while (min_y > 0 and max_y - min_y < max_h
               and _density(table, min_x, min_y - inc, max_x, min_y) > density):
            min_y = max(0, min_y - inc, max_y - max_h)

        while (max_y < height and max_y - min_y < max_h
               and _density(table, min_x, max_y, max_x, max_y + inc) > density):
            max_y = min(height, max_y + inc, min_y + max_h)

        region_w = max_x - min_x
        region_h = max_y - min_y
        if region_w > t.min_region_dimension and region_h > t.min_region_dimension:
            return BoundingBox(min_x, min_y, region_w, region_h)
        return None

    @staticmethod
    def _mark_visited(visited: np.ndarray, box: BoundingBox, cell: int):
        visited[box.y // cell:(box.bottom - 1) // cell + 1,
                box.x // cell:(box.right - 1) // cell + 1] = True
