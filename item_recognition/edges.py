"""
Sobel edge detection and contour tracing.

The edge map is a single-channel uint8 array the size of the source
image. Region proposal thresholds it at 128 to seed candidate boxes;
feature extraction thresholds it at 100 for edge density and perimeter.

Contours are traced with an explicit stack over a flat visited array
(index y * width + x), so arbitrarily large connected edges never hit
the recursion limit.
"""

import logging
from typing import List, Tuple, Union

import cv2
import numpy as np

from .raster import BoundingBox, RasterImage

logger = logging.getLogger(__name__)

CONTOUR_THRESHOLD = 100
MIN_CONTOUR_POINTS = 20

# 8-connected neighborhood
_NEIGHBORS = ((-1, -1), (0, -1), (1, -1),
              (-1, 0),           (1, 0),
              (-1, 1),  (0, 1),  (1, 1))


def detect_edges(image: Union[RasterImage, np.ndarray]) -> np.ndarray:
    """
    Compute a Sobel gradient-magnitude map.

    Kernels:
        Gx = [[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]]
        Gy = [[-1, -2, -1], [0, 0, 0], [1, 2, 1]]

    Each interior pixel gets min(255, sqrt(Gx² + Gy²)); pixels without a
    full 3×3 neighborhood (the one-pixel border) stay zero.

    Args:
        image: RasterImage (its luma is used) or a 2-D grayscale array.

    Returns:
        uint8 array of shape (height, width). Empty for zero-area input.
    """
    gray = image.luma() if isinstance(image, RasterImage) else np.asarray(image)
    if gray.ndim != 2:
        raise ValueError(f"Expected a 2-D grayscale array, got shape {gray.shape}")

    h, w = gray.shape
    edges = np.zeros((h, w), dtype=np.uint8)
    if h < 3 or w < 3:
        return edges

    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.minimum(255.0, np.sqrt(gx * gx + gy * gy))

    edges[1:-1, 1:-1] = magnitude[1:-1, 1:-1].astype(np.uint8)
    return edges


def trace_contours(edge_map: np.ndarray,
                   threshold: int = CONTOUR_THRESHOLD,
                   min_points: int = MIN_CONTOUR_POINTS) -> List[List[Tuple[int, int]]]:
    """
    Group strong edge pixels into 8-connected contours.

    Args:
        edge_map: uint8 edge intensities from detect_edges().
        threshold: Pixels strictly above this belong to a contour.
        min_points: Contours with this many points or fewer are dropped.

    Returns:
        List of contours, each a list of (x, y) points in discovery order.
    """
    h, w = edge_map.shape[:2]
    strong = (edge_map > threshold).reshape(-1)
    visited = np.zeros(h * w, dtype=bool)
    contours = []

    for start in np.flatnonzero(strong):
        if visited[start]:
            continue

        contour = []
        stack = [int(start)]
        visited[start] = True

        while stack:
            idx = stack.pop()
            y, x = divmod(idx, w)
            contour.append((x, y))

            for dx, dy in _NEIGHBORS:
                nx, ny = x + dx, y + dy
                if nx < 0 or nx >= w or ny < 0 or ny >= h:
                    continue
                n_idx = ny * w + nx
                if not visited[n_idx] and strong[n_idx]:
                    visited[n_idx] = True
                    stack.append(n_idx)

        if len(contour) > min_points:
            contours.append(contour)

    logger.debug(f"Traced {len(contours)} contours above threshold {threshold}")
    return contours


def contour_bounding_box(contour: List[Tuple[int, int]]) -> BoundingBox:
    """Tightest box containing every contour point (inclusive of both ends)."""
    xs = [p[0] for p in contour]
    ys = [p[1] for p in contour]
    min_x, min_y = min(xs), min(ys)
    return BoundingBox(min_x, min_y, max(xs) - min_x + 1, max(ys) - min_y + 1)
