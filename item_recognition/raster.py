"""
Owned RGBA pixel buffer and bounding boxes.

RasterImage wraps a (height, width, 4) uint8 numpy array. Everything
downstream (edge maps, region proposal, feature extraction) works on
this one layout, so decoders normalize into it once at load time.

Pixel accessors raise OutOfBounds instead of clamping; crop() raises
InvalidRegion for boxes that do not fit.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Tuple

import cv2
import numpy as np

from .errors import DecodeError, InvalidRegion, OutOfBounds

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in integer pixel units (top-left origin)."""

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidRegion(f"Zero-area box: {self.width}x{self.height}")
        if self.x < 0 or self.y < 0:
            raise InvalidRegion(f"Negative box origin: ({self.x}, {self.y})")

    @classmethod
    def from_dict(cls, data: Mapping) -> "BoundingBox":
        try:
            return cls(int(data["x"]), int(data["y"]),
                       int(data["width"]), int(data["height"]))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidRegion(f"Malformed box {data!r}: {e}") from e

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def fits_within(self, width: int, height: int) -> bool:
        return self.right <= width and self.bottom <= height

    def intersection_area(self, other: "BoundingBox") -> int:
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.right, other.right)
        y2 = min(self.bottom, other.bottom)
        if x2 <= x1 or y2 <= y1:
            return 0
        return (x2 - x1) * (y2 - y1)

    def overlap_ratio(self, other: "BoundingBox") -> float:
        """Intersection area divided by the smaller box's area."""
        return self.intersection_area(other) / min(self.area, other.area)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def normalize_array(image_np: np.ndarray) -> np.ndarray:
    """
    Coerce an image array to (H, W, 4) uint8 RGBA.

    Accepts grayscale (H, W), RGB (H, W, 3) or RGBA (H, W, 4) input, as
    uint8, uint16 or float in [0, 1]. Channel order is assumed RGB.
    """
    image_np = np.asarray(image_np)
    if image_np.dtype != np.uint8:
        if image_np.dtype == np.uint16:
            image_np = (image_np >> 8).astype(np.uint8)
        elif image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)

    if image_np.ndim == 2:
        image_np = np.repeat(image_np[:, :, None], 3, axis=2)
    if image_np.ndim != 3 or image_np.shape[2] not in (3, 4):
        raise ValueError(f"Unsupported image shape {image_np.shape}")

    if image_np.shape[2] == 3:
        alpha = np.full(image_np.shape[:2] + (1,), 255, dtype=np.uint8)
        image_np = np.concatenate([image_np, alpha], axis=2)

    return np.ascontiguousarray(image_np)


class ImageDecoder:
    """Turns encoded image bytes into an (H, W, 4) uint8 RGBA array."""

    def decode(self, data: bytes) -> np.ndarray:
        raise NotImplementedError


class OpenCVDecoder(ImageDecoder):
    """Decodes any format cv2.imdecode understands (PNG, JPEG, BMP, WebP...)."""

    def decode(self, data: bytes) -> np.ndarray:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise DecodeError(f"Expected image bytes, got {type(data).__name__}")
        buffer = np.frombuffer(data, dtype=np.uint8)
        if buffer.size == 0:
            raise DecodeError("Empty image buffer")

        try:
            decoded = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
        except cv2.error as e:
            raise DecodeError(f"OpenCV could not decode image: {e}") from e
        if decoded is None:
            raise DecodeError("Unrecognized or corrupt image data")

        if decoded.dtype == np.uint16:
            decoded = (decoded >> 8).astype(np.uint8)

        if decoded.ndim == 2:
            return cv2.cvtColor(decoded, cv2.COLOR_GRAY2RGBA)
        if decoded.shape[2] == 3:
            return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGBA)
        if decoded.shape[2] == 4:
            return cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)
        raise DecodeError(f"Unsupported channel count {decoded.shape[2]}")


class RasterImage:
    """
    RGBA raster with bounds-checked accessors.

    The backing array is owned: from_array() copies its input and crop()
    returns a copy, so no two images share a buffer.
    """

    def __init__(self, width: int, height: int, pixels: Optional[np.ndarray] = None):
        if width < 0 or height < 0:
            raise ValueError(f"Negative image size {width}x{height}")
        if pixels is None:
            pixels = np.zeros((height, width, 4), dtype=np.uint8)
        elif pixels.shape != (height, width, 4) or pixels.dtype != np.uint8:
            raise ValueError(
                f"Pixel buffer {pixels.shape}/{pixels.dtype} does not match "
                f"{width}x{height} RGBA uint8"
            )
        self.width = width
        self.height = height
        self._data = pixels

    @classmethod
    def from_array(cls, image_np: np.ndarray) -> "RasterImage":
        rgba = normalize_array(image_np)
        if rgba is image_np:
            rgba = rgba.copy()
        height, width = rgba.shape[:2]
        return cls(width, height, rgba)

    @classmethod
    def load(cls, data: bytes, decoder: Optional[ImageDecoder] = None) -> "RasterImage":
        """
        Decode image bytes.

        Raises:
            DecodeError: If the bytes are not a readable image.
        """
        decoder = decoder or OpenCVDecoder()
        rgba = decoder.decode(data)
        height, width = rgba.shape[:2]
        logger.debug(f"Decoded {width}x{height} image ({len(data)} bytes)")
        return cls(width, height, np.ascontiguousarray(rgba, dtype=np.uint8))

    @property
    def array(self) -> np.ndarray:
        """The (H, W, 4) backing array."""
        return self._data

    @property
    def pixels(self) -> np.ndarray:
        """Flat RGBA view, length width * height * 4."""
        return self._data.reshape(-1)

    @property
    def area(self) -> int:
        return self.width * self.height

    def full_box(self) -> BoundingBox:
        return BoundingBox(0, 0, self.width, self.height)

    def _check(self, x: int, y: int):
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise OutOfBounds(f"Pixel ({x}, {y}) outside {self.width}x{self.height} image")

    def get_pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        self._check(x, y)
        r, g, b, a = self._data[y, x]
        return int(r), int(g), int(b), int(a)

    def set_pixel(self, x: int, y: int, rgba: Tuple[int, int, int, int]):
        self._check(x, y)
        self._data[y, x] = np.clip(np.asarray(rgba, dtype=np.int64), 0, 255)

    def copy(self) -> "RasterImage":
        return RasterImage(self.width, self.height, self._data.copy())

    def crop(self, box: BoundingBox) -> "RasterImage":
        if not box.fits_within(self.width, self.height):
            raise InvalidRegion(
                f"Box {box.to_dict()} exceeds {self.width}x{self.height} image"
            )
        region = self._data[box.y:box.bottom, box.x:box.right].copy()
        return RasterImage(box.width, box.height, region)

    def resize(self, width: int, height: int) -> "RasterImage":
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid resize target {width}x{height}")
        if self.area == 0:
            raise InvalidRegion("Cannot resize a zero-area image")
        resized = cv2.resize(self._data, (width, height), interpolation=cv2.INTER_AREA)
        return RasterImage(width, height, np.ascontiguousarray(resized))

    def luma(self) -> np.ndarray:
        """Per-pixel luma, round(0.299R + 0.587G + 0.114B), as (H, W) uint8."""
        rgb = self._data[:, :, :3].astype(np.float64)
        gray = np.floor(rgb @ LUMA_WEIGHTS + 0.5)
        return np.clip(gray, 0, 255).astype(np.uint8)

    def to_grayscale(self) -> "RasterImage":
        """Copy with R, G and B replaced by luma; alpha preserved."""
        gray = self.luma()
        out = self._data.copy()
        out[:, :, 0] = gray
        out[:, :, 1] = gray
        out[:, :, 2] = gray
        return RasterImage(self.width, self.height, out)

    def scan(self, box: BoundingBox, visitor: Callable[[int, int, int], None]):
        """Call visitor(x, y, idx) row-major over box; idx is the flat RGBA offset."""
        if not box.fits_within(self.width, self.height):
            raise InvalidRegion(
                f"Box {box.to_dict()} exceeds {self.width}x{self.height} image"
            )
        for y in range(box.y, box.bottom):
            row = y * self.width
            for x in range(box.x, box.right):
                visitor(x, y, (row + x) << 2)

    def __repr__(self):
        return f"RasterImage({self.width}x{self.height})"
