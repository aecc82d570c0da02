"""
Exception types raised by the recognition pipeline.

Only DecodeError is ever surfaced to callers of RecognitionEngine, and even
then as an empty result rather than a raised exception. InvalidRegion is
isolated per region, and CacheUnavailable degrades to recomputing.
"""


class RecognitionError(Exception):
    """Base class for all recognition pipeline errors."""


class DecodeError(RecognitionError):
    """Image bytes could not be decoded into a raster."""


class InvalidRegion(RecognitionError, ValueError):
    """A bounding box is zero-area or does not fit inside its image."""


class OutOfBounds(RecognitionError, IndexError):
    """Pixel access outside the image buffer."""


class CacheUnavailable(RecognitionError):
    """Content hashing or the result store failed."""
