"""Shared test fixtures for item recognition tests."""

import numpy as np
import cv2
import pytest

from item_recognition.catalog import ReferenceCatalog, ReferenceItem
from item_recognition.features import extract_features
from item_recognition.raster import RasterImage


def encode_png(image_np):
    """Encode an RGB or RGBA uint8 array as PNG bytes."""
    if image_np.ndim == 3 and image_np.shape[2] == 4:
        bgr = cv2.cvtColor(image_np, cv2.COLOR_RGBA2BGRA)
    else:
        bgr = cv2.cvtColor(image_np, cv2.COLOR_RGB2BGR)
    ok, encoded = cv2.imencode(".png", bgr)
    assert ok
    return encoded.tobytes()


def make_item(item_id, features, **kwargs):
    """Reference item with the given features and placeholder metadata."""
    return ReferenceItem(
        id=item_id,
        name=kwargs.pop("name", item_id.replace("-", " ").title()),
        category=kwargs.pop("category", "Test Items"),
        rarity=kwargs.pop("rarity", "common"),
        aliases=tuple(kwargs.pop("aliases", ())),
        tags=tuple(kwargs.pop("tags", ())),
        features=features,
        **kwargs,
    )


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def textured_image():
    """Generate a 200x200 checkerboard (strong edges and texture)."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 200
    for y in range(0, 200, 20):
        for x in range(0, 200, 20):
            if (x // 20 + y // 20) % 2 == 0:
                img[y:y+20, x:x+20] = [50, 50, 50]
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def uniform_screenshot():
    """800x600 flat dark-gray screenshot with nothing on it."""
    return np.full((600, 800, 3), 40, dtype=np.uint8)


@pytest.fixture
def inventory_screenshot():
    """
    Dark 320x256 inventory with two item icons.

    A bright orange block at (20, 20) and a checkerboard block at
    (180, 110), both 100x100.
    """
    img = np.full((256, 320, 3), 25, dtype=np.uint8)
    img[20:120, 20:120] = [230, 120, 20]
    for y in range(110, 210, 10):
        for x in range(180, 280, 10):
            if (x // 10 + y // 10) % 2 == 0:
                img[y:y+10, x:x+10] = [220, 220, 220]
    return img


@pytest.fixture
def textured_raster(textured_image):
    return RasterImage.from_array(textured_image)


@pytest.fixture
def reference_catalog():
    """The shipped reference dataset."""
    return ReferenceCatalog.load()


@pytest.fixture
def synthetic_catalog(textured_image, red_square_image, blue_circle_image):
    """Catalog whose entries are the features of the fixture images."""
    return ReferenceCatalog([
        make_item("checker", extract_features(RasterImage.from_array(textured_image)),
                  category="Barter Items", aliases=("chess board",), tags=("pattern",)),
        make_item("red-square", extract_features(RasterImage.from_array(red_square_image)),
                  category="Barter Items", tags=("red",)),
        make_item("blue-circle", extract_features(RasterImage.from_array(blue_circle_image)),
                  category="Electronics", tags=("blue",)),
    ], version="test")
