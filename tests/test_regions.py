"""Tests for candidate region proposal."""

import numpy as np
import pytest

from item_recognition.config import RecognitionConfig
from item_recognition.edges import detect_edges
from item_recognition.raster import BoundingBox, RasterImage
from item_recognition.regions import (
    DetectionRegion, RegionProposer, RegionType, merge_regions,
)


def _region(x, y, w, h, source="test"):
    return DetectionRegion(BoundingBox(x, y, w, h), RegionType.UNKNOWN, 0.0, source)


@pytest.fixture
def proposer():
    return RegionProposer()


class TestMergeRegions:
    """Tests for overlap-based deduplication."""

    def test_heavy_overlap_merges(self):
        merged = merge_regions([_region(0, 0, 100, 100, "first"), _region(10, 10, 100, 100)])
        assert len(merged) == 1
        assert merged[0].source == "first"

    def test_contained_box_merges(self):
        merged = merge_regions([_region(0, 0, 200, 200), _region(50, 50, 20, 20)])
        assert len(merged) == 1

    def test_light_overlap_kept(self):
        merged = merge_regions([_region(0, 0, 100, 100), _region(80, 0, 100, 100)])
        assert len(merged) == 2

    def test_exactly_half_is_not_merged(self):
        merged = merge_regions([_region(0, 0, 100, 100), _region(50, 0, 100, 100)])
        assert len(merged) == 2


class TestPropose:
    """Tests for the combined proposal pipeline."""

    def test_uniform_image_falls_back_to_full_frame(self, proposer, uniform_screenshot):
        image = RasterImage.from_array(uniform_screenshot)
        regions = proposer.propose(image)
        assert len(regions) == 1
        assert regions[0].box.to_dict() == {"x": 0, "y": 0, "width": 800, "height": 600}
        assert regions[0].source == "fallback"
        assert regions[0].type == RegionType.UNKNOWN

    def test_regions_within_bounds(self, proposer, inventory_screenshot):
        image = RasterImage.from_array(inventory_screenshot)
        for region in proposer.propose(image, config=RecognitionConfig(max_region_area_ratio=1.0)):
            assert region.box.fits_within(image.width, image.height)

    def test_noise_regions_within_bounds(self, proposer, noise_image):
        image = RasterImage.from_array(noise_image)
        for region in proposer.propose(image, config=RecognitionConfig(max_region_area_ratio=1.0,
                                                                       min_region_area=100)):
            assert region.box.fits_within(image.width, image.height)

    def test_area_filter(self, proposer, inventory_screenshot):
        image = RasterImage.from_array(inventory_screenshot)
        config = RecognitionConfig(min_region_area=2000, max_region_area_ratio=0.3)
        regions = proposer.propose(image, config=config)
        non_fallback = [r for r in regions if r.source != "fallback"]
        for region in non_fallback:
            assert 2000 <= region.box.area <= 0.3 * image.area

    def test_finds_items_in_inventory(self, proposer, inventory_screenshot):
        image = RasterImage.from_array(inventory_screenshot)
        regions = proposer.propose(image, config=RecognitionConfig(min_region_area=500))
        assert any(r.source != "fallback" for r in regions)

    def test_strategies_can_be_disabled(self, proposer, inventory_screenshot):
        image = RasterImage.from_array(inventory_screenshot)
        config = RecognitionConfig(enable_edge_detection=False, enable_color_analysis=False,
                                   min_region_area=500)
        sources = {r.source for r in proposer.propose(image, config=config)}
        assert sources <= {"slot_grid", "fallback"}

    def test_merged_output_has_no_heavy_overlap(self, proposer, inventory_screenshot):
        image = RasterImage.from_array(inventory_screenshot)
        regions = proposer.propose(image, config=RecognitionConfig(min_region_area=100,
                                                                   max_region_area_ratio=1.0))
        for i, a in enumerate(regions):
            for b in regions[i + 1:]:
                assert a.box.overlap_ratio(b.box) <= 0.5


class TestStrategies:
    """Tests for the individual detectors."""

    def test_slot_grid_transparent_background(self, proposer):
        rgba = np.zeros((200, 200, 4), dtype=np.uint8)
        rgba[10:74, 10:74] = [180, 180, 180, 255]
        regions = proposer.slot_grid_regions(RasterImage.from_array(rgba))
        assert [r.box.to_dict() for r in regions] == [{"x": 12, "y": 12, "width": 60, "height": 60}]
        assert regions[0].type == RegionType.INVENTORY_SLOT
        assert regions[0].score == pytest.approx(1.0)

    def test_slot_grid_ignores_flat_opaque_image(self, proposer, uniform_screenshot):
        assert proposer.slot_grid_regions(RasterImage.from_array(uniform_screenshot)) == []

    def test_color_strategy_finds_saturated_block(self, proposer, inventory_screenshot):
        regions = proposer.color_regions(RasterImage.from_array(inventory_screenshot))
        assert regions
        orange = BoundingBox(20, 20, 100, 100)
        assert any(r.box.overlap_ratio(orange) > 0.5 for r in regions)
        assert all(r.source == "color_saturation" for r in regions)

    def test_color_strategy_ignores_gray(self, proposer, textured_raster):
        assert proposer.color_regions(textured_raster) == []

    def test_edge_strategy_on_dense_edges(self, proposer, noise_image):
        regions = proposer.edge_contour_regions(detect_edges(RasterImage.from_array(noise_image)))
        assert regions
        assert regions[0].box.to_dict() == {"x": 0, "y": 0, "width": 160, "height": 160}
        for region in regions:
            assert region.box.fits_within(200, 200)
            # growth is capped at 0.8 of the image extent
            assert region.box.width <= 160
            assert region.box.height <= 160
            assert region.box.width > 30 and region.box.height > 30

    def test_edge_strategy_on_flat_map(self, proposer):
        assert proposer.edge_contour_regions(np.zeros((100, 100), dtype=np.uint8)) == []
