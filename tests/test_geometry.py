import numpy as np
import pytest

from conftest import heatmap_with_blobs
from providers.types import HeatMap
from wordlens.core.codec import decode_detection
from wordlens.core.geometry import (
    GeometryParams,
    denormalize_rect,
    expand_rect,
    extract_bounding_boxes,
    normalize_rect,
    padding_offset,
    rect_to_shape,
    shape_to_rect,
)


def _heatmap(size, rects, value=1.0):
    return decode_detection(heatmap_with_blobs(size, rects, value))


def test_padding_offset():
    assert padding_offset(10, 10) == pytest.approx(4.5)
    assert padding_offset(0, 0) == 0.0


def test_expand_rect_pads_every_side():
    assert expand_rect(10, 10, 10, 10, (100, 100)) == pytest.approx((5.5, 5.5, 24.5, 24.5))


def test_expand_rect_clamps_to_bounds():
    x1, y1, x2, y2 = expand_rect(0, 95, 10, 5, (100, 50))
    assert x1 == 0.0
    assert y2 == 100.0
    assert x2 <= 50.0 and y1 >= 0.0


def test_single_blob_box():
    shapes = extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20)]))
    assert len(shapes) == 1
    rect = denormalize_rect(shape_to_rect(shapes[0]), (100, 100))
    assert rect == pytest.approx((1, 1, 39, 39), abs=1.5)


def test_shape_corners_are_clockwise_from_top_left():
    shape = extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20)]))[0]
    (tlx, tly), (trx, try_), (brx, bry), (blx, bly) = shape.coordinates
    assert tlx == blx and trx == brx
    assert tly == try_ and bly == bry
    assert tlx < trx and tly < bly


def test_small_components_are_dropped():
    shapes = extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 3, 2), (50, 50, 2, 30), (70, 70, 10, 10)]))
    assert len(shapes) == 1
    x1, y1, _, _ = denormalize_rect(shape_to_rect(shapes[0]), (100, 100))
    assert x1 > 50 and y1 > 50


def test_threshold_is_strict():
    assert extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20)], value=77 / 255)) == []
    assert len(extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20)], value=78 / 255))) == 1


def test_threshold_is_configurable():
    params = GeometryParams(threshold=200)
    assert extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20)], value=0.5), params=params) == []


def test_downsampled_heatmap_is_scaled_to_input_size():
    # a 50x50 map from a 100x100 input: blob (5, 5, 10, 10) covers (10, 10, 20, 20) of the input
    shapes = extract_bounding_boxes(_heatmap((50, 50), [(5, 5, 10, 10)]), input_size=(100, 100))
    assert len(shapes) == 1
    rect = denormalize_rect(shape_to_rect(shapes[0]), (100, 100))
    assert rect == pytest.approx((1, 1, 39, 39), abs=2.5)


def test_non_square_heatmap_keeps_orientation():
    shapes = extract_bounding_boxes(_heatmap((60, 120), [(80, 10, 30, 10)]))
    x1, y1, x2, y2 = shape_to_rect(shapes[0])
    assert x1 > 0.5 and y2 < 0.5


def test_ids_are_contour_indices_in_reverse_order():
    shapes = extract_bounding_boxes(_heatmap((100, 100), [(10, 10, 20, 20), (60, 60, 20, 20)]))
    ids = [s.id for s in shapes]
    assert sorted(ids) == [0, 1]
    assert ids == sorted(ids, reverse=True)


def test_coordinates_stay_in_unit_square():
    rng = np.random.default_rng(7)
    prob = (rng.random((128, 128)) > 0.7).astype(np.float32)
    prob[:20, :20] = 1.0
    prob[-20:, -20:] = 1.0
    for shape in extract_bounding_boxes(decode_detection(prob)):
        for x, y in shape.coordinates:
            assert 0.0 <= x <= 1.0 and 0.0 <= y <= 1.0


def test_empty_heatmap_yields_no_boxes():
    empty = HeatMap(pixels=np.zeros((0, 0), dtype=np.uint8), width=0, height=0)
    assert extract_bounding_boxes(empty) == []
    assert extract_bounding_boxes(_heatmap((64, 64), [])) == []


@pytest.mark.parametrize("rect", [(0.1, 0.2, 0.3, 0.4), (0.0, 0.0, 1.0, 1.0)])
def test_shape_rect_conversion(rect):
    assert shape_to_rect(rect_to_shape(3, rect)) == rect
    assert normalize_rect(denormalize_rect(rect, (40, 80)), (40, 80)) == pytest.approx(rect)
