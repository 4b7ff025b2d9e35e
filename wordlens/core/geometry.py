from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

import cv2
import numpy as np

from providers.types import AnnotationShape, HeatMap

logger = logging.getLogger(__name__)

Rect = Tuple[float, float, float, float]  # x1, y1, x2, y2


@dataclass(frozen=True)
class GeometryParams:
    threshold: int = 77
    kernel_size: int = 2
    min_box_size: int = 2
    padding_ratio: float = 1.8


def padding_offset(width: float, height: float, ratio: float = 1.8) -> float:
    """Uniform dilation for a box: ratio * area / (2 * (w + h))."""
    if width + height <= 0:
        return 0.0
    return ratio * width * height / (2.0 * (width + height))


def _clamp(value: float, upper: float) -> float:
    return max(0.0, min(value, upper))


def expand_rect(x: float, y: float, w: float, h: float, bounds: Tuple[int, int], ratio: float = 1.8) -> Rect:
    """Pad an (x, y, w, h) box on every side and clamp it to (height, width) bounds."""
    bound_h, bound_w = bounds
    offset = padding_offset(w, h, ratio)
    return (
        _clamp(x - offset, bound_w),
        _clamp(y - offset, bound_h),
        _clamp(x + w + offset, bound_w),
        _clamp(y + h + offset, bound_h),
    )


def normalize_rect(rect: Rect, size: Tuple[int, int]) -> Rect:
    height, width = size
    x1, y1, x2, y2 = rect
    return x1 / width, y1 / height, x2 / width, y2 / height


def denormalize_rect(rect: Rect, size: Tuple[int, int]) -> Rect:
    height, width = size
    x1, y1, x2, y2 = rect
    return x1 * width, y1 * height, x2 * width, y2 * height


def rect_to_shape(shape_id: int, rect: Rect) -> AnnotationShape:
    x1, y1, x2, y2 = rect
    return AnnotationShape(id=shape_id, coordinates=[(x1, y1), (x2, y1), (x2, y2), (x1, y2)])


def shape_to_rect(shape: AnnotationShape) -> Rect:
    xs = [p[0] for p in shape.coordinates]
    ys = [p[1] for p in shape.coordinates]
    return min(xs), min(ys), max(xs), max(ys)


def binarize(heatmap: HeatMap, params: GeometryParams) -> np.ndarray:
    src = np.ascontiguousarray(heatmap.pixels, dtype=np.uint8)
    if src.ndim == 3:
        src = cv2.cvtColor(src, cv2.COLOR_RGBA2GRAY if src.shape[2] == 4 else cv2.COLOR_RGB2GRAY)
    _, binary = cv2.threshold(src, params.threshold, 255, cv2.THRESH_BINARY)
    kernel = np.ones((params.kernel_size, params.kernel_size), np.uint8)
    return cv2.morphologyEx(binary, cv2.MORPH_OPEN, kernel)


def extract_bounding_boxes(
    heatmap: HeatMap,
    input_size: Tuple[int, int] | None = None,
    params: GeometryParams | None = None,
) -> List[AnnotationShape]:
    """Find word boxes in a detection heatmap.

    Boxes are scaled from heatmap pixels to the detection input size (the two
    differ when the graph downsamples), padded, clamped and normalized to the
    unit square. The list comes back in reverse contour-discovery order; no
    geometric ordering is implied.
    """
    params = params or GeometryParams()
    if heatmap.width <= 0 or heatmap.height <= 0:
        return []
    input_h, input_w = input_size or (heatmap.height, heatmap.width)
    sx = input_w / heatmap.width
    sy = input_h / heatmap.height

    binary = binarize(heatmap, params)
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    shapes: List[AnnotationShape] = []
    for i, contour in enumerate(contours):
        x, y, w, h = cv2.boundingRect(contour)
        if w <= params.min_box_size or h <= params.min_box_size:
            continue
        rect = expand_rect(x * sx, y * sy, w * sx, h * sy, (input_h, input_w), params.padding_ratio)
        shapes.insert(0, rect_to_shape(i, normalize_rect(rect, (input_h, input_w))))
    logger.debug(f"Extracted {len(shapes)} boxes from {len(contours)} contours")
    return shapes
