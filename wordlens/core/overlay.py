from __future__ import annotations

import colorsys
from typing import Dict, Iterable, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw

from providers.types import AnnotationShape, Word

_GOLDEN_RATIO = 0.618033988749895


def word_color(shape_id: int) -> str:
    """Stable, well-spread hex color for a shape id."""
    hue = (shape_id * _GOLDEN_RATIO) % 1.0
    r, g, b = colorsys.hsv_to_rgb(hue, 0.75, 0.9)
    return "#{:02x}{:02x}{:02x}".format(int(r * 255), int(g * 255), int(b * 255))


def _rgb(color: str) -> Tuple[int, int, int]:
    color = color.lstrip("#")
    return int(color[0:2], 16), int(color[2:4], 16), int(color[4:6], 16)


def shape_polygon(shape: AnnotationShape, size: Tuple[int, int]) -> list[Tuple[float, float]]:
    width, height = size
    return [(x * width, y * height) for x, y in shape.coordinates]


def render_overlay(
    image: np.ndarray | Image.Image,
    shapes: Sequence[AnnotationShape],
    words: Iterable[Word] = (),
    outline_width: int = 2,
) -> Image.Image:
    """Draw the shape layer over the image.

    Shapes of inactive words get a translucent fill (color + 0x33 alpha); the
    active word's shape is left unfilled with a heavier outline.
    """
    base = image if isinstance(image, Image.Image) else Image.fromarray(image)
    base = base.convert("RGBA")
    by_id: Dict[int, Word] = {w.id: w for w in words}
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    for shape in shapes:
        word = by_id.get(shape.id)
        color = _rgb(word.color if word else word_color(shape.id))
        polygon = shape_polygon(shape, base.size)
        if word is not None and word.is_active:
            draw.polygon(polygon, outline=(*color, 255), width=outline_width + 2)
        else:
            draw.polygon(polygon, fill=(*color, 0x33), outline=(*color, 255), width=outline_width)
    return Image.alpha_composite(base, overlay).convert("RGB")
