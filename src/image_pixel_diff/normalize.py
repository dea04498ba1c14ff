from __future__ import annotations

import numpy as np

from .types import ImageBuffer


def _pad(image: ImageBuffer, width: int, height: int) -> ImageBuffer:
    if image.size == (width, height):
        return image
    canvas = np.zeros((height, width, 4), dtype=np.uint8)
    if image.area:
        canvas[: image.height, : image.width] = image.as_array()
    return ImageBuffer.from_array(canvas)


def normalize(a: ImageBuffer, b: ImageBuffer) -> tuple[ImageBuffer, ImageBuffer]:
    """Place both images top-left on transparent canvases of their common bounding size.

    Nothing is scaled or cropped. Area outside an image's own extent is left
    as all-zero RGBA, so it compares as "blank" against the other image.
    """
    width = max(a.width, b.width)
    height = max(a.height, b.height)
    return _pad(a, width, height), _pad(b, width, height)
