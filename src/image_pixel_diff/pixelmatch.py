from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from .errors import PreconditionViolation
from .types import RGB, DiffOptions, DiffResult, ImageBuffer

# largest YIQ delta two RGBA pixels can have
MAX_YIQ_DELTA = 35215


def _rgb2y(r, g, b):
    return r * 0.29889531 + g * 0.58662247 + b * 0.11448223


def _rgb2i(r, g, b):
    return r * 0.59597799 - g * 0.27417610 - b * 0.32180189


def _rgb2q(r, g, b):
    return r * 0.21147017 - g * 0.52261711 + b * 0.31114694


def _blend(c, a):
    # composite onto white
    return 255 + (c - 255) * a


def _background(k):
    # checkerboard behind translucent pixels; k is the byte offset of the pixel
    rb = 48 + 159 * (k % 2)
    gb = 48 + 159 * ((k // 1.618033988749895) % 2)
    bb = 48 + 159 * ((k // 2.618033988749895) % 2)
    return rb, gb, bb


def color_deltas(a: ImageBuffer, b: ImageBuffer) -> np.ndarray:
    """Signed YIQ distance per pixel; negative where `b` is darker than `a`.

    Translucent pixels are compared over a checkerboard rather than a flat
    colour, so transparent padding does not read as matching white content.
    """
    arr1 = a.as_array().astype(np.float64)
    arr2 = b.as_array().astype(np.float64)
    a1 = arr1[..., 3]
    a2 = arr2[..., 3]
    da = a1 - a2
    k = np.arange(a.area, dtype=np.float64).reshape(a.height, a.width) * 4
    # exact for opaque pairs: the background term drops out
    dr, dg, db = (
        (arr1[..., c] * a1 - arr2[..., c] * a2 - bg * da) / 255
        for c, bg in enumerate(_background(k))
    )
    y = _rgb2y(dr, dg, db)
    i = _rgb2i(dr, dg, db)
    q = _rgb2q(dr, dg, db)
    delta = 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q
    return np.where(y > 0, -delta, delta)


def _luma_delta(data: bytes, k: int, m: int) -> float:
    r1, g1, b1, a1 = data[k : k + 4]
    r2, g2, b2, a2 = data[m : m + 4]
    if a1 == a2 and r1 == r2 and g1 == g2 and b1 == b2:
        return 0.0
    dr, dg, db = r1 - r2, g1 - g2, b1 - b2
    if a1 < 255 or a2 < 255:
        da = a1 - a2
        rb, gb, bb = _background(k)
        dr = (r1 * a1 - r2 * a2 - rb * da) / 255
        dg = (g1 * a1 - g2 * a2 - gb * da) / 255
        db = (b1 * a1 - b2 * a2 - bb * da) / 255
    return _rgb2y(dr, dg, db)


def _window(img: ImageBuffer, x: int, y: int) -> tuple[int, int, int, int, int]:
    x0 = max(x - 1, 0)
    y0 = max(y - 1, 0)
    x2 = min(x + 1, img.width - 1)
    y2 = min(y + 1, img.height - 1)
    # pixels on the image border count as having one identical neighbour
    on_edge = 1 if x == x0 or x == x2 or y == y0 or y == y2 else 0
    return x0, y0, x2, y2, on_edge


def _has_many_siblings(img: ImageBuffer, x1: int, y1: int) -> bool:
    x0, y0, x2, y2, zeroes = _window(img, x1, y1)
    data = img.data
    pos = (y1 * img.width + x1) * 4
    pixel = data[pos : pos + 4]
    for x in range(x0, x2 + 1):
        for y in range(y0, y2 + 1):
            if x == x1 and y == y1:
                continue
            pos2 = (y * img.width + x) * 4
            if data[pos2 : pos2 + 4] == pixel:
                zeroes += 1
            if zeroes > 2:
                return True
    return False


def is_antialiased(img: ImageBuffer, x1: int, y1: int, other: ImageBuffer) -> bool:
    """Whether the pixel at (x1, y1) of `img` looks like edge smoothing.

    Looks at the 3x3 neighbourhood only: the pixel must have at most two
    identical neighbours, and both a darker and a brighter neighbour, with one
    of those extremes sitting in a flat area in both images.
    """
    x0, y0, x2, y2, zeroes = _window(img, x1, y1)
    data = img.data
    pos = (y1 * img.width + x1) * 4
    min_delta = 0.0
    max_delta = 0.0
    min_xy: tuple[int, int] | None = None
    max_xy: tuple[int, int] | None = None

    for x in range(x0, x2 + 1):
        for y in range(y0, y2 + 1):
            if x == x1 and y == y1:
                continue
            delta = _luma_delta(data, pos, (y * img.width + x) * 4)
            if delta == 0:
                zeroes += 1
                if zeroes > 2:
                    return False
            elif delta < min_delta:
                min_delta = delta
                min_xy = (x, y)
            elif delta > max_delta:
                max_delta = delta
                max_xy = (x, y)

    if min_xy is None or max_xy is None:
        return False

    return (_has_many_siblings(img, *min_xy) and _has_many_siblings(other, *min_xy)) or (
        _has_many_siblings(img, *max_xy) and _has_many_siblings(other, *max_xy)
    )


def _gray_background(img: ImageBuffer, alpha: float) -> np.ndarray:
    arr = img.as_array().astype(np.float64)
    luma = _rgb2y(arr[..., 0], arr[..., 1], arr[..., 2])
    val = np.floor(_blend(luma, alpha * arr[..., 3] / 255))
    out = np.empty((img.height, img.width, 4), dtype=np.uint8)
    out[..., :3] = np.clip(val, 0, 255).astype(np.uint8)[..., np.newaxis]
    out[..., 3] = 255
    return out


def _paint(flat: np.ndarray, indices: Sequence[int], color: RGB | None) -> None:
    if not indices or color is None:
        return
    flat[np.asarray(indices, dtype=np.intp)] = (*color, 255)


def pixelmatch(a: ImageBuffer, b: ImageBuffer, options: DiffOptions | None = None) -> DiffResult:
    """Compare two equally sized images pixel by pixel.

    The diff image is a dimmed grayscale copy of `a` (or a transparent canvas
    in mask mode) with differing pixels painted in the highlight colour.
    Raises PreconditionViolation when the sizes differ; callers normalize
    first.
    """
    if options is None:
        options = DiffOptions()
    if a.size != b.size:
        raise PreconditionViolation(f"image sizes do not match: {a.size} vs {b.size}")

    if options.diff_mask:
        output = np.zeros((a.height, a.width, 4), dtype=np.uint8)
    else:
        output = _gray_background(a, options.alpha)

    if a.area == 0 or a.data == b.data:
        return DiffResult(diff_image=ImageBuffer.from_array(output), differing_pixel_count=0)

    max_delta = MAX_YIQ_DELTA * options.threshold * options.threshold
    deltas = color_deltas(a, b).ravel()
    candidates = np.flatnonzero(np.abs(deltas) > max_delta)

    detect_aa = not options.include_anti_aliasing or options.anti_alias_color is not None
    diff_idx: list[int] = []
    alt_idx: list[int] = []
    aa_idx: list[int] = []

    for idx in candidates.tolist():
        y, x = divmod(idx, a.width)
        if detect_aa and (is_antialiased(a, x, y, b) or is_antialiased(b, x, y, a)):
            aa_idx.append(idx)
        elif options.diff_color_alt is not None and deltas[idx] < 0:
            alt_idx.append(idx)
        else:
            diff_idx.append(idx)

    count = len(diff_idx) + len(alt_idx)
    flat = output.reshape(-1, 4)
    if options.include_anti_aliasing:
        count += len(aa_idx)
        _paint(flat, aa_idx, options.anti_alias_color)
    elif not options.diff_mask:
        _paint(flat, aa_idx, options.anti_alias_color)
    _paint(flat, diff_idx, options.diff_color)
    _paint(flat, alt_idx, options.diff_color_alt)

    return DiffResult(diff_image=ImageBuffer.from_array(output), differing_pixel_count=count)
