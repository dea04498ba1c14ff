from __future__ import annotations

import io
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError
from .types import ImageBuffer

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

DIFFABLE_FORMATS = frozenset({"PNG"})
DISPLAYABLE_FORMATS = frozenset({"PNG", "JPEG", "GIF", "BMP", "WEBP"})

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"})

_MIME_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "WEBP": "image/webp",
}


def is_image_path(path: str | Path) -> bool:
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def mime_type_for(fmt: str) -> str:
    return _MIME_TYPES.get(fmt.upper(), "application/octet-stream")


def _open(data: bytes) -> Image.Image:
    if not data:
        raise DecodeError("image data is empty")
    try:
        img = Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(f"unrecognized image data: {e}") from e
    try:
        img.load()
    except (OSError, ValueError, SyntaxError) as e:
        img.close()
        raise DecodeError(f"truncated or corrupt image data: {e}") from e
    return img


def probe(data: bytes) -> tuple[str, tuple[int, int]]:
    """Format name and size of displayable image bytes."""
    with _open(data) as img:
        fmt = img.format or ""
        size = img.size
    if fmt not in DISPLAYABLE_FORMATS:
        raise DecodeError(f"unsupported image format: {fmt or 'unknown'}")
    return fmt, size


def decode(data: bytes) -> ImageBuffer:
    if not data.startswith(PNG_SIGNATURE):
        # still a decode error, but tell JPEG and friends apart from junk
        try:
            fmt, _ = probe(data)
        except DecodeError:
            raise DecodeError("invalid PNG signature") from None
        raise DecodeError(f"{fmt} images can be displayed but not diffed")

    with _open(data) as img:
        width, height = img.size
        if width == 0 or height == 0:
            raise DecodeError(f"image has zero area ({width}x{height})")
        if img.mode == "RGBA":
            pixels = img.tobytes()
        else:
            with img.convert("RGBA") as rgba:
                pixels = rgba.tobytes()
    return ImageBuffer(width=width, height=height, data=pixels)


def encode(buffer: ImageBuffer, fmt: str = "PNG") -> bytes:
    if fmt.upper() not in DIFFABLE_FORMATS:
        raise ValueError(f"cannot encode to {fmt}, only {sorted(DIFFABLE_FORMATS)}")
    if buffer.area == 0:
        raise ValueError(f"cannot encode a zero-area image ({buffer.width}x{buffer.height})")
    buf = io.BytesIO()
    with Image.frombytes("RGBA", buffer.size, buffer.data) as img:
        img.save(buf, format="PNG")
    return buf.getvalue()
