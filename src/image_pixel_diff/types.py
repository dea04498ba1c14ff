from __future__ import annotations

import base64
from pathlib import Path, PurePosixPath
from typing import Annotated

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .settings import ImageDiffSettings

Channel = Annotated[int, Field(ge=0, le=255)]
RGB = tuple[Channel, Channel, Channel]


class ImageBuffer(BaseModel):
    """Row-major RGBA pixels, four bytes per pixel."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(ge=0)
    height: int = Field(ge=0)
    data: bytes

    @model_validator(mode="after")
    def _check_length(self) -> ImageBuffer:
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"pixel data is {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height} RGBA"
            )
        return self

    @classmethod
    def blank(cls, width: int, height: int) -> ImageBuffer:
        return cls(width=width, height=height, data=bytes(width * height * 4))

    @classmethod
    def from_array(cls, arr: np.ndarray) -> ImageBuffer:
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise ValueError(f"expected an (h, w, 4) array, got {arr.shape}")
        height, width = arr.shape[:2]
        data = np.ascontiguousarray(arr, dtype=np.uint8).tobytes()
        return cls(width=width, height=height, data=data)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def as_array(self) -> np.ndarray:
        # frombuffer over bytes is read-only, which keeps the buffer immutable
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4)

    def pixel(self, x: int, y: int) -> tuple[int, int, int, int]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}x{self.height}")
        pos = (y * self.width + x) * 4
        r, g, b, a = self.data[pos : pos + 4]
        return r, g, b, a


class RepositoryContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    root: Path
    relative_path: str

    @classmethod
    def for_file(cls, root: str | Path, file_path: str | Path) -> RepositoryContext:
        """Context for `file_path`; relative paths are taken from the working directory."""
        root = Path(root).resolve()
        relative = Path(file_path).resolve().relative_to(root)
        return cls(root=root, relative_path=PurePosixPath(*relative.parts).as_posix())


class DiffOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    include_anti_aliasing: bool = False
    alpha: float = Field(default=0.1, ge=0.0, le=1.0)
    diff_color: RGB = (255, 0, 0)
    anti_alias_color: RGB | None = None
    # drawn instead of diff_color where the second image is darker
    diff_color_alt: RGB | None = None
    # transparent background instead of a dimmed copy of the current image
    diff_mask: bool = False

    @classmethod
    def from_settings(cls, settings: ImageDiffSettings) -> DiffOptions:
        return cls(
            threshold=settings.threshold,
            include_anti_aliasing=settings.include_aa,
            alpha=settings.alpha,
        )


class ComparisonRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: ImageBuffer
    previous: ImageBuffer
    current_label: str = "Current"
    previous_label: str = "Previous"


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    diff_image: ImageBuffer | None
    differing_pixel_count: int = Field(ge=0)


class EncodedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class ComparisonResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: EncodedImage
    previous: EncodedImage | None = None
    diff: EncodedImage | None = None
    differing_pixel_count: int | None = None
    total_pixels: int | None = None
    current_label: str = "Current"
    previous_label: str = "Previous"
    before_width: int | None = None
    before_height: int | None = None
    after_width: int | None = None
    after_height: int | None = None
    warnings: list[str] = []

    @property
    def diff_score(self) -> float | None:
        if self.differing_pixel_count is None or not self.total_pixels:
            return None
        return self.differing_pixel_count / self.total_pixels
