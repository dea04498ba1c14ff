from __future__ import annotations

from .codec import decode, encode
from .compare import compare_files, compare_images, compare_images_batch, compare_with_revision
from .errors import (
    DecodeError,
    ImageDiffError,
    PreconditionViolation,
    ResourceLimitExceeded,
    RetrievalNotFound,
)
from .git import GitVersionResolver, VersionResolver
from .normalize import normalize
from .pixelmatch import pixelmatch
from .types import ComparisonResult, DiffOptions, DiffResult, EncodedImage, ImageBuffer

__all__ = (
    "ComparisonResult",
    "DecodeError",
    "DiffOptions",
    "DiffResult",
    "EncodedImage",
    "GitVersionResolver",
    "ImageBuffer",
    "ImageDiffError",
    "PreconditionViolation",
    "ResourceLimitExceeded",
    "RetrievalNotFound",
    "VersionResolver",
    "compare_files",
    "compare_images",
    "compare_images_batch",
    "compare_with_revision",
    "decode",
    "encode",
    "normalize",
    "pixelmatch",
)
