from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .codec import decode, encode, mime_type_for, probe
from .errors import DecodeError
from .git import GitVersionResolver, VersionResolver, find_repository_root
from .normalize import normalize
from .pixelmatch import pixelmatch
from .settings import get_settings
from .types import (
    ComparisonRequest,
    ComparisonResult,
    DiffOptions,
    EncodedImage,
    ImageBuffer,
    RepositoryContext,
)

logger = logging.getLogger(__name__)

NO_PREVIOUS_VERSION = "No previous version of this image is available"
DIFF_FAILED = "Failed to generate diff image"


def revision_labels(revision: str) -> tuple[str, str]:
    if revision == "HEAD":
        return "Working Tree", "HEAD"
    return "Current", f"Previous Commit ({revision})"


def missing_version_message(revision: str) -> str:
    if revision == "HEAD":
        return "Cannot retrieve HEAD version of this image. This might be a new file."
    return f"Cannot retrieve previous version ({revision}) of this image from Git"


def _display_image(data: bytes, label: str, warnings: list[str]) -> EncodedImage:
    try:
        fmt, (width, height) = probe(data)
    except DecodeError as e:
        warnings.append(f"{label} image cannot be displayed: {e}")
        return EncodedImage(data=data, mime_type="application/octet-stream")
    return EncodedImage(data=data, mime_type=mime_type_for(fmt), width=width, height=height)


def _encode_png(image: ImageBuffer) -> EncodedImage:
    return EncodedImage(
        data=encode(image, "PNG"),
        mime_type="image/png",
        width=image.width,
        height=image.height,
    )


def _diff_request(
    request: ComparisonRequest,
    options: DiffOptions,
    warnings: list[str],
) -> ComparisonResult:
    current, previous = normalize(request.current, request.previous)
    result = pixelmatch(current, previous, options)
    width, height = current.size

    logger.info(
        "compare: diff complete, %d of %d pixels differ",
        result.differing_pixel_count,
        width * height,
        extra={"width": width, "height": height, "threshold": options.threshold},
    )

    return ComparisonResult(
        current=_encode_png(current),
        previous=_encode_png(previous),
        diff=_encode_png(result.diff_image) if result.diff_image is not None else None,
        differing_pixel_count=result.differing_pixel_count,
        total_pixels=width * height,
        current_label=request.current_label,
        previous_label=request.previous_label,
        before_width=request.previous.width,
        before_height=request.previous.height,
        after_width=request.current.width,
        after_height=request.current.height,
        warnings=warnings,
    )


def compare_images(
    current: bytes,
    previous: bytes | None,
    options: DiffOptions | None = None,
    current_label: str = "Current",
    previous_label: str = "Previous",
    missing_previous_message: str = NO_PREVIOUS_VERSION,
) -> ComparisonResult:
    """Build the display and diff artifacts for one pair of image versions.

    Missing or undecodable inputs degrade the result instead of failing:
    without a previous version only `current` is set, and when either side
    is not a diffable format both are returned as-is with no diff.
    """
    if options is None:
        options = DiffOptions.from_settings(get_settings())
    warnings: list[str] = []

    if previous is None:
        logger.info("compare: no previous version, showing current image only")
        warnings.append(missing_previous_message)
        return ComparisonResult(
            current=_display_image(current, current_label, warnings),
            current_label=current_label,
            previous_label=previous_label,
            warnings=warnings,
        )

    decoded: list[ImageBuffer] = []
    for label, data in ((current_label, current), (previous_label, previous)):
        try:
            decoded.append(decode(data))
        except DecodeError as e:
            logger.info("compare: %s image is not diffable (%s)", label, e)
            warnings.append(f"{label} image cannot be diffed: {e}")

    if len(decoded) == 2:
        request = ComparisonRequest(
            current=decoded[0],
            previous=decoded[1],
            current_label=current_label,
            previous_label=previous_label,
        )
        try:
            return _diff_request(request, options, warnings)
        except Exception:
            logger.exception(
                "compare: failed to diff images",
                extra={"current_size": request.current.size, "previous_size": request.previous.size},
            )
            warnings.append(DIFF_FAILED)

    return ComparisonResult(
        current=_display_image(current, current_label, warnings),
        previous=_display_image(previous, previous_label, warnings),
        current_label=current_label,
        previous_label=previous_label,
        warnings=warnings,
    )


def compare_with_revision(
    path: str | Path,
    revision: str | None = None,
    repository_root: str | Path | None = None,
    resolver: VersionResolver | None = None,
    options: DiffOptions | None = None,
    cancel: threading.Event | None = None,
) -> ComparisonResult:
    path = Path(path).resolve()
    if not path.is_file():
        raise FileNotFoundError(f"image not found: {path}")

    revision = revision or get_settings().default_revision
    current_label, previous_label = revision_labels(revision)
    current = path.read_bytes()

    root = Path(repository_root) if repository_root else find_repository_root(path)
    previous: bytes | None = None
    if root is None:
        logger.warning("compare: %s is not inside a git repository", path)
    else:
        try:
            context = RepositoryContext.for_file(root, path)
        except ValueError:
            logger.warning(
                "compare: file is outside the repository",
                extra={"path": str(path), "repository_root": str(root)},
            )
        else:
            if resolver is None:
                resolver = GitVersionResolver()
            previous = resolver.resolve(context.root, context.relative_path, revision, cancel)

    return compare_images(
        current,
        previous,
        options,
        current_label=current_label,
        previous_label=previous_label,
        missing_previous_message=missing_version_message(revision),
    )


def compare_files(
    left: str | Path,
    right: str | Path,
    options: DiffOptions | None = None,
) -> ComparisonResult:
    """Compare two files directly; `right` is treated as the current version."""
    left, right = Path(left), Path(right)
    for path in (left, right):
        if not path.is_file():
            raise FileNotFoundError(f"image not found: {path}")
    return compare_images(right.read_bytes(), left.read_bytes(), options)


def compare_images_batch(
    pairs: Sequence[tuple[bytes, bytes | None]],
    options: DiffOptions | None = None,
    max_workers: int | None = None,
) -> list[ComparisonResult]:
    if not pairs:
        return []
    workers = min(max_workers or get_settings().max_workers, len(pairs))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(
            executor.map(lambda pair: compare_images(pair[0], pair[1], options), pairs)
        )
