from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import orjson
from pydantic import ValidationError

from .codec import is_image_path
from .compare import compare_files, compare_with_revision
from .settings import get_settings
from .types import ComparisonResult, DiffOptions

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
}


def _parse_rgb(value: str) -> tuple[int, int, int]:
    parts = value.split(",")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected R,G,B, got {value!r}")
    try:
        r, g, b = (int(part) for part in parts)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected integers in R,G,B, got {value!r}") from None
    return r, g, b


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="image-pixel-diff",
        description="Compare an image with a previous version and render a pixel diff.",
    )
    parser.add_argument("--threshold", type=float, default=settings.threshold)
    parser.add_argument("--include-aa", action="store_true", default=settings.include_aa)
    parser.add_argument("--alpha", type=float, default=settings.alpha)
    parser.add_argument("--diff-color", type=_parse_rgb, default=(255, 0, 0))
    parser.add_argument("--aa-color", type=_parse_rgb, default=None)
    parser.add_argument("--diff-mask", action="store_true")
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("--json", action="store_true", help="print the summary as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    rev = sub.add_parser("revision", help="compare a file with a git revision")
    rev.add_argument("path", type=Path)
    rev.add_argument("--revision", default=settings.default_revision)
    rev.add_argument("--repo", type=Path, default=None)

    files = sub.add_parser("files", help="compare two image files")
    files.add_argument("left", type=Path, help="previous version")
    files.add_argument("right", type=Path, help="current version")

    return parser


def _write_outputs(result: ComparisonResult, output_dir: Path) -> dict[str, str]:
    output_dir.mkdir(parents=True, exist_ok=True)
    written: dict[str, str] = {}
    for name, image in (
        ("current", result.current),
        ("previous", result.previous),
        ("diff", result.diff),
    ):
        if image is None:
            continue
        target = output_dir / f"{name}.{_EXTENSIONS.get(image.mime_type, 'bin')}"
        target.write_bytes(image.data)
        written[name] = str(target)
    return written


def _summary(result: ComparisonResult, written: dict[str, str]) -> dict[str, object]:
    return {
        "current_label": result.current_label,
        "previous_label": result.previous_label,
        "differing_pixel_count": result.differing_pixel_count,
        "total_pixels": result.total_pixels,
        "diff_score": result.diff_score,
        "has_previous": result.previous is not None,
        "has_diff": result.diff is not None,
        "files": written,
        "warnings": result.warnings,
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = DiffOptions(
            threshold=args.threshold,
            include_anti_aliasing=args.include_aa,
            alpha=args.alpha,
            diff_color=args.diff_color,
            anti_alias_color=args.aa_color,
            diff_mask=args.diff_mask,
        )
    except ValidationError as e:
        print(f"error: invalid diff options: {e.errors()[0]['msg']}", file=sys.stderr)
        return 2

    paths = [args.path] if args.command == "revision" else [args.left, args.right]
    for path in paths:
        if not is_image_path(path):
            print(f"error: not an image file: {path}", file=sys.stderr)
            return 2

    try:
        if args.command == "revision":
            result = compare_with_revision(
                args.path,
                revision=args.revision,
                repository_root=args.repo,
                options=options,
            )
        else:
            result = compare_files(args.left, args.right, options=options)
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    written = _write_outputs(result, args.output_dir) if args.output_dir else {}

    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)

    summary = _summary(result, written)
    if args.json:
        sys.stdout.write(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode() + "\n")
    else:
        print(f"{result.previous_label} -> {result.current_label}")
        if result.differing_pixel_count is None:
            print("no pixel diff available")
        else:
            print(f"{result.differing_pixel_count} of {result.total_pixels} pixels differ")
        for name, target in written.items():
            print(f"{name}: {target}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
