from __future__ import annotations

import io
import shutil
import subprocess
import threading
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from image_pixel_diff.codec import decode
from image_pixel_diff.compare import (
    DIFF_FAILED,
    NO_PREVIOUS_VERSION,
    compare_files,
    compare_images,
    compare_images_batch,
    compare_with_revision,
)
from image_pixel_diff.types import DiffOptions

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


def _png(width: int, height: int, color: tuple[int, int, int, int]) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def _jpeg(width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (0, 128, 0)).save(buf, format="JPEG")
    return buf.getvalue()


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(
        [
            "git",
            "-c",
            "user.name=t",
            "-c",
            "user.email=t@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


class _FakeResolver:
    def __init__(self, content: bytes | None) -> None:
        self.content = content
        self.calls: list[tuple[Path, str, str, threading.Event | None]] = []

    def resolve(self, repository_root, relative_path, revision, cancel=None):
        self.calls.append((Path(repository_root), relative_path, revision, cancel))
        return self.content


class TestCompareImages:
    def test_all_pixels_differ(self):
        result = compare_images(_png(10, 10, RED), _png(10, 10, BLUE), DiffOptions(threshold=0.1))
        assert result.differing_pixel_count == 100
        assert result.total_pixels == 100
        assert result.diff_score == 1.0
        assert result.diff is not None
        diff = decode(result.diff.data)
        assert diff.data == bytes(RED) * 100
        assert result.warnings == []

    def test_no_previous_version(self):
        current = _png(10, 10, RED)
        result = compare_images(current, None)
        assert result.current.data == current
        assert result.current.mime_type == "image/png"
        assert (result.current.width, result.current.height) == (10, 10)
        assert result.previous is None
        assert result.diff is None
        assert result.differing_pixel_count is None
        assert result.warnings == [NO_PREVIOUS_VERSION]

    def test_different_sizes_pad_with_blank(self):
        result = compare_images(_png(20, 10, RED), _png(10, 10, RED))
        assert result.differing_pixel_count == 100
        assert result.total_pixels == 200
        assert result.previous is not None and result.diff is not None
        current = decode(result.current.data)
        previous = decode(result.previous.data)
        assert current.size == previous.size == (20, 10)
        assert previous.pixel(15, 5) == (0, 0, 0, 0)
        diff = decode(result.diff.data)
        assert diff.pixel(15, 5) == RED
        assert diff.pixel(5, 5) != RED
        assert (result.before_width, result.before_height) == (10, 10)
        assert (result.after_width, result.after_height) == (20, 10)

    def test_padding_differs_from_white_content(self):
        result = compare_images(_png(20, 10, WHITE), _png(10, 10, WHITE))
        assert result.differing_pixel_count == 100
        assert result.diff is not None
        diff = decode(result.diff.data)
        assert diff.pixel(15, 5) == RED
        assert diff.pixel(5, 5) != RED

    def test_padding_differs_from_translucent_content(self):
        translucent = (255, 255, 255, 128)
        result = compare_images(_png(20, 10, translucent), _png(10, 10, translucent))
        assert result.differing_pixel_count == 100

    def test_jpeg_previous_is_display_only(self):
        previous = _jpeg(10, 10)
        result = compare_images(_png(10, 10, RED), previous)
        assert result.previous is not None
        assert result.previous.data == previous
        assert result.previous.mime_type == "image/jpeg"
        assert result.diff is None
        assert result.differing_pixel_count is None
        assert len(result.warnings) == 1
        assert "Previous image cannot be diffed" in result.warnings[0]

    def test_both_undiffable(self):
        result = compare_images(_jpeg(4, 4), b"garbage", current_label="Left", previous_label="Right")
        assert result.current.mime_type == "image/jpeg"
        assert result.previous is not None
        assert result.previous.mime_type == "application/octet-stream"
        assert result.diff is None
        assert len(result.warnings) == 3

    def test_identical(self):
        png = _png(6, 4, BLUE)
        result = compare_images(png, png)
        assert result.differing_pixel_count == 0
        assert result.diff is not None

    def test_diff_failure_degrades_to_display(self):
        with patch("image_pixel_diff.compare.pixelmatch", side_effect=RuntimeError("boom")):
            result = compare_images(_png(3, 3, RED), _png(3, 3, BLUE))
        assert result.previous is not None
        assert result.diff is None
        assert result.warnings == [DIFF_FAILED]

    def test_data_uris(self):
        result = compare_images(_png(2, 2, RED), _png(2, 2, BLUE))
        assert result.current.data_uri.startswith("data:image/png;base64,")
        assert result.diff is not None
        assert result.diff.data_uri.startswith("data:image/png;base64,")


class TestCompareWithRevision:
    def test_uses_resolver(self, tmp_path: Path):
        path = tmp_path / "sub dir" / "a.png"
        path.parent.mkdir()
        path.write_bytes(_png(5, 5, RED))
        resolver = _FakeResolver(_png(5, 5, BLUE))

        result = compare_with_revision(path, "HEAD~1", repository_root=tmp_path, resolver=resolver)

        assert len(resolver.calls) == 1
        root, relative_path, revision, cancel = resolver.calls[0]
        assert root == tmp_path.resolve()
        assert relative_path == "sub dir/a.png"
        assert revision == "HEAD~1"
        assert cancel is None
        assert result.current_label == "Current"
        assert result.previous_label == "Previous Commit (HEAD~1)"
        assert result.differing_pixel_count == 25

    def test_head_labels(self, tmp_path: Path):
        path = tmp_path / "a.png"
        path.write_bytes(_png(2, 2, RED))
        result = compare_with_revision(
            path, "HEAD", repository_root=tmp_path, resolver=_FakeResolver(_png(2, 2, RED))
        )
        assert result.current_label == "Working Tree"
        assert result.previous_label == "HEAD"
        assert result.differing_pixel_count == 0

    def test_missing_history(self, tmp_path: Path):
        path = tmp_path / "a.png"
        path.write_bytes(_png(2, 2, RED))
        result = compare_with_revision(
            path, "HEAD~1", repository_root=tmp_path, resolver=_FakeResolver(None)
        )
        assert result.previous is None
        assert result.warnings == [
            "Cannot retrieve previous version (HEAD~1) of this image from Git"
        ]

    def test_file_outside_repository(self, tmp_path: Path):
        repo_root = tmp_path / "repo"
        repo_root.mkdir()
        path = tmp_path / "a.png"
        path.write_bytes(_png(2, 2, RED))
        resolver = _FakeResolver(_png(2, 2, RED))
        result = compare_with_revision(path, "HEAD", repository_root=repo_root, resolver=resolver)
        assert resolver.calls == []
        assert result.previous is None

    def test_missing_current_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            compare_with_revision(tmp_path / "missing.png", resolver=_FakeResolver(None))

    @requires_git
    def test_against_real_repository(self, tmp_path: Path):
        path = tmp_path / "logo.png"
        path.write_bytes(_png(10, 10, BLUE))
        _git(tmp_path, "init", "-q")
        _git(tmp_path, "add", "logo.png")
        _git(tmp_path, "commit", "-q", "-m", "add logo")
        path.write_bytes(_png(10, 10, RED))

        result = compare_with_revision(path, "HEAD")
        assert result.previous_label == "HEAD"
        assert result.differing_pixel_count == 100

        result = compare_with_revision(path, "HEAD~1")
        assert result.previous is None
        assert result.warnings == [
            "Cannot retrieve previous version (HEAD~1) of this image from Git"
        ]

    @requires_git
    def test_relative_path_from_subdirectory(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        sub = tmp_path / "sub"
        sub.mkdir()
        (sub / "a.png").write_bytes(_png(4, 4, BLUE))
        _git(tmp_path, "init", "-q")
        _git(tmp_path, "add", "sub/a.png")
        _git(tmp_path, "commit", "-q", "-m", "add a")
        (sub / "a.png").write_bytes(_png(4, 4, RED))
        monkeypatch.chdir(sub)

        result = compare_with_revision("a.png", "HEAD")

        assert result.previous is not None
        assert result.warnings == []
        assert result.differing_pixel_count == 16


class TestCompareFiles:
    def test_right_is_current(self, tmp_path: Path):
        left = tmp_path / "left.png"
        right = tmp_path / "right.png"
        left.write_bytes(_png(4, 4, RED))
        right.write_bytes(_png(8, 4, RED))
        result = compare_files(left, right)
        assert result.current_label == "Current"
        assert result.previous_label == "Previous"
        assert result.after_width == 8
        assert result.before_width == 4
        assert result.differing_pixel_count == 16

    def test_missing(self, tmp_path: Path):
        right = tmp_path / "right.png"
        right.write_bytes(_png(1, 1, RED))
        with pytest.raises(FileNotFoundError):
            compare_files(tmp_path / "left.png", right)


class TestCompareImagesBatch:
    def test_results_in_order(self):
        results = compare_images_batch(
            [
                (_png(3, 3, RED), _png(3, 3, RED)),
                (_png(3, 3, RED), _png(3, 3, BLUE)),
                (_png(3, 3, RED), None),
            ],
            max_workers=2,
        )
        assert [r.differing_pixel_count for r in results] == [0, 9, None]

    def test_empty(self):
        assert compare_images_batch([]) == []
