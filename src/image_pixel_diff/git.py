from __future__ import annotations

import logging
import os
import select
import shutil
import subprocess
import threading
from pathlib import Path, PurePosixPath
from typing import Protocol

from .errors import ResourceLimitExceeded, RetrievalNotFound
from .settings import get_settings

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
MAX_STDERR_BYTES = 64 * 1024


class VersionResolver(Protocol):
    def resolve(
        self,
        repository_root: str | Path,
        relative_path: str,
        revision: str,
        cancel: threading.Event | None = None,
    ) -> bytes | None: ...


def _find_git_binary(name: str) -> str:
    found = shutil.which(name)
    if found:
        return found
    raise FileNotFoundError(f"git binary not found: {name}")


def normalize_relative_path(relative_path: str) -> str | None:
    """Forward-slash form of a repository-relative path, or None if it leaves the repository."""
    normalized = relative_path.replace("\\", "/")
    path = PurePosixPath(normalized)
    if not normalized or path.is_absolute() or ".." in path.parts:
        return None
    if len(normalized) > 1 and normalized[1] == ":":
        # windows drive letter
        return None
    posix = path.as_posix()
    return None if posix == "." else posix


def find_repository_root(path: str | Path, git_binary: str | None = None) -> Path | None:
    path = Path(path)
    cwd = path if path.is_dir() else path.parent
    try:
        binary = _find_git_binary(git_binary or get_settings().git_binary)
        proc = subprocess.run(
            [binary, "rev-parse", "--show-toplevel"],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError):
        logger.warning("git: could not locate repository root", extra={"path": str(path)})
        return None
    if proc.returncode != 0:
        return None
    root = proc.stdout.decode("utf-8", "replace").strip()
    return Path(root) if root else None


class GitVersionResolver:
    """Reads file content at a revision with `git show`.

    Nothing in the repository is modified: no checkout, no index writes.
    """

    def __init__(
        self,
        git_binary: str | None = None,
        max_blob_bytes: int | None = None,
        poll_interval: float = 0.1,
    ) -> None:
        settings = get_settings()
        self._git_binary = git_binary or settings.git_binary
        self._max_blob_bytes = max_blob_bytes or settings.max_blob_bytes
        self._poll_interval = poll_interval

    def resolve(
        self,
        repository_root: str | Path,
        relative_path: str,
        revision: str,
        cancel: threading.Event | None = None,
    ) -> bytes | None:
        log_extra = {
            "repository_root": str(repository_root),
            "path": relative_path,
            "revision": revision,
        }
        try:
            content = self._read_blob(repository_root, relative_path, revision, cancel)
        except ResourceLimitExceeded as e:
            logger.warning(
                "git: historical version exceeds size limit",
                extra={**log_extra, "max_blob_bytes": e.limit},
            )
            return None
        except RetrievalNotFound as e:
            logger.info("git: no version at revision (%s)", e, extra=log_extra)
            return None
        except (OSError, ValueError, subprocess.SubprocessError):
            logger.warning("git: failed to run git", exc_info=True, extra=log_extra)
            return None

        logger.info("git: resolved %d bytes", len(content), extra=log_extra)
        return content

    def _read_blob(
        self,
        repository_root: str | Path,
        relative_path: str,
        revision: str,
        cancel: threading.Event | None,
    ) -> bytes:
        if not revision or revision.startswith("-"):
            raise RetrievalNotFound(f"invalid revision {revision!r}")
        path = normalize_relative_path(relative_path)
        if path is None:
            raise RetrievalNotFound(f"path {relative_path!r} is outside the repository")
        if not Path(repository_root).is_dir():
            raise RetrievalNotFound(f"{repository_root} is not a directory")

        binary = _find_git_binary(self._git_binary)
        # argument list, no shell: spaces and quotes in paths need no escaping
        proc = subprocess.Popen(
            [binary, "show", f"{revision}:{path}"],
            cwd=repository_root,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        try:
            content, stderr = self._communicate(proc, cancel)
            returncode = proc.wait(timeout=5)
        finally:
            self._kill_process(proc)

        if returncode != 0:
            reason = stderr.decode("utf-8", "replace").strip().splitlines()
            raise RetrievalNotFound(reason[0] if reason else f"git exited with {returncode}")
        return content

    def _communicate(
        self, proc: subprocess.Popen[bytes], cancel: threading.Event | None
    ) -> tuple[bytes, bytes]:
        """Drain stdout and stderr together until both close.

        stdout is capped at `max_blob_bytes`; stderr beyond MAX_STDERR_BYTES is
        read and dropped so git never blocks on a full pipe.
        """
        if proc.stdout is None or proc.stderr is None:
            raise RetrievalNotFound("git produced no output stream")
        out_fd = proc.stdout.fileno()
        open_fds = [out_fd, proc.stderr.fileno()]
        chunks: list[bytes] = []
        errors: list[bytes] = []
        total = 0
        error_total = 0
        while open_fds:
            if cancel is not None and cancel.is_set():
                raise RetrievalNotFound("retrieval cancelled")
            readable, _, _ = select.select(open_fds, [], [], self._poll_interval)
            for fd in readable:
                chunk = os.read(fd, READ_CHUNK_SIZE)
                if not chunk:
                    open_fds.remove(fd)
                elif fd == out_fd:
                    total += len(chunk)
                    if total > self._max_blob_bytes:
                        raise ResourceLimitExceeded(self._max_blob_bytes)
                    chunks.append(chunk)
                elif error_total < MAX_STDERR_BYTES:
                    errors.append(chunk)
                    error_total += len(chunk)
        return b"".join(chunks), b"".join(errors)

    def _kill_process(self, proc: subprocess.Popen[bytes]) -> None:
        if proc.poll() is None:
            proc.kill()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                pass
        for stream in (proc.stdout, proc.stderr):
            if stream:
                try:
                    stream.close()
                except OSError:
                    pass
