from __future__ import annotations


class ImageDiffError(Exception):
    pass


class RetrievalNotFound(ImageDiffError):
    """No historical version of the file could be read."""


class ResourceLimitExceeded(RetrievalNotFound):
    def __init__(self, limit: int) -> None:
        super().__init__(f"content exceeds {limit} bytes")
        self.limit = limit


class DecodeError(ImageDiffError, ValueError):
    """Bytes are malformed or not in a diffable format."""


class PreconditionViolation(ImageDiffError):
    pass
