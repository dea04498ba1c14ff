from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_BLOB_BYTES = 10 * 1024 * 1024


class ImageDiffSettings(BaseSettings):
    git_binary: str = "git"
    max_blob_bytes: int = Field(default=MAX_BLOB_BYTES, gt=0)
    default_revision: str = "HEAD~1"

    threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    include_aa: bool = False
    alpha: float = Field(default=0.1, ge=0.0, le=1.0)

    max_workers: int = Field(default=4, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_DIFF_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> ImageDiffSettings:
    return ImageDiffSettings()
