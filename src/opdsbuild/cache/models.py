# src/opdsbuild/cache/models.py — v1
"""Cache domain models: FileIdentity, CacheRecord.

FileIdentity is the live, mutable view of one path during a run.
CacheRecord is the versioned shape written to the persisted cache file.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict

# Bump whenever CacheRecord changes shape; older files are then ignored.
CACHE_SCHEMA_VERSION = 2


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Return the absolute, normalized form used as the cache key."""
    return os.path.normpath(os.path.abspath(os.fspath(path)))


class FileIdentity(BaseModel):
    """Last-known state of one filesystem path."""

    path: str
    exists: bool = False
    size: int = -1
    mtime_ns: int = -1
    checksum_known: bool = False
    checksum: str = ""
    loaded_from_prior_run: bool = False
    # "WxH" box a derived image was generated for; "" for ordinary files.
    derived_box: str = ""
    # Set by ChecksumCache.confirm(); never persisted.
    changed: bool = True

    @property
    def name(self) -> str:
        return Path(self.path).name

    def to_record(self) -> CacheRecord:
        return CacheRecord(
            path=self.path,
            exists=self.exists,
            size=self.size,
            mtime_ns=self.mtime_ns,
            checksum_known=self.checksum_known,
            checksum=self.checksum,
            derived_box=self.derived_box,
        )


class CacheRecord(BaseModel):
    """One persisted FileIdentity, one JSON object per line."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[2] = CACHE_SCHEMA_VERSION
    path: str
    exists: bool
    size: int
    mtime_ns: int
    checksum_known: bool
    checksum: str
    derived_box: str = ""

    def to_identity(self) -> FileIdentity:
        return FileIdentity(
            path=self.path,
            exists=self.exists,
            size=self.size,
            mtime_ns=self.mtime_ns,
            checksum_known=self.checksum_known,
            checksum=self.checksum,
            derived_box=self.derived_box,
            loaded_from_prior_run=True,
            changed=False,
        )
