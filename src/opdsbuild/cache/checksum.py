# src/opdsbuild/cache/checksum.py — v1
"""Content checksums and cheap file signatures.

The checksum is the expensive operation the cache exists to avoid; the
signature (size + modification time) is what decides whether a known
checksum can be trusted without reading the file again.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import NamedTuple

_READ_BLOCK = 1024 * 1024


class FileSignature(NamedTuple):
    exists: bool
    size: int
    mtime_ns: int


MISSING = FileSignature(exists=False, size=-1, mtime_ns=-1)


def file_signature(path: str | os.PathLike[str]) -> FileSignature:
    """Stat a path. Directories and missing paths report as missing."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return MISSING
    if not Path(path).is_file():
        return MISSING
    return FileSignature(exists=True, size=st.st_size, mtime_ns=st.st_mtime_ns)


def compute_checksum(path: str | os.PathLike[str]) -> str:
    """SHA-256 of the file contents, read in blocks.

    Raises:
        OSError: If the file cannot be read.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(_READ_BLOCK), b""):
            digest.update(block)
    return digest.hexdigest()
