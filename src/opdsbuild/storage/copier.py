# src/opdsbuild/storage/copier.py — v1
"""Checksum-aware file copy into the published tree.

Unlike cache persistence, copy failures are not contained: a file that
cannot be copied leaves the published catalog inconsistent.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from opdsbuild.cache.checksum import file_signature

if TYPE_CHECKING:
    from opdsbuild.cache.checksum_cache import ChecksumCache

logger = logging.getLogger(__name__)


def copy_if_changed(src: Path, dst: Path, cache: ChecksumCache) -> bool:
    """Copy src to dst unless dst already holds identical content.

    Returns:
        True if the file was copied, False if the copy was skipped.

    Raises:
        FileNotFoundError: If src does not exist.
        OSError: If the copy fails.
    """
    source = cache.confirm(src)
    if not source.exists:
        raise FileNotFoundError(f"Source file missing: {src}")

    target = cache.confirm(dst)
    if target.exists and target.checksum == source.checksum:
        logger.debug("Unchanged, not copying %s", dst)
        return False

    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(str(src), str(dst))

    # The copy has the source content; record it without hashing again.
    signature = file_signature(dst)
    target.exists = signature.exists
    target.size = signature.size
    target.mtime_ns = signature.mtime_ns
    target.checksum = source.checksum
    target.checksum_known = signature.exists
    target.loaded_from_prior_run = False
    target.changed = True
    logger.debug("Copied %s -> %s", src, dst)
    return True
