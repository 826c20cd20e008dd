# src/opdsbuild/storage/assets.py — v1
"""Image asset deduplication for the catalog copy stage.

Several logical references (books, sections) may point at the same physical
image. The first registration of a key wins; later registrations return the
asset already held.
"""

from __future__ import annotations

import logging
import threading

from opdsbuild.cache.models import FileIdentity
from opdsbuild.storage.layout import ASSET_FILENAMES

logger = logging.getLogger(__name__)


class InvalidAssetError(ValueError):
    """Raised when a file is not one of the recognised generated-asset kinds."""


def validate_asset(asset: FileIdentity) -> None:
    if asset.name not in ASSET_FILENAMES:
        raise InvalidAssetError(
            f"Unexpected name {asset.name!r} when trying to add image asset "
            f"(expected one of {sorted(ASSET_FILENAMES)})"
        )


class AssetDeduplicator:
    """Maps asset keys to the single file representing them in the output."""

    def __init__(self) -> None:
        self._assets: dict[str, FileIdentity] = {}
        self._lock = threading.Lock()

    def register_if_absent(self, key: str, asset: FileIdentity) -> FileIdentity:
        """Register asset under key unless the key is already taken.

        Returns:
            The asset now associated with key.

        Raises:
            InvalidAssetError: If the asset's file name is not a known kind.
        """
        validate_asset(asset)
        with self._lock:
            existing = self._assets.setdefault(key, asset)
        if existing is not asset:
            logger.debug("Asset %r already registered as %s", key, existing.path)
        return existing

    def get(self, key: str) -> FileIdentity | None:
        with self._lock:
            return self._assets.get(key)

    def all_entries(self) -> dict[str, FileIdentity]:
        """Snapshot of key -> asset for the copy stage."""
        with self._lock:
            return dict(self._assets)

    def __len__(self) -> int:
        with self._lock:
            return len(self._assets)
