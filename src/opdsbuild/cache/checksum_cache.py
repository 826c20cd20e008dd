# src/opdsbuild/cache/checksum_cache.py — v1
"""Run-scoped cache of FileIdentity entries with a persisted JSON Lines file.

The cache makes checksum computation pay-once-per-content-version instead of
once-per-run. Entries are keyed by normalized absolute path. The persisted
file is rewritten at the end of a run and only ever holds entries that were
confirmed during that run.

Map mutation is guarded by a lock so workers inside a stage can share the
cache; file reads and writes happen outside it.
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
from pathlib import Path

from pydantic import ValidationError

from opdsbuild.cache.checksum import compute_checksum, file_signature
from opdsbuild.cache.models import CacheRecord, FileIdentity, normalize_path

logger = logging.getLogger(__name__)

DEFAULT_CACHE_FILENAME = "opdsbuild.cache"


def is_persistable(identity: FileIdentity) -> bool:
    """Whether an entry may be written to the persisted cache.

    Requires a known checksum, confirmation during this run, and a file that
    still exists.
    """
    return (
        identity.checksum_known
        and not identity.loaded_from_prior_run
        and identity.exists
    )


class ChecksumCache:
    """Keyed store of FileIdentity for one catalog-generation run."""

    def __init__(self, cache_filename: str = DEFAULT_CACHE_FILENAME) -> None:
        self._cache_filename = cache_filename
        self._cache_file: Path | None = None
        self._entries: dict[str, FileIdentity] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure_location(self, folder: str | os.PathLike[str]) -> None:
        """Fix the folder holding the persisted cache file for this run."""
        self._cache_file = Path(folder) / self._cache_filename
        logger.info("Checksum cache file set to %s", self._cache_file)

    @property
    def cache_file(self) -> Path | None:
        return self._cache_file

    def initialize(self) -> int:
        """Drop every live entry, then load the persisted file if configured."""
        with self._lock:
            self._entries = {}
        return self.load()

    def reset(self) -> None:
        """Forget all entries and the configured location."""
        with self._lock:
            self._entries = {}
        self._cache_file = None

    # ------------------------------------------------------------------
    # Map access
    # ------------------------------------------------------------------

    def lookup(self, path: str | os.PathLike[str]) -> FileIdentity | None:
        key = normalize_path(path)
        with self._lock:
            found = self._entries.get(key)
        logger.debug("lookup in_cache=%s: %s", found is not None, key)
        return found

    def get_or_create(self, path: str | os.PathLike[str]) -> FileIdentity:
        """Return the entry for path, creating it with an unknown checksum."""
        key = normalize_path(path)
        with self._lock:
            identity = self._entries.get(key)
            if identity is None:
                identity = FileIdentity(path=key)
                self._entries[key] = identity
                logger.debug("Added cache entry: %s", key)
        return identity

    def remove(self, path: str | os.PathLike[str]) -> None:
        key = normalize_path(path)
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is None:
            logger.debug("Remove cache entry (not found): %s", key)
        else:
            logger.debug("Removed cache entry: %s", key)

    def entries(self) -> list[FileIdentity]:
        """Snapshot of all live entries."""
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        key = normalize_path(path)
        with self._lock:
            return key in self._entries

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(self, path: str | os.PathLike[str]) -> FileIdentity:
        """Bring the entry for path up to date with the filesystem.

        A known checksum is trusted when size and modification time are
        unchanged; otherwise the file is hashed again. Afterwards the entry
        counts as confirmed for this run and ``changed`` tells whether the
        content differs from what was previously known.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        identity = self.get_or_create(path)
        signature = file_signature(identity.path)

        if not signature.exists:
            identity.exists = False
            identity.size = -1
            identity.mtime_ns = -1
            identity.checksum_known = False
            identity.checksum = ""
            identity.derived_box = ""
            identity.loaded_from_prior_run = False
            identity.changed = True
            return identity

        unchanged = (
            identity.checksum_known
            and identity.size == signature.size
            and identity.mtime_ns == signature.mtime_ns
        )
        if unchanged:
            if identity.loaded_from_prior_run:
                identity.changed = False
                identity.loaded_from_prior_run = False
                logger.debug("Checksum confirmed from cache: %s", identity.path)
            identity.exists = True
            return identity

        previous = identity.checksum if identity.checksum_known else None
        checksum = compute_checksum(identity.path)
        identity.exists = True
        identity.size = signature.size
        identity.mtime_ns = signature.mtime_ns
        identity.checksum = checksum
        identity.checksum_known = True
        identity.loaded_from_prior_run = False
        identity.changed = previous != checksum
        if identity.changed:
            identity.derived_box = ""
        logger.debug("Checksum computed (changed=%s): %s", identity.changed, identity.path)
        return identity

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Merge the persisted cache file into the live map.

        Live entries win over persisted records for the same path. A file
        written under another record schema is ignored as a whole; any
        other read failure also leaves the map untouched.

        Returns:
            Number of entries added.
        """
        if self._cache_file is None:
            logger.debug("Skipping cache load, cache location not set")
            return 0
        if not self._cache_file.exists():
            logger.debug("Skipping cache load, %s not present", self._cache_file)
            return 0

        logger.info("Loading checksum cache from %s", self._cache_file)
        records: list[CacheRecord] = []
        try:
            with self._cache_file.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line:
                        records.append(CacheRecord.model_validate_json(line))
        except (ValidationError, UnicodeDecodeError) as e:
            logger.info(
                "Cache ignored, record format changed since it was written: %s",
                e.__class__.__name__,
            )
            return 0
        except OSError as e:
            logger.warning("Exception trying to read cache %s: %s", self._cache_file, e)
            return 0

        loaded = 0
        with self._lock:
            for record in records:
                key = normalize_path(record.path)
                if key in self._entries:
                    # Only reachable when entries were created before loading.
                    logger.debug("Entry already in cache, ignoring persisted record: %s", key)
                    continue
                identity = record.to_identity()
                identity.path = key
                self._entries[key] = identity
                loaded += 1

        logger.info("Cache entries loaded: %d (records read: %d)", loaded, len(records))
        return loaded

    def save(self) -> int:
        """Write every persistable entry to the cache file.

        Failures are logged and swallowed; a missing or partial cache only
        costs recomputation on the next run.

        Returns:
            Number of entries written.
        """
        if self._cache_file is None:
            logger.debug("Skipping cache save, cache location not set")
            return 0

        lines: list[str] = []
        ignored = 0
        for identity in self.entries():
            if is_persistable(identity):
                lines.append(identity.to_record().model_dump_json())
            else:
                ignored += 1

        tmp_file = self._cache_file.with_name(self._cache_file.name + ".tmp")
        try:
            self._cache_file.parent.mkdir(parents=True, exist_ok=True)
            with tmp_file.open("w", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
            os.replace(tmp_file, self._cache_file)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_file.unlink(missing_ok=True)
            logger.warning("Exception trying to write cache %s: %s", self._cache_file, e)
            return 0

        logger.info(
            "Checksum cache saved to %s: %d saved, %d ignored",
            self._cache_file, len(lines), ignored,
        )
        return len(lines)

    def delete_all(self) -> None:
        """Delete the persisted cache file and clear the configured location."""
        if self._cache_file is None:
            logger.debug("Skipping cache delete, cache location not set")
            return
        try:
            self._cache_file.unlink(missing_ok=True)
            logger.info("Deleted checksum cache file %s", self._cache_file)
        except OSError as e:
            logger.warning("Failed to delete cache file %s: %s", self._cache_file, e)
        self._cache_file = None
