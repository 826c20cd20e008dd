# src/opdsbuild/storage/path_allocator.py — v1
"""Map logical catalog document names to output paths and relative URLs.

A document name such as ``"authors/author_12.xml"`` is split on the folder
separator; the folder is created under the output root the first time any
name in it is allocated, and the name -> folder mapping is memoized for the
run.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from urllib.parse import quote

from opdsbuild.storage.layout import (
    CURRENT_PATH_PREFIX,
    FOLDER_SEPARATOR,
    PARENT_PATH_PREFIX,
    split_document_name,
)

logger = logging.getLogger(__name__)


def url_encode(component: str) -> str:
    """Percent-encode one path component."""
    return quote(component, safe="")


class OutputPathAllocator:
    """Allocates catalog document paths under one output root."""

    def __init__(self, output_root: str | os.PathLike[str]) -> None:
        self._root = Path(output_root)
        self._folder_names: dict[str, str] = {}
        self._created: set[str] = set()
        self._lock = threading.Lock()

    @property
    def output_root(self) -> Path:
        return self._root

    def allocate(self, document_name: str) -> Path:
        """Return the output path for a document, creating its folder.

        Idempotent for the same name. An empty name is the output root.

        Raises:
            OSError: If the folder cannot be created.
        """
        folder, _ = split_document_name(document_name)
        with self._lock:
            needs_folder = folder not in self._created
            self._folder_names.setdefault(document_name, folder)
        if needs_folder:
            (self._root / folder).mkdir(parents=True, exist_ok=True)
            with self._lock:
                self._created.add(folder)
            logger.debug("Created catalog folder %r under %s", folder, self._root)
        if not document_name:
            return self._root
        return self._root / document_name

    def folder_name(self, document_name: str) -> str | None:
        """Memoized folder for a document, or None if never allocated."""
        with self._lock:
            return self._folder_names.get(document_name)

    def resolve(self, document_name: str, in_subdir: bool) -> str:
        """Allocate a document and return the URL used to link to it.

        Args:
            document_name: Logical catalog document name.
            in_subdir: Whether the *referencing* document lives in a
                sub-folder of the catalog.
        """
        folder = self.folder_name(document_name)
        if folder is None:
            self.allocate(document_name)
            folder = self.folder_name(document_name) or ""
        _, leaf = split_document_name(document_name)

        prefix = PARENT_PATH_PREFIX if in_subdir else CURRENT_PATH_PREFIX
        if folder:
            return prefix + url_encode(folder) + FOLDER_SEPARATOR + url_encode(leaf)
        return prefix + url_encode(leaf)

    def documents(self) -> dict[str, str]:
        """Snapshot of every allocated document name and its folder."""
        with self._lock:
            return dict(self._folder_names)
