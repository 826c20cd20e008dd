# src/opdsbuild/metadata/base_format_processor.py — v1
"""Abstract hook for reprocessing book files whose content changed."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class BaseFormatProcessor(ABC):
    """Updates metadata embedded in a book file (e.g. an EPUB's OPF)."""

    @abstractmethod
    def accepts(self, path: Path) -> bool:
        """Whether this processor handles the file's format."""

    @abstractmethod
    def process(self, path: Path) -> None:
        """Rewrite the embedded metadata of path in place."""
