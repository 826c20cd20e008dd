# src/opdsbuild/imaging/base_image_generator.py — v1
"""Abstract image derivation interface (thumbnails, resized covers)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class BaseImageGenerator(ABC):
    """Derives a scaled image from a source image."""

    @abstractmethod
    def generate(self, source: Path, target: Path, width: int, height: int) -> None:
        """Write a copy of source scaled to fit width x height into target.

        Must be safe to call from several worker threads at once for
        different targets.
        """
