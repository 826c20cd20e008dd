# src/opdsbuild/imaging/pillow_generator.py — v1
"""Pillow-based image generator."""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image

from opdsbuild.imaging.base_image_generator import BaseImageGenerator

logger = logging.getLogger(__name__)


class PillowImageGenerator(BaseImageGenerator):
    """Scale covers down with Pillow, keeping the aspect ratio."""

    def __init__(self, quality: int = 85) -> None:
        self._quality = quality

    def generate(self, source: Path, target: Path, width: int, height: int) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with Image.open(source) as im:
            im = im.convert("RGB")
            im.thumbnail((width, height), Image.Resampling.LANCZOS)
            im.save(target, "JPEG", quality=self._quality)
        logger.debug("Generated %s (%dx%d) from %s", target.name, width, height, source)
