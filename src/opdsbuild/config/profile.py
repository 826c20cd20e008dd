# src/opdsbuild/config/profile.py — v1
"""Catalog profile: the resolved per-catalog options a build consumes.

Profiles are stored as JSON. The generated security code is written back to
the profile so catalog URLs stay stable between runs.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class CatalogProfile(BaseModel):
    """Options for one catalog."""

    name: str = "default"
    library_root: Path = Path(".")
    catalog_folder_name: str = "_catalog"
    target_folder: Path | None = None
    catalog_title: str = "Calibre library"

    # Filename obfuscation
    crypt_filenames: bool = False
    security_code: str = ""

    # Content selection
    tags_to_ignore: list[str] = Field(default_factory=list)
    forbidden_tags: str = ""
    include_books_with_no_tag: bool = True
    featured_tags: str = ""
    custom_catalogs: dict[str, str] = Field(default_factory=dict)
    book_details_custom_columns: list[str] = Field(default_factory=list)
    max_recent_books: int = 50

    # Images
    cover_resize: bool = False
    thumbnail_width: int = 100
    thumbnail_height: int = 144
    cover_width: int = 550
    cover_height: int = 800

    @field_validator("tags_to_ignore")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid tag pattern {pattern!r}: {e}") from e
        return v

    @field_validator("max_recent_books", "thumbnail_width", "thumbnail_height",
                     "cover_width", "cover_height")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


def load_profile(path: Path) -> CatalogProfile:
    """Load a profile, or return defaults if the file does not exist."""
    path = Path(path).expanduser()
    if not path.exists():
        logger.info("Profile %s not found, using defaults", path)
        return CatalogProfile()
    return CatalogProfile.model_validate_json(path.read_text(encoding="utf-8"))


def save_profile(profile: CatalogProfile, path: Path) -> None:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(profile.model_dump_json(indent=2), encoding="utf-8")
