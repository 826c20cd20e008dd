# src/opdsbuild/storage/layout.py — v1
"""Output tree conventions.

Catalog document names use FOLDER_SEPARATOR to split an optional folder from
the leaf name. Links between documents are relative: a document in a
sub-folder reaches others through PARENT_PATH_PREFIX, a top-level document
through CURRENT_PATH_PREFIX.
"""

from __future__ import annotations

from pathlib import Path

FOLDER_SEPARATOR = "/"
PARENT_PATH_PREFIX = "../"
CURRENT_PATH_PREFIX = "./"
SECURITY_SEPARATOR = "_"

INITIAL_DOCUMENT = "index.xml"
FEED_EXTENSION = ".xml"
IMAGES_FOLDER = "images"

# Generated and original image files a catalog may reference.
THUMBNAIL_FILENAME = "c2o_thumbnail.jpg"
RESIZED_COVER_FILENAME = "c2o_resizedcover.jpg"
COVER_FILENAME = "cover.jpg"
ASSET_FILENAMES = frozenset({THUMBNAIL_FILENAME, RESIZED_COVER_FILENAME, COVER_FILENAME})

# Folders holding one feed per group.
TAGS_FOLDER = "tags"
AUTHORS_FOLDER = "authors"
SERIES_FOLDER = "series"
CUSTOM_FOLDER = "custom"


def split_document_name(document_name: str) -> tuple[str, str]:
    """Split a document name into (folder, leaf). Folder is "" at the root."""
    folder, sep, leaf = document_name.partition(FOLDER_SEPARATOR)
    if not sep:
        return "", document_name
    return folder, leaf


def book_folder(library_root: Path, book_path: str) -> Path:
    return library_root / book_path


def cover_path(library_root: Path, book_path: str) -> Path:
    return book_folder(library_root, book_path) / COVER_FILENAME


def catalog_target(target_folder: Path, catalog_folder_name: str) -> Path:
    """Folder the generated catalog is published to inside the target."""
    return target_folder / catalog_folder_name
