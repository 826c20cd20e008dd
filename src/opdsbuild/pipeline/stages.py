# src/opdsbuild/pipeline/stages.py — v1
"""Named build stages in their fixed execution order."""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    READ_DATABASE = "read-database"
    BUILD_TAGS = "build-tags"
    BUILD_AUTHORS = "build-authors"
    BUILD_SERIES = "build-series"
    BUILD_RECENT = "build-recent"
    BUILD_RATED = "build-rated"
    BUILD_ALL_BOOKS = "build-all-books"
    BUILD_FEATURED = "build-featured"
    BUILD_CUSTOM_CATALOGS = "build-custom-catalogs"
    BUILD_THUMBNAILS = "build-thumbnails"
    BUILD_COVERS = "build-covers"
    REPROCESS_FORMAT_METADATA = "reprocess-format-metadata"
    BUILD_INDEX = "build-index"
    COPY_LIBRARY = "copy-library"
    COPY_CATALOG = "copy-catalog"
    FINISH = "finish"


# Enum iteration order is definition order.
STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


class StageStatus(str, Enum):
    """What a stage reports back to the run loop."""

    COMPLETED = "completed"
    STOPPED = "stopped"
