# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides a small on-disk Calibre library (metadata.db, book files, covers),
sample domain records and a recording progress callback.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path

import pytest
from PIL import Image

from opdsbuild.config.profile import CatalogProfile
from opdsbuild.core.models import Author, Book, BookFile, CustomColumnType, Series, Tag
from opdsbuild.tracking.base_progress import BaseProgressCallback

_SCHEMA = """
CREATE TABLE books (id INTEGER PRIMARY KEY, title TEXT, sort TEXT, path TEXT,
                    timestamp TEXT, series_index REAL, has_cover INTEGER);
CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT, sort TEXT);
CREATE TABLE books_authors_link (id INTEGER PRIMARY KEY, book INTEGER, author INTEGER);
CREATE TABLE tags (id INTEGER PRIMARY KEY, name TEXT);
CREATE TABLE books_tags_link (id INTEGER PRIMARY KEY, book INTEGER, tag INTEGER);
CREATE TABLE series (id INTEGER PRIMARY KEY, name TEXT);
CREATE TABLE books_series_link (id INTEGER PRIMARY KEY, book INTEGER, series INTEGER);
CREATE TABLE ratings (id INTEGER PRIMARY KEY, rating INTEGER);
CREATE TABLE books_ratings_link (id INTEGER PRIMARY KEY, book INTEGER, rating INTEGER);
CREATE TABLE data (id INTEGER PRIMARY KEY, book INTEGER, format TEXT, name TEXT,
                   uncompressed_size INTEGER);
CREATE TABLE custom_columns (id INTEGER PRIMARY KEY, label TEXT, name TEXT, datatype TEXT);
CREATE TABLE custom_column_1 (id INTEGER PRIMARY KEY, value TEXT);
CREATE TABLE books_custom_column_1_link (id INTEGER PRIMARY KEY, book INTEGER, value INTEGER);
"""

_ROWS = {
    "books": [
        (1, "Alpha", "Alpha", "John Doe/Alpha (1)", "2023-01-01 10:00:00+00:00", 1.0, 1),
        (2, "Beta", "Beta", "Jane Roe/Beta (2)", "2023-02-01 10:00:00+00:00", 1.0, 1),
        (3, "Gamma", "Gamma", "John Doe/Gamma (3)", "2023-03-01 10:00:00+00:00", 1.0, 0),
    ],
    "authors": [(1, "John Doe", "Doe, John"), (2, "Jane Roe", "Roe, Jane")],
    "books_authors_link": [(1, 1, 1), (2, 2, 2), (3, 3, 1)],
    "tags": [(1, "Fiction"), (2, "Secret"), (3, "_hidden")],
    "books_tags_link": [(1, 1, 1), (2, 2, 1), (3, 2, 2), (4, 1, 3)],
    "series": [(1, "Saga")],
    "books_series_link": [(1, 1, 1)],
    "ratings": [(1, 8)],
    "books_ratings_link": [(1, 1, 1)],
    "data": [
        (1, 1, "EPUB", "Alpha - John Doe", 11),
        (2, 2, "EPUB", "Beta - Jane Roe", 10),
        (3, 2, "PDF", "Beta - Jane Roe", 10),
        (4, 3, "EPUB", "Gamma - John Doe", 11),
    ],
    "custom_columns": [(1, "genre", "Genre", "text")],
    "custom_column_1": [(1, "Space opera")],
    "books_custom_column_1_link": [(1, 1, 1)],
}


def make_cover(path: Path, color: str = "red", size: tuple[int, int] = (300, 450)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, "JPEG")
    return path


def make_calibre_library(root: Path) -> Path:
    """Write a three-book Calibre library under root.

    Alpha and Beta have covers; Gamma has none. Beta carries the Secret tag.
    """
    root.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(root / "metadata.db")) as conn:
        conn.executescript(_SCHEMA)
        for table, rows in _ROWS.items():
            marks = ", ".join("?" * len(rows[0]))
            conn.executemany(f"INSERT INTO {table} VALUES ({marks})", rows)
        conn.commit()

    for book_id, _, _, path, _, _, has_cover in _ROWS["books"]:
        folder = root / path
        folder.mkdir(parents=True, exist_ok=True)
        if has_cover:
            make_cover(folder / "cover.jpg", "red" if book_id == 1 else "blue")
        for _, book, fmt, name, _ in _ROWS["data"]:
            if book == book_id:
                (folder / f"{name}.{fmt.lower()}").write_text(f"{name} {fmt}", encoding="utf-8")
    return root


# === FIXTURES: On-disk library ===


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """Small Calibre library in a temp directory."""
    return make_calibre_library(tmp_path / "library")


@pytest.fixture
def profile(library: Path, tmp_path: Path) -> CatalogProfile:
    """Profile for the sample library publishing to tmp_path/target."""
    return CatalogProfile(
        name="test",
        library_root=library,
        target_folder=tmp_path / "target",
        catalog_title="Test library",
        tags_to_ignore=["_"],
        book_details_custom_columns=["#genre"],
    )


# === FIXTURES: Sample records ===


@pytest.fixture
def sample_book() -> Book:
    """Minimal valid Book with a cover and one file."""
    return Book(
        id=1,
        title="Alpha",
        sort="Alpha",
        path="John Doe/Alpha (1)",
        timestamp=datetime(2023, 1, 1, 10, 0, tzinfo=timezone.utc),
        rating=8,
        series=Series(id=1, name="Saga"),
        series_index=1.0,
        has_cover=True,
        authors=[Author(id=1, name="John Doe", sort="Doe, John")],
        tags=[Tag(id=1, name="Fiction"), Tag(id=3, name="_hidden")],
        files=[BookFile(format="epub", filename="Alpha - John Doe.epub", size_bytes=11)],
        custom_values={"genre": "Space opera"},
    )


@pytest.fixture
def genre_column() -> CustomColumnType:
    return CustomColumnType(id=1, label="genre", name="Genre", datatype="text")


# === FIXTURES: Progress ===


class RecordingCallback(BaseProgressCallback):
    """Progress callback keeping every notification for assertions."""

    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.steps = 0
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def stage_started(self, stage, expected_units):
        self.events.append(("started", stage, expected_units))

    def stage_ended(self, stage, elapsed_ms, summary):
        self.events.append(("ended", stage))

    def progress_step(self):
        self.steps += 1

    def message(self, text):
        self.events.append(("message", text))

    def warning_incremented(self, message, warning_count):
        self.warnings.append(message)

    def error(self, message, cause):
        self.errors.append(message)

    def finished(self, where, elapsed_ms, warning_count):
        self.events.append(("finished", where, warning_count))

    def started_stages(self) -> list[str]:
        return [e[1] for e in self.events if e[0] == "started"]


@pytest.fixture
def callback() -> RecordingCallback:
    return RecordingCallback()
