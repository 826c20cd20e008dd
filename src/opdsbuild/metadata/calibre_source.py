# src/opdsbuild/metadata/calibre_source.py — v1
"""Metadata source reading a Calibre ``metadata.db``.

Uses stdlib sqlite3 in read-only mode; the library is never modified.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from contextlib import closing
from datetime import datetime
from pathlib import Path

from opdsbuild.core.models import Author, Book, BookFile, CustomColumnType, Series, Tag
from opdsbuild.metadata.base_metadata_source import BaseMetadataSource

logger = logging.getLogger(__name__)

METADATA_DB = "metadata.db"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace(" ", "T", 1))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


class CalibreMetadataSource(BaseMetadataSource):
    """Read books, tags and custom columns from a Calibre library folder."""

    def __init__(self, library_root: Path) -> None:
        self._db_path = Path(library_root) / METADATA_DB
        if not self._db_path.is_file():
            raise FileNotFoundError(f"No Calibre database at {self._db_path}")
        self._books: list[Book] | None = None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(f"file:{self._db_path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn

    def list_of_tags(self) -> list[Tag]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT id, name FROM tags ORDER BY name").fetchall()
        return [Tag(id=r["id"], name=r["name"]) for r in rows]

    def list_of_custom_column_types(self) -> list[CustomColumnType] | None:
        with closing(self._connect()) as conn:
            try:
                rows = conn.execute(
                    "SELECT id, label, name, datatype FROM custom_columns"
                ).fetchall()
            except sqlite3.OperationalError:
                return None
        if not rows:
            return None
        return [
            CustomColumnType(id=r["id"], label=r["label"], name=r["name"], datatype=r["datatype"])
            for r in rows
        ]

    def list_of_books(self) -> list[Book]:
        if self._books is None:
            self._books = self._read_books()
        return list(self._books)

    def _read_books(self) -> list[Book]:
        with closing(self._connect()) as conn:
            authors = _links(conn, "SELECT a.id, a.name, a.sort, l.book FROM authors a "
                                   "JOIN books_authors_link l ON l.author = a.id ORDER BY l.id")
            tags = _links(conn, "SELECT t.id, t.name, l.book FROM tags t "
                                "JOIN books_tags_link l ON l.tag = t.id")
            series = _links(conn, "SELECT s.id, s.name, l.book FROM series s "
                                  "JOIN books_series_link l ON l.series = s.id")
            ratings = _links(conn, "SELECT r.rating, l.book FROM ratings r "
                                   "JOIN books_ratings_link l ON l.rating = r.id")
            files = _links(conn, "SELECT format, name, uncompressed_size, book FROM data")
            custom = _custom_values(conn, self.list_of_custom_column_types() or [])
            rows = conn.execute(
                "SELECT id, title, sort, path, timestamp, series_index, has_cover FROM books"
            ).fetchall()

        books: list[Book] = []
        for r in rows:
            book_id = r["id"]
            book_series = series.get(book_id)
            book_rating = ratings.get(book_id)
            books.append(Book(
                id=book_id,
                title=r["title"],
                sort=r["sort"] or "",
                path=r["path"],
                timestamp=_parse_timestamp(r["timestamp"]),
                series=Series(id=book_series[0]["id"], name=book_series[0]["name"]) if book_series else None,
                series_index=r["series_index"] if book_series else None,
                rating=book_rating[0]["rating"] if book_rating else None,
                has_cover=bool(r["has_cover"]),
                authors=[Author(id=a["id"], name=a["name"], sort=a["sort"] or "")
                         for a in authors.get(book_id, [])],
                tags=[Tag(id=t["id"], name=t["name"]) for t in tags.get(book_id, [])],
                files=[BookFile(format=f["format"].lower(),
                                filename=f"{f['name']}.{f['format'].lower()}",
                                size_bytes=f["uncompressed_size"] or 0)
                       for f in files.get(book_id, [])],
                custom_values=custom.get(book_id, {}),
            ))
        logger.info("Read %d books from %s", len(books), self._db_path)
        return books


def _custom_values(
    conn: sqlite3.Connection, columns: list[CustomColumnType],
) -> dict[int, dict[str, str]]:
    """Values of every custom column, keyed by book then column label.

    Calibre stores a column either directly (one row per book) or normalized
    through a link table; multi-valued columns are joined with ", ".
    """
    values: dict[int, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    for column in columns:
        table = f"custom_column_{column.id}"
        try:
            rows = conn.execute(
                f"SELECT l.book, c.value FROM {table} c "
                f"JOIN books_{table}_link l ON l.value = c.id ORDER BY l.id"
            ).fetchall()
        except sqlite3.OperationalError:
            try:
                rows = conn.execute(f"SELECT book, value FROM {table}").fetchall()
            except sqlite3.OperationalError:
                logger.debug("No value table for custom column %s", column.label)
                continue
        for row in rows:
            if row["value"] is not None:
                values[row["book"]][column.label].append(str(row["value"]))
    return {
        book: {label: ", ".join(v) for label, v in labels.items()}
        for book, labels in values.items()
    }


def _links(conn: sqlite3.Connection, query: str) -> dict[int, list[sqlite3.Row]]:
    """Group the rows of a link query by their ``book`` column."""
    grouped: dict[int, list[sqlite3.Row]] = defaultdict(list)
    for row in conn.execute(query):
        grouped[row["book"]].append(row)
    return grouped
