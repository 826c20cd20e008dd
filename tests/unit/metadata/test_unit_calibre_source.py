# tests/unit/metadata/test_unit_calibre_source.py — v1
"""Tests for metadata/calibre_source.py — reading metadata.db."""

from __future__ import annotations

import sqlite3
from contextlib import closing

import pytest

from opdsbuild.metadata.base_format_processor import BaseFormatProcessor
from opdsbuild.metadata.base_metadata_source import BaseMetadataSource
from opdsbuild.metadata.calibre_source import CalibreMetadataSource


class TestBaseInterfaces:
    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            BaseMetadataSource()  # type: ignore[abstract]
        with pytest.raises(TypeError):
            BaseFormatProcessor()  # type: ignore[abstract]


class TestCalibreMetadataSource:
    def test_missing_database(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CalibreMetadataSource(tmp_path)

    def test_books(self, library):
        books = {b.id: b for b in CalibreMetadataSource(library).list_of_books()}
        assert set(books) == {1, 2, 3}
        alpha = books[1]
        assert alpha.title == "Alpha"
        assert alpha.path == "John Doe/Alpha (1)"
        assert alpha.has_cover is True
        assert [a.name for a in alpha.authors] == ["John Doe"]
        assert alpha.series is not None and alpha.series.name == "Saga"
        assert alpha.rating == 8
        assert alpha.timestamp is not None and alpha.timestamp.year == 2023
        assert [f.filename for f in alpha.files] == ["Alpha - John Doe.epub"]

    def test_multiple_files_and_tags(self, library):
        beta = next(b for b in CalibreMetadataSource(library).list_of_books() if b.id == 2)
        assert sorted(f.format for f in beta.files) == ["epub", "pdf"]
        assert sorted(t.name for t in beta.tags) == ["Fiction", "Secret"]
        assert beta.series is None
        assert beta.series_index is None

    def test_custom_values(self, library):
        books = {b.id: b for b in CalibreMetadataSource(library).list_of_books()}
        assert books[1].custom_values == {"genre": "Space opera"}
        assert books[2].custom_values == {}

    def test_tags(self, library):
        names = [t.name for t in CalibreMetadataSource(library).list_of_tags()]
        assert sorted(names) == ["Fiction", "Secret", "_hidden"]

    def test_custom_column_types(self, library):
        types = CalibreMetadataSource(library).list_of_custom_column_types()
        assert types is not None
        assert [(t.label, t.name) for t in types] == [("genre", "Genre")]

    def test_no_custom_columns(self, library):
        with closing(sqlite3.connect(library / "metadata.db")) as conn:
            conn.execute("DELETE FROM custom_columns")
            conn.commit()
        assert CalibreMetadataSource(library).list_of_custom_column_types() is None

    def test_books_read_once(self, library):
        source = CalibreMetadataSource(library)
        first = source.list_of_books()
        (library / "metadata.db").unlink()
        assert source.list_of_books() == first
