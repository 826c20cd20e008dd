# tests/unit/storage/test_unit_path_allocator.py — v1
"""Tests for storage/path_allocator.py — OutputPathAllocator, url_encode."""

from __future__ import annotations

from opdsbuild.storage.layout import split_document_name
from opdsbuild.storage.path_allocator import OutputPathAllocator, url_encode


class TestSplitDocumentName:
    def test_with_folder(self):
        assert split_document_name("authors/author_1.xml") == ("authors", "author_1.xml")

    def test_without_folder(self):
        assert split_document_name("index.xml") == ("", "index.xml")


class TestUrlEncode:
    def test_spaces_and_slashes(self):
        assert url_encode("John Doe/x") == "John%20Doe%2Fx"

    def test_plain(self):
        assert url_encode("index.xml") == "index.xml"


class TestAllocate:
    def test_creates_folder_once(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        path = alloc.allocate("authors/author_1.xml")
        assert path == tmp_path / "authors" / "author_1.xml"
        assert (tmp_path / "authors").is_dir()

    def test_idempotent(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        assert alloc.allocate("tags/tag_1.xml") == alloc.allocate("tags/tag_1.xml")
        assert alloc.folder_name("tags/tag_1.xml") == "tags"

    def test_root_document(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        assert alloc.allocate("index.xml") == tmp_path / "index.xml"
        assert alloc.folder_name("index.xml") == ""

    def test_empty_name_is_root(self, tmp_path):
        assert OutputPathAllocator(tmp_path).allocate("") == tmp_path

    def test_unknown_name_has_no_folder(self, tmp_path):
        assert OutputPathAllocator(tmp_path).folder_name("nope.xml") is None

    def test_documents_snapshot(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        alloc.allocate("index.xml")
        alloc.allocate("tags/tag_1.xml")
        assert alloc.documents() == {"index.xml": "", "tags/tag_1.xml": "tags"}


class TestResolve:
    def test_top_level_reference(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        assert alloc.resolve("Authors/John Doe.html", in_subdir=False) == "./Authors/John%20Doe.html"

    def test_subdir_reference(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        assert alloc.resolve("Authors/John Doe.html", in_subdir=True) == "../Authors/John%20Doe.html"

    def test_root_document_has_no_folder_segment(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        assert alloc.resolve("index.xml", in_subdir=False) == "./index.xml"
        assert alloc.resolve("index.xml", in_subdir=True) == "../index.xml"

    def test_deterministic(self, tmp_path):
        a = OutputPathAllocator(tmp_path / "a")
        b = OutputPathAllocator(tmp_path / "b")
        names = ["index.xml", "tags/tag_1.xml", "authors/author_2.xml"]
        assert [a.resolve(n, True) for n in names] == [b.resolve(n, True) for n in names]

    def test_resolve_allocates(self, tmp_path):
        alloc = OutputPathAllocator(tmp_path)
        alloc.resolve("series/series_1.xml", in_subdir=False)
        assert (tmp_path / "series").is_dir()
