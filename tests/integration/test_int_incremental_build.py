# tests/integration/test_int_incremental_build.py — v1
"""Integration tests: repeated catalog builds against the same output root.

Covers the checksum cache across runs: unchanged files are not hashed or
regenerated again, and files that disappear drop out of the persisted cache.
"""

from __future__ import annotations

from unittest.mock import patch

from opdsbuild.cache import checksum_cache as cc
from opdsbuild.cache.checksum_cache import ChecksumCache
from opdsbuild.cache.models import normalize_path
from opdsbuild.imaging.pillow_generator import PillowImageGenerator
from opdsbuild.metadata.calibre_source import CalibreMetadataSource
from opdsbuild.pipeline.orchestrator import BuildOrchestrator
from opdsbuild.render.atom_renderer import AtomFeedRenderer


def _build(library, profile, out, generator=None):
    orch = BuildOrchestrator(
        metadata_source=CalibreMetadataSource(library),
        renderer=AtomFeedRenderer(profile.catalog_title),
        image_generator=generator or PillowImageGenerator(),
    )
    orch.begin_run(out, profile)
    return orch, orch.run()


def _persisted_paths(out) -> set[str]:
    cache = ChecksumCache()
    cache.configure_location(out)
    cache.initialize()
    return {e.path for e in cache.entries()}


class TestCacheAcrossRuns:
    def test_deleted_file_drops_out(self, tmp_path):
        a, b = tmp_path / "A.epub", tmp_path / "B.epub"
        a.write_bytes(b"alpha")
        b.write_bytes(b"beta")

        first = ChecksumCache()
        first.configure_location(tmp_path)
        first.initialize()
        first.confirm(a)
        first.confirm(b)
        assert first.save() == 2

        b.unlink()
        second = ChecksumCache()
        second.configure_location(tmp_path)
        second.initialize()
        with patch.object(cc, "compute_checksum", wraps=cc.compute_checksum) as compute:
            assert second.confirm(a).changed is False
            assert second.confirm(b).exists is False
        compute.assert_not_called()
        assert second.save() == 1

        third = ChecksumCache()
        third.configure_location(tmp_path)
        assert third.initialize() == 1
        assert third.lookup(a) is not None


class TestIncrementalBuild:
    def test_second_run_reuses_checksums_and_images(self, library, profile, tmp_path):
        out = tmp_path / "out"
        _, first = _build(library, profile, out)
        assert first.status == "completed"
        assert first.cache_entries_loaded == 0
        assert first.files_copied > 0

        alpha_epub = library / "John Doe" / "Alpha (1)" / "Alpha - John Doe.epub"
        generator = PillowImageGenerator()
        with patch.object(cc, "compute_checksum", wraps=cc.compute_checksum) as compute, \
                patch.object(generator, "generate", wraps=generator.generate) as generate:
            _, second = _build(library, profile, out, generator)

        hashed = {normalize_path(c.args[0]) for c in compute.call_args_list}
        assert normalize_path(alpha_epub) not in hashed
        generate.assert_not_called()
        assert second.cache_entries_loaded > 0
        assert second.files_copied < first.files_copied
        assert second.warning_count == 0

    def test_changed_cover_regenerates_thumbnail(self, library, profile, tmp_path):
        from PIL import Image

        out = tmp_path / "out"
        _build(library, profile, out)
        thumbnail = library / "John Doe" / "Alpha (1)" / "c2o_thumbnail.jpg"
        Image.new("RGB", (200, 300), "yellow").save(
            library / "John Doe" / "Alpha (1)" / "cover.jpg", "JPEG",
        )

        generator = PillowImageGenerator()
        with patch.object(generator, "generate", wraps=generator.generate) as generate:
            _build(library, profile, out, generator)
        targets = [c.args[1] for c in generate.call_args_list]
        assert targets == [thumbnail]
        published = tmp_path / "target" / "_catalog" / "images" / "John Doe" / "Alpha (1)"
        assert (published / "c2o_thumbnail.jpg").read_bytes() == thumbnail.read_bytes()

    def test_changed_thumbnail_size_regenerates(self, library, profile, tmp_path):
        from PIL import Image

        out = tmp_path / "out"
        thumbnail = library / "John Doe" / "Alpha (1)" / "c2o_thumbnail.jpg"
        profile.thumbnail_width, profile.thumbnail_height = 100, 144
        _build(library, profile, out)
        with Image.open(thumbnail) as im:
            assert im.size[1] == 144

        profile.thumbnail_width, profile.thumbnail_height = 40, 60
        generator = PillowImageGenerator()
        with patch.object(generator, "generate", wraps=generator.generate) as generate:
            _, second = _build(library, profile, out, generator)
        assert second.status == "completed"
        assert thumbnail in [c.args[1] for c in generate.call_args_list]
        with Image.open(thumbnail) as im:
            assert im.size[0] <= 40 and im.size[1] <= 60
        published = tmp_path / "target" / "_catalog" / "images" / "John Doe" / "Alpha (1)"
        assert (published / "c2o_thumbnail.jpg").read_bytes() == thumbnail.read_bytes()

        with patch.object(generator, "generate", wraps=generator.generate) as generate:
            _build(library, profile, out, generator)
        generate.assert_not_called()

    def test_removed_book_file_leaves_cache(self, library, profile, tmp_path):
        out = tmp_path / "out"
        _build(library, profile, out)
        beta_pdf = library / "Jane Roe" / "Beta (2)" / "Beta - Jane Roe.pdf"
        assert normalize_path(beta_pdf) in _persisted_paths(out)

        beta_pdf.unlink()
        _, second = _build(library, profile, out)
        assert second.status == "completed"
        assert second.warning_count >= 1
        persisted = _persisted_paths(out)
        assert normalize_path(beta_pdf) not in persisted
        assert normalize_path(library / "John Doe" / "Alpha (1)" / "Alpha - John Doe.epub") in persisted
