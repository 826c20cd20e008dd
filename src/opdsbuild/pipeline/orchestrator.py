# src/opdsbuild/pipeline/orchestrator.py — v1
"""Catalog build orchestrator.

Drives one catalog-generation run through the fixed stage sequence in
pipeline/stages.py. The orchestrator owns the run's ChecksumCache,
AssetDeduplicator and OutputPathAllocator, the set of library files pending
copy, the ignored-tag set and the security code.

Stages run strictly one after another on the calling thread. Image stages
fan out to a worker pool; the cache and the deduplicator are safe to share
with those workers. Cancellation is cooperative: ``request_stop()`` sets a
flag that ``checkpoint()`` observes before the next progress increment, the
stage returns ``StageStatus.STOPPED`` and ``run()`` returns a result with
status ``"stopped"``. Output already written stays in place.
"""

from __future__ import annotations

import logging
import re
import secrets
import threading
import time
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from opdsbuild.cache.checksum_cache import DEFAULT_CACHE_FILENAME, ChecksumCache
from opdsbuild.cache.models import FileIdentity, normalize_path
from opdsbuild.config.profile import CatalogProfile
from opdsbuild.core.models import Book, BookFile, CustomColumnType, Tag
from opdsbuild.filters.book_filters import BookFilter
from opdsbuild.imaging.base_image_generator import BaseImageGenerator
from opdsbuild.logging.context import set_run_context, set_stage_context
from opdsbuild.metadata.base_format_processor import BaseFormatProcessor
from opdsbuild.metadata.base_metadata_source import BaseMetadataSource
from opdsbuild.pipeline.stages import STAGE_ORDER, Stage, StageStatus
from opdsbuild.render.base_feed_renderer import BaseFeedRenderer, NavigationLink
from opdsbuild.storage import layout
from opdsbuild.storage.assets import AssetDeduplicator, InvalidAssetError
from opdsbuild.storage.copier import copy_if_changed
from opdsbuild.storage.path_allocator import OutputPathAllocator, url_encode
from opdsbuild.tracking.base_progress import BaseProgressCallback
from opdsbuild.tracking.logging_progress import LoggingProgressCallback
from opdsbuild.tracking.models import BuildResult, StageRecord

logger = logging.getLogger(__name__)

# Filter identifiers understood by the stages.
CATALOG_FILTER_ID = "catalog"
FEATURED_FILTER_ID = "featured"
CUSTOM_FILTER_PREFIX = "custom:"

CUSTOM_COLUMN_MARKER = "#"

_UNSAFE_NAME = re.compile(r"[^\w.-]+")


class CatalogBuildError(Exception):
    """Fatal failure: the run cannot produce a consistent catalog."""


def generate_run_id(timestamp: datetime | None = None) -> str:
    """Generate a run_id: yyyymmdd_hhmm_{uuid4_short}."""
    ts = timestamp or datetime.now(timezone.utc)
    return f"{ts.strftime('%Y%m%d_%H%M')}_{uuid.uuid4().hex[:5]}"


def _by_title(books: Iterable[Book]) -> list[Book]:
    return sorted(books, key=lambda b: b.sort_key)


def _unique_leaf(name: str, used: set[str]) -> str:
    """Filesystem-safe leaf for name, suffixed _2, _3... if already in used."""
    base = _UNSAFE_NAME.sub("_", name)
    leaf, n = base, 1
    while leaf.upper() in used:
        n += 1
        leaf = f"{base}_{n}"
    used.add(leaf.upper())
    return leaf


class BuildOrchestrator:
    """Runs catalog generation for one profile at a time.

    Args:
        metadata_source: Supplies books, tags and custom column types.
        renderer: Writes catalog documents.
        image_generator: Derives thumbnails and resized covers. Without one,
            only original covers are published.
        callback: Receives progress notifications. Defaults to logging.
        format_processor: Optional hook for changed book files.
        max_workers: Worker pool size for image stages.
        cache_enabled: Persist the checksum cache between runs.
        cache_filename: Name of the cache file inside the output root.
    """

    def __init__(
        self,
        metadata_source: BaseMetadataSource,
        renderer: BaseFeedRenderer,
        image_generator: BaseImageGenerator | None = None,
        callback: BaseProgressCallback | None = None,
        format_processor: BaseFormatProcessor | None = None,
        max_workers: int = 4,
        cache_enabled: bool = True,
        cache_filename: str = DEFAULT_CACHE_FILENAME,
    ) -> None:
        self._metadata_source = metadata_source
        self._renderer = renderer
        self._image_generator = image_generator
        self._callback = callback or LoggingProgressCallback()
        self._format_processor = format_processor
        self._max_workers = max(1, max_workers)
        self._cache_enabled = cache_enabled
        self._cache_filename = cache_filename
        self._stop = threading.Event()
        self._copy_lock = threading.Lock()
        self._clear_run_state()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _clear_run_state(self) -> None:
        self._run_id = ""
        self._output_root: Path | None = None
        self._profile: CatalogProfile | None = None
        self._security_code = ""
        self.cache = ChecksumCache(self._cache_filename)
        self.assets = AssetDeduplicator()
        self.allocator: OutputPathAllocator | None = None
        self._files_to_copy: set[str] = set()
        self._filters: dict[str, BookFilter] = {}
        self._tags_to_ignore: frozenset[Tag] | None = None
        self._custom_columns: list[CustomColumnType] | None = None
        self._books: list[Book] = []
        self._tags: list[Tag] | None = None
        self._index_links: list[NavigationLink] = []
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._stage_started = 0.0
        self._warning_count = 0
        self._cache_loaded = 0
        self._cache_saved = 0
        self._files_copied = 0
        self._files_skipped = 0
        self._stop.clear()

    def reset(self) -> None:
        """Clear all run state so the next run starts clean."""
        self.cache.reset()
        self._clear_run_state()
        set_stage_context(None)

    def begin_run(self, output_root: str | Path, profile: CatalogProfile) -> None:
        """Establish output root, security code and fresh per-run state.

        Raises:
            CatalogBuildError: If the output root cannot be created.
        """
        self.reset()
        root = Path(output_root).expanduser()
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            message = f"Unable to create output folder {root}"
            self._callback.error(message, e)
            raise CatalogBuildError(message) from e

        self._run_id = generate_run_id()
        self._output_root = root
        self._profile = profile
        self._security_code = self.derive_security_code(profile)
        self.allocator = OutputPathAllocator(root)
        set_run_context(self._run_id, profile.name)

        if self._cache_enabled:
            self.cache.configure_location(root)
        self._cache_loaded = self.cache.initialize()
        logger.info(
            "Run %s started: output=%s library=%s obfuscated=%s",
            self._run_id, root, profile.library_root, bool(self._security_code),
        )

    @staticmethod
    def derive_security_code(profile: CatalogProfile) -> str:
        """Return the code mixed into document names, generating it once.

        A new code is stored on the profile so the caller can persist it.
        Obfuscation disabled always yields "".
        """
        if not profile.crypt_filenames:
            return ""
        if not profile.security_code:
            profile.security_code = secrets.token_hex(4)
            logger.info("Generated new security code for profile %s", profile.name)
        return profile.security_code

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def output_root(self) -> Path | None:
        return self._output_root

    @property
    def security_code(self) -> str:
        return self._security_code

    @property
    def warning_count(self) -> int:
        return self._warning_count

    @property
    def profile(self) -> CatalogProfile:
        if self._profile is None:
            raise CatalogBuildError("begin_run() has not been called")
        return self._profile

    # ------------------------------------------------------------------
    # Cancellation and progress
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask the run to stop at its next checkpoint."""
        logger.info("Stop requested")
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def checkpoint(self) -> bool:
        """Progress checkpoint between units of work.

        Returns:
            False if a stop was requested (the unit must not be started),
            True after reporting one progress increment otherwise.
        """
        if self._stop.is_set():
            return False
        if self._current is not None:
            self._current.completed_units += 1
        self._callback.progress_step()
        return True

    def warn(self, message: str) -> None:
        """Record a recoverable problem; the affected item is skipped."""
        self._warning_count += 1
        logger.warning(message)
        self._callback.warning_incremented(message, self._warning_count)

    def _start_stage(self, stage: Stage, expected_units: int) -> None:
        set_stage_context(stage.value)
        self._current = StageRecord(
            stage=stage.value,
            expected_units=expected_units,
            started_at=datetime.now(timezone.utc),
        )
        self._stages.append(self._current)
        self._stage_started = time.monotonic()
        self._callback.stage_started(stage.value, expected_units)

    def _end_stage(self, summary: str | None = None) -> StageStatus:
        record = self._current
        assert record is not None
        record.elapsed_ms = int((time.monotonic() - self._stage_started) * 1000)
        record.summary = summary
        record.status = "completed"
        self._callback.stage_ended(record.stage, record.elapsed_ms, summary)
        return StageStatus.COMPLETED

    def _stopped(self) -> StageStatus:
        record = self._current
        assert record is not None
        record.elapsed_ms = int((time.monotonic() - self._stage_started) * 1000)
        record.status = "stopped"
        logger.info(
            "Generation stopped during %s after %d/%d units",
            record.stage, record.completed_units, record.expected_units,
        )
        self._callback.message("Catalog generation stopped")
        return StageStatus.STOPPED

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _stage_handlers(self) -> dict[Stage, Callable[[], StageStatus]]:
        return {
            Stage.READ_DATABASE: self._read_database,
            Stage.BUILD_TAGS: self._build_tags,
            Stage.BUILD_AUTHORS: self._build_authors,
            Stage.BUILD_SERIES: self._build_series,
            Stage.BUILD_RECENT: self._build_recent,
            Stage.BUILD_RATED: self._build_rated,
            Stage.BUILD_ALL_BOOKS: self._build_all_books,
            Stage.BUILD_FEATURED: self._build_featured,
            Stage.BUILD_CUSTOM_CATALOGS: self._build_custom_catalogs,
            Stage.BUILD_THUMBNAILS: self._build_thumbnails,
            Stage.BUILD_COVERS: self._build_covers,
            Stage.REPROCESS_FORMAT_METADATA: self._reprocess_format_metadata,
            Stage.BUILD_INDEX: self._build_index,
            Stage.COPY_LIBRARY: self._copy_library,
            Stage.COPY_CATALOG: self._copy_catalog,
            Stage.FINISH: self._finish,
        }

    def run(self) -> BuildResult:
        """Execute every stage in order.

        Returns:
            BuildResult with status "completed", or "stopped" if a stop was
            requested before the finish stage.

        Raises:
            CatalogBuildError: On any unexpected failure; the progress
                callback has already been told.
        """
        if self._output_root is None:
            raise CatalogBuildError("begin_run() must be called before run()")

        started = time.monotonic()
        handlers = self._stage_handlers()
        status: Literal["completed", "stopped"] = "completed"
        try:
            for stage in STAGE_ORDER:
                if handlers[stage]() is StageStatus.STOPPED:
                    status = "stopped"
                    break
        except CatalogBuildError:
            raise
        except Exception as e:
            stage_name = self._current.stage if self._current else "startup"
            if self._current is not None:
                self._current.status = "failed"
            message = f"Catalog generation failed during {stage_name}: {e}"
            self._callback.error(message, e)
            raise CatalogBuildError(message) from e
        finally:
            set_stage_context(None)

        return BuildResult(
            run_id=self._run_id,
            status=status,
            output_root=str(self._output_root),
            stages=list(self._stages),
            warning_count=self._warning_count,
            cache_entries_loaded=self._cache_loaded,
            cache_entries_saved=self._cache_saved if status == "completed" else 0,
            files_copied=self._files_copied,
            files_skipped=self._files_skipped,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    # ------------------------------------------------------------------
    # Run state accessors
    # ------------------------------------------------------------------

    def register_filter(self, identifier: str, book_filter: BookFilter) -> None:
        self._filters[identifier] = book_filter

    def get_filter(self, identifier: str) -> BookFilter | None:
        return self._filters.get(identifier)

    def custom_catalog_filters(self) -> list[tuple[str, BookFilter]]:
        """Filters registered under ``custom:<name>``, by name."""
        return sorted(
            (ident[len(CUSTOM_FILTER_PREFIX):], f)
            for ident, f in self._filters.items()
            if ident.startswith(CUSTOM_FILTER_PREFIX)
        )

    def record_file_for_copy(self, file: str | Path | FileIdentity) -> bool:
        """Add a library file to the pending-copy set.

        Returns:
            True if newly added; False if already pending or not inside the
            library root (the latter is logged as a warning).
        """
        path = file.path if isinstance(file, FileIdentity) else file
        library_root = Path(normalize_path(self.profile.library_root))
        try:
            relative = Path(normalize_path(path)).relative_to(library_root).as_posix()
        except ValueError:
            self.warn(f"Not copying {path}: outside library folder {library_root}")
            return False
        with self._copy_lock:
            if relative in self._files_to_copy:
                return False
            self._files_to_copy.add(relative)
        return True

    def files_to_copy(self) -> list[str]:
        with self._copy_lock:
            return sorted(self._files_to_copy)

    def record_image_for_catalog(self, key: str, file: FileIdentity) -> FileIdentity:
        """Register an image asset; the first file recorded for a key wins.

        Raises:
            InvalidAssetError: If the file is not a recognised image kind.
        """
        return self.assets.register_if_absent(key, file)

    def _all_tags(self) -> list[Tag]:
        if self._tags is None:
            self._tags = list(self._metadata_source.list_of_tags())
        return self._tags

    def tags_to_ignore(self) -> frozenset[Tag]:
        """Tags whose upper-cased name matches any configured pattern.

        Patterns match case-insensitively from the start of the name.
        Computed once per run.
        """
        if self._tags_to_ignore is None:
            patterns: list[re.Pattern[str]] = []
            for pattern in self.profile.tags_to_ignore:
                try:
                    patterns.append(re.compile(pattern, re.IGNORECASE))
                except re.error as e:
                    self.warn(f"Ignoring invalid tag pattern {pattern!r}: {e}")
            self._tags_to_ignore = frozenset(
                tag for tag in self._all_tags()
                if any(p.match(tag.name.upper()) for p in patterns)
            )
            logger.debug("Tags to ignore: %d", len(self._tags_to_ignore))
        return self._tags_to_ignore

    def book_details_custom_columns(self) -> list[CustomColumnType]:
        """Configured custom columns, in configured order.

        Returns an empty list (with a warning) when the library declares no
        custom columns. Unknown labels are warned about and skipped.
        """
        if self._custom_columns is None:
            types = self._metadata_source.list_of_custom_column_types()
            if not types:
                if self.profile.book_details_custom_columns:
                    self.warn("No custom columns read from database")
                else:
                    logger.info("No custom columns read from database")
                self._custom_columns = []
                return []
            by_label = {t.label.upper(): t for t in types}
            columns: list[CustomColumnType] = []
            for label in self.profile.book_details_custom_columns:
                wanted = label[1:] if label.startswith(CUSTOM_COLUMN_MARKER) else label
                column = by_label.get(wanted.upper())
                if column is None:
                    self.warn(f"Custom column {label!r} not found in database")
                elif column not in columns:
                    columns.append(column)
            self._custom_columns = columns
        return list(self._custom_columns)

    # ------------------------------------------------------------------
    # Naming and URLs (used by renderers)
    # ------------------------------------------------------------------

    def document_name(self, folder: str, leaf: str) -> str:
        """Logical document name, with the security code mixed in."""
        if self._security_code:
            leaf = f"{self._security_code}{layout.SECURITY_SEPARATOR}{leaf}"
        return f"{folder}{layout.FOLDER_SEPARATOR}{leaf}" if folder else leaf

    @property
    def initial_document(self) -> str:
        return self.document_name("", layout.INITIAL_DOCUMENT)

    def allocate(self, document_name: str) -> Path:
        assert self.allocator is not None
        return self.allocator.allocate(document_name)

    def resolve_url(self, document_name: str, in_subdir: bool) -> str:
        assert self.allocator is not None
        return self.allocator.resolve(document_name, in_subdir)

    @staticmethod
    def image_key(book: Book, filename: str) -> str:
        return f"{book.path}/{filename}"

    def image_url(self, key: str, in_subdir: bool) -> str:
        prefix = layout.PARENT_PATH_PREFIX if in_subdir else layout.CURRENT_PATH_PREFIX
        return prefix + "/".join(url_encode(p) for p in (layout.IMAGES_FOLDER, *key.split("/")))

    def _cover_filename(self) -> str:
        if self.profile.cover_resize and self._image_generator is not None:
            return layout.RESIZED_COVER_FILENAME
        return layout.COVER_FILENAME

    def thumbnail_url(self, book: Book, in_subdir: bool) -> str | None:
        if not book.has_cover:
            return None
        filename = layout.THUMBNAIL_FILENAME if self._image_generator else self._cover_filename()
        return self.image_url(self.image_key(book, filename), in_subdir)

    def cover_url(self, book: Book, in_subdir: bool) -> str | None:
        if not book.has_cover:
            return None
        return self.image_url(self.image_key(book, self._cover_filename()), in_subdir)

    def library_url(self, book: Book, book_file: BookFile, in_subdir: bool) -> str:
        """Link to a copied library file; the catalog folder sits inside the target."""
        up = layout.PARENT_PATH_PREFIX * (2 if in_subdir else 1)
        parts = [*book.path.split("/"), book_file.filename]
        return up + "/".join(url_encode(p) for p in parts)

    # ------------------------------------------------------------------
    # Stages: catalog documents
    # ------------------------------------------------------------------

    def _read_database(self) -> StageStatus:
        self._start_stage(Stage.READ_DATABASE, 1)
        books = list(self._metadata_source.list_of_books())
        total = len(books)
        catalog_filter = self.get_filter(CATALOG_FILTER_ID)
        if catalog_filter is not None:
            books = [b for b in books if catalog_filter.passes_filter(b)]
        self._books = _by_title(books)
        tags = self._all_tags()
        self.tags_to_ignore()
        if not self.checkpoint():
            return self._stopped()
        return self._end_stage(
            f"{len(self._books)}/{total} books, {len(tags)} tags"
        )

    def _render_groups(
        self,
        stage: Stage,
        folder: str,
        title: str,
        groups: Sequence[tuple[str, str, list[Book]]],
    ) -> StageStatus:
        """One feed per (leaf, label, books) group plus a navigation document."""
        self._start_stage(stage, len(groups))
        links: list[NavigationLink] = []
        for leaf, label, books in groups:
            if not self.checkpoint():
                return self._stopped()
            name = self.document_name(folder, leaf + layout.FEED_EXTENSION)
            self._renderer.render_feed(name, label, books, self)
            links.append(NavigationLink(name, label, len(books)))
        if links:
            nav = self.document_name("", folder + layout.FEED_EXTENSION)
            self._renderer.render_navigation(nav, title, links, self)
            distinct = {book.id for _, _, books in groups for book in books}
            self._index_links.append(NavigationLink(nav, title, len(distinct)))
        return self._end_stage(f"{len(links)} {folder}")

    def _build_tags(self) -> StageStatus:
        ignored = self.tags_to_ignore()
        by_tag: dict[Tag, list[Book]] = defaultdict(list)
        for book in self._books:
            for tag in book.tags:
                if tag not in ignored:
                    by_tag[tag].append(book)
        groups = [
            (f"tag_{tag.id}", tag.name, by_tag[tag])
            for tag in sorted(by_tag, key=lambda t: t.name.upper())
        ]
        return self._render_groups(Stage.BUILD_TAGS, layout.TAGS_FOLDER, "Tags", groups)

    def _build_authors(self) -> StageStatus:
        by_author: dict[int, list[Book]] = defaultdict(list)
        names: dict[int, tuple[str, str]] = {}
        for book in self._books:
            for author in book.authors:
                by_author[author.id].append(book)
                names[author.id] = (author.sort or author.name, author.name)
        groups = [
            (f"author_{author_id}", names[author_id][1], by_author[author_id])
            for author_id in sorted(by_author, key=lambda a: names[a][0].upper())
        ]
        return self._render_groups(Stage.BUILD_AUTHORS, layout.AUTHORS_FOLDER, "Authors", groups)

    def _build_series(self) -> StageStatus:
        by_series: dict[int, list[Book]] = defaultdict(list)
        names: dict[int, str] = {}
        for book in self._books:
            if book.series is not None:
                by_series[book.series.id].append(book)
                names[book.series.id] = book.series.name
        groups = [
            (
                f"series_{series_id}",
                names[series_id],
                sorted(by_series[series_id], key=lambda b: b.series_index or 0.0),
            )
            for series_id in sorted(by_series, key=lambda s: names[s].upper())
        ]
        return self._render_groups(Stage.BUILD_SERIES, layout.SERIES_FOLDER, "Series", groups)

    def _render_single(
        self, stage: Stage, leaf: str, title: str, books: list[Book] | None,
    ) -> StageStatus:
        """A single top-level feed; ``None`` books means the stage has no work."""
        if books is None:
            self._start_stage(stage, 0)
            return self._end_stage("not configured")
        self._start_stage(stage, 1)
        if not self.checkpoint():
            return self._stopped()
        name = self.document_name("", leaf + layout.FEED_EXTENSION)
        self._renderer.render_feed(name, title, books, self)
        self._index_links.append(NavigationLink(name, title, len(books)))
        return self._end_stage(f"{len(books)} books")

    def _build_recent(self) -> StageStatus:
        dated = [b for b in self._books if b.timestamp is not None]
        dated.sort(key=lambda b: b.timestamp.isoformat(), reverse=True)  # type: ignore[union-attr]
        recent = dated[: self.profile.max_recent_books]
        return self._render_single(Stage.BUILD_RECENT, "recent", "Recent books", recent)

    def _build_rated(self) -> StageStatus:
        rated = [b for b in self._books if b.rating]
        rated.sort(key=lambda b: (-(b.rating or 0), b.sort_key))
        return self._render_single(Stage.BUILD_RATED, "rated", "Rated books", rated)

    def _build_all_books(self) -> StageStatus:
        self._start_stage(Stage.BUILD_ALL_BOOKS, len(self._books))
        library_root = self.profile.library_root
        for book in self._books:
            if not self.checkpoint():
                return self._stopped()
            for book_file in book.files:
                self.record_file_for_copy(
                    layout.book_folder(library_root, book.path) / book_file.filename
                )
        name = self.document_name("", "all" + layout.FEED_EXTENSION)
        self._renderer.render_feed(name, "All books", self._books, self)
        self._index_links.append(NavigationLink(name, "All books", len(self._books)))
        return self._end_stage(f"{len(self._books)} books, {len(self._files_to_copy)} files")

    def _build_featured(self) -> StageStatus:
        featured = self.get_filter(FEATURED_FILTER_ID)
        books = None
        if featured is not None:
            books = [b for b in self._books if featured.passes_filter(b)]
        return self._render_single(Stage.BUILD_FEATURED, "featured", "Featured books", books)

    def _build_custom_catalogs(self) -> StageStatus:
        groups: list[tuple[str, str, list[Book]]] = []
        used: set[str] = set()
        for name, f in self.custom_catalog_filters():
            groups.append(
                (_unique_leaf(name, used), name, [b for b in self._books if f.passes_filter(b)])
            )
        return self._render_groups(
            Stage.BUILD_CUSTOM_CATALOGS, layout.CUSTOM_FOLDER, "Custom catalogs", groups,
        )

    def _build_index(self) -> StageStatus:
        self._start_stage(Stage.BUILD_INDEX, 1)
        if not self.checkpoint():
            return self._stopped()
        self._renderer.render_navigation(
            self.initial_document, self.profile.catalog_title, self._index_links, self,
        )
        return self._end_stage(f"{len(self._index_links)} sections")

    # ------------------------------------------------------------------
    # Stages: images
    # ------------------------------------------------------------------

    def _derive_image(
        self, book: Book, filename: str, width: int, height: int,
    ) -> tuple[FileIdentity | None, bool]:
        """Derive filename from the book's cover unless it is up to date.

        Runs on worker threads. Returns (asset, generated); asset is None
        when the book has no cover on disk.
        """
        library_root = self.profile.library_root
        cover = self.cache.confirm(layout.cover_path(library_root, book.path))
        if not cover.exists:
            return None, False
        if filename == layout.COVER_FILENAME:
            return cover, False

        target = layout.book_folder(library_root, book.path) / filename
        box = f"{width}x{height}"
        previous = self.cache.lookup(target)
        stale = previous is None or previous.derived_box != box
        generated = False
        if cover.changed or stale or not target.exists():
            assert self._image_generator is not None
            self._image_generator.generate(Path(cover.path), target, width, height)
            generated = True
        derived = self.cache.confirm(target)
        if derived.exists:
            derived.derived_box = box
        return derived, generated

    def _run_image_stage(self, stage: Stage, filename: str, width: int, height: int) -> StageStatus:
        books = [b for b in self._books if b.has_cover]
        self._start_stage(stage, len(books))
        generated = reused = 0
        pool = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="images")
        try:
            futures: dict[Future[tuple[FileIdentity | None, bool]], Book] = {
                pool.submit(self._derive_image, book, filename, width, height): book
                for book in books
            }
            for future in as_completed(futures):
                if not self.checkpoint():
                    pool.shutdown(wait=True, cancel_futures=True)
                    return self._stopped()
                book = futures[future]
                try:
                    asset, was_generated = future.result()
                except OSError as e:
                    self.warn(f"Unable to produce {filename} for {book.title!r}: {e}")
                    continue
                if asset is None:
                    self.warn(f"Cover missing for {book.title!r}")
                    continue
                try:
                    self.record_image_for_catalog(self.image_key(book, filename), asset)
                except InvalidAssetError as e:
                    self.warn(str(e))
                    continue
                if was_generated:
                    generated += 1
                else:
                    reused += 1
        finally:
            pool.shutdown(wait=True)
        return self._end_stage(f"{generated} generated, {reused} unchanged")

    def _build_thumbnails(self) -> StageStatus:
        if self._image_generator is None:
            self._start_stage(Stage.BUILD_THUMBNAILS, 0)
            return self._end_stage("no image generator")
        profile = self.profile
        return self._run_image_stage(
            Stage.BUILD_THUMBNAILS, layout.THUMBNAIL_FILENAME,
            profile.thumbnail_width, profile.thumbnail_height,
        )

    def _build_covers(self) -> StageStatus:
        profile = self.profile
        return self._run_image_stage(
            Stage.BUILD_COVERS, self._cover_filename(),
            profile.cover_width, profile.cover_height,
        )

    # ------------------------------------------------------------------
    # Stages: library files and publishing
    # ------------------------------------------------------------------

    def _reprocess_format_metadata(self) -> StageStatus:
        pending = self.files_to_copy()
        self._start_stage(Stage.REPROCESS_FORMAT_METADATA, len(pending))
        library_root = self.profile.library_root
        changed = processed = 0
        for relative in pending:
            if not self.checkpoint():
                return self._stopped()
            path = library_root / relative
            identity = self.cache.confirm(path)
            if not identity.exists:
                self.warn(f"Book file missing: {path}")
                continue
            if not identity.changed:
                continue
            changed += 1
            if self._format_processor is not None and self._format_processor.accepts(path):
                self._format_processor.process(path)
                processed += 1
        return self._end_stage(f"{changed} changed, {processed} reprocessed")

    def _copy(self, src: Path, dst: Path) -> None:
        if copy_if_changed(src, dst, self.cache):
            self._files_copied += 1
        else:
            self._files_skipped += 1

    def _copy_library(self) -> StageStatus:
        target = self.profile.target_folder
        if target is None:
            self._start_stage(Stage.COPY_LIBRARY, 0)
            return self._end_stage("no target folder")

        pending = self.files_to_copy()
        self._start_stage(Stage.COPY_LIBRARY, len(pending))
        library_root = self.profile.library_root
        copied_before = self._files_copied
        for relative in pending:
            if not self.checkpoint():
                return self._stopped()
            source = library_root / relative
            if not self.cache.confirm(source).exists:
                self.warn(f"Book file missing, not copied: {source}")
                continue
            self._copy(source, target / relative)
        return self._end_stage(f"{self._files_copied - copied_before} of {len(pending)} copied")

    def _copy_catalog(self) -> StageStatus:
        assert self._output_root is not None
        pairs: list[tuple[Path, Path]] = []
        images_root = self._output_root / layout.IMAGES_FOLDER
        for key, asset in sorted(self.assets.all_entries().items()):
            pairs.append((Path(asset.path), images_root / key))

        target = self.profile.target_folder
        if target is not None:
            catalog_root = layout.catalog_target(target, self.profile.catalog_folder_name)
            assert self.allocator is not None
            for name in sorted(self.allocator.documents()):
                if name:
                    pairs.append((self._output_root / name, catalog_root / name))
            for key in sorted(self.assets.all_entries()):
                pairs.append((images_root / key, catalog_root / layout.IMAGES_FOLDER / key))

        self._start_stage(Stage.COPY_CATALOG, len(pairs))
        copied_before = self._files_copied
        for src, dst in pairs:
            if not self.checkpoint():
                return self._stopped()
            self._copy(src, dst)
        return self._end_stage(f"{self._files_copied - copied_before} of {len(pairs)} copied")

    def _finish(self) -> StageStatus:
        self._start_stage(Stage.FINISH, 0)
        self._cache_saved = self.cache.save() if self._cache_enabled else 0
        assert self._output_root is not None
        where = self.profile.target_folder or self._output_root
        elapsed_ms = int(sum(s.elapsed_ms for s in self._stages))
        self._callback.finished(str(where), elapsed_ms, self._warning_count)
        return self._end_stage(f"{self._warning_count} warnings")
