# src/opdsbuild/main.py — v1
"""CLI entry point — build, cache stats, cache reset commands.

Usage:
    opdsbuild build [--profile FILE] [--library DIR] [-o DIR] [--target DIR]
    opdsbuild cache stats <output_dir>
    opdsbuild cache reset <output_dir>
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from opdsbuild.version import __version__

if TYPE_CHECKING:
    from opdsbuild.config.profile import CatalogProfile
    from opdsbuild.config.settings import Settings
    from opdsbuild.pipeline.orchestrator import BuildOrchestrator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_FAILED

    try:
        settings = _load_settings()
    except Exception as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FAILED
    _setup_logging(settings, args.verbose)

    try:
        return args.func(args, settings)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return EXIT_FAILED


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="opdsbuild",
        description=f"opdsbuild v{__version__} — OPDS catalog generator for Calibre libraries",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- build ---
    p_build = subparsers.add_parser(
        "build", help="Generate the catalog for a library",
    )
    p_build.add_argument(
        "--profile", type=Path, default=None,
        help="Catalog profile JSON (default: OPDSBUILD_PROFILE_PATH)",
    )
    p_build.add_argument(
        "--library", type=Path, default=None,
        help="Calibre library folder (overrides the profile)",
    )
    p_build.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Catalog output folder (default: <library>/<catalog folder name>)",
    )
    p_build.add_argument(
        "--target", type=Path, default=None,
        help="Publish folder receiving library files and the catalog",
    )
    p_build.set_defaults(func=_cmd_build)

    # --- cache ---
    p_cache = subparsers.add_parser(
        "cache", help="Inspect or reset the checksum cache",
    )
    cache_sub = p_cache.add_subparsers(dest="cache_command")

    p_stats = cache_sub.add_parser("stats", help="Show cache statistics")
    p_stats.add_argument("output_dir", type=Path, help="Catalog output folder")
    p_stats.set_defaults(func=_cmd_cache_stats)

    p_reset = cache_sub.add_parser("reset", help="Delete the persisted cache")
    p_reset.add_argument("output_dir", type=Path, help="Catalog output folder")
    p_reset.set_defaults(func=_cmd_cache_reset)

    return parser


def _cmd_build(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one catalog-generation run."""
    from opdsbuild.config.profile import load_profile, save_profile
    from opdsbuild.imaging.pillow_generator import PillowImageGenerator
    from opdsbuild.metadata.calibre_source import CalibreMetadataSource
    from opdsbuild.pipeline.orchestrator import BuildOrchestrator
    from opdsbuild.render.atom_renderer import AtomFeedRenderer
    from opdsbuild.tracking.logging_progress import LoggingProgressCallback

    profile_path: Path = args.profile or settings.profile_path
    profile = load_profile(profile_path)
    if args.library is not None:
        profile.library_root = args.library
    if args.target is not None:
        profile.target_folder = args.target

    library_root = profile.library_root.expanduser()
    if not library_root.is_dir():
        logger.error("Library folder not found: %s", library_root)
        return EXIT_FAILED
    profile.library_root = library_root
    output: Path = args.output or library_root / profile.catalog_folder_name

    orchestrator = BuildOrchestrator(
        metadata_source=CalibreMetadataSource(library_root),
        renderer=AtomFeedRenderer(profile.catalog_title),
        image_generator=PillowImageGenerator(),
        callback=LoggingProgressCallback(),
        max_workers=settings.max_workers,
        cache_enabled=settings.cache_enabled,
        cache_filename=settings.cache_filename,
    )
    previous_code = profile.security_code
    orchestrator.begin_run(output, profile)
    if profile.security_code != previous_code:
        save_profile(profile, profile_path)
        logger.info("Security code stored in %s", profile_path)
    _register_filters(orchestrator, profile)

    def _on_interrupt(signum: int, frame: object) -> None:
        logger.info("Interrupt received, stopping at the next checkpoint")
        orchestrator.request_stop()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        result = orchestrator.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print("\nBuild stopped:" if result.stopped else "\nBuild complete:")
    print(f"  Run ID:        {result.run_id}")
    print(f"  Output:        {result.output_root}")
    print(f"  Stages:        {len(result.stages)}")
    print(f"  Files copied:  {result.files_copied}")
    print(f"  Unchanged:     {result.files_skipped}")
    print(f"  Cache saved:   {result.cache_entries_saved}")
    print(f"  Warnings:      {result.warning_count}")
    print(f"  Duration:      {result.duration_ms / 1000:.1f}s")
    return EXIT_INTERRUPTED if result.stopped else EXIT_OK


def _register_filters(orchestrator: BuildOrchestrator, profile: CatalogProfile) -> None:
    """Wire profile content-selection options to named filters."""
    from opdsbuild.filters.book_filters import ForbiddenTagsFilter, RequiredTagsFilter
    from opdsbuild.pipeline.orchestrator import (
        CATALOG_FILTER_ID,
        CUSTOM_FILTER_PREFIX,
        FEATURED_FILTER_ID,
    )

    orchestrator.register_filter(
        CATALOG_FILTER_ID,
        ForbiddenTagsFilter(profile.forbidden_tags, profile.include_books_with_no_tag),
    )
    if profile.featured_tags:
        orchestrator.register_filter(FEATURED_FILTER_ID, RequiredTagsFilter(profile.featured_tags))
    for name, tags in profile.custom_catalogs.items():
        orchestrator.register_filter(CUSTOM_FILTER_PREFIX + name, RequiredTagsFilter(tags))


def _cmd_cache_stats(args: argparse.Namespace, settings: Settings) -> int:
    """Display persisted cache statistics for an output folder."""
    from opdsbuild.cache.checksum_cache import ChecksumCache

    output_dir: Path = args.output_dir
    if not output_dir.is_dir():
        logger.error("Not a directory: %s", output_dir)
        return EXIT_FAILED

    cache = ChecksumCache(settings.cache_filename)
    cache.configure_location(output_dir)
    loaded = cache.initialize()
    entries = cache.entries()
    total_bytes = sum(e.size for e in entries if e.size > 0)

    print(f"\nChecksum cache for {output_dir}:")
    print(f"  File:     {cache.cache_file}")
    print(f"  Present:  {cache.cache_file is not None and cache.cache_file.exists()}")
    print(f"  Entries:  {loaded}")
    print(f"  Tracked:  {total_bytes / (1024 * 1024):.1f} MB")
    return EXIT_OK


def _cmd_cache_reset(args: argparse.Namespace, settings: Settings) -> int:
    """Delete the persisted cache so the next build starts cold."""
    from opdsbuild.cache.checksum_cache import ChecksumCache

    output_dir: Path = args.output_dir
    cache = ChecksumCache(settings.cache_filename)
    cache.configure_location(output_dir)
    cache.delete_all()
    print(f"Checksum cache removed from {output_dir}")
    return EXIT_OK


def _load_settings() -> Settings:
    from opdsbuild.config.settings import load_settings

    return load_settings()


def _setup_logging(settings: Settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from opdsbuild.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())

