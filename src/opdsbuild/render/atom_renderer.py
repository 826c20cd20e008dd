# src/opdsbuild/render/atom_renderer.py — v1
"""OPDS 1.x Atom renderer built with lxml.

Output is deterministic for unchanged input (``updated`` derives from book
timestamps, not the clock) so that unchanged documents are not re-copied
to the publish target.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from lxml import etree
from lxml.builder import ElementMaker

from opdsbuild.core.models import Book
from opdsbuild.render.base_feed_renderer import BaseFeedRenderer, NavigationLink
from opdsbuild.storage.layout import FOLDER_SEPARATOR

if TYPE_CHECKING:
    from opdsbuild.pipeline.orchestrator import BuildOrchestrator

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
OPDS_NS = "http://opds-spec.org/2010/catalog"
DC_NS = "http://purl.org/dc/terms/"

NAVIGATION_TYPE = "application/atom+xml;profile=opds-catalog;kind=navigation"
ACQUISITION_TYPE = "application/atom+xml;profile=opds-catalog;kind=acquisition"
REL_THUMBNAIL = "http://opds-spec.org/image/thumbnail"
REL_IMAGE = "http://opds-spec.org/image"
REL_ACQUISITION = "http://opds-spec.org/acquisition"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MIME_TYPES = {
    "epub": "application/epub+zip",
    "pdf": "application/pdf",
    "mobi": "application/x-mobipocket-ebook",
    "azw3": "application/vnd.amazon.ebook",
    "fb2": "application/x-fictionbook+xml",
    "cbz": "application/x-cbz",
    "txt": "text/plain",
}

A = ElementMaker(namespace=ATOM_NS, nsmap={None: ATOM_NS, "opds": OPDS_NS, "dc": DC_NS})


def _iso(ts: datetime | None) -> str:
    ts = ts or _EPOCH
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.isoformat()


def _latest(books: Sequence[Book]) -> datetime | None:
    stamps = [b.timestamp for b in books if b.timestamp is not None]
    return max(stamps, key=lambda ts: _iso(ts)) if stamps else None


class AtomFeedRenderer(BaseFeedRenderer):
    """Render catalog documents as OPDS Atom feeds."""

    def __init__(self, catalog_title: str = "Calibre library") -> None:
        self._catalog_title = catalog_title

    def render_feed(
        self,
        document_name: str,
        title: str,
        books: Sequence[Book],
        context: BuildOrchestrator,
    ) -> Path:
        in_subdir = FOLDER_SEPARATOR in document_name
        feed = self._feed_header(document_name, title, _latest(books), ACQUISITION_TYPE, context)
        for book in books:
            feed.append(self._book_entry(book, in_subdir, context))
        return self._write(feed, document_name, context)

    def render_navigation(
        self,
        document_name: str,
        title: str,
        links: Sequence[NavigationLink],
        context: BuildOrchestrator,
    ) -> Path:
        in_subdir = FOLDER_SEPARATOR in document_name
        feed = self._feed_header(document_name, title, None, NAVIGATION_TYPE, context)
        for link in links:
            entry = A.entry(
                A.title(link.title),
                A.id(f"urn:opdsbuild:{link.document_name}"),
                A.updated(_iso(None)),
                A.link(
                    rel="subsection",
                    type=NAVIGATION_TYPE,
                    href=context.resolve_url(link.document_name, in_subdir),
                ),
            )
            if link.count:
                entry.append(A.content(f"{link.count} books", type="text"))
            feed.append(entry)
        return self._write(feed, document_name, context)

    # ------------------------------------------------------------------

    def _feed_header(
        self,
        document_name: str,
        title: str,
        updated: datetime | None,
        kind: str,
        context: BuildOrchestrator,
    ) -> etree._Element:
        in_subdir = FOLDER_SEPARATOR in document_name
        return A.feed(
            A.id(f"urn:opdsbuild:{document_name}"),
            A.title(title or self._catalog_title),
            A.updated(_iso(updated)),
            A.link(rel="self", type=kind, href=context.resolve_url(document_name, in_subdir)),
            A.link(
                rel="start",
                type=NAVIGATION_TYPE,
                href=context.resolve_url(context.initial_document, in_subdir),
            ),
        )

    def _book_entry(
        self, book: Book, in_subdir: bool, context: BuildOrchestrator,
    ) -> etree._Element:
        entry = A.entry(
            A.title(book.title),
            A.id(f"urn:opdsbuild:book:{book.id}"),
            A.updated(_iso(book.timestamp)),
        )
        for author in book.authors:
            entry.append(A.author(A.name(author.name)))

        ignored = context.tags_to_ignore()
        for tag in book.tags:
            if tag not in ignored:
                entry.append(A.category(term=tag.name, label=tag.name))

        details = []
        if book.series is not None:
            index = f" [{book.series_index:g}]" if book.series_index is not None else ""
            details.append(f"Series: {book.series.name}{index}")
        for column in context.book_details_custom_columns():
            value = book.custom_values.get(column.label)
            if value:
                details.append(f"{column.name}: {value}")
        if details:
            entry.append(A.content("\n".join(details), type="text"))

        thumbnail = context.thumbnail_url(book, in_subdir)
        if thumbnail:
            entry.append(A.link(rel=REL_THUMBNAIL, type="image/jpeg", href=thumbnail))
        cover = context.cover_url(book, in_subdir)
        if cover:
            entry.append(A.link(rel=REL_IMAGE, type="image/jpeg", href=cover))
        for book_file in book.files:
            entry.append(A.link(
                rel=REL_ACQUISITION,
                type=MIME_TYPES.get(book_file.format, "application/octet-stream"),
                href=context.library_url(book, book_file, in_subdir),
            ))
        return entry

    def _write(
        self, feed: etree._Element, document_name: str, context: BuildOrchestrator,
    ) -> Path:
        path = context.allocate(document_name)
        data = etree.tostring(feed, xml_declaration=True, encoding="utf-8", pretty_print=True)
        path.write_bytes(data)
        logger.debug("Wrote %s (%d bytes)", path, len(data))
        return path
