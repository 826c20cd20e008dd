# src/opdsbuild/filters/book_filters.py — v1
"""Book filters deciding catalog membership.

The orchestrator only stores filters by identifier; these are the
implementations the CLI wires from a catalog profile.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from opdsbuild.core.models import Book


def tokenize_tags(tags: str) -> set[str]:
    """Split a comma separated tag list into upper-cased, trimmed names."""
    return {t.strip().upper() for t in tags.split(",") if t.strip()}


class BookFilter(ABC):
    """Predicate over books."""

    @abstractmethod
    def passes_filter(self, book: Book) -> bool:
        """Return True if the book belongs in the filtered set."""


class ForbiddenTagsFilter(BookFilter):
    """Reject books carrying any forbidden tag (case-insensitive)."""

    def __init__(self, forbidden_tags: str, include_books_with_no_tag: bool = True) -> None:
        self._forbidden = tokenize_tags(forbidden_tags or "")
        self._include_books_with_no_tag = include_books_with_no_tag

    def passes_filter(self, book: Book) -> bool:
        if book is None:
            return False
        if not book.tags:
            return self._include_books_with_no_tag
        if not self._forbidden:
            return True
        return not any(tag.name.upper() in self._forbidden for tag in book.tags)


class RequiredTagsFilter(BookFilter):
    """Accept books carrying at least one of the given tags."""

    def __init__(self, required_tags: str) -> None:
        self._required = tokenize_tags(required_tags or "")

    def passes_filter(self, book: Book) -> bool:
        if book is None or not self._required:
            return False
        return any(tag.name.upper() in self._required for tag in book.tags)
