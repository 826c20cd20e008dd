# src/opdsbuild/metadata/base_metadata_source.py — v1
"""Abstract metadata source interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from opdsbuild.core.models import Book, CustomColumnType, Tag


class BaseMetadataSource(ABC):
    """Supplies the raw library records a catalog is built from."""

    @abstractmethod
    def list_of_books(self) -> list[Book]:
        """All books in the library."""

    @abstractmethod
    def list_of_tags(self) -> list[Tag]:
        """All tags known to the library, used or not."""

    @abstractmethod
    def list_of_custom_column_types(self) -> list[CustomColumnType] | None:
        """Declared custom columns, or None if the library has none."""
