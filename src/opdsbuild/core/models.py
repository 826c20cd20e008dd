# src/opdsbuild/core/models.py — v1
"""Shared Pydantic domain models used across modules.

These are the records supplied by a metadata source. No module redefines
them; all imports come from core.models.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# === LIBRARY RECORDS ===


class Tag(BaseModel, frozen=True):
    """A tag attached to zero or more books."""

    id: int
    name: str


class Author(BaseModel, frozen=True):
    """A book author."""

    id: int
    name: str
    sort: str = ""


class Series(BaseModel, frozen=True):
    """A named series of books."""

    id: int
    name: str


class CustomColumnType(BaseModel, frozen=True):
    """A user-defined column declared in the library database."""

    id: int
    label: str
    name: str
    datatype: str


class BookFile(BaseModel):
    """One format file of a book, relative to the book folder."""

    format: str
    filename: str
    size_bytes: int = 0


# === BOOK ===


class Book(BaseModel):
    """A library book with everything the catalog needs to describe it."""

    id: int
    title: str
    sort: str = ""
    path: str  # book folder, relative to the library root
    timestamp: datetime | None = None
    rating: int | None = None
    series: Series | None = None
    series_index: float | None = None
    has_cover: bool = False
    authors: list[Author] = Field(default_factory=list)
    tags: list[Tag] = Field(default_factory=list)
    files: list[BookFile] = Field(default_factory=list)
    custom_values: dict[str, str] = Field(default_factory=dict)

    @property
    def sort_key(self) -> str:
        return (self.sort or self.title).upper()
