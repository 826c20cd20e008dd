# src/opdsbuild/render/base_feed_renderer.py — v1
"""Abstract feed renderer interface.

Renderers serialize one catalog document at a time. Paths and link URLs
come from the orchestrator so that every document lands where the path
allocator says it does.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from opdsbuild.core.models import Book

if TYPE_CHECKING:
    from opdsbuild.pipeline.orchestrator import BuildOrchestrator


@dataclass(frozen=True)
class NavigationLink:
    """A link from a navigation document to another catalog document."""

    document_name: str
    title: str
    count: int = 0


class BaseFeedRenderer(ABC):
    """Writes catalog documents."""

    @abstractmethod
    def render_feed(
        self,
        document_name: str,
        title: str,
        books: Sequence[Book],
        context: BuildOrchestrator,
    ) -> Path:
        """Write an acquisition document listing books; return its path."""

    @abstractmethod
    def render_navigation(
        self,
        document_name: str,
        title: str,
        links: Sequence[NavigationLink],
        context: BuildOrchestrator,
    ) -> Path:
        """Write a navigation document listing other documents; return its path."""
