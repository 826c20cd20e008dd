# src/opdsbuild/tracking/base_progress.py — v1
"""Abstract progress callback interface.

The orchestrator reports through this interface and carries no UI logic
itself; a GUI or CLI supplies the implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseProgressCallback(ABC):
    """Receives build progress notifications."""

    @abstractmethod
    def stage_started(self, stage: str, expected_units: int) -> None:
        """A stage began; expected_units scales the progress indicator."""

    @abstractmethod
    def stage_ended(self, stage: str, elapsed_ms: int, summary: str | None) -> None:
        """A stage completed."""

    @abstractmethod
    def progress_step(self) -> None:
        """One unit of the current stage completed."""

    @abstractmethod
    def message(self, text: str) -> None:
        """Free-form status text."""

    @abstractmethod
    def warning_incremented(self, message: str, warning_count: int) -> None:
        """A recoverable problem was skipped."""

    @abstractmethod
    def error(self, message: str, cause: BaseException | None) -> None:
        """A fatal problem ended the run."""

    @abstractmethod
    def finished(self, where: str, elapsed_ms: int, warning_count: int) -> None:
        """The run reached its final stage."""
