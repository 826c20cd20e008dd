# src/opdsbuild/tracking/logging_progress.py — v1
"""Progress callback that reports through the logging subsystem (CLI use)."""

from __future__ import annotations

import logging

from opdsbuild.tracking.base_progress import BaseProgressCallback

logger = logging.getLogger(__name__)


class LoggingProgressCallback(BaseProgressCallback):
    """Log stage boundaries and a percentage every ``report_every`` units."""

    def __init__(self, report_every: int = 100) -> None:
        self._report_every = max(1, report_every)
        self._stage = ""
        self._expected = 0
        self._position = 0

    def stage_started(self, stage: str, expected_units: int) -> None:
        self._stage = stage
        self._expected = expected_units
        self._position = 0
        logger.info("Stage %s started (%d units)", stage, expected_units)

    def stage_ended(self, stage: str, elapsed_ms: int, summary: str | None) -> None:
        if summary:
            logger.info("Stage %s done in %dms (%s)", stage, elapsed_ms, summary)
        else:
            logger.info("Stage %s done in %dms", stage, elapsed_ms)

    def progress_step(self) -> None:
        self._position += 1
        if self._expected and self._position % self._report_every == 0:
            logger.info(
                "%s: %d/%d (%d%%)",
                self._stage, self._position, self._expected,
                100 * self._position // self._expected,
            )

    def message(self, text: str) -> None:
        logger.info(text)

    def warning_incremented(self, message: str, warning_count: int) -> None:
        logger.debug("Warning %d recorded: %s", warning_count, message)

    def error(self, message: str, cause: BaseException | None) -> None:
        logger.error(message, exc_info=cause)

    def finished(self, where: str, elapsed_ms: int, warning_count: int) -> None:
        logger.info("Catalog generated in %s (%dms)", where, elapsed_ms)
        if warning_count:
            logger.info("Completed with %d warnings", warning_count)
