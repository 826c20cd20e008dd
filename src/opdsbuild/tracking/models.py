# src/opdsbuild/tracking/models.py — v1
"""Tracking domain models: StageRecord, BuildResult."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class StageRecord(BaseModel):
    """Timing and outcome of one build stage."""

    stage: str
    expected_units: int
    completed_units: int = 0
    started_at: datetime
    elapsed_ms: int = 0
    summary: str | None = None
    status: Literal["running", "completed", "stopped", "failed"] = "running"


class BuildResult(BaseModel):
    """Outcome of a full catalog-generation run."""

    run_id: str
    status: Literal["completed", "stopped"]
    output_root: str
    stages: list[StageRecord] = Field(default_factory=list)
    warning_count: int = 0
    cache_entries_loaded: int = 0
    cache_entries_saved: int = 0
    files_copied: int = 0
    files_skipped: int = 0
    duration_ms: int = 0

    @property
    def stopped(self) -> bool:
        return self.status == "stopped"
