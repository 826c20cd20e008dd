# src/opdsbuild/logging/context.py — v1
"""Contextual logging support: attach run_id, profile and stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per catalog run.
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_profile: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "profile", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    run_id: str | None = None
    profile: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        run_id=_run_id.get(),
        profile=_profile.get(),
        stage=_stage.get(),
    )


def set_run_context(run_id: str, profile: str | None = None) -> None:
    """Set run-level context (called once per catalog run)."""
    _run_id.set(run_id)
    _profile.set(profile)


def set_stage_context(stage: str | None) -> None:
    """Set the stage currently executing."""
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _run_id.set(None)
    _profile.set(None)
    _stage.set(None)
