"""Exceptions raised outside of the per-document pipeline."""
from __future__ import annotations


class StandaardwerkError(Exception):
    """Base class for failures surfaced to callers."""


class ExtractionError(StandaardwerkError):
    """Raised when a source document cannot be read."""


class TrainingAborted(StandaardwerkError):
    """Raised when a training run cannot continue, e.g. an unreadable corpus."""

    def __init__(self, message: str, source: str | None = None) -> None:
        super().__init__(message)
        self.source = source
