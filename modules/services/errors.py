"""Failure signals shared by the generation session, history store and exports."""

from __future__ import annotations

from typing import Optional


class GenerationError(Exception):
    """Base class for every reportable failure in the studio."""


class ValidationError(GenerationError):
    """A submission was refused locally before reaching the service."""

    EMPTY_PROMPT = "empty_prompt"
    BUSY = "busy"

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


class ServiceError(GenerationError):
    """The remote generation call failed, timed out or answered garbage."""


class PersistenceError(GenerationError):
    """Durable storage could not be written; state lives in memory only."""


class CorruptHistoryError(GenerationError):
    """A stored history payload could not be decoded."""


class DuplicateRecordError(GenerationError, ValueError):
    """A record with the same id is already present in the history."""


class ExportError(GenerationError):
    """Downloading or exporting a generated image failed."""
