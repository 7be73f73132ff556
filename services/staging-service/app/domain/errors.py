"""Error taxonomy for staging workflows.

Every error carries a short ``message`` suitable for the ``error`` field of an
API response and optional structured ``details``.
"""

from __future__ import annotations

from typing import Any


class StagingError(Exception):
    """Base class for failures surfaced by the staging service."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StagingError):
    """Request input is malformed or references indices that do not exist."""


class SessionClosedError(ValidationError):
    """The session no longer accepts imports or edits."""


class QuotaExceededError(StagingError):
    """The owner already holds the maximum number of open sessions."""


class NotFoundError(StagingError):
    """A referenced session or library row does not exist."""


class StoreWriteError(StagingError):
    """A single store read or write failed."""


class UpstreamError(StagingError):
    """The external video analyzer failed or timed out."""
