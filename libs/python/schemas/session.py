"""Staging session status shared by the staging service and its clients."""

from __future__ import annotations

from enum import Enum


class StagingStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    expired = "expired"
    error = "error"


OPEN_STATUSES: frozenset[StagingStatus] = frozenset(
    {StagingStatus.pending, StagingStatus.in_progress}
)
