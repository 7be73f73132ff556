"""Time source injected into services so expiry logic can be tested."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""


class SystemClock:
    """Wall-clock implementation used outside of tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
