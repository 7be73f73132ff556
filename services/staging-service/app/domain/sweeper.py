"""Force-import of staging sessions whose review window lapsed."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .contracts import SessionStore
from .service import StagingService
from .. import metrics
from ..clock import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    processed: int = 0
    exercises_imported: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        if not self.processed and not self.failed:
            return "No expired sessions to process"
        return f"Processed {self.processed} expired sessions"


class ExpirationSweeper:
    """Moves lapsed sessions into the library through the regular import path."""

    def __init__(self, sessions: SessionStore, service: StagingService, clock: Clock | None = None) -> None:
        self._sessions = sessions
        self._service = service
        self._clock = clock or SystemClock()

    def run(self) -> SweepResult:
        """Process every expired open session; failures are isolated per session."""
        result = SweepResult()
        expired = list(self._sessions.list_expired_sessions(self._clock.now()))
        if expired:
            logger.info("found %d expired sessions to process", len(expired))

        for session in expired:
            try:
                outcome = self._service.auto_import(session)
            except Exception:
                logger.exception("error processing expired session %s", session.session_id)
                metrics.SESSIONS_SWEPT.labels(outcome="error").inc()
                result.failed += 1
                continue

            imported = outcome.inserted + outcome.updated
            result.exercises_imported += imported
            if outcome.failed_indices:
                logger.warning(
                    "session %s left open: %d of %d exercises failed to import",
                    session.session_id,
                    len(outcome.failed_indices),
                    outcome.total_exercises,
                )
                metrics.SESSIONS_SWEPT.labels(outcome="partial").inc()
                result.failed += 1
                continue

            metrics.SESSIONS_SWEPT.labels(outcome="expired").inc()
            result.processed += 1
            logger.info("processed session %s: imported %d exercises", session.session_id, imported)
        return result
