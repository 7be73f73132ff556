"""Background threads that run the expiration sweep and new-flag cleanup."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol

from ..config import Settings
from .lease import LocalLease, RedisLease

logger = logging.getLogger(__name__)


class Lease(Protocol):
    def acquire(self, name: str) -> str | None: ...

    def release(self, name: str, token: str) -> None: ...


def build_lease(settings: Settings) -> Lease:
    """Instantiate the configured lease backend, preferring Redis when available."""
    if settings.sweep_lease_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("sweep lease configured for redis backend at %s", settings.redis_url)
            return RedisLease(client, ttl_seconds=settings.sweep_lease_ttl_seconds)
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis sweep lease unavailable, falling back to in-memory: %s", exc)

    logger.info("sweep lease using in-memory backend")
    return LocalLease()


class PeriodicJob:
    """Runs ``task`` every ``interval_seconds`` on a daemon thread while holding a lease."""

    def __init__(
        self,
        name: str,
        task: Callable[[], Any],
        *,
        interval_seconds: float,
        lease: Lease,
    ) -> None:
        self.name = name
        self._task = task
        self._interval = interval_seconds
        self._lease = lease
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        logger.info("started periodic job %s every %ss", self.name, self._interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)

    def run_loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self._interval)

    def run_once(self) -> Any:
        """Run the task once if the lease is free; returns the task result or ``None``."""
        token = self._lease.acquire(self.name)
        if token is None:
            logger.info("skipping %s: another run holds the lease", self.name)
            return None
        try:
            return self._task()
        except Exception:
            logger.exception("periodic job %s failed", self.name)
            return None
        finally:
            self._lease.release(self.name, token)
