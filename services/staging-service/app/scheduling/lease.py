"""Mutual exclusion for periodic jobs, in-process or across replicas via Redis."""

from __future__ import annotations

import secrets
import time
from threading import Lock
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError


class LocalLease:
    """Process-local lease backed by per-name locks."""

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def acquire(self, name: str) -> str | None:
        """Return a token when the lease was taken, ``None`` when it is already held."""
        with self._guard:
            lock = self._locks.setdefault(name, Lock())
        if not lock.acquire(blocking=False):
            return None
        return secrets.token_hex(8)

    def release(self, name: str, token: str) -> None:
        with self._guard:
            lock = self._locks.get(name)
        if lock is not None and lock.locked():
            lock.release()


class RedisLease:
    """Distributed lease implemented with ``SET NX PX`` and a compare-and-delete release."""

    _RELEASE_SCRIPT: Final[str] = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, client: Redis, *, ttl_seconds: int, key_prefix: str = "lease") -> None:
        """Keep the client and TTL; the TTL bounds how long a crashed holder blocks others."""
        self._client = client
        self._ttl_ms = ttl_seconds * 1000
        self._key_prefix = key_prefix
        self._release = client.register_script(self._RELEASE_SCRIPT)

    def acquire(self, name: str) -> str | None:
        token = f"{int(time.time() * 1000)}:{secrets.token_hex(8)}"
        if self._client.set(self._key(name), token, nx=True, px=self._ttl_ms):
            return token
        return None

    def release(self, name: str, token: str) -> None:
        key = self._key(name)
        try:
            self._release(keys=[key], args=[token])
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                self._release_fallback(key, token)
                return
            raise

    def _release_fallback(self, key: str, token: str) -> None:
        """Non-atomic release used when Lua scripting is unavailable."""
        current = self._client.get(key)
        if isinstance(current, bytes):
            current = current.decode("utf-8")
        if current == token:
            self._client.delete(key)

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}:{name}"
