"""Tests for sweep leases and the periodic job runner."""

from __future__ import annotations

import threading

import fakeredis
import pytest

from app.config import Settings
from app.scheduling.jobs import PeriodicJob, build_lease
from app.scheduling.lease import LocalLease, RedisLease


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_local_lease_is_exclusive_until_released():
    lease = LocalLease()

    token = lease.acquire("expire-sessions")
    assert token is not None
    assert lease.acquire("expire-sessions") is None
    assert lease.acquire("clear-new-flags") is not None

    lease.release("expire-sessions", token)
    assert lease.acquire("expire-sessions") is not None


def test_redis_lease_is_exclusive_and_expires(redis_client):
    lease = RedisLease(redis_client, ttl_seconds=30, key_prefix="test")

    token = lease.acquire("expire-sessions")
    assert token is not None
    assert lease.acquire("expire-sessions") is None
    assert 0 < redis_client.pttl("test:expire-sessions") <= 30_000


def test_redis_lease_release_requires_matching_token(redis_client):
    lease = RedisLease(redis_client, ttl_seconds=30, key_prefix="test")
    token = lease.acquire("expire-sessions")

    lease.release("expire-sessions", "someone-else")
    assert lease.acquire("expire-sessions") is None

    lease.release("expire-sessions", token)
    assert lease.acquire("expire-sessions") is not None


def test_build_lease_defaults_to_memory():
    assert isinstance(build_lease(Settings(sweep_lease_backend="memory")), LocalLease)
    assert isinstance(build_lease(Settings(sweep_lease_backend="redis", redis_url="")), LocalLease)


def test_run_once_returns_task_result_and_releases():
    lease = LocalLease()
    job = PeriodicJob("expire-sessions", lambda: "done", interval_seconds=60, lease=lease)

    assert job.run_once() == "done"
    assert lease.acquire("expire-sessions") is not None


def test_run_once_skips_while_lease_is_held():
    lease = LocalLease()
    calls = []
    job = PeriodicJob("expire-sessions", lambda: calls.append(1), interval_seconds=60, lease=lease)
    lease.acquire("expire-sessions")

    assert job.run_once() is None
    assert calls == []


def test_run_once_logs_task_failure(caplog):
    lease = LocalLease()

    def explode():
        raise RuntimeError("database unavailable")

    job = PeriodicJob("clear-new-flags", explode, interval_seconds=60, lease=lease)

    with caplog.at_level("ERROR"):
        assert job.run_once() is None

    assert "periodic job clear-new-flags failed" in caplog.text
    assert lease.acquire("clear-new-flags") is not None


def test_started_job_runs_until_stopped():
    ran = threading.Event()
    job = PeriodicJob("expire-sessions", ran.set, interval_seconds=3600, lease=LocalLease())

    job.start()
    try:
        assert ran.wait(timeout=2.0)
    finally:
        job.stop()
