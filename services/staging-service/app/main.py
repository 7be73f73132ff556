"""FastAPI application wiring for the staging service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .analysis import HttpVideoAnalyzer
from .api.errors import install_error_handlers
from .api.routes import router as v1_router
from .config import get_settings
from .domain.service import StagingService
from .domain.sweeper import ExpirationSweeper
from .repository import LibraryRepository, SessionRepository, WorkoutRepository
from .scheduling.jobs import PeriodicJob, build_lease

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services, sweep jobs) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    sessions = SessionRepository(pool)
    analyzer = None
    if settings.analyzer_url:
        analyzer = HttpVideoAnalyzer(settings.analyzer_url, timeout_seconds=settings.analyzer_timeout_seconds)
    service = StagingService(
        sessions,
        LibraryRepository(pool),
        settings=settings,
        analyzer=analyzer,
        workouts=WorkoutRepository(pool),
    )
    sweeper = ExpirationSweeper(sessions, service)
    app.state.pool = pool
    app.state.staging_service = service
    app.state.sweeper = sweeper

    jobs: list[PeriodicJob] = []
    if settings.sweep_enabled:
        lease = build_lease(settings)
        jobs = [
            PeriodicJob(
                "expire-sessions",
                sweeper.run,
                interval_seconds=settings.sweep_interval_seconds,
                lease=lease,
            ),
            PeriodicJob(
                "clear-new-flags",
                service.clear_expired_new_flags,
                interval_seconds=settings.new_flag_sweep_interval_seconds,
                lease=lease,
            ),
        ]
        for job in jobs:
            job.start()
    try:
        yield
    finally:
        for job in jobs:
            job.stop()
        if analyzer is not None:
            analyzer.close()
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

install_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(v1_router)


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics for scrapes."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
