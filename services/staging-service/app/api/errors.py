"""Translate domain errors into ``{error, details}`` JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..domain.errors import (
    NotFoundError,
    QuotaExceededError,
    SessionClosedError,
    StagingError,
    StoreWriteError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# most specific classes first
_STATUS_BY_ERROR: tuple[tuple[type[StagingError], int], ...] = (
    (SessionClosedError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (QuotaExceededError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (UpstreamError, status.HTTP_502_BAD_GATEWAY),
    (StoreWriteError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: StagingError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, details: object | None = None) -> dict[str, object]:
    body: dict[str, object] = {"error": message}
    if details:
        body["details"] = details
    return body


async def _handle_staging_error(request: Request, exc: StagingError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=error_body(exc.message, exc.details))


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("invalid request", details),
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the staging error handlers on ``app``."""
    app.add_exception_handler(StagingError, _handle_staging_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
