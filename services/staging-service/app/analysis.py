"""HTTP client for the external video analyzer."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx
from pydantic import ValidationError as SchemaValidationError

from schemas import VideoAnalysis

from .domain.errors import UpstreamError

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\n?")


def parse_analysis_text(text: str) -> VideoAnalysis:
    """Parse analyzer output that may be wrapped in a markdown code fence."""
    cleaned = _CODE_FENCE.sub("", text).strip()
    try:
        return VideoAnalysis.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, SchemaValidationError) as exc:
        raise UpstreamError("analyzer returned an unreadable result", {"reason": str(exc)}) from exc


class HttpVideoAnalyzer:
    """Calls an analyzer service that accepts ``{videoUrl, sport}`` and returns JSON text."""

    def __init__(self, base_url: str, *, timeout_seconds: float, client: httpx.Client | None = None) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_seconds)

    def analyze(self, video_url: str, sport: str | None = None) -> VideoAnalysis:
        """Request an analysis of ``video_url``; every failure surfaces as ``UpstreamError``."""
        payload: dict[str, Any] = {"videoUrl": video_url}
        if sport:
            payload["sport"] = sport
        logger.info("analyzing video %s", video_url)
        try:
            response = self._client.post("/analyze", json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamError("video analysis timed out", {"videoUrl": video_url}) from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"analyzer error ({exc.response.status_code})",
                {"body": exc.response.text[:500]},
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"analyzer unavailable: {exc}") from exc

        analysis = parse_analysis_text(response.text)
        logger.info("analyzer found %d exercises in %s", len(analysis.exercises), video_url)
        return analysis

    def close(self) -> None:
        self._client.close()
