from __future__ import annotations

import json

import httpx
import pytest

from app.analysis import HttpVideoAnalyzer, parse_analysis_text
from app.domain.errors import UpstreamError

from conftest import make_analysis

VIDEO_URL = "https://youtube.com/watch?v=abc123"


def _analyzer(handler) -> HttpVideoAnalyzer:
    client = httpx.Client(base_url="http://analyzer", transport=httpx.MockTransport(handler))
    return HttpVideoAnalyzer("http://analyzer", timeout_seconds=5, client=client)


def test_analyze_posts_video_and_parses_fenced_json():
    seen = {}
    body = make_analysis().model_dump_json()

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, text=f"```json\n{body}\n```")

    analysis = _analyzer(handler).analyze(VIDEO_URL, "weightlifting")

    assert seen == {"path": "/analyze", "payload": {"videoUrl": VIDEO_URL, "sport": "weightlifting"}}
    assert analysis == make_analysis()


def test_analyzer_error_status_is_upstream_error():
    analyzer = _analyzer(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(UpstreamError) as excinfo:
        analyzer.analyze(VIDEO_URL)
    assert excinfo.value.message == "analyzer error (503)"
    assert excinfo.value.details == {"body": "overloaded"}


def test_analyzer_timeout_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(UpstreamError) as excinfo:
        _analyzer(handler).analyze(VIDEO_URL)
    assert excinfo.value.message == "video analysis timed out"


def test_unreadable_analysis_is_upstream_error():
    with pytest.raises(UpstreamError):
        parse_analysis_text("I could not find any exercises in this video.")
    with pytest.raises(UpstreamError):
        parse_analysis_text('{"video_title": "No exercises key", "exercises": [{"name": ""}]}')


def test_plain_json_is_accepted():
    analysis = parse_analysis_text(make_analysis("Plank Hold").model_dump_json())

    assert [exercise.name for exercise in analysis.exercises] == ["Plank Hold"]
