import json
from typing import Any

import httpx
from conftest import choice_step, module_dict

from studyengine.models import Progress
from studyengine.progress import ProgressStoreError
from studyengine.remote import RemoteStudyClient
from studyengine.settings import Settings


def _client(handler: Any) -> RemoteStudyClient:
    return RemoteStudyClient("http://api.test/api", token="secret", transport=httpx.MockTransport(handler))


def test_fetch_module_unwraps_envelopes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": {"module": module_dict([[choice_step(1)]], module_id="remote")}})

    module = _client(handler).fetch_module("remote")
    assert module.id == "remote"
    assert module.lessons[0].steps[0].step_number == 1
    assert seen[0].url.path == "/api/study-modules/remote"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_fetch_module_accepts_bare_object() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=module_dict([[choice_step(1)]], module_id="bare"))

    assert _client(handler).fetch_module("bare").id == "bare"


def test_fetch_invalid_module_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"module": {"title": "No id"}})

    try:
        _client(handler).fetch_module("broken")
        raise AssertionError("Expected a ProgressStoreError for an invalid module.")
    except ProgressStoreError as exc:
        assert "invalid" in str(exc)


def test_load_progress_missing_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    assert _client(handler).load_progress("m") is None


def test_load_progress_parses_zero_based_snapshot() -> None:
    snapshot = {
        "currentLesson": 1,
        "currentStep": 2,
        "totalXP": 90,
        "livesRemaining": 1,
        "streak": 1,
        "completedLessons": ["m-l1"],
        "badges": [],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/study-modules/m/progress"
        return httpx.Response(200, json={"progress": snapshot})

    progress = _client(handler).load_progress("m")
    assert progress == Progress(
        current_lesson=2,
        current_step=3,
        total_xp=90,
        lives_remaining=1,
        streak=1,
        completed_lessons=("m-l1",),
    )


def test_save_progress_posts_zero_based_snapshot_with_flags() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    progress = Progress(current_lesson=1, current_step=1, total_xp=60, badges=("FLOWERS",))
    _client(handler).save_progress("m", progress, include_current_step_completed=True, module_completed=True)
    assert bodies == [
        {
            "currentLesson": 0,
            "currentStep": 0,
            "totalXP": 60,
            "livesRemaining": 0,
            "streak": 0,
            "completedLessons": [],
            "badges": ["FLOWERS"],
            "includeCurrentStepCompleted": True,
            "moduleCompleted": True,
        }
    ]


def test_load_progress_default_snapshot_starts_at_first_step() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "currentLesson": 0,
                "currentStep": 0,
                "totalXP": 0,
                "livesRemaining": 3,
                "streak": 0,
                "completedLessons": [],
                "badges": [],
            },
        )

    progress = _client(handler).load_progress("m")
    assert progress == Progress(current_lesson=1, current_step=1, lives_remaining=3)


def test_remote_positions_round_trip_through_service_counting() -> None:
    stored: dict[str, Any] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = json.loads(request.content)
            stored["currentLesson"] = body["currentLesson"] + 1
            stored["currentStep"] = body["currentStep"] + 1
            return httpx.Response(204)
        return httpx.Response(
            200,
            json={"currentLesson": stored["currentLesson"] - 1, "currentStep": stored["currentStep"] - 1},
        )

    client = _client(handler)
    client.save_progress(
        "m",
        Progress(current_lesson=2, current_step=3),
        include_current_step_completed=False,
        module_completed=False,
    )
    assert stored == {"currentLesson": 3, "currentStep": 4}
    progress = client.load_progress("m")
    assert progress is not None
    assert (progress.current_lesson, progress.current_step) == (2, 3)


def test_server_error_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    try:
        _client(handler).save_progress("m", Progress(), include_current_step_completed=False, module_completed=False)
        raise AssertionError("Expected a ProgressStoreError for HTTP 500.")
    except ProgressStoreError as exc:
        assert "HTTP 500" in str(exc)


def test_transport_error_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    try:
        _client(handler).load_progress("m")
        raise AssertionError("Expected a ProgressStoreError for a connection failure.")
    except ProgressStoreError as exc:
        assert "failed" in str(exc)


def test_invalid_json_raises_store_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    try:
        _client(handler).load_progress("m")
        raise AssertionError("Expected a ProgressStoreError for invalid JSON.")
    except ProgressStoreError as exc:
        assert "invalid JSON" in str(exc)


def test_client_from_settings() -> None:
    settings = Settings(api_base_url="http://school.test/api/", api_token=None, http_timeout_seconds=2.5)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    client = RemoteStudyClient.from_settings(settings, transport=httpx.MockTransport(handler))
    assert client.load_progress("m") is None
    assert str(calls[0].url) == "http://school.test/api/study-modules/m/progress"
    assert "Authorization" not in calls[0].headers
    client.close()
