"""Tests for acceptance payloads and response classification."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from workplan.api.schemas.work_plan import Story, Task
from workplan.core.errors import (
    ContinuousWorkError,
    ParseError,
    RateLimitError,
    ServerError,
    StructureError,
    ValidationRejectedError,
)
from workplan.services.acceptance_client import AcceptanceClient, build_acceptance_request, classify_response
from workplan.services.timebox_allocator import TimeBoxAllocator

START = datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc)
ACCEPTED = {"success": True, "data": {"storyBlocks": [{"title": "Deep work", "timeBoxes": []}], "totalDuration": 125}}


def _schedule():
    story = Story(title="Deep work", tasks=[Task(title="Deep work", duration=120, is_frog=True)])
    return TimeBoxAllocator().allocate([story], start_time=START)


def test_rate_limit_statuses() -> None:
    with pytest.raises(RateLimitError) as exc_info:
        classify_response(429, "")
    assert exc_info.value.overloaded is False
    assert exc_info.value.retryable is True

    with pytest.raises(RateLimitError) as exc_info:
        classify_response(529, json.dumps({"error": "busy"}))
    assert exc_info.value.overloaded is True


def test_structured_code_names_the_block() -> None:
    body = json.dumps(
        {
            "error": "Block exceeds continuous work limit",
            "code": "EXCESSIVE_WORK_TIME",
            "details": {"block": "Refactor API"},
        }
    )
    with pytest.raises(ContinuousWorkError) as exc_info:
        classify_response(400, body)
    assert exc_info.value.block_title == "Refactor API"
    assert exc_info.value.details["status"] == 400


def test_structured_parse_and_overload_codes() -> None:
    with pytest.raises(ParseError):
        classify_response(400, json.dumps({"error": "bad", "code": "JSON_PARSE_ERROR"}))
    with pytest.raises(RateLimitError) as exc_info:
        classify_response(400, json.dumps({"error": "busy", "code": "OVERLOADED"}))
    assert exc_info.value.overloaded is True


def test_message_shim_for_legacy_errors() -> None:
    with pytest.raises(ContinuousWorkError):
        classify_response(400, json.dumps({"error": "Too much work time in story"}))
    with pytest.raises(RateLimitError) as exc_info:
        classify_response(500, json.dumps({"error": "The service is overloaded"}))
    assert exc_info.value.overloaded is True
    with pytest.raises(RateLimitError):
        classify_response(400, json.dumps({"error": "Rate limit reached"}))


def test_server_errors_and_fatal_rejections() -> None:
    with pytest.raises(ServerError):
        classify_response(503, "<html>Bad gateway</html>")
    with pytest.raises(ValidationRejectedError) as exc_info:
        classify_response(422, json.dumps({"error": "Invalid tasks"}))
    assert exc_info.value.retryable is False
    assert exc_info.value.message == "Invalid tasks"


@pytest.mark.parametrize("status_code", [400, 404])
def test_html_error_pages_are_retryable_parse_errors(status_code) -> None:
    with pytest.raises(ParseError) as exc_info:
        classify_response(status_code, "<!DOCTYPE html><html><body>Not here</body></html>")
    assert exc_info.value.retryable is True
    assert exc_info.value.details["status"] == status_code
    assert exc_info.value.details["body"].startswith("<!DOCTYPE html>")


def test_success_bodies_are_checked() -> None:
    with pytest.raises(ParseError):
        classify_response(200, "<html>oops</html>")
    with pytest.raises(StructureError):
        classify_response(200, json.dumps({"success": True, "data": {"totalDuration": 10}}))
    with pytest.raises(StructureError):
        classify_response(200, json.dumps({"success": True, "data": {"storyBlocks": [{"title": "x"}]}}))
    with pytest.raises(StructureError) as exc_info:
        classify_response(200, json.dumps({"success": True, "data": {"storyBlocks": [], "totalDuration": 0}}))
    assert exc_info.value.message == "Work plan contains no story blocks"

    data = classify_response(200, json.dumps(ACCEPTED))
    assert data["totalDuration"] == 125


def test_build_acceptance_request_expresses_blocks_as_stories() -> None:
    request = build_acceptance_request(_schedule())

    assert request.start_time == START
    story = request.stories[0]
    assert story.title == "Deep work"
    assert story.estimated_duration == 125
    assert [task.duration for task in story.tasks] == [45, 25, 30]
    assert [task.split_info.part_number for task in story.tasks] == [1, 2, 3]
    assert [task.suggested_breaks[0].duration_minutes for task in story.tasks[:2]] == [5, 15]
    assert story.tasks[2].suggested_breaks == []
    assert all(task.is_frog for task in story.tasks)

    mapping = {entry.possible_title: entry.original_title for entry in request.story_mapping}
    assert mapping["Deep work (Part 2 of 3)"] == "Deep work"
    assert mapping["Deep work"] == "Deep work"


def test_submit_posts_camel_case_payload() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=ACCEPTED)

    async def scenario():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = AcceptanceClient("http://acceptance.test/api/tasks/create-session", http_client=http_client)
        try:
            return await client.submit(_schedule())
        finally:
            await http_client.aclose()

    data = asyncio.run(scenario())

    assert data["storyBlocks"][0]["title"] == "Deep work"
    assert captured["url"] == "http://acceptance.test/api/tasks/create-session"
    body = captured["body"]
    assert set(body) == {"stories", "startTime", "storyMapping"}
    first_task = body["stories"][0]["tasks"][0]
    assert first_task["splitInfo"]["partNumber"] == 1
    assert first_task["isFrog"] is True
    assert body["storyMapping"][0]["possibleTitle"] == "Deep work"


def test_transport_failures_are_server_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            await AcceptanceClient("http://acceptance.test", http_client=http_client).submit(_schedule())
        finally:
            await http_client.aclose()

    with pytest.raises(ServerError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.details["transport_error"] == "ConnectError"
