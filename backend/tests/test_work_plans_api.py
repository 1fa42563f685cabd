"""Tests for the work-plan HTTP routes."""
from __future__ import annotations

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from workplan.api.deps import get_acceptance_client
from workplan.db.deps import get_db
from workplan.db.models.work_plan import WorkPlanRecord
from workplan.main import app
from workplan.services import schedule_repair
from workplan.services.acceptance_client import AcceptanceClient

START = "2024-05-06T09:00:00+00:00"
SERVER_PLAN = {
    "success": True,
    "data": {
        "storyBlocks": [
            {
                "title": "Write (confirmed)",
                "timeBoxes": [{"type": "work", "duration": 25}, {"type": "debrief", "duration": 5}],
                "totalDuration": 30,
            }
        ],
        "totalDuration": 30,
    },
}


class _Endpoint:
    """Scripted acceptance endpoint.

    Without a script it confirms whatever it receives; otherwise it replays
    the last scripted response once the script runs out.
    """

    def __init__(self, confirm) -> None:
        self.confirm = confirm
        self.responses: list[httpx.Response] = []
        self.requests: list[dict] = []
        self.clients_opened = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if not self.responses:
            return httpx.Response(200, json=self.confirm(body))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)


@pytest.fixture()
def client(acceptance_echo):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    WorkPlanRecord.__table__.create(bind=engine)
    endpoint = _Endpoint(acceptance_echo)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    async def override_acceptance_client():
        endpoint.clients_opened += 1
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))
        try:
            yield AcceptanceClient("http://acceptance.test/api/tasks/create-session", http_client=http_client)
        finally:
            await http_client.aclose()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_acceptance_client] = override_acceptance_client
    with TestClient(app) as test_client:
        yield test_client, endpoint
    app.dependency_overrides.clear()


def test_preview_returns_allocated_schedule(client) -> None:
    test_client, endpoint = client
    response = test_client.post(
        "/work-plans/preview",
        json={"tasks": [{"title": "Deep work", "duration": 120, "isFrog": True}], "startTime": START},
    )

    assert response.status_code == 200
    body = response.json()
    block = body["schedule"]["storyBlocks"][0]
    assert [box["type"] for box in block["timeBoxes"]] == [
        "work",
        "short-break",
        "work",
        "long-break",
        "work",
        "debrief",
    ]
    assert body["schedule"]["totalDuration"] == 125
    # The frog counts at its final part, which starts at minute 90 of 125.
    assert body["schedule"]["frogMetrics"] == {"total": 1, "scheduled": 1, "scheduledWithinTarget": 0}
    assert len(body["schedule"]["warnings"]) == 1
    assert {"possibleTitle": "Deep work (Part 1 of 3)", "originalTitle": "Deep work"} in body["storyMapping"]
    assert body["requestId"] == response.headers["X-Request-Id"]
    assert endpoint.requests == []
    assert endpoint.clients_opened == 0


def test_create_stores_and_fetches_plan(client) -> None:
    test_client, endpoint = client
    payload = {"tasks": [{"title": "Write: report", "duration": 45}], "startTime": START}

    created = test_client.post("/work-plans", json=payload)

    assert created.status_code == 201
    body = created.json()
    assert body["dateKey"] == "2024-05-06"
    assert body["version"] == 1
    assert body["attempts"] == 1
    assert body["schedule"]["totalDuration"] == 50
    assert len(endpoint.requests) == 1
    assert endpoint.requests[0]["stories"][0]["title"] == "Write"

    fetched = test_client.get("/work-plans/2024-05-06")
    assert fetched.status_code == 200
    assert fetched.json()["schedule"]["totalDuration"] == 50
    assert endpoint.clients_opened == 1

    again = test_client.post("/work-plans", json=payload)
    assert again.json()["version"] == 2


def test_create_stores_the_plan_the_endpoint_confirmed(client) -> None:
    test_client, endpoint = client
    endpoint.responses = [httpx.Response(200, json=SERVER_PLAN)]

    created = test_client.post("/work-plans", json={"tasks": [{"title": "Write", "duration": 45}], "startTime": START})

    assert created.status_code == 201
    schedule = created.json()["schedule"]
    assert [block["title"] for block in schedule["storyBlocks"]] == ["Write (confirmed)"]
    assert schedule["totalDuration"] == 30
    assert schedule["endTime"].startswith("2024-05-06T09:30:00")

    stored = test_client.get("/work-plans/2024-05-06").json()["schedule"]
    assert [block["title"] for block in stored["storyBlocks"]] == ["Write (confirmed)"]
    assert stored["totalDuration"] == 30


def test_create_defers_stories_beyond_the_window(client) -> None:
    test_client, _ = client
    payload = {
        "tasks": [
            {"title": "Launch: checklist", "duration": 30, "isFrog": True},
            {"title": "Cleanup: old branches", "duration": 55},
        ],
        "startTime": START,
        "workStart": "09:00",
        "workEnd": "10:00",
    }

    response = test_client.post("/work-plans", json=payload)

    assert response.status_code == 201
    body = response.json()
    assert [block["title"] for block in body["schedule"]["storyBlocks"]] == ["Launch"]
    assert [story["title"] for story in body["deferred"]["2024-05-07"]] == ["Cleanup"]
    assert body["unassigned"] == []


def test_missing_plan_and_bad_keys(client) -> None:
    test_client, endpoint = client
    assert test_client.get("/work-plans/2030-01-01").status_code == 404
    assert test_client.get("/work-plans/tomorrow").status_code == 422
    assert endpoint.clients_opened == 0


def test_off_grid_durations_are_rounded_not_rejected(client) -> None:
    test_client, endpoint = client
    response = test_client.post(
        "/work-plans/preview",
        json={
            "tasks": [
                {"title": "Quick ping", "duration": 17},
                {"title": "Deep work", "duration": 47},
                {"title": "Offsite prep", "duration": 200},
            ],
            "startTime": START,
        },
    )

    assert response.status_code == 200
    blocks = {block["title"]: block for block in response.json()["schedule"]["storyBlocks"]}
    work = {
        title: [box["duration"] for box in block["timeBoxes"] if box["type"] == "work"]
        for title, block in blocks.items()
    }
    assert work["Quick ping"] == [15]
    assert work["Deep work"] == [45]
    assert work["Offsite prep"] == [45, 45, 45, 40]
    assert endpoint.requests == []


def test_non_positive_duration_is_unprocessable(client) -> None:
    test_client, endpoint = client
    response = test_client.post("/work-plans", json={"tasks": [{"title": "Quick ping", "duration": 0}]})

    assert response.status_code == 422
    assert endpoint.requests == []


def test_empty_request_is_rejected(client) -> None:
    test_client, _ = client
    assert test_client.post("/work-plans/preview", json={"tasks": []}).status_code == 422


def test_remote_validation_rejection_maps_to_422(client) -> None:
    test_client, endpoint = client
    endpoint.responses = [httpx.Response(422, json={"error": "Story has no tasks"})]

    response = test_client.post("/work-plans", json={"tasks": [{"title": "Write", "duration": 30}], "startTime": START})

    assert response.status_code == 422
    assert response.json() == {"error": "Story has no tasks", "code": "VALIDATION_ERROR", "details": {"status": 422}}
    assert test_client.get("/work-plans/2024-05-06").status_code == 404


def test_exhausted_rate_limit_maps_to_503(client, monkeypatch) -> None:
    test_client, endpoint = client
    monkeypatch.setattr(schedule_repair.settings, "repair_max_attempts", 1)
    endpoint.responses = [httpx.Response(429, json={"error": "Too many requests"})]

    response = test_client.post("/work-plans", json={"tasks": [{"title": "Write", "duration": 30}], "startTime": START})

    assert response.status_code == 503
    assert response.json()["code"] == "RATE_LIMIT_ERROR"
    assert len(endpoint.requests) == 1


def test_distribute_endpoint(client) -> None:
    test_client, _ = client
    stories = [
        {"title": "Support rotation", "estimatedDuration": 120, "tasks": [{"title": "Tickets", "duration": 120}]},
        {"title": "Launch prep", "estimatedDuration": 300, "tasks": [{"title": "Prep", "duration": 300, "isFrog": True}]},
        {"title": "Migration", "estimatedDuration": 180, "tasks": [{"title": "Move", "duration": 180, "isFrog": True}]},
    ]

    response = test_client.post(
        "/work-plans/distribute",
        json={"stories": stories, "startTime": "09:00", "endTime": "17:00", "today": "2024-01-01"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["summary"] == {
        "totalTaskMinutes": 600,
        "totalScheduledMinutes": 600,
        "totalOverflowMinutes": 0,
        "daysRequired": 2,
    }
    assert [story["title"] for story in body["currentDayStories"]] == ["Migration", "Launch prep"]
    assert [story["title"] for story in body["futureDayStories"]["2024-01-02"]] == ["Support rotation"]


def test_distribute_rejects_bad_window(client) -> None:
    test_client, _ = client
    response = test_client.post(
        "/work-plans/distribute",
        json={"stories": [{"title": "A", "estimatedDuration": 30}], "startTime": "9am"},
    )
    assert response.status_code == 422
