"""HTTP client for the remote schedule acceptance endpoint."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from workplan.api.schemas.work_plan import (
    BREAK_TYPES,
    AcceptanceRequest,
    Break,
    Schedule,
    Story,
    Task,
)
from workplan.core.config import settings
from workplan.core.errors import (
    ContinuousWorkError,
    ParseError,
    RateLimitError,
    ServerError,
    StructureError,
    ValidationRejectedError,
    WorkPlanError,
)
from workplan.services.duration_rules import BREAK_REASONS, derive_difficulty
from workplan.services.title_mapping import build_story_mapping

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = {429, 529}
OVERLOAD_STATUS = 529

CODE_RATE_LIMITED = "RATE_LIMITED"
CODE_OVERLOADED = "OVERLOADED"
CODE_EXCESSIVE_WORK_TIME = "EXCESSIVE_WORK_TIME"
PARSE_CODES = {"JSON_PARSE_ERROR", "INVALID_JSON"}

CONTINUOUS_WORK_PHRASES = ("too much work time", "too much continuous work")

BODY_EXCERPT_CHARS = 200


def build_acceptance_request(schedule: Schedule) -> AcceptanceRequest:
    """Express a candidate schedule in the story-shaped payload the endpoint expects.

    Each block becomes one story whose tasks are the work-box tasks. Split
    parts keep their SplitInfo, and the break that follows a work box is
    attached to its task as a suggested break.
    """
    stories: List[Story] = []
    for block in schedule.story_blocks:
        tasks: List[Task] = []
        boxes = block.time_boxes
        for index, box in enumerate(boxes):
            if box.type != "work":
                continue
            following = boxes[index + 1] if index + 1 < len(boxes) else None
            for placed in box.tasks:
                task = Task(
                    title=placed.title,
                    duration=placed.duration,
                    category=placed.category,
                    is_frog=placed.is_frog,
                    difficulty=derive_difficulty(placed.duration),
                    split_info=placed.split_info.model_copy() if placed.split_info else None,
                )
                if placed.task_id:
                    task.id = placed.task_id
                if following is not None and following.type in BREAK_TYPES:
                    task.suggested_breaks = [
                        Break(
                            after_minutes=placed.duration,
                            duration_minutes=following.duration,
                            reason=BREAK_REASONS[following.type],
                        )
                    ]
                tasks.append(task)
        stories.append(Story(title=block.title, tasks=tasks, estimated_duration=block.total_duration))

    return AcceptanceRequest(
        stories=stories,
        start_time=schedule.start_time or datetime.now().astimezone(),
        story_mapping=build_story_mapping(schedule),
    )


def classify_response(status_code: int, body_text: str) -> Dict[str, Any]:
    """Return the accepted ``data`` payload or raise the matching WorkPlanError."""
    payload = _parse_json(body_text)

    if status_code in RATE_LIMIT_STATUSES:
        overloaded = status_code == OVERLOAD_STATUS
        raise RateLimitError(
            _error_message(payload, body_text) or ("Endpoint overloaded" if overloaded else "Rate limit exceeded"),
            {"status": status_code},
            overloaded=overloaded,
        )

    rejected = not 200 <= status_code < 300 or (isinstance(payload, dict) and payload.get("success") is False)
    if rejected:
        error = _error_from_payload(status_code, payload, body_text)
        if error is not None:
            raise error
        message = _error_message(payload, body_text) or f"Acceptance endpoint returned HTTP {status_code}"
        details = {"status": status_code, **_error_details(payload)}
        if status_code >= 500:
            raise ServerError(message, details)
        if payload is None:
            raise ParseError(
                "Acceptance endpoint returned a non-JSON error body",
                {**details, "body": body_text[:BODY_EXCERPT_CHARS]},
            )
        raise ValidationRejectedError(message, details)

    if payload is None:
        raise ParseError(
            "Acceptance endpoint returned a non-JSON body",
            {"status": status_code, "body": body_text[:BODY_EXCERPT_CHARS]},
        )
    if not isinstance(payload, dict):
        raise StructureError("Acceptance response is not a JSON object", {"status": status_code})

    data = payload.get("data", payload)
    if not isinstance(data, dict) or not isinstance(data.get("storyBlocks"), list):
        raise StructureError("Acceptance response is missing storyBlocks", {"status": status_code})
    if not data["storyBlocks"]:
        raise StructureError("Work plan contains no story blocks", {"status": status_code})
    for index, block in enumerate(data["storyBlocks"]):
        if not isinstance(block, dict) or not isinstance(block.get("timeBoxes"), list):
            raise StructureError("Accepted story block is missing timeBoxes", {"index": index})
    return data


def _parse_json(body_text: str) -> Any:
    if not body_text or not body_text.strip():
        return None
    try:
        return json.loads(body_text)
    except ValueError:
        return None


def _error_message(payload: Any, body_text: str) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return ""
    if payload is None and body_text:
        return body_text.strip()[:BODY_EXCERPT_CHARS]
    return ""


def _error_details(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("details"), dict):
        return dict(payload["details"])
    return {}


def _error_from_payload(status_code: int, payload: Any, body_text: str) -> Optional[WorkPlanError]:
    message = _error_message(payload, body_text)
    details = {"status": status_code, **_error_details(payload)}
    code = payload.get("code") if isinstance(payload, dict) else None

    if code == CODE_RATE_LIMITED:
        return RateLimitError(message or "Rate limit exceeded", details)
    if code == CODE_OVERLOADED:
        return RateLimitError(message or "Endpoint overloaded", details, overloaded=True)
    if code == CODE_EXCESSIVE_WORK_TIME:
        return ContinuousWorkError(message or "Too much continuous work time", details)
    if code in PARSE_CODES:
        return ParseError(message or "Endpoint could not parse the schedule", details)

    # Older deployments only send free-form messages.
    lowered = message.lower()
    if "rate limit" in lowered:
        return RateLimitError(message, details)
    if "overloaded" in lowered:
        return RateLimitError(message, details, overloaded=True)
    if any(phrase in lowered for phrase in CONTINUOUS_WORK_PHRASES):
        return ContinuousWorkError(message, details)
    return None


class AcceptanceClient:
    """Submits candidate schedules and classifies the endpoint's verdict."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint_url = endpoint_url or settings.acceptance_endpoint_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.acceptance_timeout_seconds
        )

    async def submit(self, schedule: Schedule) -> Dict[str, Any]:
        request = build_acceptance_request(schedule)
        body = request.model_dump(mode="json", by_alias=True)
        try:
            response = await self._http.post(self.endpoint_url, json=body)
        except httpx.TransportError as exc:
            raise ServerError(
                f"Acceptance endpoint unreachable: {exc}",
                {"endpoint": self.endpoint_url, "transport_error": type(exc).__name__},
            ) from exc

        logger.debug("Acceptance endpoint answered HTTP %s", response.status_code)
        return classify_response(response.status_code, response.text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
