"""Shared fakes for the acceptance endpoint."""
from __future__ import annotations

from typing import Any, Dict, List

import pytest


def confirm_stories(body: Dict[str, Any]) -> Dict[str, Any]:
    """Accept a submitted payload the way the endpoint does: one block per story."""
    blocks: List[Dict[str, Any]] = []
    for story in body["stories"]:
        boxes: List[Dict[str, Any]] = []
        for task in story["tasks"]:
            boxes.append(
                {
                    "type": "work",
                    "duration": task["duration"],
                    "tasks": [{"title": task["title"], "duration": task["duration"], "isFrog": task["isFrog"]}],
                }
            )
            for suggested in task.get("suggestedBreaks") or []:
                minutes = suggested["durationMinutes"]
                boxes.append({"type": "long-break" if minutes >= 15 else "short-break", "duration": minutes})
        debrief = story["estimatedDuration"] - sum(box["duration"] for box in boxes)
        if debrief > 0:
            boxes.append({"type": "debrief", "duration": debrief})
        blocks.append({"title": story["title"], "timeBoxes": boxes, "totalDuration": story["estimatedDuration"]})
    return {
        "success": True,
        "data": {"storyBlocks": blocks, "totalDuration": sum(block["totalDuration"] for block in blocks)},
    }


@pytest.fixture()
def acceptance_echo():
    return confirm_stories
