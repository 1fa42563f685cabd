"""Duration constants and pure helpers shared by the splitter, allocator and repair loop."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List

from workplan.api.schemas.work_plan import DifficultyLevel, TimeBox
from workplan.core.errors import DurationError

MIN_DURATION = 15
BLOCK_SIZE = 5
MAX_DURATION = 180
SHORT_BREAK = 5
LONG_BREAK = 15
DEBRIEF = 5
MAX_WORK_WITHOUT_BREAK = 90
SPLIT_THRESHOLD = 60
DURATION_TOLERANCE = 5
FROG_TARGET_DIVISOR = 3
LONG_BREAK_FRACTION = 0.75

DEFAULT_MAX_PART = MAX_WORK_WITHOUT_BREAK // 2
STRICT_MAX_PART = MAX_WORK_WITHOUT_BREAK // 3

BREAK_REASONS = {
    "short-break": "Short break between tasks",
    "long-break": "Required break to prevent excessive work time",
    "debrief": "Story completion debrief",
}

DIFFICULTY_WEIGHTS = {
    "high": 75,
    "medium": 50,
    "low": 25,
}


@dataclass
class DurationSummary:
    work_duration: int
    break_duration: int
    total_duration: int


def round_to_nearest_block(duration: float) -> int:
    """Round to the nearest block (halves round up), never below the minimum duration."""
    blocks = math.floor(duration / BLOCK_SIZE + 0.5)
    return max(MIN_DURATION, blocks * BLOCK_SIZE)


def validate_task_duration(duration: int) -> bool:
    return duration >= MIN_DURATION and duration % BLOCK_SIZE == 0 and duration <= MAX_DURATION


def ensure_valid_duration(duration: int, *, title: str | None = None) -> int:
    """Fail-fast counterpart of validate_task_duration."""
    if not validate_task_duration(duration):
        raise DurationError(
            f"Invalid task duration: {duration} minutes",
            {
                "duration": duration,
                "title": title,
                "suggestion": generate_scheduling_suggestion(duration),
            },
        )
    return duration


def normalize_duration(duration: float, *, title: str | None = None) -> int:
    """Snap a requested duration onto the block grid. Only non-positive values are refused."""
    if duration <= 0:
        raise DurationError(
            f"Task duration must be positive, got {duration} minutes",
            {"duration": duration, "title": title},
        )
    return round_to_nearest_block(duration)


def derive_difficulty(duration: int) -> DifficultyLevel:
    if duration <= 30:
        return "low"
    if duration <= 60:
        return "medium"
    return "high"


def difficulty_weight(level: str | None) -> int:
    return DIFFICULTY_WEIGHTS.get(level or "", 0)


def calculate_work_duration(time_boxes: Iterable[TimeBox]) -> int:
    return sum(box.duration for box in time_boxes if box.type == "work")


def calculate_break_duration(time_boxes: Iterable[TimeBox]) -> int:
    return sum(box.duration for box in time_boxes if box.type != "work")


def calculate_duration_summary(time_boxes: Iterable[TimeBox]) -> DurationSummary:
    boxes = list(time_boxes)
    work = calculate_work_duration(boxes)
    pauses = calculate_break_duration(boxes)
    return DurationSummary(work_duration=work, break_duration=pauses, total_duration=work + pauses)


def choose_break(continuous: int, upcoming: int = 0, *, limit: int = MAX_WORK_WITHOUT_BREAK) -> str:
    """Pick the break type that precedes ``upcoming`` minutes of work."""
    if continuous >= limit * LONG_BREAK_FRACTION or continuous + upcoming > limit:
        return "long-break"
    return "short-break"


def break_duration(break_type: str) -> int:
    return LONG_BREAK if break_type == "long-break" else SHORT_BREAK


def frog_target_minute(total_duration: int) -> int:
    """Latest session minute at which a frog still counts as scheduled early."""
    return total_duration // FROG_TARGET_DIVISOR


class ContinuousWorkTracker:
    """Running work minutes since the last long break.

    Short breaks and debriefs are pauses but do not reset the counter.
    """

    def __init__(self, limit: int = MAX_WORK_WITHOUT_BREAK) -> None:
        self.limit = limit
        self.minutes = 0

    def record(self, box_type: str, duration: int) -> None:
        if box_type == "work":
            self.minutes += duration
        elif box_type == "long-break":
            self.minutes = 0

    def next_break(self, upcoming: int = 0) -> str:
        return choose_break(self.minutes, upcoming, limit=self.limit)

    def would_exceed(self, upcoming: int) -> bool:
        return self.minutes + upcoming > self.limit


def generate_scheduling_suggestion(duration: int) -> str:
    suggestions: List[str] = []

    if duration < MIN_DURATION:
        suggestions.append(
            f"Task duration ({duration}m) is less than the minimum recommended time ({MIN_DURATION}m) for effective focus"
        )

    if duration > MAX_DURATION:
        suggestions.append(
            f"Consider splitting this {duration}m task into smaller sessions ({MIN_DURATION}-{MAX_DURATION}m each)"
        )

    if duration % BLOCK_SIZE != 0:
        suggestions.append(
            f"Consider adjusting to {round_to_nearest_block(duration)}m to align with {BLOCK_SIZE}-minute scheduling blocks"
        )

    return ". ".join(suggestions)


def suggest_split_adjustment(original_duration: int, split_duration: int, parts: int) -> str:
    remaining = original_duration - split_duration
    suggested_parts = max(1, math.ceil(remaining / MAX_DURATION))
    plural = "s" if suggested_parts > 1 else ""
    return (
        f"Consider adding {suggested_parts} more part{plural} "
        f"to the {parts} existing to cover the remaining {remaining} minutes"
    )
