"""Split oversized tasks into ordered work parts with implied breaks.

The rule is a heuristic rather than an optimal packing: parts plus the
breaks between them reproduce the original duration to within one block.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from workplan.api.schemas.work_plan import SplitInfo, Task
from workplan.services.duration_rules import (
    BLOCK_SIZE,
    DEFAULT_MAX_PART,
    MAX_WORK_WITHOUT_BREAK,
    MIN_DURATION,
    SHORT_BREAK,
    SPLIT_THRESHOLD,
    ContinuousWorkTracker,
    break_duration,
    round_to_nearest_block,
)
from workplan.services.title_mapping import part_title

HAND_TUNED_SPLITS: Dict[int, Tuple[List[int], List[str]]] = {
    120: ([45, 25, 30], ["short-break", "long-break"]),
    180: ([45, 40, 45, 25], ["short-break", "long-break", "short-break"]),
}

FIRST_PART_SHARE = 0.4
MIDDLE_PART_SHARE = 0.5


@dataclass
class SplitPlan:
    parts: List[int]
    breaks: List[str] = field(default_factory=list)

    @property
    def work_minutes(self) -> int:
        return sum(self.parts)

    @property
    def break_minutes(self) -> int:
        return sum(break_duration(kind) for kind in self.breaks)

    @property
    def total(self) -> int:
        return self.work_minutes + self.break_minutes


def needs_split(duration: int, threshold: int = SPLIT_THRESHOLD) -> bool:
    return duration > threshold


def split_duration(
    duration: int,
    *,
    max_part: int = DEFAULT_MAX_PART,
    threshold: int = SPLIT_THRESHOLD,
    limit: int = MAX_WORK_WITHOUT_BREAK,
) -> SplitPlan:
    """Return the work parts (each at most ``max_part``) and the break types between them."""
    if not needs_split(duration, threshold):
        return SplitPlan(parts=[duration])

    if max_part == DEFAULT_MAX_PART and duration in HAND_TUNED_SPLITS:
        parts, breaks = HAND_TUNED_SPLITS[duration]
        return SplitPlan(parts=list(parts), breaks=list(breaks))

    tracker = ContinuousWorkTracker(limit)
    remaining = duration
    first = _part(min(max_part, remaining * FIRST_PART_SHARE), max_part)
    parts = [first]
    breaks: List[str] = []
    tracker.record("work", first)
    remaining -= first

    while True:
        upcoming = _estimate_next_part(remaining, max_part)
        kind = tracker.next_break(upcoming)
        breaks.append(kind)
        tracker.record(kind, break_duration(kind))
        remaining -= break_duration(kind)

        if remaining <= max_part:
            _append_final_part(parts, remaining, max_part)
            break

        middle = _part(min(max_part, (remaining - SHORT_BREAK) * MIDDLE_PART_SHARE), max_part)
        parts.append(middle)
        tracker.record("work", middle)
        remaining -= middle

    return SplitPlan(parts=parts, breaks=breaks)


def split_task(
    task: Task,
    *,
    max_part: int = DEFAULT_MAX_PART,
    threshold: int = SPLIT_THRESHOLD,
) -> Tuple[List[Task], SplitPlan]:
    """Materialize ``task`` as titled part tasks carrying SplitInfo."""
    plan = split_duration(task.duration, max_part=max_part, threshold=threshold)
    if len(plan.parts) == 1:
        return [task.model_copy(deep=True)], plan

    original_title = task.split_info.original_title if task.split_info and task.split_info.original_title else task.title
    total_parts = len(plan.parts)
    part_tasks: List[Task] = []
    for index, minutes in enumerate(plan.parts, start=1):
        part_tasks.append(
            Task(
                title=part_title(original_title, index, total_parts),
                duration=minutes,
                category="focus" if task.category == "break" else task.category,
                is_frog=task.is_frog,
                is_flexible=False,
                difficulty=task.difficulty,
                split_info=SplitInfo(
                    is_parent=False,
                    part_number=index,
                    total_parts=total_parts,
                    original_duration=task.duration,
                    parent_task_id=task.id,
                    original_title=original_title,
                ),
            )
        )
    return part_tasks, plan


def _part(minutes: float, max_part: int) -> int:
    return min(max_part, round_to_nearest_block(minutes))


def _estimate_next_part(remaining: int, max_part: int) -> float:
    after_break = remaining - SHORT_BREAK
    if after_break <= max_part:
        return max(after_break, 0)
    return min(max_part, after_break * MIDDLE_PART_SHARE)


def _append_final_part(parts: List[int], remaining: int, max_part: int) -> None:
    final = min(max_part, round_to_nearest_block(remaining))
    # A tail rounded up to the minimum takes its shortfall from the latest parts that can spare it.
    shortfall = (final - remaining) // BLOCK_SIZE * BLOCK_SIZE
    for index in range(len(parts) - 1, -1, -1):
        if shortfall <= 0:
            break
        spare = min(shortfall, parts[index] - MIN_DURATION)
        if spare > 0:
            parts[index] -= spare
            shortfall -= spare
    parts.append(final)
