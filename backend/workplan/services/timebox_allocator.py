"""Allocate stories into ordered work, break and debrief time boxes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from workplan.api.schemas.work_plan import (
    FrogMetrics,
    Schedule,
    Story,
    StoryBlock,
    Task,
    TimeBox,
    TimeBoxTask,
)
from workplan.core.errors import StructureError
from workplan.observability.metrics import log_metric
from workplan.services.duration_rules import (
    DEBRIEF,
    DEFAULT_MAX_PART,
    DURATION_TOLERANCE,
    MAX_WORK_WITHOUT_BREAK,
    SPLIT_THRESHOLD,
    ContinuousWorkTracker,
    break_duration,
    ensure_valid_duration,
    frog_target_minute,
    suggest_split_adjustment,
)
from workplan.services.task_splitter import split_task

logger = logging.getLogger(__name__)

FROG_POLICIES = ("warn", "fail")


@dataclass
class FrogPlacement:
    title: str
    start: int


class TimeBoxAllocator:
    """Turns prioritized stories into a Schedule.

    ``max_part`` and ``split_threshold`` control splitting; the repair loop
    builds a stricter allocator by lowering both.
    """

    def __init__(
        self,
        *,
        max_part: int = DEFAULT_MAX_PART,
        split_threshold: int = SPLIT_THRESHOLD,
        limit: int = MAX_WORK_WITHOUT_BREAK,
        frog_policy: str = "warn",
    ) -> None:
        if frog_policy not in FROG_POLICIES:
            raise ValueError(f"Unknown frog policy: {frog_policy}")
        self.max_part = max_part
        self.split_threshold = split_threshold
        self.limit = limit
        self.frog_policy = frog_policy

    def allocate(self, stories: Sequence[Story], *, start_time: Optional[datetime] = None) -> Schedule:
        stories = [story.model_copy(deep=True) for story in stories]
        frog_total = sum(1 for story in stories for task in story.tasks if task.is_frog)
        placements: List[FrogPlacement] = []
        blocks: List[StoryBlock] = []
        running_total = 0

        for story in stories:
            block = self.build_block(story, offset=running_total, placements=placements)
            blocks.append(block)
            running_total += block.total_duration

        start = start_time or datetime.now().astimezone()
        schedule = Schedule(
            story_blocks=blocks,
            total_duration=running_total,
            start_time=start,
            end_time=start + timedelta(minutes=running_total),
        )
        if len(placements) != frog_total:
            raise StructureError(
                "Not every frog task was scheduled",
                {"total": frog_total, "scheduled": len(placements)},
            )
        schedule.frog_metrics = self._evaluate_frogs(schedule, placements, frog_total)
        verify_schedule(schedule)
        logger.info(
            "Allocated %d stories into %d minutes (frogs %d/%d within target)",
            len(blocks),
            schedule.total_duration,
            schedule.frog_metrics.scheduled_within_target,
            schedule.frog_metrics.total,
        )
        return schedule

    def build_block(
        self,
        story: Story,
        *,
        offset: int = 0,
        placements: Optional[List[FrogPlacement]] = None,
        block_id: Optional[str] = None,
    ) -> StoryBlock:
        """Build one StoryBlock; ``offset`` is the session minute at which the story begins."""
        boxes: List[TimeBox] = []
        tracker = ContinuousWorkTracker(self.limit)
        elapsed = 0

        def add_break(upcoming: int) -> None:
            nonlocal elapsed
            kind = tracker.next_break(upcoming)
            minutes = break_duration(kind)
            boxes.append(TimeBox(type=kind, duration=minutes, start_offset=offset + elapsed))
            tracker.record(kind, minutes)
            elapsed += minutes

        tasks = story.tasks
        for index, task in enumerate(tasks):
            parts = self._parts_for(task)
            for part_index, part in enumerate(parts):
                if part_index > 0:
                    add_break(part.duration)
                boxes.append(
                    TimeBox(
                        type="work",
                        duration=part.duration,
                        start_offset=offset + elapsed,
                        tasks=[_box_task(part)],
                    )
                )
                if task.is_frog and part_index == len(parts) - 1 and placements is not None:
                    placements.append(FrogPlacement(title=task.title, start=offset + elapsed))
                tracker.record("work", part.duration)
                elapsed += part.duration

            if index < len(tasks) - 1:
                add_break(self._first_part_minutes(tasks[index + 1]))

        boxes.append(TimeBox(type="debrief", duration=DEBRIEF, start_offset=offset + elapsed))
        elapsed += DEBRIEF

        block = StoryBlock(title=story.title, time_boxes=boxes, total_duration=elapsed, progress=0)
        if block_id:
            block.id = block_id
        box_total = sum(box.duration for box in boxes)
        if box_total != block.total_duration:
            raise StructureError(
                f"Story duration mismatch for {story.title!r}",
                {"block": story.title, "calculated": block.total_duration, "time_box_sum": box_total},
            )
        return block

    def estimate_story_duration(self, story: Story) -> int:
        return self.build_block(story).total_duration

    def _needs_split(self, task: Task) -> bool:
        return task.duration > self.split_threshold

    def _parts_for(self, task: Task) -> List[Task]:
        if not self._needs_split(task):
            return [task]
        parts, plan = split_task(task, max_part=self.max_part, threshold=self.split_threshold)
        for part in parts:
            ensure_valid_duration(part.duration, title=part.title)
        if abs(plan.total - task.duration) > DURATION_TOLERANCE:
            logger.warning(
                "Split of %r covers %d of %d minutes. %s",
                task.title,
                plan.total,
                task.duration,
                suggest_split_adjustment(task.duration, plan.total, len(parts)),
            )
        return parts

    def _first_part_minutes(self, task: Task) -> int:
        if not self._needs_split(task):
            return task.duration
        return self._parts_for(task)[0].duration

    def _evaluate_frogs(self, schedule: Schedule, placements: Iterable[FrogPlacement], total: int) -> FrogMetrics:
        placements = list(placements)
        target = frog_target_minute(schedule.total_duration)
        within = [placement for placement in placements if placement.start <= target]
        late = [placement for placement in placements if placement.start > target]
        for placement in late:
            message = (
                f"Frog task {placement.title!r} starts at minute {placement.start}, "
                f"after the first-third target of {target}"
            )
            logger.warning(message)
            schedule.warnings.append(message)
        if late:
            log_metric("allocation.frog_target_miss", len(late), metadata={"target_minute": target})
            if self.frog_policy == "fail":
                raise StructureError(
                    "Frog tasks scheduled after the first-third target",
                    {"late": [placement.title for placement in late], "target_minute": target},
                )
        return FrogMetrics(total=total, scheduled=len(placements), scheduled_within_target=len(within))


def _box_task(task: Task) -> TimeBoxTask:
    return TimeBoxTask(
        title=task.title,
        duration=task.duration,
        is_frog=task.is_frog,
        category="focus" if task.category == "break" else task.category,
        task_id=task.id,
        split_info=task.split_info.model_copy() if task.split_info and not task.split_info.is_parent else None,
    )


def verify_schedule(schedule: Schedule) -> None:
    """Raise StructureError when block or schedule totals disagree with their time boxes."""
    for block in schedule.story_blocks:
        box_total = sum(box.duration for box in block.time_boxes)
        if box_total != block.total_duration:
            raise StructureError(
                f"Story duration mismatch for {block.title!r}",
                {"block": block.title, "calculated": block.total_duration, "time_box_sum": box_total},
            )
    block_total = sum(block.total_duration for block in schedule.story_blocks)
    if block_total != schedule.total_duration:
        raise StructureError(
            "Session duration mismatch",
            {"calculated": schedule.total_duration, "block_sum": block_total},
        )
    metrics = schedule.frog_metrics
    if metrics.scheduled != metrics.total:
        raise StructureError(
            "Not every frog task was scheduled",
            {"total": metrics.total, "scheduled": metrics.scheduled},
        )


def reflow_schedule(schedule: Schedule) -> Schedule:
    """Recompute start offsets and totals after time boxes were edited in place."""
    cursor = 0
    for block in schedule.story_blocks:
        for box in block.time_boxes:
            box.start_offset = cursor
            cursor += box.duration
        block.total_duration = sum(box.duration for box in block.time_boxes)
    schedule.total_duration = cursor
    if schedule.start_time is not None:
        schedule.end_time = schedule.start_time + timedelta(minutes=cursor)
    return schedule


def measure_frogs(schedule: Schedule) -> FrogMetrics:
    """Recount frog placements from the time boxes of an existing schedule."""
    target = frog_target_minute(schedule.total_duration)
    scheduled = 0
    within = 0
    for block in schedule.story_blocks:
        for box in block.time_boxes:
            for task in box.tasks:
                if not task.is_frog:
                    continue
                info = task.split_info
                if info and info.part_number and info.total_parts and info.part_number != info.total_parts:
                    continue
                scheduled += 1
                if box.start_offset <= target:
                    within += 1
    return FrogMetrics(total=scheduled, scheduled=scheduled, scheduled_within_target=within)
