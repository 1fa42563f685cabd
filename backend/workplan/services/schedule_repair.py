"""Submit a candidate schedule, repair it on rejection, and retry with backoff."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from workplan.api.schemas.work_plan import Schedule, Story, StoryBlock, Task, TimeBox
from workplan.core.cancellation import CancellationToken
from workplan.core.config import settings
from workplan.core.errors import ContinuousWorkError, ParseError, RateLimitError, StructureError, WorkPlanError
from workplan.observability.metrics import log_metric
from workplan.observability.tracing import trace
from workplan.services.duration_rules import (
    LONG_BREAK,
    MAX_WORK_WITHOUT_BREAK,
    STRICT_MAX_PART,
    ContinuousWorkTracker,
    calculate_duration_summary,
)
from workplan.services.timebox_allocator import (
    TimeBoxAllocator,
    measure_frogs,
    reflow_schedule,
    verify_schedule,
)
from workplan.services.title_mapping import base_title, is_split_part_title, normalize_title

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ScheduleSubmitter(Protocol):
    async def submit(self, schedule: Schedule) -> Dict[str, Any]:
        ...


@dataclass
class RepairOutcome:
    schedule: Schedule
    submitted: Schedule
    response: Dict[str, Any]
    attempts: int
    repairs: int = 0
    delays_ms: List[int] = field(default_factory=list)


def compute_backoff_ms(
    error: WorkPlanError,
    attempt: int,
    *,
    base_ms: int = 1000,
    parse_base_ms: int = 2000,
    rate_limit_floor_ms: int = 10_000,
    overload_floor_ms: int = 15_000,
) -> int:
    """Exponential delay for the retry after ``attempt`` rejections."""
    base = parse_base_ms if isinstance(error, ParseError) else base_ms
    delay = base * 2**attempt
    if isinstance(error, RateLimitError):
        delay = max(delay, overload_floor_ms if error.overloaded else rate_limit_floor_ms)
    return delay


def enforce_break_limit(time_boxes: List[TimeBox], limit: int = MAX_WORK_WITHOUT_BREAK) -> List[TimeBox]:
    """Insert a long break before any work box that would push continuous work past ``limit``."""
    tracker = ContinuousWorkTracker(limit)
    result: List[TimeBox] = []
    for box in time_boxes:
        if box.type == "work" and tracker.minutes > 0 and tracker.would_exceed(box.duration):
            result.append(TimeBox(type="long-break", duration=LONG_BREAK))
            tracker.record("long-break", LONG_BREAK)
        result.append(box)
        tracker.record(box.type, box.duration)
    return result


def story_from_block(block: StoryBlock) -> Story:
    """Rebuild the story a block was allocated from, merging split parts back into their task."""
    tasks: List[Task] = []
    merged: Dict[str, Task] = {}
    for box in block.time_boxes:
        if box.type != "work":
            continue
        for placed in box.tasks:
            info = placed.split_info
            key: Optional[str] = None
            if info and info.parent_task_id:
                key = info.parent_task_id
            elif is_split_part_title(placed.title):
                key = normalize_title(placed.title)

            if key is not None and key in merged:
                existing = merged[key]
                existing.is_frog = existing.is_frog or placed.is_frog
                if not (info and info.original_duration):
                    existing.duration += placed.duration
                continue

            title = info.original_title if info and info.original_title else base_title(placed.title)
            duration = info.original_duration if info and info.original_duration else placed.duration
            task = Task(title=title, duration=duration, category=placed.category, is_frog=placed.is_frog)
            if info and info.parent_task_id:
                task.id = info.parent_task_id
            elif placed.task_id:
                task.id = placed.task_id
            tasks.append(task)
            if key is not None:
                merged[key] = task
    return Story(title=block.title, tasks=tasks, estimated_duration=block.total_duration)


def _target_block_indexes(schedule: Schedule, block_title: Optional[str]) -> List[int]:
    indexes = list(range(len(schedule.story_blocks)))
    if not block_title:
        return indexes
    exact = [i for i in indexes if schedule.story_blocks[i].title == block_title]
    if exact:
        return exact
    wanted = normalize_title(block_title)
    loose = [i for i in indexes if normalize_title(schedule.story_blocks[i].title) == wanted]
    if loose:
        return loose
    logger.warning("Rejected block %r not found; repairing every block", block_title)
    return indexes


def repair_continuous_work(
    schedule: Schedule,
    block_title: Optional[str] = None,
    *,
    limit: int = MAX_WORK_WITHOUT_BREAK,
) -> Schedule:
    """Re-allocate the offending block(s) with the strict part size and extra long breaks.

    Returns a new schedule; ``schedule`` itself is left untouched.
    """
    repaired = schedule.model_copy(deep=True)
    strict = TimeBoxAllocator(max_part=STRICT_MAX_PART, split_threshold=STRICT_MAX_PART, limit=limit)
    targets = _target_block_indexes(repaired, block_title)

    for index in targets:
        block = repaired.story_blocks[index]
        rebuilt = strict.build_block(story_from_block(block), block_id=block.id)
        rebuilt.time_boxes = enforce_break_limit(rebuilt.time_boxes, limit)
        rebuilt.progress = block.progress
        repaired.story_blocks[index] = rebuilt
        summary = calculate_duration_summary(rebuilt.time_boxes)
        logger.info(
            "Repaired block %r: %d -> %d time boxes (%d work, %d break minutes)",
            block.title,
            len(block.time_boxes),
            len(rebuilt.time_boxes),
            summary.work_duration,
            summary.break_duration,
        )

    frog_total = repaired.frog_metrics.total
    reflow_schedule(repaired)
    metrics = measure_frogs(repaired)
    metrics.total = frog_total
    repaired.frog_metrics = metrics
    verify_schedule(repaired)
    return repaired


def confirmed_schedule(candidate: Schedule, data: Dict[str, Any]) -> Schedule:
    """Build the schedule the endpoint accepted from its ``data`` payload.

    Timing, frog metrics and warnings come from the submitted candidate; the
    blocks and totals are the server's and must agree with each other.
    """
    blocks = data.get("storyBlocks")
    if not blocks:
        raise StructureError("Work plan contains no story blocks")
    try:
        confirmed = Schedule.model_validate({"storyBlocks": blocks, "totalDuration": data.get("totalDuration", 0)})
    except ValidationError as exc:
        raise StructureError("Accepted work plan is malformed", {"errors": exc.error_count()}) from exc

    confirmed.start_time = candidate.start_time
    if confirmed.start_time is not None:
        confirmed.end_time = confirmed.start_time + timedelta(minutes=confirmed.total_duration)
    confirmed.frog_metrics = candidate.frog_metrics.model_copy()
    confirmed.warnings = list(candidate.warnings)
    verify_schedule(confirmed)

    summary = calculate_duration_summary(box for block in confirmed.story_blocks for box in block.time_boxes)
    logger.debug(
        "Confirmed schedule: %d block(s), %d work and %d break minutes",
        len(confirmed.story_blocks),
        summary.work_duration,
        summary.break_duration,
    )
    return confirmed


class ScheduleRepairLoop:
    """Bounded submit/repair/backoff cycle around an acceptance client."""

    def __init__(
        self,
        client: ScheduleSubmitter,
        *,
        max_attempts: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
        parse_backoff_base_ms: Optional[int] = None,
        rate_limit_floor_ms: Optional[int] = None,
        overload_floor_ms: Optional[int] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.client = client
        self.max_attempts = max_attempts if max_attempts is not None else settings.repair_max_attempts
        self.backoff_base_ms = backoff_base_ms if backoff_base_ms is not None else settings.repair_backoff_base_ms
        self.parse_backoff_base_ms = (
            parse_backoff_base_ms if parse_backoff_base_ms is not None else settings.repair_parse_backoff_base_ms
        )
        self.rate_limit_floor_ms = (
            rate_limit_floor_ms if rate_limit_floor_ms is not None else settings.rate_limit_backoff_floor_ms
        )
        self.overload_floor_ms = overload_floor_ms if overload_floor_ms is not None else settings.overload_backoff_floor_ms
        self._sleep: SleepFn = sleep or asyncio.sleep
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff_ms(self, error: WorkPlanError, attempt: int) -> int:
        return compute_backoff_ms(
            error,
            attempt,
            base_ms=self.backoff_base_ms,
            parse_base_ms=self.parse_backoff_base_ms,
            rate_limit_floor_ms=self.rate_limit_floor_ms,
            overload_floor_ms=self.overload_floor_ms,
        )

    async def run(self, schedule: Schedule, *, token: Optional[CancellationToken] = None) -> RepairOutcome:
        """Submit until accepted, a fatal rejection, cancellation or the attempt budget runs out.

        The last retryable error is re-raised unchanged once ``max_attempts``
        submissions have been rejected.
        """
        token = token or CancellationToken()
        candidate = schedule.model_copy(deep=True)
        attempt = 0
        repairs = 0
        delays: List[int] = []

        while True:
            token.raise_if_cancelled()
            metadata = {"attempt": attempt + 1, "blocks": len(candidate.story_blocks)}
            error: Optional[WorkPlanError] = None
            with trace("schedule_repair.submit", metadata=metadata):
                try:
                    response = await token.guard(self.client.submit(candidate))
                except WorkPlanError as exc:
                    if not exc.retryable:
                        logger.error("Schedule rejected (%s): %s", exc.kind.value, exc.message)
                        log_metric("schedule_repair.fatal", 1, metadata={"kind": exc.kind.value})
                        raise
                    error = exc

            if error is None:
                try:
                    confirmed = confirmed_schedule(candidate, response)
                except StructureError as exc:
                    logger.error("Accepted schedule failed verification: %s", exc.message)
                    log_metric("schedule_repair.fatal", 1, metadata={"kind": exc.kind.value})
                    raise
                logger.info("Schedule accepted after %d attempt(s), %d repair(s)", attempt + 1, repairs)
                log_metric("schedule_repair.accepted", attempt + 1, metadata={"repairs": repairs})
                return RepairOutcome(
                    schedule=confirmed,
                    submitted=candidate,
                    response=response,
                    attempts=attempt + 1,
                    repairs=repairs,
                    delays_ms=delays,
                )

            attempt += 1
            if attempt >= self.max_attempts:
                logger.error(
                    "Giving up after %d attempts; last error %s: %s",
                    attempt,
                    error.kind.value,
                    error.message,
                )
                log_metric("schedule_repair.exhausted", attempt, metadata={"kind": error.kind.value})
                raise error

            if isinstance(error, ContinuousWorkError):
                with trace("schedule_repair.repair", metadata={"block": error.block_title}):
                    candidate = repair_continuous_work(candidate, error.block_title)
                repairs += 1

            delay_ms = self.backoff_ms(error, attempt)
            delays.append(delay_ms)
            logger.warning(
                "Attempt %d rejected (%s: %s); retrying in %d ms",
                attempt,
                error.kind.value,
                error.message,
                delay_ms,
            )
            await token.guard(self._sleep(delay_ms / 1000))
