"""Spread stories over consecutive days when one working window is too short."""
from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import List, Optional, Sequence

from workplan.api.schemas.distribution import (
    DayPlan,
    DistributionResult,
    DistributionSummary,
    OverflowReport,
)
from workplan.api.schemas.work_plan import Story
from workplan.core.config import settings
from workplan.services.duration_rules import round_to_nearest_block

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def parse_clock(value: str) -> int:
    """Minutes after midnight for an ``HH:MM`` string."""
    try:
        hours, minutes = value.split(":")
        parsed = int(hours) * 60 + int(minutes)
    except ValueError as exc:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM") from exc
    if not 0 <= parsed < MINUTES_PER_DAY or not 0 <= int(minutes) < 60:
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return parsed


def available_minutes(start_time: str, end_time: str) -> int:
    """Length of the window, wrapping past midnight; equal ends mean a whole day."""
    start = parse_clock(start_time)
    end = parse_clock(end_time)
    if end == start:
        return MINUTES_PER_DAY
    if end < start:
        end += MINUTES_PER_DAY
    return end - start


def story_minutes(story: Story) -> int:
    if story.estimated_duration > 0:
        return story.estimated_duration
    return round_to_nearest_block(sum(task.duration for task in story.tasks))


class DayLoadDistributor:
    """Greedy first-fit packing of stories into daily windows, frog stories first."""

    def __init__(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.start_time = start_time or settings.default_work_start
        self.end_time = end_time or settings.default_work_end
        self.today = today or date.today()
        self.minutes_per_day = available_minutes(self.start_time, self.end_time)

    def distribute(self, stories: Sequence[Story]) -> DistributionResult:
        ordered = sorted(
            (story.model_copy(deep=True) for story in stories),
            key=lambda story: (not story.has_frog, story_minutes(story)),
        )
        total = sum(story_minutes(story) for story in ordered)
        days = self._build_days(total)
        result = DistributionResult(days=days)
        scheduled = 0

        for story in ordered:
            minutes = story_minutes(story)
            day = next((candidate for candidate in days if candidate.remaining_minutes >= minutes), None)
            if day is None:
                logger.warning("Story %r (%d min) does not fit any day", story.title, minutes)
                result.unassigned.append(story)
                continue
            day.stories.append(story)
            day.assigned_minutes += minutes
            scheduled += minutes
            if day is days[0]:
                result.current_day_stories.append(story)
            else:
                result.future_day_stories.setdefault(day.date, []).append(story)

        overflow_minutes = total - scheduled
        if result.unassigned:
            result.overflow = OverflowReport(
                story_titles=[story.title for story in result.unassigned],
                overflow_minutes=overflow_minutes,
                reason=f"Longer than the {self.minutes_per_day}-minute window or no remaining capacity",
            )
        result.summary = DistributionSummary(
            total_task_minutes=total,
            total_scheduled_minutes=scheduled,
            total_overflow_minutes=overflow_minutes,
            days_required=len(days),
        )
        logger.info(
            "Distributed %d of %d minutes over %d day(s), %d story(ies) unassigned",
            scheduled,
            total,
            len(days),
            len(result.unassigned),
        )
        return result

    def _build_days(self, total_minutes: int) -> List[DayPlan]:
        days_needed = math.ceil(total_minutes / self.minutes_per_day)
        return [
            DayPlan(
                date=(self.today + timedelta(days=offset)).isoformat(),
                available_minutes=self.minutes_per_day,
            )
            for offset in range(days_needed)
        ]
