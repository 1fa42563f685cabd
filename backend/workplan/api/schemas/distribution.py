"""Schemas for spreading stories across several working days."""
from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from workplan.api.schemas.work_plan import CamelModel, Story

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class DayPlan(CamelModel):
    date: str
    available_minutes: int
    assigned_minutes: int = 0
    stories: List[Story] = Field(default_factory=list)

    @property
    def remaining_minutes(self) -> int:
        return self.available_minutes - self.assigned_minutes


class OverflowReport(CamelModel):
    story_titles: List[str] = Field(default_factory=list)
    overflow_minutes: int = 0
    reason: str = ""


class DistributionSummary(CamelModel):
    total_task_minutes: int = 0
    total_scheduled_minutes: int = 0
    total_overflow_minutes: int = 0
    days_required: int = 0


class DistributionResult(CamelModel):
    days: List[DayPlan] = Field(default_factory=list)
    current_day_stories: List[Story] = Field(default_factory=list)
    future_day_stories: Dict[str, List[Story]] = Field(default_factory=dict)
    unassigned: List[Story] = Field(default_factory=list)
    overflow: Optional[OverflowReport] = None
    summary: DistributionSummary = Field(default_factory=DistributionSummary)


class DistributionRequest(CamelModel):
    stories: List[Story] = Field(..., min_length=1)
    start_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN, description="Window start, HH:MM.")
    end_time: Optional[str] = Field(default=None, pattern=TIME_PATTERN, description="Window end, HH:MM.")
    today: Optional[date] = None

    @field_validator("stories")
    @classmethod
    def _require_estimates(cls, stories: List[Story]) -> List[Story]:
        for story in stories:
            if story.estimated_duration <= 0 and not story.tasks:
                raise ValueError(f"Story {story.title!r} has neither tasks nor an estimated duration")
        return stories
