"""Schemas for tasks, stories and time-boxed work plans.

Every model serializes with camelCase aliases to match the acceptance
endpoint contract and accepts snake_case names on input.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TaskCategory = Literal["focus", "learning", "review", "research", "break"]
DifficultyLevel = Literal["low", "medium", "high"]
StoryType = Literal["timeboxed", "flexible", "milestone"]
TimeBoxType = Literal["work", "short-break", "long-break", "debrief"]

BREAK_TYPES = ("short-break", "long-break")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SplitInfo(CamelModel):
    is_parent: bool
    part_number: Optional[int] = None
    total_parts: Optional[int] = None
    original_duration: Optional[int] = None
    parent_task_id: Optional[str] = None
    original_title: Optional[str] = None


class Break(CamelModel):
    after_minutes: int
    duration_minutes: int
    reason: str = ""


class Task(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    duration: int = Field(..., ge=1, description="Estimated minutes.")
    category: TaskCategory = "focus"
    is_frog: bool = False
    is_flexible: bool = False
    difficulty: Optional[DifficultyLevel] = None
    needs_splitting: bool = False
    split_info: Optional[SplitInfo] = None
    suggested_breaks: List[Break] = Field(default_factory=list)


class Story(CamelModel):
    title: str
    summary: str = ""
    icon: str = ""
    type: StoryType = "timeboxed"
    project: str = ""
    category: str = ""
    tasks: List[Task] = Field(default_factory=list)
    estimated_duration: int = 0

    @property
    def has_frog(self) -> bool:
        return any(task.is_frog for task in self.tasks)


class TimeBoxTask(CamelModel):
    title: str
    duration: int
    is_frog: bool = False
    category: TaskCategory = "focus"
    task_id: Optional[str] = None
    split_info: Optional[SplitInfo] = None


class TimeBox(CamelModel):
    type: TimeBoxType
    duration: int
    start_offset: int = 0
    tasks: List[TimeBoxTask] = Field(default_factory=list)


class StoryBlock(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    time_boxes: List[TimeBox] = Field(default_factory=list)
    total_duration: int = 0
    progress: int = 0


class FrogMetrics(CamelModel):
    total: int = 0
    scheduled: int = 0
    scheduled_within_target: int = 0


class Schedule(CamelModel):
    story_blocks: List[StoryBlock] = Field(default_factory=list)
    total_duration: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    frog_metrics: FrogMetrics = Field(default_factory=FrogMetrics)
    warnings: List[str] = Field(default_factory=list)

    @property
    def date_key(self) -> str:
        """Storage key (YYYY-MM-DD) derived from the start time."""
        start = self.start_time or datetime.now()
        return start.date().isoformat()


class StoryMappingEntry(CamelModel):
    possible_title: str
    original_title: str


class AcceptanceRequest(CamelModel):
    stories: List[Story]
    start_time: datetime
    story_mapping: List[StoryMappingEntry] = Field(default_factory=list)
