"""Request and response bodies for the work-plan routes."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, model_validator

from workplan.api.schemas.distribution import TIME_PATTERN
from workplan.api.schemas.work_plan import CamelModel, Schedule, Story, StoryMappingEntry, Task


class WorkPlanPreviewRequest(CamelModel):
    tasks: List[Task] = Field(default_factory=list)
    raw_tasks: List[str] = Field(default_factory=list, description="Free-form task lines to enrich.")
    start_time: Optional[datetime] = None

    @model_validator(mode="after")
    def _require_input(self) -> "WorkPlanPreviewRequest":
        if not self.tasks and not self.raw_tasks:
            raise ValueError("Provide at least one task or raw task line")
        return self


class WorkPlanCreateRequest(WorkPlanPreviewRequest):
    work_start: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    work_end: Optional[str] = Field(default=None, pattern=TIME_PATTERN)


class WorkPlanPreviewResponse(CamelModel):
    schedule: Schedule
    story_mapping: List[StoryMappingEntry]
    request_id: str


class WorkPlanResponse(CamelModel):
    date_key: str
    version: int
    schedule: Schedule
    attempts: int = 0
    repairs: int = 0
    deferred: Dict[str, List[Story]] = Field(default_factory=dict)
    unassigned: List[Story] = Field(default_factory=list)
    request_id: str = ""
