"""End-to-end work plan creation: group, distribute, allocate, submit and persist."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from time import perf_counter
from typing import Dict, List, Optional, Sequence

from workplan.api.schemas.distribution import DistributionResult
from workplan.api.schemas.work_plan import Schedule, Story, Task
from workplan.core.cancellation import CancellationToken
from workplan.core.config import settings
from workplan.observability.metrics import log_metric
from workplan.observability.tracing import trace
from workplan.services.day_load_distributor import DayLoadDistributor
from workplan.services.duration_rules import normalize_duration
from workplan.services.schedule_repair import ScheduleRepairLoop, ScheduleSubmitter
from workplan.services.task_enrichment import TaskEnricher
from workplan.services.task_grouper import analyze_and_group_tasks, groups_to_stories
from workplan.services.timebox_allocator import TimeBoxAllocator
from workplan.services.work_plan_store import StoredWorkPlan, WorkPlanStore

logger = logging.getLogger(__name__)


@dataclass
class WorkPlanResult:
    stored: StoredWorkPlan
    attempts: int
    repairs: int
    deferred: Dict[str, List[Story]] = field(default_factory=dict)
    unassigned: List[Story] = field(default_factory=list)

    @property
    def schedule(self) -> Schedule:
        return self.stored.schedule


def _normalized(task: Task) -> Task:
    duration = normalize_duration(task.duration, title=task.title)
    if duration == task.duration:
        return task
    logger.info("Rounded %r from %d to %d minutes", task.title, task.duration, duration)
    return task.model_copy(update={"duration": duration})


class WorkPlanService:
    """Wires the planning pipeline to its collaborators.

    Storage, the acceptance submitter and the enricher are passed in so
    callers (and tests) decide which implementations back a request.
    """

    def __init__(
        self,
        store: WorkPlanStore,
        *,
        submitter: Optional[ScheduleSubmitter] = None,
        enricher: Optional[TaskEnricher] = None,
        allocator: Optional[TimeBoxAllocator] = None,
        repair_loop: Optional[ScheduleRepairLoop] = None,
    ) -> None:
        self.store = store
        self.allocator = allocator or TimeBoxAllocator(frog_policy=settings.frog_late_policy)
        self.enricher = enricher
        if repair_loop is None and submitter is not None:
            repair_loop = ScheduleRepairLoop(submitter)
        self.repair_loop = repair_loop

    def build_stories(self, tasks: Sequence[Task] = (), raw_tasks: Sequence[str] = ()) -> List[Story]:
        stories: List[Story] = []
        if raw_tasks:
            enricher = self.enricher or TaskEnricher()
            stories.extend(enricher.enrich(raw_tasks))
        if tasks:
            normalized = [_normalized(task) for task in tasks]
            stories.extend(groups_to_stories(analyze_and_group_tasks(normalized), allocator=self.allocator))
        # Frog stories lead regardless of where they came from.
        return sorted(stories, key=lambda story: not story.has_frog)

    def preview(
        self,
        tasks: Sequence[Task] = (),
        *,
        raw_tasks: Sequence[str] = (),
        start_time: Optional[datetime] = None,
    ) -> Schedule:
        with trace("work_plan.preview", metadata={"tasks": len(tasks), "raw_tasks": len(raw_tasks)}):
            stories = self.build_stories(tasks, raw_tasks)
            return self.allocator.allocate(stories, start_time=start_time)

    def distribute(
        self,
        stories: Sequence[Story],
        *,
        work_start: Optional[str] = None,
        work_end: Optional[str] = None,
        today: Optional[date] = None,
    ) -> DistributionResult:
        return DayLoadDistributor(work_start, work_end, today=today).distribute(stories)

    async def create(
        self,
        tasks: Sequence[Task] = (),
        *,
        raw_tasks: Sequence[str] = (),
        start_time: Optional[datetime] = None,
        work_start: Optional[str] = None,
        work_end: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> WorkPlanResult:
        """Allocate today's share of the work, get it accepted and store it."""
        if self.repair_loop is None:
            raise RuntimeError("WorkPlanService.create needs an acceptance submitter")

        start = start_time or datetime.now().astimezone()
        started = perf_counter()
        with trace("work_plan.create", metadata={"tasks": len(tasks), "raw_tasks": len(raw_tasks)}):
            stories = self.build_stories(tasks, raw_tasks)
            deferred: Dict[str, List[Story]] = {}
            unassigned: List[Story] = []
            if work_start or work_end:
                distribution = self.distribute(stories, work_start=work_start, work_end=work_end, today=start.date())
                stories = sorted(distribution.current_day_stories, key=lambda story: not story.has_frog)
                deferred = distribution.future_day_stories
                unassigned = distribution.unassigned

            candidate = self.allocator.allocate(stories, start_time=start)
            outcome = await self.repair_loop.run(candidate, token=token)
            stored = self.store.save(outcome.schedule.date_key, outcome.schedule)

        log_metric("work_plan.create.latency_ms", (perf_counter() - started) * 1000)
        logger.info(
            "Work plan %s stored (version %d) after %d attempt(s); %d day(s) deferred",
            stored.date_key,
            stored.version,
            outcome.attempts,
            len(deferred),
        )
        return WorkPlanResult(
            stored=stored,
            attempts=outcome.attempts,
            repairs=outcome.repairs,
            deferred=deferred,
            unassigned=unassigned,
        )

    def get(self, date_key: str) -> Optional[StoredWorkPlan]:
        return self.store.get(date_key)
