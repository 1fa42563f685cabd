"""FastAPI dependencies that assemble the planning collaborators per request."""
from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.orm import Session

from workplan.db.deps import get_db
from workplan.services.acceptance_client import AcceptanceClient
from workplan.services.task_enrichment import TaskEnricher
from workplan.services.work_plan_service import WorkPlanService
from workplan.services.work_plan_store import SqlAlchemyWorkPlanStore, WorkPlanStore


def get_work_plan_store(db: Session = Depends(get_db)) -> WorkPlanStore:
    return SqlAlchemyWorkPlanStore(db)


async def get_acceptance_client() -> AsyncIterator[AcceptanceClient]:
    client = AcceptanceClient()
    try:
        yield client
    finally:
        await client.aclose()


def get_task_enricher() -> TaskEnricher:
    return TaskEnricher()


def get_work_plan_service(
    store: WorkPlanStore = Depends(get_work_plan_store),
    enricher: TaskEnricher = Depends(get_task_enricher),
) -> WorkPlanService:
    """Planning and lookup only; nothing is submitted."""
    return WorkPlanService(store, enricher=enricher)


def get_submitting_work_plan_service(
    store: WorkPlanStore = Depends(get_work_plan_store),
    client: AcceptanceClient = Depends(get_acceptance_client),
    enricher: TaskEnricher = Depends(get_task_enricher),
) -> WorkPlanService:
    return WorkPlanService(store, submitter=client, enricher=enricher)
