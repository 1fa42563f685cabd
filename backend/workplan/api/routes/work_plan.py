"""Work plan preview, creation and lookup endpoints."""
from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status

from workplan.api.deps import get_submitting_work_plan_service, get_work_plan_service
from workplan.api.schemas.work_plan_api import (
    WorkPlanCreateRequest,
    WorkPlanPreviewRequest,
    WorkPlanPreviewResponse,
    WorkPlanResponse,
)
from workplan.observability.metrics import log_metric
from workplan.services.title_mapping import build_story_mapping
from workplan.services.work_plan_service import WorkPlanService

router = APIRouter(prefix="/work-plans", tags=["work-plans"])


@router.post("/preview", response_model=WorkPlanPreviewResponse, response_model_by_alias=True)
def preview_work_plan(
    request: Request,
    payload: WorkPlanPreviewRequest,
    service: WorkPlanService = Depends(get_work_plan_service),
) -> WorkPlanPreviewResponse:
    """Allocate the tasks into time boxes without submitting or storing anything."""
    request_id = getattr(request.state, "request_id", None)
    schedule = service.preview(payload.tasks, raw_tasks=payload.raw_tasks, start_time=payload.start_time)
    log_metric("work_plan.preview.blocks", len(schedule.story_blocks))
    return WorkPlanPreviewResponse(
        schedule=schedule,
        story_mapping=build_story_mapping(schedule),
        request_id=request_id or "",
    )


@router.post(
    "",
    response_model=WorkPlanResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_work_plan(
    request: Request,
    payload: WorkPlanCreateRequest,
    service: WorkPlanService = Depends(get_submitting_work_plan_service),
) -> WorkPlanResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    result = await service.create(
        payload.tasks,
        raw_tasks=payload.raw_tasks,
        start_time=payload.start_time,
        work_start=payload.work_start,
        work_end=payload.work_end,
    )
    log_metric("work_plan.create.attempts", result.attempts, metadata={"repairs": result.repairs})
    log_metric("work_plan.create.route_latency_ms", (perf_counter() - start) * 1000)
    return WorkPlanResponse(
        date_key=result.stored.date_key,
        version=result.stored.version,
        schedule=result.schedule,
        attempts=result.attempts,
        repairs=result.repairs,
        deferred=result.deferred,
        unassigned=result.unassigned,
        request_id=request_id or "",
    )


@router.get("/{date_key}", response_model=WorkPlanResponse, response_model_by_alias=True)
def get_work_plan(
    request: Request,
    date_key: str = Path(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="Plan date, YYYY-MM-DD"),
    service: WorkPlanService = Depends(get_work_plan_service),
) -> WorkPlanResponse:
    stored = service.get(date_key)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work plan not found")
    return WorkPlanResponse(
        date_key=stored.date_key,
        version=stored.version,
        schedule=stored.schedule,
        request_id=getattr(request.state, "request_id", None) or "",
    )
