"""Multi-day distribution endpoint."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from workplan.api.schemas.distribution import DistributionRequest, DistributionResult
from workplan.observability.metrics import log_metric
from workplan.observability.tracing import trace
from workplan.services.day_load_distributor import DayLoadDistributor

router = APIRouter(prefix="/work-plans", tags=["work-plans"])


@router.post("/distribute", response_model=DistributionResult, response_model_by_alias=True)
def distribute_stories(payload: DistributionRequest) -> DistributionResult:
    """Spread stories over as many days as the working window requires."""
    with trace("work_plan.distribute", metadata={"stories": len(payload.stories)}):
        try:
            distributor = DayLoadDistributor(payload.start_time, payload.end_time, today=payload.today)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        result = distributor.distribute(payload.stories)

    log_metric("work_plan.distribute.days_required", result.summary.days_required)
    if result.unassigned:
        log_metric("work_plan.distribute.unassigned", len(result.unassigned))
    return result
