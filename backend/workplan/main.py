"""Main FastAPI application for the work plan engine."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from workplan.api.routes.distribution import router as distribution_router
from workplan.api.routes.work_plan import router as work_plan_router
from workplan.core.config import settings
from workplan.core.errors import ErrorKind, WorkPlanError
from workplan.core.logging import configure_logging
from workplan.core.middleware import RequestIDMiddleware
from workplan.observability.client import init_opik
from workplan.observability.tracing import trace

configure_logging(log_level=settings.log_level, repair_log_level=settings.repair_log_level)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.DURATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.STRUCTURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.RATE_LIMIT: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.SERVER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PARSE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CONTINUOUS_WORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.CANCELLED: status.HTTP_503_SERVICE_UNAVAILABLE,
}

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(work_plan_router)
app.include_router(distribution_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.exception_handler(WorkPlanError)
async def work_plan_error_handler(request: Request, exc: WorkPlanError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
    else:
        logger.info("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
