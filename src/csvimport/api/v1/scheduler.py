"""Scheduler trigger endpoint."""

import structlog
from fastapi import APIRouter, status
from fastapi.responses import ORJSONResponse

from csvimport.api.deps import Scheduler
from csvimport.schemas.job import SchedulerResponse

router = APIRouter()

logger = structlog.get_logger()


@router.post("/csv-jobs-scheduler", response_model=SchedulerResponse)
async def ensure_scheduler_running(scheduler: Scheduler):
    """
    Make sure the CSV job scheduler is running.

    Idempotent: the first call builds the batch executor and starts the
    scheduling loop, later calls only report executor statistics. A
    scheduler in the alarm state is restarted.
    """
    try:
        stats = scheduler.ensure_running()
    except Exception as e:
        logger.error("Error initializing CSV scheduler", error=str(e), exc_info=e)
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to initialize CSV scheduler"},
        )

    return SchedulerResponse(
        status="initialized",
        message="CSV job scheduler initialized",
        worker_stats=stats,
        scheduler_state=scheduler.state.value,
    )
