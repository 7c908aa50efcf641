"""CSV job status endpoints."""

import re
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from csvimport.api.deps import DbSession
from csvimport.models.job import JobStatus
from csvimport.repositories.job_repo import CsvJobRepository
from csvimport.schemas.job import JobListResponse, JobStatusResponse

router = APIRouter()

logger = structlog.get_logger()

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


@router.get("/csv-jobs-status/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, db: DbSession) -> JobStatusResponse:
    """Get job progress, including every failed row recorded so far."""
    if not UUID_PATTERN.match(job_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid job ID format",
        )

    repo = CsvJobRepository(db)
    job = await repo.get(UUID(job_id))
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    return JobStatusResponse.from_job(job)


@router.get("/csv-jobs", response_model=JobListResponse)
async def list_jobs(
    db: DbSession,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status: JobStatus | None = None,
    organization_id: str | None = None,
) -> JobListResponse:
    """List CSV jobs with pagination and filtering."""
    repo = CsvJobRepository(db)
    jobs, total = await repo.list_jobs(
        page=page,
        per_page=per_page,
        status=status,
        organization_id=organization_id,
    )
    return JobListResponse(
        items=[JobStatusResponse.from_job(job) for job in jobs],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page,
    )
