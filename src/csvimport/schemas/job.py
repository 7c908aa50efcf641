"""Job schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from csvimport.models.job import JobStatus


class CamelModel(BaseModel):
    """Response model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorRecord(CamelModel):
    email: str
    error: str


class JobStatusResponse(CamelModel):
    """Schema for job status response."""

    job_id: UUID
    organization_id: str
    file_name: str
    file_size: int
    status: JobStatus
    total_records: int
    success_count: int
    failure_count: int
    progress_percentage: int
    error_records: list[ErrorRecord] = Field(default_factory=list)
    created_by: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job) -> "JobStatusResponse":
        return cls(
            job_id=job.job_id,
            organization_id=job.organization_id,
            file_name=job.file_name,
            file_size=job.file_size,
            status=job.status,
            total_records=job.total_records,
            success_count=job.success_count,
            failure_count=job.failure_count,
            progress_percentage=job.progress_percentage,
            error_records=job.errors if isinstance(job.errors, list) else [],
            created_by=job.created_by,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class JobListResponse(CamelModel):
    """Paginated list of jobs."""

    items: list[JobStatusResponse]
    total: int
    page: int
    per_page: int
    pages: int


class JobCreatedResponse(CamelModel):
    """Response for an accepted upload."""

    job_id: UUID
    status: JobStatus
    file_name: str
    total_records: int
    headers: list[str]
    message: str


class WorkerStats(CamelModel):
    """Snapshot of the batch executor."""

    active_workers: int
    queued_tasks: int
    max_workers: int


class SchedulerResponse(CamelModel):
    """Response for the scheduler trigger."""

    status: str
    message: str
    worker_stats: WorkerStats
    scheduler_state: str
