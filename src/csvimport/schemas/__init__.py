"""Pydantic schemas for request/response validation."""

from csvimport.schemas.job import (
    JobStatusResponse,
    JobListResponse,
    JobCreatedResponse,
    WorkerStats,
    SchedulerResponse,
)
from csvimport.schemas.record import StudentRecord, validate_student_record

__all__ = [
    "JobStatusResponse",
    "JobListResponse",
    "JobCreatedResponse",
    "WorkerStats",
    "SchedulerResponse",
    "StudentRecord",
    "validate_student_record",
]
