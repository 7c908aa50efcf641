"""Database models."""

from csvimport.models.base import Base
from csvimport.models.job import CsvProcessingJob, JobStatus
from csvimport.models.database import async_engine, async_session_maker, init_db, close_db

__all__ = [
    "Base",
    "CsvProcessingJob",
    "JobStatus",
    "async_engine",
    "async_session_maker",
    "init_db",
    "close_db",
]
