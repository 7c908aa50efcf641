"""CSV processing job model for background import tracking."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from csvimport.models.base import Base, JSONBType


class JobStatus(str, enum.Enum):
    """Job status enum."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CsvProcessingJob(Base):
    """One uploaded CSV file and the progress of its import."""

    __tablename__ = "csv_processing_jobs"

    job_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Provenance
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    headers: Mapped[list | None] = mapped_column(JSONBType)

    status: Mapped[JobStatus] = mapped_column(
        "csv_status",
        Enum(JobStatus, name="csvstatus", values_callable=lambda e: [x.value for x in e]),
        default=JobStatus.QUEUED,
        nullable=False,
        index=True,
    )

    # Progress Tracking
    total_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list] = mapped_column(JSONBType, default=list, nullable=False)  # [{"email": ..., "error": ...}]

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    def __repr__(self) -> str:
        return f"<CsvProcessingJob(job_id={self.job_id}, file='{self.file_name}', status='{self.status}')>"

    @property
    def processed_records(self) -> int:
        return self.success_count + self.failure_count

    @property
    def progress_percentage(self) -> int:
        """Rounded share of rows that reached a final outcome."""
        if not self.total_records:
            return 0
        return round(self.processed_records / self.total_records * 100)
