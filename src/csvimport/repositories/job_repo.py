"""Job repository for data access."""

from uuid import UUID

from sqlalchemy import select, func, update, cast
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from csvimport.models.base import utcnow
from csvimport.models.job import CsvProcessingJob, JobStatus


class CsvJobRepository:
    """Repository for CsvProcessingJob CRUD and progress updates."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, job_id: UUID) -> CsvProcessingJob | None:
        """Get a job by ID."""
        result = await self.db.execute(
            select(CsvProcessingJob).where(CsvProcessingJob.job_id == job_id)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        page: int = 1,
        per_page: int = 20,
        status: str | None = None,
        organization_id: str | None = None,
    ) -> tuple[list[CsvProcessingJob], int]:
        """List jobs with filtering and pagination."""
        query = select(CsvProcessingJob)

        conditions = []
        if status:
            conditions.append(CsvProcessingJob.status == JobStatus(status))
        if organization_id:
            conditions.append(CsvProcessingJob.organization_id == organization_id)

        if conditions:
            query = query.where(*conditions)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total_result = await self.db.execute(count_query)
        total = total_result.scalar_one()

        # Apply ordering and pagination
        query = query.order_by(CsvProcessingJob.created_at.desc())
        offset = (page - 1) * per_page
        query = query.offset(offset).limit(per_page)

        result = await self.db.execute(query)
        jobs = list(result.scalars().all())

        return jobs, total

    async def list_by_status(self, status: JobStatus) -> list[CsvProcessingJob]:
        result = await self.db.execute(
            select(CsvProcessingJob)
            .where(CsvProcessingJob.status == status)
            .order_by(CsvProcessingJob.created_at.asc())
        )
        return list(result.scalars().all())

    async def create(
        self,
        organization_id: str,
        file_name: str,
        file_size: int,
        created_by: str,
        total_records: int,
        headers: list[str] | None = None,
        job_id: UUID | None = None,
    ) -> CsvProcessingJob:
        """Create a new queued job."""
        job = CsvProcessingJob(
            organization_id=organization_id,
            file_name=file_name,
            file_size=file_size,
            created_by=created_by,
            total_records=total_records,
            headers=headers,
            status=JobStatus.QUEUED,
            success_count=0,
            failure_count=0,
            errors=[],
        )
        if job_id is not None:
            job.job_id = job_id

        self.db.add(job)
        await self.db.flush()
        await self.db.refresh(job)

        return job

    async def get_next_queued(self, skip_locked: bool = False) -> CsvProcessingJob | None:
        """Oldest job still waiting to be processed."""
        query = (
            select(CsvProcessingJob)
            .where(CsvProcessingJob.status == JobStatus.QUEUED)
            .order_by(CsvProcessingJob.created_at.asc())
            .limit(1)
        )
        if skip_locked and self.db.get_bind().dialect.name == "postgresql":
            query = query.with_for_update(skip_locked=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def claim_next_queued(self) -> CsvProcessingJob | None:
        """Move the oldest queued job to processing and return it.

        The status change is conditional on the job still being queued, so
        when several schedulers race for the same job exactly one wins and
        the others move on to the next candidate.
        """
        while True:
            job = await self.get_next_queued(skip_locked=True)
            if job is None:
                return None

            result = await self.db.execute(
                update(CsvProcessingJob)
                .where(
                    CsvProcessingJob.job_id == job.job_id,
                    CsvProcessingJob.status == JobStatus.QUEUED,
                )
                .values(status=JobStatus.PROCESSING, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await self.db.flush()
                await self.db.refresh(job)
                return job
            # Claimed elsewhere; forget the stale row before looking again
            self.db.expunge(job)

    async def update_status(self, job_id: UUID, status: JobStatus) -> None:
        """Move a job forward in its lifecycle."""
        values: dict = {"status": status, "updated_at": utcnow()}
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            values["completed_at"] = utcnow()

        await self.db.execute(
            update(CsvProcessingJob)
            .where(CsvProcessingJob.job_id == job_id)
            .values(**values)
        )
        await self.db.flush()

    async def add_progress(
        self,
        job_id: UUID,
        success_delta: int,
        failure_delta: int,
        error_records: list[dict] | None = None,
    ) -> None:
        """Accumulate a batch outcome onto the job row.

        Counters are incremented in SQL so concurrent batch completions
        for the same job never overwrite each other.
        """
        values: dict = {
            "success_count": CsvProcessingJob.success_count + success_delta,
            "failure_count": CsvProcessingJob.failure_count + failure_delta,
            "updated_at": utcnow(),
        }

        error_records = error_records or []
        if error_records and self.db.get_bind().dialect.name == "postgresql":
            values["errors"] = func.coalesce(
                cast(CsvProcessingJob.errors, JSONB), cast([], JSONB)
            ).op("||")(cast(error_records, JSONB))
        elif error_records:
            # No JSON array concatenation outside PostgreSQL; lock and append
            result = await self.db.execute(
                select(CsvProcessingJob.errors)
                .where(CsvProcessingJob.job_id == job_id)
                .with_for_update()
            )
            existing = result.scalar_one_or_none() or []
            values["errors"] = [*existing, *error_records]

        await self.db.execute(
            update(CsvProcessingJob)
            .where(CsvProcessingJob.job_id == job_id)
            .values(**values)
        )
        await self.db.flush()
