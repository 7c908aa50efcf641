"""Scheduler loop that drives queued CSV jobs through the batch executor."""

import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from csvimport.config import settings
from csvimport.exceptions import JobNotFoundError
from csvimport.models.job import JobStatus
from csvimport.repositories.job_repo import CsvJobRepository
from csvimport.schemas.job import WorkerStats
from csvimport.services.batch_processor import (
    BatchContext,
    BatchProcessor,
    BatchResult,
    batch_row_range,
    total_batches,
)
from csvimport.services.storage import build_file_locator, object_key_for
from csvimport.workers.pool import BoundedTaskExecutor

logger = structlog.get_logger()


class SchedulerState(str, enum.Enum):
    """Lifecycle of the scheduler loop."""

    IDLE = "idle"
    RUNNING = "running"
    ALARM = "alarm"
    STOPPED = "stopped"


@dataclass(frozen=True)
class BatchTask:
    job_id: UUID
    batch_number: int


@dataclass
class JobOutcome:
    """Totals for one job, summed over its batches."""

    job_id: UUID
    total_batches: int
    successful: int = 0
    failed: int = 0
    failed_batches: int = 0


class JobScheduler:
    """
    Owns the batch executor and the long-lived scheduling loop.

    One instance lives on the application (``app.state.scheduler``). The
    loop picks the oldest queued job, submits all of its batches to the
    executor, waits for them, and marks the job completed. Errors that
    escape a job are retried after a backoff; after
    ``max_consecutive_failures`` in a row the scheduler enters the alarm
    state and stops until it is triggered again.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        processor: BatchProcessor,
        max_workers: int | None = None,
        batch_size: int | None = None,
        idle_interval: float | None = None,
        job_interval: float | None = None,
        error_backoff: float | None = None,
        max_consecutive_failures: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_maker = session_maker
        self.processor = processor
        self.max_workers = settings.csv_worker_threads if max_workers is None else max_workers
        self.batch_size = processor.batch_size if batch_size is None else batch_size
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.idle_interval = settings.scheduler_idle_interval if idle_interval is None else idle_interval
        self.job_interval = settings.scheduler_job_interval if job_interval is None else job_interval
        self.error_backoff = settings.scheduler_error_backoff if error_backoff is None else error_backoff
        self.max_consecutive_failures = (
            settings.scheduler_max_consecutive_failures
            if max_consecutive_failures is None
            else max_consecutive_failures
        )
        self._sleep = sleep

        self.executor: BoundedTaskExecutor[BatchTask, BatchResult] | None = None
        self.state = SchedulerState.IDLE
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self._loop_task: asyncio.Task | None = None
        self._current_job_id: UUID | None = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def _get_executor(self) -> BoundedTaskExecutor[BatchTask, BatchResult]:
        if self.executor is None:
            self.executor = BoundedTaskExecutor(max_workers=self.max_workers)
            self.executor.set_handler(self._handle_batch)
            logger.info("CSV processor initialized", max_workers=self.executor.max_workers)
        return self.executor

    def get_stats(self) -> WorkerStats:
        return self._get_executor().get_stats()

    def ensure_running(self) -> WorkerStats:
        """Start the loop unless it is already running; safe to call repeatedly."""
        executor = self._get_executor()
        if not self.is_running:
            if self.state == SchedulerState.ALARM:
                logger.warning("Restarting scheduler from alarm state", last_error=self.last_error)
            self.consecutive_failures = 0
            self.state = SchedulerState.RUNNING
            self._loop_task = asyncio.create_task(self._run_loop(), name="csv-job-scheduler")
        return executor.get_stats()

    async def stop(self) -> None:
        """Cancel the loop and drop batches that have not started."""
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        if self.executor is not None:
            self.executor.clear()
        self._loop_task = None
        self.state = SchedulerState.STOPPED

    async def drain(self) -> int:
        """Process queued jobs until none remain; returns how many ran."""
        processed = 0
        while await self.run_once():
            processed += 1
        return processed

    async def _run_loop(self) -> None:
        logger.info("Scheduler loop started")
        await self._report_orphaned_jobs()

        while True:
            try:
                found = await self.run_once()
                self.consecutive_failures = 0
                await self._sleep(self.job_interval if found else self.idle_interval)
            except asyncio.CancelledError:
                logger.info("Scheduler loop cancelled")
                raise
            except Exception as e:
                self.consecutive_failures += 1
                self.last_error = str(e)
                logger.error(
                    "Error in job processing loop",
                    error=str(e),
                    consecutive_failures=self.consecutive_failures,
                    exc_info=e,
                )
                if 0 < self.max_consecutive_failures <= self.consecutive_failures:
                    await self._enter_alarm()
                    return
                await self._sleep(self.error_backoff)

    async def _enter_alarm(self) -> None:
        self.state = SchedulerState.ALARM
        logger.critical(
            "Scheduler entered alarm state, loop stopped",
            consecutive_failures=self.consecutive_failures,
            last_error=self.last_error,
            job_id=str(self._current_job_id) if self._current_job_id else None,
        )
        if self._current_job_id is None:
            return
        try:
            async with self.session_maker() as session:
                await CsvJobRepository(session).update_status(self._current_job_id, JobStatus.FAILED)
                await session.commit()
        except Exception as e:
            logger.error("Could not mark job failed", job_id=str(self._current_job_id), error=str(e))
        self._current_job_id = None

    async def _report_orphaned_jobs(self) -> None:
        try:
            async with self.session_maker() as session:
                orphaned = await CsvJobRepository(session).list_by_status(JobStatus.PROCESSING)
        except Exception as e:
            logger.error("Could not check for orphaned jobs", error=str(e))
            return
        for job in orphaned:
            # TODO: resume from per-batch checkpoints once batches are tracked individually
            logger.warning(
                "Job was left processing by a previous run and will not be resumed",
                job_id=str(job.job_id),
                success_count=job.success_count,
                failure_count=job.failure_count,
                total_records=job.total_records,
            )

    async def run_once(self) -> bool:
        """Process the oldest queued job, if any. Returns whether one was found."""
        async with self.session_maker() as session:
            repo = CsvJobRepository(session)
            job = await repo.claim_next_queued()
            if job is None:
                return False
            job_id, total_records = job.job_id, job.total_records
            await session.commit()

        self._current_job_id = job_id
        outcome = await self._process_job(job_id, total_records)

        async with self.session_maker() as session:
            await CsvJobRepository(session).update_status(job_id, JobStatus.COMPLETED)
            await session.commit()
        self._current_job_id = None

        logger.info(
            "Job processing completed",
            job_id=str(job_id),
            total_batches=outcome.total_batches,
            successful=outcome.successful,
            failed=outcome.failed,
            failed_batches=outcome.failed_batches,
        )
        return True

    async def _process_job(self, job_id: UUID, total_records: int) -> JobOutcome:
        executor = self._get_executor()
        batches = total_batches(total_records, self.batch_size)
        outcome = JobOutcome(job_id=job_id, total_batches=batches)
        logger.info("Starting job", job_id=str(job_id), total_records=total_records, total_batches=batches)

        futures = [
            executor.submit(f"{job_id}-batch-{n}", BatchTask(job_id=job_id, batch_number=n))
            for n in range(1, batches + 1)
        ]
        results = await asyncio.gather(*futures, return_exceptions=True)

        for batch_number, result in enumerate(results, start=1):
            if isinstance(result, BaseException):
                logger.error(
                    "Error processing batch",
                    job_id=str(job_id),
                    batch_number=batch_number,
                    error=str(result),
                )
                outcome.failed += await self._record_failed_batch(
                    job_id, batch_number, total_records, str(result)
                )
                outcome.failed_batches += 1
            elif result.success:
                outcome.successful += result.processed_count
                outcome.failed += result.failed_count
            else:
                logger.warning(
                    "Batch failed",
                    job_id=str(job_id),
                    batch_number=batch_number,
                    error=result.error_message,
                )
                outcome.failed += await self._record_failed_batch(
                    job_id, batch_number, total_records, result.error_message or "Unknown error"
                )
                outcome.failed_batches += 1

        return outcome

    async def _record_failed_batch(
        self,
        job_id: UUID,
        batch_number: int,
        total_records: int,
        message: str,
    ) -> int:
        """Count every row of a batch that never ran as failed."""
        start, end = batch_row_range(batch_number, self.batch_size)
        rows = min(end, total_records) - start + 1
        if rows <= 0:
            return 0
        error = {"email": "", "error": f"Batch {batch_number} (rows {start}-{min(end, total_records)}) failed: {message}"}
        try:
            async with self.session_maker() as session:
                await CsvJobRepository(session).add_progress(job_id, 0, rows, [error])
                await session.commit()
        except Exception as e:
            logger.error("Failed to record batch failure", job_id=str(job_id), batch_number=batch_number, error=str(e))
        return rows

    async def _handle_batch(self, task: BatchTask, task_id: str) -> BatchResult:
        async with self.session_maker() as session:
            job = await CsvJobRepository(session).get(task.job_id)
            if job is None:
                raise JobNotFoundError(task.job_id)
            context = BatchContext(
                job_id=job.job_id,
                batch_number=task.batch_number,
                organization_id=job.organization_id,
                user_id=job.created_by,
                file_locator=build_file_locator(
                    job.organization_id, object_key_for(job.job_id, job.file_name)
                ),
            )
        return await self.processor.process_batch(context)
