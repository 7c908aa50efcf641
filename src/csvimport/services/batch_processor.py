"""Batch processing: turn one slice of a job's CSV into downstream create calls."""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from csvimport.config import settings
from csvimport.repositories.job_repo import CsvJobRepository
from csvimport.schemas.record import validate_student_record
from csvimport.services.csv_validator import iter_csv_rows
from csvimport.services.storage import ObjectStorage, resolve_file_locator
from csvimport.services.user_service import UserServiceClient

logger = structlog.get_logger()

# Accepted spellings per canonical field, compared after lowercasing
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "email": ("email",),
    "first_name": ("firstname", "first_name"),
    "last_name": ("lastname", "last_name"),
    "phone_no": ("phoneno", "phone_no", "phonenumber", "phone_number"),
}


def batch_row_range(batch_number: int, batch_size: int) -> tuple[int, int]:
    """Inclusive 1-indexed data-row range covered by a batch."""
    if batch_number < 1:
        raise ValueError("batch_number must be >= 1")
    start = (batch_number - 1) * batch_size + 1
    return start, start + batch_size - 1


def total_batches(total_records: int, batch_size: int) -> int:
    return math.ceil(total_records / batch_size) if total_records > 0 else 0


def normalize_record(row: dict) -> dict:
    """Map a raw CSV row onto the canonical record fields."""
    lowered = {(k or "").strip().lower(): v for k, v in row.items()}
    normalized = {}
    for canonical, aliases in FIELD_ALIASES.items():
        value = next((lowered[a] for a in aliases if lowered.get(a)), "")
        normalized[canonical] = str(value).strip()
    normalized["email"] = normalized["email"].lower()
    return normalized


def iter_records(lines: Iterable[str]) -> Iterator[dict]:
    """Data rows keyed by the header row; blank rows are not records."""
    rows = iter_csv_rows(lines)
    header = next(rows, None)
    if header is None:
        return
    for row in rows:
        yield dict(zip(header, row))


def select_batch_rows(rows: Iterable[dict], start: int, end: int) -> list[dict]:
    """Normalize the rows numbered ``start..end`` and stop reading after ``end``."""
    selected = []
    non_blank = (row for row in rows if any(str(v or "").strip() for v in row.values()))
    for row_number, row in enumerate(non_blank, start=1):
        if row_number > end:
            break
        if row_number >= start:
            selected.append(normalize_record(row))
    return selected


@dataclass
class BatchContext:
    """Everything needed to process one batch."""

    job_id: UUID
    batch_number: int
    organization_id: str
    user_id: str
    file_locator: str


@dataclass
class BatchResult:
    """Aggregated outcome of one batch."""

    success: bool
    processed_count: int = 0
    failed_count: int = 0
    error_records: list[dict] = field(default_factory=list)
    error_message: str | None = None


class BatchProcessor:
    """
    Processes one batch of a CSV job.

    Flow:
    1. Resolve the file locator to a bucket/key pair
    2. Stream the CSV and keep only this batch's rows
    3. Validate each row and create it downstream, one call at a time
    4. Add the batch counts and errors onto the job row
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
        user_service: UserServiceClient,
        batch_size: int | None = None,
    ):
        self.session_maker = session_maker
        self.storage = storage
        self.user_service = user_service
        self.batch_size = settings.csv_batch_size if batch_size is None else batch_size
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    async def process_batch(self, context: BatchContext) -> BatchResult:
        log = logger.bind(job_id=str(context.job_id), batch_number=context.batch_number)
        try:
            bucket, key = resolve_file_locator(context.file_locator)
            start, end = batch_row_range(context.batch_number, self.batch_size)
            log.info("Processing batch", bucket=bucket, key=key, start_row=start, end_row=end)

            records = await asyncio.to_thread(self._read_batch, bucket, key, start, end)

            if not records:
                log.warning("No records found in batch")
                return BatchResult(success=True)

            processed, failed, error_records = await self._send_records(
                records, context.organization_id, context.user_id
            )
        except Exception as e:
            log.error("Batch processing failed", error=str(e), exc_info=e)
            return BatchResult(success=False, error_message=str(e) or e.__class__.__name__)

        await self._update_job_progress(context.job_id, processed, failed, error_records)

        log.info("Batch completed", processed=processed, failed=failed)
        return BatchResult(
            success=True,
            processed_count=processed,
            failed_count=failed,
            error_records=error_records,
        )

    def _read_batch(self, bucket: str, key: str, start: int, end: int) -> list[dict]:
        with self.storage.open_text(bucket, key) as stream:
            return select_batch_rows(iter_records(stream), start, end)

    async def _send_records(
        self,
        records: list[dict],
        organization_id: str,
        user_id: str,
    ) -> tuple[int, int, list[dict]]:
        processed = 0
        failed = 0
        error_records: list[dict] = []

        for row in records:
            record, error = validate_student_record(row)
            if record is None:
                failed += 1
                error_records.append({"email": row.get("email", ""), "error": error})
                continue

            result = await self.user_service.create_student(record, organization_id, user_id)
            if result.ok:
                processed += 1
            else:
                failed += 1
                error_records.append({"email": str(record.email), "error": result.error})

        return processed, failed, error_records

    async def _update_job_progress(
        self,
        job_id: UUID,
        processed: int,
        failed: int,
        error_records: list[dict],
    ) -> None:
        # Counters may lag the real outcome if this write fails; nothing retries it
        try:
            async with self.session_maker() as session:
                repo = CsvJobRepository(session)
                await repo.add_progress(job_id, processed, failed, error_records)
                await session.commit()
        except Exception as e:
            logger.error(
                "Failed to update job progress",
                job_id=str(job_id),
                processed=processed,
                failed=failed,
                error=str(e),
            )
