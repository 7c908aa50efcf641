"""CSV upload endpoint: validate, store and queue a new import job."""

import uuid

import structlog
from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status

from csvimport.api.deps import DbSession, Storage
from csvimport.repositories.job_repo import CsvJobRepository
from csvimport.schemas.job import JobCreatedResponse
from csvimport.services.csv_validator import STUDENT_VARIANT, validate_csv_file
from csvimport.services.storage import object_key_for

router = APIRouter()

# Header variants whose rows the batch processor can turn into records
IMPORTABLE_VARIANTS = frozenset({STUDENT_VARIANT.name})

logger = structlog.get_logger()


@router.post("", response_model=JobCreatedResponse, status_code=status.HTTP_201_CREATED)
async def upload_csv(
    db: DbSession,
    storage: Storage,
    file: UploadFile = File(...),
    organization_id: str = Form(..., min_length=1),
    created_by: str = Form(..., min_length=1),
) -> JobCreatedResponse:
    """
    Upload a CSV file for asynchronous import.

    ## Accepted headers

    Required headers: `email, firstname, lastname, phoneno`. Files that
    only match the `assignment` layout pass structural validation are
    rejected with 400.

    Extra columns are ignored. The job starts in `queued` and is picked
    up by the scheduler (`POST /csv-jobs-scheduler`).
    """
    content = await file.read()
    file_name = file.filename or ""

    validation = validate_csv_file(content, file_name)
    if not validation.is_valid:
        logger.info("Rejected CSV upload", file_name=file_name, error=validation.error)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=validation.error,
        )

    if validation.variant not in IMPORTABLE_VARIANTS:
        logger.info("Rejected CSV upload", file_name=file_name, variant=validation.variant)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"CSV files with {validation.variant} headers cannot be imported; "
            f"expected headers: {', '.join(STUDENT_VARIANT.required)}",
        )

    job_id = uuid.uuid4()
    try:
        await storage.upload(organization_id, object_key_for(job_id, file_name), content)
    except Exception as e:
        logger.error("Failed to store uploaded CSV", file_name=file_name, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to store uploaded file",
        )

    repo = CsvJobRepository(db)
    job = await repo.create(
        organization_id=organization_id,
        file_name=file_name,
        file_size=len(content),
        created_by=created_by,
        total_records=validation.record_count,
        headers=validation.headers,
        job_id=job_id,
    )

    logger.info(
        "CSV job queued",
        job_id=str(job.job_id),
        organization_id=organization_id,
        total_records=job.total_records,
        variant=validation.variant,
    )

    return JobCreatedResponse(
        job_id=job.job_id,
        status=job.status,
        file_name=job.file_name,
        total_records=job.total_records,
        headers=validation.headers,
        message=f"CSV file accepted with {job.total_records} records",
    )
