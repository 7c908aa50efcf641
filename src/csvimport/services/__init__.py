"""Import pipeline services."""

from csvimport.services.batch_processor import (
    BatchContext,
    BatchProcessor,
    BatchResult,
    batch_row_range,
    total_batches,
)
from csvimport.services.csv_validator import CsvValidationResult, parse_csv_line, validate_csv_file
from csvimport.services.storage import ObjectStorage
from csvimport.services.user_service import UserServiceClient

__all__ = [
    "BatchContext",
    "BatchProcessor",
    "BatchResult",
    "batch_row_range",
    "total_batches",
    "CsvValidationResult",
    "parse_csv_line",
    "validate_csv_file",
    "ObjectStorage",
    "UserServiceClient",
]
