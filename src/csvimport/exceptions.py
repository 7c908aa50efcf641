"""Domain exceptions for the CSV import pipeline."""


class CsvImportError(Exception):
    """Base class for import pipeline errors."""


class InvalidFileLocatorError(CsvImportError):
    """A file locator could not be resolved to a bucket/key pair."""

    def __init__(self, file_locator: str):
        self.file_locator = file_locator
        super().__init__(f"Invalid file URL format: {file_locator}")


class HandlerNotConfiguredError(CsvImportError):
    """The task executor ran a task before a handler was installed."""

    def __init__(self) -> None:
        super().__init__("Processor not configured")


class JobNotFoundError(CsvImportError):
    """A job referenced by a batch task does not exist."""

    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")
