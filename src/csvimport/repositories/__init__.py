"""Data access repositories."""

from csvimport.repositories.job_repo import CsvJobRepository

__all__ = ["CsvJobRepository"]
