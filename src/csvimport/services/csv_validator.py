"""Structural validation of uploaded CSV files."""

import codecs
import csv
import io
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Iterator

import structlog

from csvimport.config import settings

logger = structlog.get_logger()

MIN_FILE_SIZE = 10  # bytes, header + one record at the very least
CONTENT_SAMPLE_SIZE = 512

# Punctuation that may appear in a text CSV besides letters, digits and whitespace
ALLOWED_PUNCTUATION = frozenset(",\"'.;-_@#$%&()[]{}+=:/?!~`^|\\")


@dataclass(frozen=True)
class HeaderVariant:
    """A named set of columns that must all be present."""

    name: str
    required: tuple[str, ...]

    def missing(self, headers: list[str]) -> list[str]:
        return [h for h in self.required if h not in headers]


STUDENT_VARIANT = HeaderVariant("student", ("email", "firstname", "lastname", "phoneno"))
ASSIGNMENT_VARIANT = HeaderVariant("assignment", ("coursename", "studentname"))

# Checked in order; the first fully satisfied variant wins
HEADER_VARIANTS: tuple[HeaderVariant, ...] = (STUDENT_VARIANT, ASSIGNMENT_VARIANT)


@dataclass
class CsvValidationResult:
    """Outcome of validating one file."""

    is_valid: bool
    error: str | None = None
    headers: list[str] | None = None
    record_count: int | None = None
    variant: str | None = None
    missing_headers: dict[str, list[str]] = field(default_factory=dict)
    unknown_headers: list[str] = field(default_factory=list)


def _is_text_char(char: str) -> bool:
    if char.isspace() or char in ALLOWED_PUNCTUATION:
        return True
    return unicodedata.category(char)[0] in ("L", "N")


def _decode_sample(data: bytes) -> str:
    # A multi-byte character cut at the sample boundary is held back, not replaced
    decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
    return decoder.decode(data[:CONTENT_SAMPLE_SIZE], final=False)


def parse_csv_line(line: str, delimiter: str = ",", quote: str = '"') -> list[str]:
    """Split one CSV line into trimmed, non-empty fields.

    Quoted fields may contain the delimiter, and a doubled quote inside
    a quoted field stands for a literal quote character.
    """
    fields: list[str] = []
    current: list[str] = []
    inside_quotes = False
    i = 0

    while i < len(line):
        char = line[i]
        if char == quote:
            if inside_quotes and i + 1 < len(line) and line[i + 1] == quote:
                current.append(quote)
                i += 1
            else:
                inside_quotes = not inside_quotes
        elif char == delimiter and not inside_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    fields.append("".join(current).strip())
    return [f for f in fields if f]


def is_blank_row(row: list[str]) -> bool:
    return not any(value.strip() for value in row)


def iter_csv_rows(lines: Iterable[str]) -> Iterator[list[str]]:
    """Yield parsed CSV rows, skipping rows whose fields are all blank.

    This is the one definition of a row used both for counting a file's
    records and for slicing it into batches.
    """
    for row in csv.reader(lines):
        if not is_blank_row(row):
            yield row


def match_header_variant(
    headers: list[str],
    variants: tuple[HeaderVariant, ...] = HEADER_VARIANTS,
) -> tuple[HeaderVariant | None, dict[str, list[str]]]:
    """Return the first variant whose required headers are all present.

    When none matches, the second element maps each variant name to
    the headers it is missing.
    """
    missing_by_variant: dict[str, list[str]] = {}
    for variant in variants:
        missing = variant.missing(headers)
        if not missing:
            return variant, {}
        missing_by_variant[variant.name] = missing
    return None, missing_by_variant


def validate_csv_file(
    data: bytes,
    file_name: str,
    max_file_size: int | None = None,
) -> CsvValidationResult:
    """Validate that an uploaded buffer is a usable CSV file."""
    max_file_size = max_file_size or settings.csv_max_file_size_bytes

    try:
        if len(data) < MIN_FILE_SIZE:
            return CsvValidationResult(
                is_valid=False,
                error=f"File size too small (minimum {MIN_FILE_SIZE} bytes)",
            )

        if len(data) > max_file_size:
            return CsvValidationResult(
                is_valid=False,
                error=f"File size exceeds maximum limit ({max_file_size // 1024 // 1024} MB)",
            )

        if not file_name.lower().endswith(".csv"):
            return CsvValidationResult(is_valid=False, error="File must have .csv extension")

        sample = _decode_sample(data)
        if not all(_is_text_char(c) for c in sample):
            return CsvValidationResult(
                is_valid=False,
                error="File content appears to be binary, not plain text CSV",
            )

        if "," not in sample:
            return CsvValidationResult(
                is_valid=False,
                error="File does not appear to be CSV format (no commas detected)",
            )

        text = data.decode("utf-8-sig", errors="replace")
        lines = [line for line in text.split("\n") if line.strip()]
        rows = list(iter_csv_rows(io.StringIO(text, newline="")))

        if len(rows) < 2:
            return CsvValidationResult(
                is_valid=False,
                error="CSV file must contain at least a header and one data row",
            )

        headers = parse_csv_line(lines[0])
        if not headers:
            return CsvValidationResult(is_valid=False, error="CSV file has no headers")

        normalized = [h.lower().strip() for h in headers]

        variant, missing_by_variant = match_header_variant(normalized)
        if variant is None:
            details = "; ".join(
                f"{name}: {', '.join(missing)}" for name, missing in missing_by_variant.items()
            )
            return CsvValidationResult(
                is_valid=False,
                error=f"Missing required CSV headers: {details}",
                headers=normalized,
                missing_headers=missing_by_variant,
            )

        unknown = [h for h in normalized if h not in variant.required]
        if unknown:
            logger.warning(
                "CSV contains unexpected columns, they will be ignored",
                file_name=file_name,
                variant=variant.name,
                unknown_headers=unknown,
            )

        record_count = len(rows) - 1

        logger.info(
            "CSV validation successful",
            file_name=file_name,
            variant=variant.name,
            record_count=record_count,
            headers=normalized,
        )

        return CsvValidationResult(
            is_valid=True,
            headers=normalized,
            record_count=record_count,
            variant=variant.name,
            unknown_headers=unknown,
        )

    except Exception as e:
        logger.error("CSV validation crashed", file_name=file_name, error=str(e))
        return CsvValidationResult(is_valid=False, error=f"CSV validation failed: {e}")
