"""Streaming CSV decoding for product import files."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Sequence

from catalog_import.utils.csv_validator import ValidationError, validate_headers
from catalog_import.utils.memory_monitor import (
    DEFAULT_MEMORY_LIMIT,
    check_memory_exceeded,
    force_gc,
)

logger = logging.getLogger(__name__)

EXTRA_KEY = "__extra__"


class DecodeError(ValueError):
    """The source is structurally broken; the remaining stream cannot be trusted."""

    def __init__(self, message: str, row_number: int | None = None):
        super().__init__(message)
        self.message = message
        self.row_number = row_number


@dataclass(frozen=True)
class DecodedRow:
    """One data row: 1-based number and its header-keyed cells."""

    number: int
    fields: dict[str, str]


def open_source(file_path: Path | str) -> BinaryIO:
    """Open a staged upload for streaming."""
    try:
        return Path(file_path).open("rb")
    except FileNotFoundError as e:
        raise DecodeError(f"CSV file not found: {file_path}") from e
    except PermissionError as e:
        raise DecodeError(f"Permission denied reading file: {file_path}") from e


def normalize_header(header: str, attribute_prefix: str = "attr_") -> str:
    """Trim and lower-case a header; attribute columns keep their name's case."""
    cleaned = (header or "").strip()
    if cleaned.lower().startswith(attribute_prefix):
        return attribute_prefix + cleaned[len(attribute_prefix):].strip()
    return cleaned.lower()


def _check_headers(
    headers: list[str], required_headers: Sequence[str]
) -> None:
    if not any(headers):
        raise DecodeError("CSV header row is empty", row_number=None)

    seen: set[str] = set()
    duplicates: list[str] = []
    for header in headers:
        key = header.lower()
        if not key:
            continue
        if key in seen and header not in duplicates:
            duplicates.append(header)
        seen.add(key)
    if duplicates:
        raise DecodeError(f"Duplicate column(s): {', '.join(duplicates)}")

    try:
        validate_headers(headers, required_headers)
    except ValidationError as e:
        raise DecodeError(f"Invalid CSV headers: {e}") from e


def iter_rows(
    stream: BinaryIO,
    *,
    required_headers: Sequence[str] = (),
    attribute_prefix: str = "attr_",
    skip: int = 0,
    memory_check_every: int = 100,
    memory_limit_bytes: int = DEFAULT_MEMORY_LIMIT,
) -> Iterator[DecodedRow]:
    """Yield decoded rows lazily in source order.

    ``skip`` data rows are parsed and discarded first (resume offset); row
    numbers keep counting them. Raises ``DecodeError`` for a missing header
    row, missing/duplicate columns, malformed quoting, records with more or
    fewer fields than the header row and undecodable bytes. Raises
    ``MemoryError`` when the process crosses ``memory_limit_bytes``.
    """
    text = io.TextIOWrapper(stream, encoding="utf-8-sig", newline="")
    row_number = 0
    try:
        try:
            header_reader = csv.reader(text, strict=True)
            raw_headers = next(header_reader, None)
            if raw_headers is None:
                raise DecodeError("CSV file appears to be empty")
            headers = [normalize_header(h, attribute_prefix) for h in raw_headers]
            _check_headers(headers, required_headers)

            reader = csv.DictReader(
                text, fieldnames=headers, restkey=EXTRA_KEY, strict=True
            )
            for record in reader:
                row_number += 1

                if memory_check_every and row_number % memory_check_every == 0:
                    is_exceeded, _, _ = check_memory_exceeded(memory_limit_bytes)
                    if is_exceeded:
                        force_gc()
                        raise MemoryError(
                            f"Memory limit exceeded at row {row_number}, cannot continue processing"
                        )

                overflow = record.pop(EXTRA_KEY, None)
                if overflow or None in record.values():
                    if overflow:
                        found = len(headers) + len(overflow)
                    else:
                        found = sum(value is not None for value in record.values())
                    raise DecodeError(
                        f"CSV parsing error: record has {found} field(s), "
                        f"header row has {len(headers)}",
                        row_number=row_number,
                    )

                if row_number <= skip:
                    continue

                record.pop("", None)
                yield DecodedRow(number=row_number, fields=record)
        except UnicodeDecodeError as e:
            raise DecodeError(
                f"File encoding error: {e.reason}", row_number=row_number + 1
            ) from e
        except csv.Error as e:
            raise DecodeError(
                f"CSV parsing error: {e}", row_number=row_number + 1
            ) from e
    finally:
        # Hand the byte stream back to the caller unclosed
        try:
            text.detach()
        except ValueError:
            pass


def count_rows(
    file_path: Path | str,
    *,
    required_headers: Sequence[str] = (),
    attribute_prefix: str = "attr_",
) -> int:
    """Return the number of data rows that decode cleanly (excluding the header)."""
    total = 0
    with open_source(file_path) as stream:
        try:
            for _ in iter_rows(
                stream,
                required_headers=required_headers,
                attribute_prefix=attribute_prefix,
                memory_check_every=0,
            ):
                total += 1
        except DecodeError as e:
            logger.warning(f"Stopped counting {file_path} at row {e.row_number}: {e}")
    return total
