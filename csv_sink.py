"""CSV file sink for harvested records."""

from __future__ import annotations

import csv
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

from models import NormalizedRecord, RecordType
from normalizer import RECORD_SCHEMAS

DEFAULT_CSV_OUTPUT_PATH = "harvest_results.csv"

# Overrides the CSV_OUTPUT_PATH environment variable when set.
CSV_OUTPUT_PATH: str | None = None

LOGGER = logging.getLogger(__name__)

# Bookkeeping columns written ahead of the record type's own fields
META_COLUMNS = [
    "record_type",
    "record_id",
    "keyword",   # query the record was harvested for
    "fetched_at",
]


def csv_columns(record_type: RecordType | str) -> list[str]:
    return META_COLUMNS + RECORD_SCHEMAS[RecordType(record_type)].field_names


def output_path(csv_path: str | None = None) -> Path:
    """Resolve the CSV path at call time so a .env loaded after import is honored."""
    return Path(csv_path or CSV_OUTPUT_PATH or os.getenv("CSV_OUTPUT_PATH", DEFAULT_CSV_OUTPUT_PATH))


def existing_record_ids(csv_path: str | None = None) -> set[str]:
    """Return the record ids already present in the CSV (empty when there is no file)."""
    path = output_path(csv_path)
    if not path.exists():
        return set()

    with path.open(newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        return {row["record_id"] for row in reader if row.get("record_id")}


def write_records(
    records: Iterable[NormalizedRecord],
    record_type: RecordType | str,
    keyword: str = "",
    csv_path: str | None = None,
) -> int:
    """Append records to the CSV, creating it with a header if needed.

    Records whose id is already in the file are skipped. Returns the number
    of rows written.

    Raises:
        ValueError: the file already holds rows with a different header,
            e.g. another record type.
    """
    path = output_path(csv_path)
    columns = csv_columns(record_type)
    write_header = not path.exists() or path.stat().st_size == 0
    if not write_header:
        _check_header(path, columns)
    seen = existing_record_ids(str(path))
    fetched_at = datetime.now(UTC).isoformat()

    written = 0
    with path.open("a", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=columns, extrasaction="ignore")
        if write_header:
            writer.writeheader()
        for record in records:
            if record.record_id in seen:
                LOGGER.debug("Skipping existing record_id=%s", record.record_id)
                continue
            row = {
                "record_type": record.record_type.value,
                "record_id": record.record_id,
                "keyword": keyword,
                "fetched_at": fetched_at,
            }
            row.update({name: _as_cell(value) for name, value in record.fields.items()})
            writer.writerow(row)
            seen.add(record.record_id)
            written += 1

    LOGGER.info("Wrote %s CSV rows to %s", written, path)
    return written


def _check_header(path: Path, columns: list[str]) -> None:
    with path.open(newline="", encoding="utf-8") as fh:
        header = next(csv.reader(fh), [])
    if header != columns:
        raise ValueError(
            f"{path} has columns {header}, expected {columns}; write each record type to its own file"
        )


def _as_cell(value: Any, max_len: int = 500) -> Any:
    """Flatten a field value into something csv can write, truncated to max_len chars."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, str) and len(value) > max_len:
        return value[: max_len - 1] + "…"
    return value
