"""Restartable, ordered sequences of flat data records (one per certificate)."""

import csv
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

import pandas as pd

from certificate_errors import NoRecordsError, RecordSourceError
from certificate_types import DataRecord

logger = logging.getLogger(__name__)

CSV_SUFFIXES = {".csv"}
EXCEL_SUFFIXES = {".xlsx", ".xls"}


def _flatten_value(key: str, value) -> str | int | float:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (str, int, float)):
        return value
    if value is None:
        return ""
    raise RecordSourceError(f"Field '{key}' has a nested value; records must be flat.")


class RecordSource:
    """
    An ordered, finite sequence of records.

    Iterating yields copies, so renderers can never alter the source and a
    second pass sees the same data in the same order.
    """

    def __init__(self, records: Iterable[DataRecord], origin: str = "<memory>") -> None:
        self._records: list[DataRecord] = []
        for record in records:
            if not isinstance(record, dict):
                raise RecordSourceError(f"Records must be key/value mappings, got {type(record).__name__}.")
            self._records.append({str(k): _flatten_value(str(k), v) for k, v in record.items()})
        self.origin = origin

    def __iter__(self) -> Iterator[DataRecord]:
        for record in self._records:
            yield dict(record)

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def __repr__(self) -> str:
        return f"RecordSource(origin={self.origin!r}, records={len(self)})"

    @classmethod
    def from_records(cls, records: Iterable[DataRecord]) -> "RecordSource":
        return cls(records)

    @classmethod
    def from_csv(cls, path: Path) -> "RecordSource":
        path = Path(path)
        try:
            with path.open("r", newline="", encoding="utf-8-sig") as f:
                rows = []
                for row in csv.DictReader(f):
                    cleaned = {
                        (k or "").strip(): (v or "").strip()
                        for k, v in row.items()
                        if k is not None
                    }
                    if not any(cleaned.values()):
                        continue
                    rows.append(cleaned)
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise RecordSourceError(f"Could not read CSV file {path.name}: {exc}") from exc
        logger.debug("Parsed %d record(s) from %s", len(rows), path)
        return cls(rows, origin=str(path))

    @classmethod
    def from_excel(cls, path: Path) -> "RecordSource":
        path = Path(path)
        try:
            frame = pd.read_excel(path, sheet_name=0, dtype=str, keep_default_na=False)
        except (OSError, ValueError, ImportError) as exc:
            raise RecordSourceError(f"Could not read Excel file {path.name}: {exc}") from exc
        frame.columns = [str(col).strip() for col in frame.columns]
        rows = [
            {key: str(value).strip() for key, value in row.items()}
            for row in frame.to_dict(orient="records")
        ]
        rows = [row for row in rows if any(row.values())]
        logger.debug("Parsed %d record(s) from %s", len(rows), path)
        return cls(rows, origin=str(path))

    @classmethod
    def from_file(cls, path: Path, file_type: str | None = None) -> "RecordSource":
        path = Path(path)
        ext = (file_type or path.suffix).lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext in CSV_SUFFIXES:
            return cls.from_csv(path)
        if ext in EXCEL_SUFFIXES:
            return cls.from_excel(path)
        raise RecordSourceError(f"Unsupported file type: {ext}")

    def field_names(self) -> list[str]:
        if not self._records:
            return []
        return list(self._records[0].keys())

    def validate_required(self, required_keys: Iterable[str]) -> None:
        if not self._records:
            raise NoRecordsError()
        available = set(self.field_names())
        for key in required_keys:
            if key not in available:
                raise RecordSourceError(f"Required field '{key}' not found in data")
