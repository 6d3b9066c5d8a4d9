from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from certificate_errors import NoRecordsError, RecordSourceError
from record_source import RecordSource


def write_csv(path: Path, text: str) -> Path:
    path.write_bytes(text.encode("utf-8-sig"))
    return path


class TestCsv:

    def test_reads_rows_in_order_with_bom_and_trimming(self, tmp_path):
        path = write_csv(tmp_path / "people.csv", "name , course\n Ada Lovelace ,Math\n\nAlan Turing, CS\n")
        source = RecordSource.from_csv(path)
        assert list(source) == [
            {"name": "Ada Lovelace", "course": "Math"},
            {"name": "Alan Turing", "course": "CS"},
        ]
        assert source.field_names() == ["name", "course"]

    def test_header_only_file_is_empty(self, tmp_path):
        source = RecordSource.from_csv(write_csv(tmp_path / "empty.csv", "name,course\n"))
        assert len(source) == 0
        assert not source
        with pytest.raises(NoRecordsError):
            source.validate_required(["name"])

    def test_missing_file(self, tmp_path):
        with pytest.raises(RecordSourceError, match="missing.csv"):
            RecordSource.from_csv(tmp_path / "missing.csv")


class TestExcel:

    def test_first_sheet_as_text(self, tmp_path):
        path = tmp_path / "people.xlsx"
        pd.DataFrame({"name": ["Ada", "Alan"], "score": [95, None]}).to_excel(path, index=False)
        source = RecordSource.from_file(path)
        records = list(source)
        assert records[0]["name"] == "Ada"
        assert records[1]["score"] == ""
        assert all(isinstance(v, str) for record in records for v in record.values())


class TestRecordSource:

    def test_is_restartable_and_hands_out_copies(self):
        source = RecordSource.from_records([{"name": "Ada"}, {"name": "Alan"}])
        first = list(source)
        first[0]["name"] = "changed"
        assert list(source) == [{"name": "Ada"}, {"name": "Alan"}]

    def test_keeps_numbers(self):
        assert list(RecordSource.from_records([{"score": 9.5, "rank": 1}])) == [{"score": 9.5, "rank": 1}]

    def test_rejects_nested_values(self):
        with pytest.raises(RecordSourceError, match="nested"):
            RecordSource.from_records([{"name": {"first": "Ada"}}])

    def test_unsupported_extension(self, tmp_path):
        with pytest.raises(RecordSourceError, match="Unsupported file type: .json"):
            RecordSource.from_file(tmp_path / "data.json")

    def test_validate_required_names_missing_key(self):
        source = RecordSource.from_records([{"name": "Ada"}])
        source.validate_required(["name"])
        with pytest.raises(RecordSourceError, match="'email'"):
            source.validate_required(["name", "email"])
