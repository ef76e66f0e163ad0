"""Tests for the XLSX progress row reader."""

from datetime import datetime

import pytest

from program_ingestion.adapters.xlsx_adapter import PROGRESS_COLUMNS, XlsxRowReader
from program_kernel.exceptions import SourceFileError


class TestXlsxRowReader:
    def test_reads_from_first_data_row(self, workbook_bytes, make_row):
        content = workbook_bytes([make_row(1), make_row(2)])

        rows = list(XlsxRowReader().read(content, first_data_row=6))

        assert [n for n, _ in rows] == [6, 7]
        first = rows[0][1]
        assert set(first) == set(PROGRESS_COLUMNS)
        assert first["user_id"] == 1
        assert first["program"] == "Gut Reset"
        assert isinstance(first["registration_date"], datetime)

    def test_normalizes_cells(self, workbook_bytes, make_row):
        content = workbook_bytes([make_row(3, status="  Paused  ", working_on="   ")])

        _, row = next(XlsxRowReader().read(content, first_data_row=6))

        assert row["status"] == "Paused"
        assert row["working_on"] is None

    def test_whole_float_becomes_int(self, workbook_bytes, make_row):
        content = workbook_bytes([{**make_row(3), "user_id": 12.0}])

        _, row = next(XlsxRowReader().read(content, first_data_row=6))

        assert row["user_id"] == 12
        assert isinstance(row["user_id"], int)

    def test_blank_rows_are_yielded(self, workbook_bytes, make_row):
        content = workbook_bytes([make_row(1), None, make_row(2)])

        rows = list(XlsxRowReader().read(content, first_data_row=6))

        assert len(rows) == 3
        assert all(v is None for v in rows[1][1].values())

    def test_custom_header_row(self, workbook_bytes, make_row):
        content = workbook_bytes([make_row(4)], header_row=2)

        rows = list(XlsxRowReader().read(content, first_data_row=3))

        assert rows[0][1]["user_id"] == 4

    def test_unreadable_content(self):
        with pytest.raises(SourceFileError) as exc_info:
            list(XlsxRowReader().read(b"not a workbook", 6, source_name="broken.xlsx"))

        assert exc_info.value.file_path == "broken.xlsx"
        assert "unreadable workbook" in exc_info.value.reason

    def test_truncated_sheet_fails_during_iteration(self, damaged_workbook_bytes, make_row):
        content = damaged_workbook_bytes([make_row(n) for n in range(1, 11)])

        with pytest.raises(SourceFileError) as exc_info:
            list(XlsxRowReader().read(content, 6, source_name="exports/cut.xlsx"))

        assert exc_info.value.file_path == "exports/cut.xlsx"
        assert "unreadable" in exc_info.value.reason
