"""Tests for the strict progress row parse."""

from datetime import date, datetime

import pytest

from program_ingestion.domain.parsing import parse_progress_row, parse_sheet_date
from program_ingestion.domain.types import ImportErrorType, ProgressRow, RowParseFailure


class TestParseSheetDate:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (45292, date(2024, 1, 1)),
            (45301.0, date(2024, 1, 10)),
            ("45301", date(2024, 1, 10)),
            ("2024-03-05", date(2024, 3, 5)),
            ("2024-03-05T10:30:00", date(2024, 3, 5)),
            ("3/5/2024", date(2024, 3, 5)),
            (datetime(2024, 3, 5, 9, 0), date(2024, 3, 5)),
            (date(2024, 3, 5), date(2024, 3, 5)),
        ],
    )
    def test_accepted_forms(self, value, expected):
        assert parse_sheet_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_is_none(self, value):
        assert parse_sheet_date(value) is None

    @pytest.mark.parametrize("value", ["next tuesday", "2024-13-01", "13/45/2024", -3, True, 10**12])
    def test_rejects_non_dates(self, value):
        with pytest.raises(ValueError):
            parse_sheet_date(value)


class TestParseProgressRow:
    def test_valid_row(self, make_row):
        parsed = parse_progress_row(6, make_row(7, program="  Gut Reset "))

        assert isinstance(parsed, ProgressRow)
        assert parsed.row_number == 6
        assert parsed.user_id == 7
        assert parsed.program_name == "Gut Reset"
        assert parsed.date_of_last_completed == date(2024, 2, 1)
        assert parsed.email == "member7@example.com"

    def test_blank_row_is_skipped(self):
        raw = {"user_id": None, "name": " ", "email": None, "program": None, "status": None,
               "working_on": "stray note"}
        assert parse_progress_row(9, raw) is None

    def test_missing_required_fields(self, make_row):
        parsed = parse_progress_row(6, make_row(7, start_date=None, status=None))

        assert isinstance(parsed, RowParseFailure)
        assert parsed.error_type == ImportErrorType.VALIDATION_ERROR
        assert "start_date" in parsed.message
        assert "status" in parsed.message

    @pytest.mark.parametrize("user_id", ["abc", "7.5", True])
    def test_invalid_user_id(self, make_row, user_id):
        parsed = parse_progress_row(6, {**make_row(7), "user_id": user_id})

        assert isinstance(parsed, RowParseFailure)
        assert parsed.error_type == ImportErrorType.INVALID_USER_ID

    def test_numeric_string_user_id(self, make_row):
        parsed = parse_progress_row(6, {**make_row(7), "user_id": "42"})
        assert parsed.user_id == 42

    def test_invalid_date(self, make_row):
        parsed = parse_progress_row(6, make_row(7, registration_date="sometime"))

        assert isinstance(parsed, RowParseFailure)
        assert parsed.error_type == ImportErrorType.INVALID_DATE
        assert parsed.message.startswith("Invalid registration_date")

    def test_invalid_optional_watermark_date(self, make_row):
        parsed = parse_progress_row(6, make_row(7, date_of_last_completed="soon"))
        assert parsed.error_type == ImportErrorType.INVALID_DATE

    def test_missing_watermark_is_allowed(self, make_row):
        parsed = parse_progress_row(6, make_row(7, date_of_last_completed=None))
        assert isinstance(parsed, ProgressRow)
        assert parsed.date_of_last_completed is None
