"""
Strict parse of raw progress spreadsheet rows.

Turns a loosely typed cell dict into a ``ProgressRow`` (or a
``RowParseFailure``) before any business logic runs, so reconciliation never
has to re-check whether a cell is a number or a date.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from program_ingestion.domain.types import ImportErrorType, ProgressRow, RowParseFailure

# Excel 1900 date system; the off-by-one leap year bug is absorbed by the epoch.
EXCEL_EPOCH = date(1899, 12, 30)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s.*)?$")

BLANK_CHECK_FIELDS = ("user_id", "name", "email", "program", "status")
REQUIRED_FIELDS = (
    "user_id",
    "program",
    "registration_date",
    "start_date",
    "projected_completion",
    "status",
)
DATE_FIELDS = ("registration_date", "start_date", "projected_completion")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(value: Any) -> str | None:
    if _is_blank(value):
        return None
    return str(value).strip()


def parse_sheet_date(value: Any) -> date | None:
    """
    Parse a date cell.

    Accepts Excel serial numbers, ``datetime``/``date`` objects, ISO strings
    (optionally with a time part) and US ``MM/DD/YYYY`` strings.  Blank
    cells return None.

    Raises:
        ValueError: the cell holds something that is not a date.
    """
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a date: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return _from_serial(value)

    text = str(value).strip()
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return date(year, month, day)
    match = _US_DATE.match(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
        return date(year, month, day)
    try:
        serial = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a date: {value!r}") from None
    return _from_serial(serial)


def _from_serial(value: int | float | Decimal) -> date:
    try:
        days = int(value)
        if days <= 0:
            raise ValueError
        return EXCEL_EPOCH + timedelta(days=days)
    except (ValueError, OverflowError):
        raise ValueError(f"Not a date serial: {value!r}") from None


def _parse_user_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Not an integer: {value!r}")
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not an integer: {value!r}") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"Not an integer: {value!r}")
    return int(number)


def parse_progress_row(
    row_number: int,
    raw: Mapping[str, Any],
) -> ProgressRow | RowParseFailure | None:
    """
    Parse one raw row.

    Returns None for a blank row, a RowParseFailure for a row that cannot be
    used, and a ProgressRow otherwise.
    """
    if all(_is_blank(raw.get(name)) for name in BLANK_CHECK_FIELDS):
        return None

    missing = [name for name in REQUIRED_FIELDS if _is_blank(raw.get(name))]
    if missing:
        return RowParseFailure(
            row_number,
            ImportErrorType.VALIDATION_ERROR,
            f"Missing required fields: {', '.join(missing)}",
            raw,
        )

    try:
        user_id = _parse_user_id(raw["user_id"])
    except ValueError as exc:
        return RowParseFailure(row_number, ImportErrorType.INVALID_USER_ID, str(exc), raw)

    dates: dict[str, date | None] = {}
    for name in DATE_FIELDS + ("date_of_last_completed",):
        try:
            dates[name] = parse_sheet_date(raw.get(name))
        except ValueError as exc:
            return RowParseFailure(
                row_number,
                ImportErrorType.INVALID_DATE,
                f"Invalid {name}: {exc}",
                raw,
            )

    return ProgressRow(
        row_number=row_number,
        user_id=user_id,
        program_name=str(raw["program"]).strip(),
        registration_date=dates["registration_date"],
        start_date=dates["start_date"],
        projected_completion=dates["projected_completion"],
        status=str(raw["status"]).strip(),
        name=_text(raw.get("name")),
        email=_text(raw.get("email")),
        phone=_text(raw.get("phone")),
        last_completed=_text(raw.get("last_completed")),
        date_of_last_completed=dates["date_of_last_completed"],
        working_on=_text(raw.get("working_on")),
        raw=raw,
    )
