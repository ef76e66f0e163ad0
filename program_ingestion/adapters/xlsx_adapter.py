"""
XLSX row reader for member progress exports.

The export has a fixed layout: a title block, column labels on sheet row 5
and data from row 6, with the twelve columns in ``PROGRESS_COLUMNS`` order.
Cells are read by position, so relabelled headers do not break the import.

Cell normalization:
  - blank cells -> None
  - whole floats -> int (Excel stores every number as float)
  - strings stripped
  - dates and datetimes passed through
"""

from __future__ import annotations

import zipfile
import zlib
from io import BytesIO
from typing import Any, Iterator, Sequence

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from program_kernel.exceptions import SourceFileError
from program_kernel.logging_config import get_logger

logger = get_logger("ingestion.xlsx_adapter")

PROGRESS_COLUMNS: tuple[str, ...] = (
    "user_id",
    "name",
    "email",
    "phone",
    "program",
    "registration_date",
    "start_date",
    "projected_completion",
    "status",
    "last_completed",
    "date_of_last_completed",
    "working_on",
)


def _cell_value(row: Sequence[Any], col_idx: int) -> Any:
    """Normalized value at a 0-based column index of a values-only row."""
    if col_idx >= len(row):
        return None
    v = row[col_idx]
    if v is None:
        return None
    if isinstance(v, float):
        if v.is_integer():
            return int(v)
        return v
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


# Raised by openpyxl, the zip reader or the XML parser (stdlib or lxml, both
# SyntaxError subclasses) on a damaged file.
_WORKBOOK_READ_ERRORS: tuple[type[BaseException], ...] = (
    InvalidFileException,
    zipfile.BadZipFile,
    zlib.error,
    SyntaxError,
    EOFError,
    KeyError,
    ValueError,
    OSError,
)


class XlsxRowReader:
    """
    Read the first sheet of a workbook as (sheet row number, cell dict) pairs.
    """

    def read(
        self,
        content: bytes,
        first_data_row: int,
        columns: Sequence[str] = PROGRESS_COLUMNS,
        source_name: str = "<memory>",
    ) -> Iterator[tuple[int, dict[str, Any]]]:
        """
        Yield data rows from ``first_data_row`` on.

        In read-only mode the sheet XML is parsed lazily, so a damaged sheet
        fails during iteration rather than at load; both surface as
        SourceFileError.
        """
        try:
            wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
        except _WORKBOOK_READ_ERRORS as exc:
            raise SourceFileError(source_name, f"unreadable workbook: {exc}") from exc

        try:
            if not wb.worksheets:
                raise SourceFileError(source_name, "workbook has no sheets")
            sheet = wb.worksheets[0]
            count = 0
            try:
                for row_number, row in enumerate(
                    sheet.iter_rows(min_row=first_data_row, values_only=True),
                    start=first_data_row,
                ):
                    count += 1
                    yield row_number, {
                        name: _cell_value(row, idx) for idx, name in enumerate(columns)
                    }
            except _WORKBOOK_READ_ERRORS as exc:
                logger.error(
                    "xlsx_sheet_unreadable",
                    extra={"source": source_name, "rows_read": count},
                )
                raise SourceFileError(
                    source_name, f"unreadable worksheet after {count} rows: {exc}"
                ) from exc
            logger.debug(
                "xlsx_rows_read",
                extra={"source": source_name, "row_count": count},
            )
        finally:
            wb.close()
