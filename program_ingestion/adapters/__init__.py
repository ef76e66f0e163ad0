"""Source adapters for progress imports."""

from program_ingestion.adapters.xlsx_adapter import PROGRESS_COLUMNS, XlsxRowReader

__all__ = ["PROGRESS_COLUMNS", "XlsxRowReader"]
