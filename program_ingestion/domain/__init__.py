"""Pure domain layer for progress imports: types, strict parse, reconciliation."""

from program_ingestion.domain.parsing import parse_progress_row, parse_sheet_date
from program_ingestion.domain.reconcile import fold_outcomes, is_outdated, reconcile_row
from program_ingestion.domain.types import (
    ImportCounts,
    ImportErrorEntry,
    ImportErrorType,
    ImportJob,
    ImportJobStatus,
    ImportJobSummary,
    ImportLookups,
    ProgramRef,
    ProgressRecordValues,
    ProgressRow,
    RowOutcome,
    RowOutcomeKind,
    RowParseFailure,
    UserMapping,
)

__all__ = [
    "ImportCounts",
    "ImportErrorEntry",
    "ImportErrorType",
    "ImportJob",
    "ImportJobStatus",
    "ImportJobSummary",
    "ImportLookups",
    "ProgramRef",
    "ProgressRecordValues",
    "ProgressRow",
    "RowOutcome",
    "RowOutcomeKind",
    "RowParseFailure",
    "UserMapping",
    "fold_outcomes",
    "is_outdated",
    "parse_progress_row",
    "parse_sheet_date",
    "reconcile_row",
]
