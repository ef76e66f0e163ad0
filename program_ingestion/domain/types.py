"""
program_ingestion.domain.types -- Pure frozen dataclasses for progress imports.

ZERO I/O.  Imports only from the standard library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class ImportJobStatus(str, Enum):
    """Job-level lifecycle status."""

    PROCESSING = "processing"  # Job row created, rows being processed
    COMPLETED = "completed"  # All rows processed (some may have failed)
    FAILED = "failed"  # File-level failure (download or parse)


class ImportErrorType(str, Enum):
    """Per-row error classification recorded on the error log."""

    VALIDATION_ERROR = "validation_error"  # Required field missing
    INVALID_USER_ID = "invalid_user_id"  # User id not an integer
    INVALID_DATE = "invalid_date"  # Date cell could not be parsed
    USER_NOT_FOUND = "user_not_found"  # No mapping for user id
    PROGRAM_NOT_FOUND = "program_not_found"  # Unknown program name
    OUTDATED_RECORD = "outdated_record"  # Older than stored watermark
    PROCESSING_ERROR = "processing_error"  # Unexpected per-row failure
    UPSERT_ERROR = "upsert_error"  # Batch write failed


class RowOutcomeKind(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SKIPPED = "skipped"


# =============================================================================
# Parsed rows
# =============================================================================


@dataclass(frozen=True)
class ProgressRow:
    """A spreadsheet row that passed the strict parse."""

    row_number: int  # 1-based sheet row
    user_id: int
    program_name: str
    registration_date: date
    start_date: date
    projected_completion: date
    status: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    last_completed: str | None = None
    date_of_last_completed: date | None = None
    working_on: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RowParseFailure:
    """A spreadsheet row rejected by the strict parse."""

    row_number: int
    error_type: ImportErrorType
    message: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


# =============================================================================
# Lookup snapshots
# =============================================================================


@dataclass(frozen=True)
class UserMapping:
    """Maps an external progress user id onto a member."""

    mapping_id: UUID
    external_user_id: int
    member_id: int | None = None


@dataclass(frozen=True)
class ProgramRef:
    """A known progress program."""

    program_id: UUID
    program_name: str


ProgressKey = tuple[UUID, UUID]  # (mapping_id, program_id)


@dataclass(frozen=True)
class ImportLookups:
    """Read-once snapshot of the mapping and program tables."""

    users: Mapping[int, UserMapping]
    programs: Mapping[str, ProgramRef]

    @classmethod
    def build(
        cls,
        users: Mapping[int, UserMapping],
        programs: Mapping[str, ProgramRef],
    ) -> "ImportLookups":
        return cls(
            users=MappingProxyType(dict(users)),
            programs=MappingProxyType({k.strip(): v for k, v in programs.items()}),
        )


# =============================================================================
# Reconciliation results
# =============================================================================


@dataclass(frozen=True)
class ProgressRecordValues:
    """Column values for one progress record upsert."""

    mapping_id: UUID
    program_id: UUID
    member_id: int | None
    registration_date: date
    start_date: date
    projected_completion: date
    status: str
    last_completed: str | None
    date_of_last_completed: date | None
    working_on: str | None
    email: str | None = None
    phone: str | None = None

    @property
    def key(self) -> ProgressKey:
        return (self.mapping_id, self.program_id)


@dataclass(frozen=True)
class RowOutcome:
    """Result of evaluating one row. Folded into counts after the fact."""

    kind: RowOutcomeKind
    row_number: int
    record: ProgressRecordValues | None = None
    error_type: ImportErrorType | None = None
    message: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def accepted(cls, row_number: int, record: ProgressRecordValues) -> "RowOutcome":
        return cls(RowOutcomeKind.ACCEPTED, row_number, record=record)

    @classmethod
    def rejected(
        cls,
        row_number: int,
        error_type: ImportErrorType,
        message: str,
        raw: Mapping[str, Any] | None = None,
    ) -> "RowOutcome":
        return cls(
            RowOutcomeKind.REJECTED,
            row_number,
            error_type=error_type,
            message=message,
            raw=raw or {},
        )

    @classmethod
    def skipped(cls, row_number: int) -> "RowOutcome":
        return cls(RowOutcomeKind.SKIPPED, row_number)

    @property
    def is_accepted(self) -> bool:
        return self.kind == RowOutcomeKind.ACCEPTED

    @property
    def is_rejected(self) -> bool:
        return self.kind == RowOutcomeKind.REJECTED


@dataclass(frozen=True)
class ImportCounts:
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class ImportJob:
    """Immutable snapshot of an import job."""

    job_id: UUID
    file_path: str
    bucket_name: str
    status: ImportJobStatus
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    skipped_rows: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ImportErrorEntry:
    """One logged row error."""

    job_id: UUID
    row_number: int
    error_type: str
    error_message: str
    row_data: dict[str, Any] | None = None


@dataclass(frozen=True)
class ImportJobSummary:
    """What run_import reports back to its caller."""

    job_id: UUID
    success: bool
    status: ImportJobStatus
    total_rows: int
    successful_rows: int
    failed_rows: int
    skipped_rows: int
    updated_member_ids: tuple[int, ...] = ()
