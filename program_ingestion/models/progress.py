"""
ORM models for member progress imports.

Contract:
    ImportJobModel and ImportErrorModel record each import run and its
    per-row errors (raw row kept as JSON).  ProgressRecordModel is keyed by
    (mapping_id, program_id); the importer upserts it and nothing else
    writes it.  MemberModel receives contact updates from accepted rows.

Architecture: program_ingestion/models. Imports from program_kernel.db.base only.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from program_kernel.db.base import TrackedBase, UUIDString


def _to_json_safe(obj: Any) -> Any:
    """Convert values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): _to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    return obj


class MemberModel(TrackedBase):
    """Member (lead) contact record, keyed by the external member id."""

    __tablename__ = "members"

    __table_args__ = (
        UniqueConstraint("member_id", name="uq_member_external_id"),
    )

    member_id: Mapped[int] = mapped_column(nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)


class ProgressUserMappingModel(TrackedBase):
    """Maps a progress-system user id onto a member."""

    __tablename__ = "progress_user_mappings"

    __table_args__ = (
        UniqueConstraint("external_user_id", name="uq_progress_user_external_id"),
    )

    external_user_id: Mapped[int] = mapped_column(nullable=False)
    member_id: Mapped[int | None] = mapped_column(nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class ProgressProgramModel(TrackedBase):
    """A program name known to the progress system."""

    __tablename__ = "progress_programs"

    __table_args__ = (
        UniqueConstraint("program_name", name="uq_progress_program_name"),
    )

    program_name: Mapped[str] = mapped_column(String(255), nullable=False)


class ProgressRecordModel(TrackedBase):
    """Latest progress for one (user mapping, program) pair."""

    __tablename__ = "progress_records"

    __table_args__ = (
        UniqueConstraint("mapping_id", "program_id", name="uq_progress_record_key"),
        Index("idx_progress_record_member", "member_id"),
    )

    mapping_id: Mapped[UUID] = mapped_column(
        ForeignKey("progress_user_mappings.id"), nullable=False
    )
    program_id: Mapped[UUID] = mapped_column(
        ForeignKey("progress_programs.id"), nullable=False
    )
    member_id: Mapped[int | None] = mapped_column(nullable=True)
    registration_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    projected_completion: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    last_completed: Mapped[str | None] = mapped_column(String(255), nullable=True)
    date_of_last_completed: Mapped[date | None] = mapped_column(Date, nullable=True)
    working_on: Mapped[str | None] = mapped_column(String(255), nullable=True)
    import_job_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)


class ImportJobModel(TrackedBase):
    """One import run."""

    __tablename__ = "data_import_jobs"

    __table_args__ = (
        Index("idx_import_job_status", "status"),
    )

    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    bucket_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    total_rows: Mapped[int] = mapped_column(default=0)
    successful_rows: Mapped[int] = mapped_column(default=0)
    failed_rows: Mapped[int] = mapped_column(default=0)
    skipped_rows: Mapped[int] = mapped_column(default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dto(self):
        from program_ingestion.domain.types import ImportJob, ImportJobStatus

        return ImportJob(
            job_id=self.id,
            file_path=self.file_path,
            bucket_name=self.bucket_name,
            status=ImportJobStatus(self.status),
            total_rows=self.total_rows,
            successful_rows=self.successful_rows,
            failed_rows=self.failed_rows,
            skipped_rows=self.skipped_rows,
            error_message=self.error_message,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class ImportErrorModel(TrackedBase):
    """A logged per-row import error."""

    __tablename__ = "data_import_errors"

    __table_args__ = (
        Index("idx_import_error_job", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(ForeignKey("data_import_jobs.id"), nullable=False)
    row_number: Mapped[int] = mapped_column(nullable=False)
    error_type: Mapped[str] = mapped_column(String(50), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    row_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    @classmethod
    def for_row(
        cls,
        job_id: UUID,
        row_number: int,
        error_type: str,
        error_message: str,
        row_data: dict[str, Any] | None,
        created_by_id: UUID,
    ) -> "ImportErrorModel":
        return cls(
            job_id=job_id,
            row_number=row_number,
            error_type=error_type,
            error_message=error_message,
            row_data=_to_json_safe(row_data) if row_data else None,
            created_by_id=created_by_id,
        )

    def to_dto(self):
        from program_ingestion.domain.types import ImportErrorEntry

        return ImportErrorEntry(
            job_id=self.job_id,
            row_number=self.row_number,
            error_type=self.error_type,
            error_message=self.error_message,
            row_data=self.row_data,
        )
