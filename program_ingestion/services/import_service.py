"""
Progress import service: download -> parse -> reconcile -> upsert -> report.

Orchestrates the file store, the XLSX reader, the strict row parser and the
pure reconciliation function.  Each run is one timed_operation
("progress_import") bound to the job id.

Batch contract:
    Row failures never abort the run.  Each row ends as accepted, rejected
    or skipped; the counts are folded from those outcomes.  Only a failure
    to download or read the source file fails the job.  Batches run
    sequentially, and the committed watermark map advances only after a
    batch's upsert succeeds.
"""

from __future__ import annotations

from collections import ChainMap
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from program_config.schema import ImportSettings
from program_kernel.domain.clock import Clock, SystemClock
from program_kernel.exceptions import ImportJobNotFoundError, SourceFileError
from program_kernel.logging_config import get_logger, timed_operation

from program_ingestion.adapters.xlsx_adapter import PROGRESS_COLUMNS, XlsxRowReader
from program_ingestion.domain.parsing import parse_progress_row
from program_ingestion.domain.reconcile import fold_outcomes, reconcile_row
from program_ingestion.domain.types import (
    ImportErrorEntry,
    ImportErrorType,
    ImportJob,
    ImportJobStatus,
    ImportJobSummary,
    ImportLookups,
    ProgramRef,
    ProgressKey,
    ProgressRecordValues,
    RowOutcome,
    RowParseFailure,
    UserMapping,
)
from program_ingestion.models.progress import (
    ImportErrorModel,
    ImportJobModel,
    MemberModel,
    ProgressProgramModel,
    ProgressRecordModel,
    ProgressUserMappingModel,
)
from program_ingestion.storage import FileStore

logger = get_logger("ingestion.import_service")

# Actor recorded on rows written by unattended imports.
IMPORT_ACTOR_ID = UUID("00000000-0000-0000-0000-0000000000a1")

_UPSERT_UPDATE_COLUMNS = (
    "member_id",
    "registration_date",
    "start_date",
    "projected_completion",
    "status",
    "last_completed",
    "date_of_last_completed",
    "working_on",
    "import_job_id",
)

RecomputeTrigger = Callable[[Sequence[int]], Any]


def processed_file_path(file_path: str, when: datetime, suffix: str = ".old") -> str:
    """``dir/name.xlsx`` -> ``dir/name_processed_<timestamp>.xlsx<suffix>``."""
    path = PurePosixPath(file_path)
    stamp = when.strftime("%Y-%m-%dT%H-%M-%S")
    ext = path.suffix
    renamed = f"{path.stem}_processed_{stamp}{ext}{suffix}"
    return str(path.with_name(renamed))


def _batches(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


class ProgressImportService:
    """
    Runs progress spreadsheet imports and answers job status queries.

    Contract
    --------
    * ``run_import`` commits the job row before reading the file, so a job
      is visible as ``processing`` while it runs.
    * Each batch is committed on its own; the error log is bounded by
      ``max_logged_errors``.
    * ``recompute_trigger`` is called once with the distinct member ids
      touched; its failure is logged and never changes the summary.
    """

    def __init__(
        self,
        session: Session,
        file_store: FileStore,
        settings: ImportSettings | None = None,
        recompute_trigger: RecomputeTrigger | None = None,
        clock: Clock | None = None,
        reader: XlsxRowReader | None = None,
    ):
        self._session = session
        self._file_store = file_store
        self._settings = settings or ImportSettings()
        self._recompute_trigger = recompute_trigger
        self._clock = clock or SystemClock()
        self._reader = reader or XlsxRowReader()

    # =========================================================================
    # Import
    # =========================================================================

    def run_import(
        self,
        file_path: str,
        bucket_name: str,
        actor_id: UUID | None = None,
    ) -> ImportJobSummary:
        """
        Import one progress workbook.

        Raises:
            SourceFileError: the file could not be downloaded or read. The
                job is marked failed first.
        """
        actor = actor_id or IMPORT_ACTOR_ID
        job = ImportJobModel(
            id=uuid4(),
            file_path=file_path,
            bucket_name=bucket_name,
            status=ImportJobStatus.PROCESSING.value,
            started_at=self._clock.now(),
            created_by_id=actor,
        )
        self._session.add(job)
        self._session.commit()

        with timed_operation(
            logger, "progress_import", import_job_id=job.id, actor_id=actor
        ) as summary:
            logger.info(
                "import_job_started",
                extra={"file_path": file_path, "bucket_name": bucket_name},
            )

            try:
                content = self._file_store.download(bucket_name, file_path)
                rows = list(
                    self._reader.read(
                        content,
                        self._settings.first_data_row,
                        PROGRESS_COLUMNS,
                        source_name=file_path,
                    )
                )
            except SourceFileError as exc:
                self._fail_job(job, str(exc))
                raise SourceFileError(file_path, exc.reason, job_id=job.id) from exc
            except Exception as exc:
                reason = f"unreadable source file: {exc}"
                self._fail_job(job, reason)
                raise SourceFileError(file_path, reason, job_id=job.id) from exc

            try:
                outcomes = self._process_rows(job, rows, actor)
                counts = fold_outcomes(outcomes)
                summary.update(
                    total_rows=counts.total_rows, failed_rows=counts.failed_rows
                )

                job.status = ImportJobStatus.COMPLETED.value
                job.total_rows = counts.total_rows
                job.successful_rows = counts.successful_rows
                job.failed_rows = counts.failed_rows
                job.skipped_rows = counts.skipped_rows
                job.completed_at = self._clock.now()
                job.updated_by_id = actor
                self._session.commit()
            except Exception as exc:
                self._session.rollback()
                self._fail_job(job, f"Import failed: {exc}")
                raise

            member_ids = tuple(
                sorted(
                    {
                        o.record.member_id
                        for o in outcomes
                        if o.is_accepted and o.record.member_id is not None
                    }
                )
            )

            logger.info(
                "import_job_completed",
                extra={
                    "total_rows": counts.total_rows,
                    "successful_rows": counts.successful_rows,
                    "failed_rows": counts.failed_rows,
                    "skipped_rows": counts.skipped_rows,
                    "updated_member_count": len(member_ids),
                },
            )

            self._archive_source(bucket_name, file_path)
            self._fire_recompute(member_ids)

            return ImportJobSummary(
                job_id=job.id,
                success=True,
                status=ImportJobStatus.COMPLETED,
                total_rows=counts.total_rows,
                successful_rows=counts.successful_rows,
                failed_rows=counts.failed_rows,
                skipped_rows=counts.skipped_rows,
                updated_member_ids=member_ids,
            )

    def _process_rows(
        self,
        job: ImportJobModel,
        rows: Sequence[tuple[int, dict[str, Any]]],
        actor_id: UUID,
    ) -> list[RowOutcome]:
        lookups = self._load_lookups()
        committed: dict[ProgressKey, date | None] = self._load_watermarks()
        outcomes: list[RowOutcome] = []
        logged_errors = 0

        for batch in _batches(rows, self._settings.batch_size):
            pending: dict[ProgressKey, date | None] = {}
            watermarks = ChainMap(pending, committed)
            records: dict[ProgressKey, ProgressRecordValues] = {}
            batch_outcomes: list[RowOutcome] = []

            for row_number, raw in batch:
                outcome = self._evaluate_row(row_number, raw, lookups, watermarks)
                if outcome.is_accepted:
                    key = outcome.record.key
                    records[key] = outcome.record
                    pending[key] = outcome.record.date_of_last_completed
                batch_outcomes.append(outcome)

            if records:
                error = self._upsert_batch(list(records.values()), job.id, actor_id)
                if error is None:
                    committed.update(pending)
                    self._update_member_contacts(records.values())
                else:
                    batch_outcomes = [
                        RowOutcome.rejected(
                            o.row_number,
                            ImportErrorType.UPSERT_ERROR,
                            f"Batch upsert failed: {error}",
                        )
                        if o.is_accepted
                        else o
                        for o in batch_outcomes
                    ]

            for outcome in batch_outcomes:
                if not outcome.is_rejected:
                    continue
                if logged_errors < self._settings.max_logged_errors:
                    self._session.add(
                        ImportErrorModel.for_row(
                            job_id=job.id,
                            row_number=outcome.row_number,
                            error_type=outcome.error_type.value,
                            error_message=outcome.message or "",
                            row_data=dict(outcome.raw) if outcome.raw else None,
                            created_by_id=actor_id,
                        )
                    )
                logged_errors += 1

            self._session.commit()
            outcomes.extend(batch_outcomes)

        if logged_errors > self._settings.max_logged_errors:
            logger.warning(
                "import_error_log_truncated",
                extra={
                    "errors": logged_errors,
                    "logged": self._settings.max_logged_errors,
                },
            )
        return outcomes

    def _evaluate_row(
        self,
        row_number: int,
        raw: dict[str, Any],
        lookups: ImportLookups,
        watermarks: ChainMap,
    ) -> RowOutcome:
        try:
            parsed = parse_progress_row(row_number, raw)
            if parsed is None:
                return RowOutcome.skipped(row_number)
            if isinstance(parsed, RowParseFailure):
                return RowOutcome.rejected(
                    row_number, parsed.error_type, parsed.message, raw
                )
            return reconcile_row(parsed, lookups, watermarks)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning(
                "import_row_processing_error",
                extra={"row_number": row_number},
                exc_info=True,
            )
            return RowOutcome.rejected(
                row_number, ImportErrorType.PROCESSING_ERROR, str(exc), raw
            )

    # =========================================================================
    # Storage steps
    # =========================================================================

    def _load_lookups(self) -> ImportLookups:
        users = {
            m.external_user_id: UserMapping(
                mapping_id=m.id,
                external_user_id=m.external_user_id,
                member_id=m.member_id,
            )
            for m in self._session.execute(select(ProgressUserMappingModel)).scalars()
        }
        programs = {
            p.program_name: ProgramRef(program_id=p.id, program_name=p.program_name)
            for p in self._session.execute(select(ProgressProgramModel)).scalars()
        }
        return ImportLookups.build(users, programs)

    def _load_watermarks(self) -> dict[ProgressKey, date | None]:
        stmt = select(
            ProgressRecordModel.mapping_id,
            ProgressRecordModel.program_id,
            ProgressRecordModel.date_of_last_completed,
        )
        return {
            (row.mapping_id, row.program_id): row.date_of_last_completed
            for row in self._session.execute(stmt)
        }

    def _insert_for_dialect(self):
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise NotImplementedError(f"Upsert not supported for dialect {dialect}")
        return insert

    def _upsert_batch(
        self,
        records: list[ProgressRecordValues],
        job_id: UUID,
        actor_id: UUID,
    ) -> str | None:
        """Upsert one batch inside a SAVEPOINT. Returns an error message on failure."""
        values = [
            {
                "id": uuid4(),
                "mapping_id": r.mapping_id,
                "program_id": r.program_id,
                "member_id": r.member_id,
                "registration_date": r.registration_date,
                "start_date": r.start_date,
                "projected_completion": r.projected_completion,
                "status": r.status,
                "last_completed": r.last_completed,
                "date_of_last_completed": r.date_of_last_completed,
                "working_on": r.working_on,
                "import_job_id": job_id,
                "created_by_id": actor_id,
            }
            for r in records
        ]
        insert = self._insert_for_dialect()
        stmt = insert(ProgressRecordModel).values(values)
        set_ = {col: stmt.excluded[col] for col in _UPSERT_UPDATE_COLUMNS}
        set_["updated_at"] = func.now()
        set_["updated_by_id"] = stmt.excluded["created_by_id"]
        stmt = stmt.on_conflict_do_update(
            index_elements=["mapping_id", "program_id"],
            set_=set_,
        )
        try:
            with self._session.begin_nested():
                self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error(
                "import_batch_upsert_failed",
                extra={"record_count": len(records)},
                exc_info=True,
            )
            return str(exc.__cause__ or exc)
        logger.debug("import_batch_upserted", extra={"record_count": len(records)})
        return None

    def _update_member_contacts(self, records: Iterable[ProgressRecordValues]) -> None:
        """Copy email/phone from accepted rows onto the member. Failures are only logged."""
        for record in records:
            if record.member_id is None:
                continue
            values = {
                name: value
                for name, value in (("email", record.email), ("phone", record.phone))
                if value
            }
            if not values:
                continue
            try:
                with self._session.begin_nested():
                    self._session.execute(
                        update(MemberModel)
                        .where(MemberModel.member_id == record.member_id)
                        .values(**values)
                    )
            except SQLAlchemyError:
                logger.warning(
                    "member_contact_update_failed",
                    extra={"member_id": record.member_id},
                    exc_info=True,
                )

    def _fail_job(self, job: ImportJobModel, message: str) -> None:
        job.status = ImportJobStatus.FAILED.value
        job.error_message = message
        job.completed_at = self._clock.now()
        self._session.commit()
        logger.error("import_job_failed", extra={"error_message": message})

    def _archive_source(self, bucket_name: str, file_path: str) -> None:
        new_path = processed_file_path(
            file_path, self._clock.now_utc(), self._settings.processed_suffix
        )
        try:
            self._file_store.move(bucket_name, file_path, new_path)
        except SourceFileError:
            logger.warning(
                "source_file_rename_failed",
                extra={"file_path": file_path, "new_path": new_path},
                exc_info=True,
            )
            return
        logger.info(
            "source_file_archived",
            extra={"file_path": file_path, "new_path": new_path},
        )

    def _fire_recompute(self, member_ids: tuple[int, ...]) -> None:
        if self._recompute_trigger is None or not member_ids:
            return
        try:
            self._recompute_trigger(list(member_ids))
        except Exception:
            # Downstream recompute is fire-and-forget; the import has succeeded.
            logger.error(
                "recompute_trigger_failed",
                extra={"member_count": len(member_ids)},
                exc_info=True,
            )
            return
        logger.info("recompute_triggered", extra={"member_count": len(member_ids)})

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: UUID) -> ImportJob:
        job = self._session.get(ImportJobModel, job_id)
        if job is None:
            raise ImportJobNotFoundError(job_id)
        return job.to_dto()

    def list_job_errors(self, job_id: UUID) -> list[ImportErrorEntry]:
        if self._session.get(ImportJobModel, job_id) is None:
            raise ImportJobNotFoundError(job_id)
        stmt = (
            select(ImportErrorModel)
            .where(ImportErrorModel.job_id == job_id)
            .order_by(ImportErrorModel.row_number)
        )
        return [e.to_dto() for e in self._session.execute(stmt).scalars()]
