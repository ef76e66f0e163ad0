"""
Pure row reconciliation for progress imports.

``reconcile_row`` decides, for one parsed row, whether it is written or
rejected.  It reads only the immutable lookup snapshot and a watermark view
passed in by the caller; it never mutates either and keeps no counters.
``fold_outcomes`` tallies a run after the fact.

Recency rule:
    A row is rejected as outdated when the stored record for its
    (mapping, program) key has a ``date_of_last_completed`` and the row's
    own value is strictly older.  Equal or newer rows, rows for a key with
    no stored record or no stored watermark, and rows that carry no
    watermark of their own are accepted.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Mapping

from program_ingestion.domain.types import (
    ImportCounts,
    ImportErrorType,
    ImportLookups,
    ProgressKey,
    ProgressRecordValues,
    ProgressRow,
    RowOutcome,
    RowOutcomeKind,
)


def is_outdated(incoming: date | None, stored: date | None) -> bool:
    """True only when both watermarks exist and the incoming one is older."""
    if incoming is None or stored is None:
        return False
    return incoming < stored


def reconcile_row(
    row: ProgressRow,
    lookups: ImportLookups,
    watermarks: Mapping[ProgressKey, date | None],
) -> RowOutcome:
    user = lookups.users.get(row.user_id)
    if user is None:
        return RowOutcome.rejected(
            row.row_number,
            ImportErrorType.USER_NOT_FOUND,
            f"User ID {row.user_id} not found in mapping table",
            row.raw,
        )

    program = lookups.programs.get(row.program_name.strip())
    if program is None:
        return RowOutcome.rejected(
            row.row_number,
            ImportErrorType.PROGRAM_NOT_FOUND,
            f"Program '{row.program_name}' not found",
            row.raw,
        )

    key: ProgressKey = (user.mapping_id, program.program_id)
    stored = watermarks.get(key)
    if is_outdated(row.date_of_last_completed, stored):
        return RowOutcome.rejected(
            row.row_number,
            ImportErrorType.OUTDATED_RECORD,
            f"Incoming date_of_last_completed {row.date_of_last_completed.isoformat()} "
            f"is older than stored {stored.isoformat()}",
            row.raw,
        )

    return RowOutcome.accepted(
        row.row_number,
        ProgressRecordValues(
            mapping_id=user.mapping_id,
            program_id=program.program_id,
            member_id=user.member_id,
            registration_date=row.registration_date,
            start_date=row.start_date,
            projected_completion=row.projected_completion,
            status=row.status,
            last_completed=row.last_completed,
            date_of_last_completed=row.date_of_last_completed,
            working_on=row.working_on,
            email=row.email,
            phone=row.phone,
        ),
    )


def fold_outcomes(outcomes: Iterable[RowOutcome]) -> ImportCounts:
    total = successful = failed = skipped = 0
    for outcome in outcomes:
        total += 1
        if outcome.kind == RowOutcomeKind.ACCEPTED:
            successful += 1
        elif outcome.kind == RowOutcomeKind.REJECTED:
            failed += 1
        else:
            skipped += 1
    return ImportCounts(
        total_rows=total,
        successful_rows=successful,
        failed_rows=failed,
        skipped_rows=skipped,
    )
