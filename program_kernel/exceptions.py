"""
Typed Exception Hierarchy for Member Program Finance.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers at the request boundary must tell a business rejection (the margin
floor) apart from a missing record, a malformed payload, or a storage failure.
Matching on message text is fragile, so every error here carries:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute (the four-way taxonomy surfaced to clients)
  4. Structured DATA as instance attributes (not just a message string)

Example - RIGHT way:
    try:
        service.create_item(program_id, request, actor_id)
    except MarginFloorViolationError as e:
        return {"code": e.code, "margin": str(e.margin)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProgramFinanceError (base)
    |
    +-- NotFoundError                         kind = NotFound
    |   +-- ProgramNotFoundError
    |   +-- ProgramItemNotFoundError
    |   +-- TherapyNotFoundError
    |   +-- ImportJobNotFoundError
    |
    +-- ValidationFailedError                 kind = ValidationFailed
    |   +-- MissingRequiredFieldsError
    |   +-- InvalidFieldValueError
    |   +-- BoundsViolationError
    |   +-- ActiveFinanceAdjustmentError
    |
    +-- MarginFloorViolationError             kind = MarginFloorViolation
    |
    +-- UnexpectedError                       kind = Unexpected
        +-- MutationTimeoutError
        +-- SourceFileError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind                 | Code                          | When Raised
---------------------|-------------------------------|------------------------------
NotFound             | PROGRAM_NOT_FOUND             | Program id doesn't exist
                     | PROGRAM_ITEM_NOT_FOUND        | Item id not on this program
                     | THERAPY_NOT_FOUND             | Therapy id doesn't exist
                     | IMPORT_JOB_NOT_FOUND          | Import job id doesn't exist
---------------------|-------------------------------|------------------------------
ValidationFailed     | MISSING_REQUIRED_FIELDS       | Create payload incomplete
                     | INVALID_FIELD_VALUE           | Malformed id or number
                     | ITEM_BOUNDS_VIOLATION         | Active program bounds check
                     | ACTIVE_FINANCE_ADJUSTMENT     | Locked-price adjustment failed
---------------------|-------------------------------|------------------------------
MarginFloorViolation | FINANCE_CHARGES_MARGIN_FLOOR  | Negative finance charges push
                     |                               | a non-Active margin to <= 0
---------------------|-------------------------------|------------------------------
Unexpected           | MUTATION_TIMEOUT              | Request deadline exceeded
                     | SOURCE_FILE_ERROR             | Import file unreadable/missing

Storage failures (SQLAlchemyError) are NOT wrapped; the request boundary
reports them with kind Unexpected.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Client-facing error taxonomy."""

    NOT_FOUND = "NotFound"
    VALIDATION_FAILED = "ValidationFailed"
    MARGIN_FLOOR_VIOLATION = "MarginFloorViolation"
    UNEXPECTED = "Unexpected"


class ProgramFinanceError(Exception):
    """
    Base exception for all program finance errors.

    All subclasses must have `code` and `kind` class attributes.
    """

    code: str = "PROGRAM_FINANCE_ERROR"
    kind: ErrorKind = ErrorKind.UNEXPECTED


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(ProgramFinanceError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND


class ProgramNotFoundError(NotFoundError):
    """Member program with given ID was not found."""

    code: str = "PROGRAM_NOT_FOUND"

    def __init__(self, program_id: Any):
        self.program_id = str(program_id)
        super().__init__(f"Program not found: {program_id}")


class ProgramItemNotFoundError(NotFoundError):
    """Program item was not found on the given program."""

    code: str = "PROGRAM_ITEM_NOT_FOUND"

    def __init__(self, program_id: Any, item_id: Any):
        self.program_id = str(program_id)
        self.item_id = str(item_id)
        super().__init__(f"Program item not found: {item_id} (program {program_id})")


class TherapyNotFoundError(NotFoundError):
    """Therapy with given ID was not found."""

    code: str = "THERAPY_NOT_FOUND"

    def __init__(self, therapy_id: Any):
        self.therapy_id = str(therapy_id)
        super().__init__("Therapy not found")


class ImportJobNotFoundError(NotFoundError):
    """Import job with given ID was not found."""

    code: str = "IMPORT_JOB_NOT_FOUND"

    def __init__(self, job_id: Any):
        self.job_id = str(job_id)
        super().__init__(f"Import job not found: {job_id}")


# =============================================================================
# Validation
# =============================================================================


class ValidationFailedError(ProgramFinanceError):
    """Base exception for rejected request payloads and bounds checks."""

    code: str = "VALIDATION_FAILED"
    kind: ErrorKind = ErrorKind.VALIDATION_FAILED


class MissingRequiredFieldsError(ValidationFailedError):
    """Create payload is missing required fields."""

    code: str = "MISSING_REQUIRED_FIELDS"

    def __init__(self, fields: list[str]):
        self.fields = list(fields)
        super().__init__("Therapy ID, quantity, and days from start are required")


class InvalidFieldValueError(ValidationFailedError):
    """A payload field has an unusable value."""

    code: str = "INVALID_FIELD_VALUE"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = repr(value)
        self.reason = reason
        super().__init__(f"Invalid value for {field}: {reason}")


class BoundsViolationError(ValidationFailedError):
    """An item change would push an Active program outside its locked bounds."""

    code: str = "ITEM_BOUNDS_VIOLATION"

    def __init__(
        self,
        program_id: Any,
        operation: str,
        projected_margin: Decimal,
        margin_floor: Decimal,
    ):
        self.program_id = str(program_id)
        self.operation = operation
        self.projected_margin = projected_margin
        self.margin_floor = margin_floor
        super().__init__(
            f"Cannot {operation} item: projected margin {projected_margin} "
            f"would fall below {margin_floor} on the contracted price"
        )


class ActiveFinanceAdjustmentError(ValidationFailedError):
    """Locked-price finance adjustment for an Active program failed."""

    code: str = "ACTIVE_FINANCE_ADJUSTMENT"

    def __init__(self, program_id: Any, reason: str):
        self.program_id = str(program_id)
        self.reason = reason
        super().__init__(f"Active program finance adjustment failed: {reason}")


# =============================================================================
# Margin floor
# =============================================================================


class MarginFloorViolationError(ProgramFinanceError):
    """
    Negative finance charges would drive a non-Active program's margin to or
    below the floor. The mutation that triggered the recompute is rejected.
    """

    code: str = "FINANCE_CHARGES_MARGIN_FLOOR"
    kind: ErrorKind = ErrorKind.MARGIN_FLOOR_VIOLATION

    def __init__(
        self,
        program_id: Any,
        margin: Decimal,
        finance_charges: Decimal,
        margin_floor: Decimal = Decimal("0"),
    ):
        self.program_id = str(program_id)
        self.margin = margin
        self.finance_charges = finance_charges
        self.margin_floor = margin_floor
        floor_pct = f"{(margin_floor * 100).normalize():f}"
        super().__init__(
            f"Finance charges would reduce margin below {floor_pct}%. "
            "Please adjust values."
        )


# =============================================================================
# Unexpected
# =============================================================================


class UnexpectedError(ProgramFinanceError):
    """Base exception for fatal, non-business failures."""

    code: str = "UNEXPECTED"
    kind: ErrorKind = ErrorKind.UNEXPECTED


class MutationTimeoutError(UnexpectedError):
    """The request-scoped deadline expired before the mutation finished."""

    code: str = "MUTATION_TIMEOUT"

    def __init__(self, stage: str, timeout_seconds: float):
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Request deadline of {timeout_seconds}s exceeded at {stage}"
        )


class SourceFileError(UnexpectedError):
    """The import source file could not be downloaded or parsed."""

    code: str = "SOURCE_FILE_ERROR"

    def __init__(self, file_path: str, reason: str, job_id: Any = None):
        self.file_path = file_path
        self.reason = reason
        self.job_id = str(job_id) if job_id is not None else None
        super().__init__(f"Failed to process file {file_path}: {reason}")
