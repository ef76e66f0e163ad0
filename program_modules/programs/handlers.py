"""
Program item request handlers (``program_modules.programs.handlers``).

The request boundary in front of ``ProgramItemService``.  Handlers take the
loosely typed payload dicts a web route hands over, parse them into request
dataclasses, call the service and return an ``ItemMutationResult``.

Expected failures never raise out of a handler; they become a result with
an HTTP-style status code and a ``MutationError``:

    NotFound                   -> 404
    ValidationFailed           -> 400  (422 for Active finance adjustment)
    MarginFloorViolation       -> 422
    Unexpected / anything else -> 500  (logged with traceback)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from uuid import UUID, uuid4

from program_kernel.exceptions import (
    ActiveFinanceAdjustmentError,
    ErrorKind,
    InvalidFieldValueError,
    MissingRequiredFieldsError,
    ProgramFinanceError,
)
from program_kernel.logging_config import LogContext, get_logger
from program_modules.programs.models import (
    CreateItemRequest,
    ItemChange,
    ItemOperation,
    ProgramItem,
    ProjectedFinancials,
    UpdateItemRequest,
)
from program_modules.programs.service import ProgramItemService

logger = get_logger("modules.programs.handlers")

CREATE_REQUIRED_FIELDS = ("therapy_id", "quantity", "days_from_start")

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.MARGIN_FLOOR_VIOLATION: 422,
    ErrorKind.UNEXPECTED: 500,
}

UNEXPECTED_MESSAGE = "An unexpected error occurred"


@dataclass(frozen=True)
class MutationError:
    """Client-facing error."""
    kind: str
    code: str
    message: str


@dataclass(frozen=True)
class ItemMutationResult:
    """Outcome of one handler call."""
    status_code: int
    item: ProgramItem | None = None
    error: MutationError | None = None
    preview: ProjectedFinancials | None = None

    @property
    def is_success(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_uuid(field: str, value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, AttributeError):
        raise InvalidFieldValueError(field, value, "not a valid id") from None


def parse_int(field: str, value: Any, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise InvalidFieldValueError(field, value, "not an integer")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidFieldValueError(field, value, "not an integer") from None
    if not number.is_finite() or number != number.to_integral_value():
        raise InvalidFieldValueError(field, value, "not an integer")
    result = int(number)
    if minimum is not None and result < minimum:
        raise InvalidFieldValueError(field, value, f"must be at least {minimum}")
    return result


def parse_decimal(field: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidFieldValueError(field, value, "not a number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidFieldValueError(field, value, "not a number") from None
    if not number.is_finite():
        raise InvalidFieldValueError(field, value, "not a number")
    return number


def parse_bool(field: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise InvalidFieldValueError(field, value, "not a boolean")


def parse_create_payload(payload: Mapping[str, Any]) -> CreateItemRequest:
    """Required: therapy_id, quantity, days_from_start."""
    missing = [f for f in CREATE_REQUIRED_FIELDS if _is_blank(payload.get(f))]
    if missing:
        raise MissingRequiredFieldsError(missing)
    days_between = payload.get("days_between")
    instructions = payload.get("instructions")
    return CreateItemRequest(
        therapy_id=parse_uuid("therapy_id", payload["therapy_id"]),
        quantity=parse_int("quantity", payload["quantity"], minimum=1),
        days_from_start=parse_int("days_from_start", payload["days_from_start"], minimum=0),
        days_between=0 if _is_blank(days_between) else parse_int("days_between", days_between, minimum=0),
        instructions=None if instructions is None else str(instructions),
    )


_UPDATE_PARSERS: dict[str, Callable[[str, Any], Any]] = {
    "therapy_id": parse_uuid,
    "quantity": lambda f, v: parse_int(f, v, minimum=1),
    "item_cost": parse_decimal,
    "item_charge": parse_decimal,
    "days_from_start": lambda f, v: parse_int(f, v, minimum=0),
    "days_between": lambda f, v: parse_int(f, v, minimum=0),
    "instructions": lambda f, v: str(v),
    "active_flag": parse_bool,
}


def parse_update_payload(payload: Mapping[str, Any]) -> UpdateItemRequest:
    """All fields optional; unknown keys are ignored."""
    fields = {
        name: parser(name, payload[name])
        for name, parser in _UPDATE_PARSERS.items()
        if payload.get(name) is not None
    }
    return UpdateItemRequest(**fields)


def parse_change(payload: Mapping[str, Any]) -> ItemChange:
    """One entry of a preview request: {operation, item_id?, therapy_id?, quantity?,
    active_flag?}."""
    if not isinstance(payload, Mapping):
        raise InvalidFieldValueError("changes", payload, "each change must be an object")
    raw_op = str(payload.get("operation", "")).strip().lower()
    try:
        operation = ItemOperation(raw_op)
    except ValueError:
        raise InvalidFieldValueError("operation", raw_op, "must be create, update or delete") from None
    item_id = payload.get("item_id")
    therapy_id = payload.get("therapy_id")
    quantity = payload.get("quantity")
    active_flag = payload.get("active_flag")
    if operation == ItemOperation.CREATE and _is_blank(therapy_id):
        raise MissingRequiredFieldsError(["therapy_id"])
    if operation != ItemOperation.CREATE and _is_blank(item_id):
        raise MissingRequiredFieldsError(["item_id"])
    return ItemChange(
        operation=operation,
        item_id=None if _is_blank(item_id) else parse_uuid("item_id", item_id),
        therapy_id=None if _is_blank(therapy_id) else parse_uuid("therapy_id", therapy_id),
        quantity=None if _is_blank(quantity) else parse_int("quantity", quantity, minimum=1),
        active_flag=None if _is_blank(active_flag) else parse_bool("active_flag", active_flag),
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _status_for(exc: ProgramFinanceError) -> int:
    if isinstance(exc, ActiveFinanceAdjustmentError):
        return 422
    return _STATUS_BY_KIND.get(exc.kind, 500)


class ProgramItemHandlers:
    """Create, update, delete and preview entry points for program items."""

    def __init__(self, service: ProgramItemService):
        self._service = service

    def _run(
        self,
        operation: str,
        success_status: int,
        call: Callable[[], Any],
    ) -> ItemMutationResult:
        with LogContext.bind(correlation_id=uuid4()):
            try:
                value = call()
            except ProgramFinanceError as exc:
                status = _status_for(exc)
                if exc.kind == ErrorKind.UNEXPECTED:
                    logger.error(
                        "item_request_failed",
                        extra={"operation": operation, "status_code": status},
                        exc_info=True,
                    )
                else:
                    logger.info(
                        "item_request_rejected",
                        extra={
                            "operation": operation,
                            "status_code": status,
                            "error_code": exc.code,
                        },
                    )
                return ItemMutationResult(
                    status_code=status,
                    error=MutationError(kind=exc.kind.value, code=exc.code, message=str(exc)),
                )
            except Exception:
                # Storage and programming errors surface as a generic 500.
                logger.error(
                    "item_request_failed",
                    extra={"operation": operation, "status_code": 500},
                    exc_info=True,
                )
                return ItemMutationResult(
                    status_code=500,
                    error=MutationError(
                        kind=ErrorKind.UNEXPECTED.value,
                        code="UNEXPECTED",
                        message=UNEXPECTED_MESSAGE,
                    ),
                )

        if isinstance(value, ProjectedFinancials):
            return ItemMutationResult(status_code=success_status, preview=value)
        return ItemMutationResult(status_code=success_status, item=value)

    def create(
        self,
        program_id: Any,
        payload: Mapping[str, Any],
        actor_id: UUID,
    ) -> ItemMutationResult:
        def call() -> ProgramItem:
            pid = parse_uuid("program_id", program_id)
            request = parse_create_payload(payload)
            return self._service.create_item(pid, request, actor_id)

        return self._run("create", 201, call)

    def update(
        self,
        program_id: Any,
        item_id: Any,
        payload: Mapping[str, Any],
        actor_id: UUID,
    ) -> ItemMutationResult:
        def call() -> ProgramItem:
            pid = parse_uuid("program_id", program_id)
            iid = parse_uuid("item_id", item_id)
            request = parse_update_payload(payload)
            return self._service.update_item(pid, iid, request, actor_id)

        return self._run("update", 200, call)

    def delete(
        self,
        program_id: Any,
        item_id: Any,
        actor_id: UUID,
    ) -> ItemMutationResult:
        def call() -> None:
            pid = parse_uuid("program_id", program_id)
            iid = parse_uuid("item_id", item_id)
            self._service.delete_item(pid, iid, actor_id)
            return None

        return self._run("delete", 200, call)

    def preview(
        self,
        program_id: Any,
        payload: Mapping[str, Any],
    ) -> ItemMutationResult:
        """Payload: {"changes": [{operation, item_id?, therapy_id?, quantity?}, ...]}."""
        def call() -> ProjectedFinancials:
            pid = parse_uuid("program_id", program_id)
            raw_changes = payload.get("changes") or []
            if not isinstance(raw_changes, list):
                raise InvalidFieldValueError("changes", raw_changes, "must be a list")
            changes = [parse_change(c) for c in raw_changes]
            return self._service.preview_changes(pid, changes)

        return self._run("preview", 200, call)
