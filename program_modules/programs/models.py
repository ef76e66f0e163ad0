"""
Member Program Domain Models (``program_modules.programs.models``).

Responsibility
--------------
Frozen dataclass value objects for member programs, their line items, the
therapy catalog and the program finance record, plus the request and result
types exchanged with ``ProgramItemService``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Produced by the
ORM ``to_dto()`` methods and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* Margins are fractions (0.25 == 25%).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from program_engines.financials import ProgramFinancials


class ProgramStatus(str, Enum):
    """Program lifecycle status. Transitions are owned outside this subsystem."""

    QUOTE = "Quote"
    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


def is_active_status(status: str | None) -> bool:
    """True when the status is Active (case-insensitive). Everything else is non-Active."""
    if status is None:
        return False
    return str(status).strip().lower() == ProgramStatus.ACTIVE.value.lower()


class ItemOperation(str, Enum):
    """Item mutation kinds checked by the bounds validator."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Program:
    """A member's enrollment in a program."""
    id: UUID
    program_name: str
    status: str
    total_cost: Decimal = Decimal("0")
    total_charge: Decimal = Decimal("0")
    member_id: int | None = None


@dataclass(frozen=True)
class Therapy:
    """Read-only catalog entry."""
    id: UUID
    therapy_name: str
    cost: Decimal
    charge: Decimal
    taxable: bool = False
    program_role_id: UUID | None = None
    active_flag: bool = True


@dataclass(frozen=True)
class TherapyTask:
    """Default task template for a therapy."""
    id: UUID
    therapy_id: UUID
    task_name: str
    description: str | None = None
    task_delay: int = 0
    active_flag: bool = True


@dataclass(frozen=True)
class ProgramItemTask:
    """A task template copied onto a program item."""
    id: UUID
    item_id: UUID
    task_id: UUID
    task_name: str
    description: str | None = None
    task_delay: int = 0
    completed_flag: bool = False


@dataclass(frozen=True)
class ProgramItem:
    """A line item on a program. item_cost/item_charge are therapy price snapshots."""
    id: UUID
    program_id: UUID
    therapy_id: UUID
    quantity: int
    item_cost: Decimal
    item_charge: Decimal
    days_from_start: int
    days_between: int = 0
    instructions: str | None = None
    active_flag: bool = True
    tasks: tuple[ProgramItemTask, ...] = ()


@dataclass(frozen=True)
class ProgramFinance:
    """Finance adjustments and computed figures for one program."""
    id: UUID
    program_id: UUID
    finance_charges: Decimal = Decimal("0")
    discounts: Decimal = Decimal("0")
    taxes: Decimal = Decimal("0")
    final_total_price: Decimal = Decimal("0")
    margin: Decimal = Decimal("0")
    contracted_at_margin: Decimal | None = None
    variance: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateItemRequest:
    """Validated payload for creating an item."""
    therapy_id: UUID
    quantity: int
    days_from_start: int
    days_between: int = 0
    instructions: str | None = None


@dataclass(frozen=True)
class UpdateItemRequest:
    """Validated partial update. ``None`` means the field was not supplied."""
    therapy_id: UUID | None = None
    quantity: int | None = None
    item_cost: Decimal | None = None
    item_charge: Decimal | None = None
    days_from_start: int | None = None
    days_between: int | None = None
    instructions: str | None = None
    active_flag: bool | None = None

    def supplied_fields(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if getattr(self, name) is not None
        }


@dataclass(frozen=True)
class ItemChange:
    """One proposed item change, as seen by the bounds validator and preview."""
    operation: ItemOperation
    item_id: UUID | None = None
    therapy_id: UUID | None = None
    quantity: int | None = None
    active_flag: bool | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgramTotals:
    """Aggregates over a program's active items."""
    total_cost: Decimal
    total_charge: Decimal
    total_taxable_charge: Decimal
    item_count: int


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one recalculate_program call."""
    program_id: UUID
    is_active: bool
    totals: ProgramTotals
    financials: ProgramFinancials
    finance_created: bool = False


@dataclass(frozen=True)
class ProjectedFinancials:
    """
    Program figures under a hypothetical item set.

    For Active programs ``locked_price`` is the contracted price and both
    margins are taken on it; ``price_delta`` is the variance the change
    would produce.  For non-Active programs the margins are taken on the
    current and projected prices.
    """
    program_id: UUID
    is_active: bool
    locked_price: Decimal
    locked_margin: Decimal
    projected_price: Decimal
    projected_margin: Decimal
    projected_taxes: Decimal
    projected_total_cost: Decimal
    projected_total_charge: Decimal
    price_delta: Decimal
    changes: tuple[ItemChange, ...] = field(default_factory=tuple)
