"""
Item mutation collaborators (``program_modules.programs.collaborators``).

Responsibility
--------------
The pluggable checks ``ProgramItemService`` calls around every mutation:

* ``BoundsValidator`` -- pre-check before an item is created, updated or
  deleted.  The default rejects changes that would push an Active
  program's margin on its contracted price below the floor.
* ``ActiveFinanceAdjuster`` -- post-recompute path that owns margin and
  variance for Active programs, whose price is locked.
* ``TherapyCatalog`` -- read-only therapy and task template lookups.

Architecture position
---------------------
**Modules layer** -- both collaborator seams are ``Protocol`` types so
callers can inject alternatives; defaults are plain classes over the
session.  None of them commit.

Invariants enforced
-------------------
* Existing items on an Active program keep their snapshot prices in every
  projection; only new items are priced from the catalog.
* ``contracted_at_margin`` is set once, never overwritten.
* A change is only rejected when it lowers the margin and leaves it below
  the floor, so changes that repair an underwater program go through.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from program_config.schema import FinanceSettings
from program_engines.financials import (
    PricedLine,
    calculate_line_totals,
    calculate_projected_margin,
    calculate_projected_price,
    calculate_taxes_on_taxable_items,
    calculate_variance,
)
from program_kernel.db.types import to_decimal
from program_kernel.exceptions import (
    ActiveFinanceAdjustmentError,
    BoundsViolationError,
    ProgramItemNotFoundError,
    ProgramNotFoundError,
    TherapyNotFoundError,
)
from program_kernel.logging_config import get_logger
from program_modules.programs.models import (
    ItemChange,
    ItemOperation,
    ProjectedFinancials,
    Therapy,
    TherapyTask,
    is_active_status,
)
from program_modules.programs.orm import (
    ProgramItemModel,
    ProgramModel,
    TherapyModel,
    TherapyTaskModel,
)
from program_modules.programs.reconciler import ProgramFinanceReconciler

logger = get_logger("modules.programs.collaborators")


@runtime_checkable
class BoundsValidator(Protocol):
    """Pre-check for an item change. Raises on violation."""

    def validate(self, program_id: UUID, change: ItemChange) -> None: ...


@runtime_checkable
class FinancialsProjector(Protocol):
    """Computes program figures under a hypothetical set of item changes."""

    def project(
        self, program_id: UUID, changes: Sequence[ItemChange]
    ) -> ProjectedFinancials: ...


@runtime_checkable
class ActiveFinanceAdjuster(Protocol):
    """Post-recompute finance adjustment for Active programs. Raises on violation."""

    def adjust(self, program_id: UUID, actor_id: UUID | None = None) -> None: ...


# ---------------------------------------------------------------------------
# Therapy catalog
# ---------------------------------------------------------------------------


class TherapyCatalog:
    """Read-only therapy lookups."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, therapy_id: UUID) -> Therapy:
        therapy = self._session.get(TherapyModel, therapy_id)
        if therapy is None:
            raise TherapyNotFoundError(therapy_id)
        return therapy.to_dto()

    def default_tasks(self, therapy_id: UUID) -> list[TherapyTask]:
        """Active task templates for the therapy."""
        stmt = (
            select(TherapyTaskModel)
            .where(TherapyTaskModel.therapy_id == therapy_id)
            .where(TherapyTaskModel.active_flag.is_(True))
            .order_by(TherapyTaskModel.task_delay, TherapyTaskModel.task_name)
        )
        return [t.to_dto() for t in self._session.execute(stmt).scalars()]


# ---------------------------------------------------------------------------
# Bounds validation and projection
# ---------------------------------------------------------------------------


class LockedPriceBoundsValidator:
    """
    Projects item changes against the program's price and margin.

    Active programs are judged against the contracted price
    (``final_total_price``); a change is rejected when the projected margin
    on that price would drop below ``active_margin_floor``.  Non-Active
    programs are never rejected here; the reconciler's margin floor covers
    them after the mutation.
    """

    def __init__(
        self,
        session: Session,
        catalog: TherapyCatalog | None = None,
        settings: FinanceSettings | None = None,
    ):
        self._session = session
        self._catalog = catalog or TherapyCatalog(session)
        self._settings = settings or FinanceSettings()
        self._reconciler = ProgramFinanceReconciler(session, self._settings)

    def validate(self, program_id: UUID, change: ItemChange) -> None:
        program = self._session.get(ProgramModel, program_id)
        if program is None:
            raise ProgramNotFoundError(program_id)
        if not is_active_status(program.status):
            return

        projection = self.project(program_id, [change])
        floor = self._settings.active_margin_floor
        if (
            projection.projected_margin < floor
            and projection.projected_margin < projection.locked_margin
        ):
            logger.warning(
                "item_bounds_violation",
                extra={
                    "program_id": str(program_id),
                    "operation": change.operation.value,
                    "locked_price": str(projection.locked_price),
                    "locked_margin": str(projection.locked_margin),
                    "projected_margin": str(projection.projected_margin),
                    "margin_floor": str(floor),
                },
            )
            raise BoundsViolationError(
                program_id, change.operation.value, projection.projected_margin, floor
            )

    def project(
        self, program_id: UUID, changes: Sequence[ItemChange]
    ) -> ProjectedFinancials:
        """
        Program figures after applying ``changes`` to the active item set.

        Read-only: nothing is added to or flushed from the session.
        """
        program = self._session.get(ProgramModel, program_id)
        if program is None:
            raise ProgramNotFoundError(program_id)
        is_active = is_active_status(program.status)

        current = self._current_lines(program_id)
        projected = dict(current)
        for change in changes:
            self._apply_change(program_id, projected, change, is_active)

        finance = self._reconciler.get_finance(program_id)
        finance_charges = to_decimal(finance.finance_charges) if finance else Decimal("0")
        discounts = to_decimal(finance.discounts) if finance else Decimal("0")
        tax_rate = self._settings.tax_rate

        before = calculate_line_totals(current.values())
        after = calculate_line_totals(projected.values())

        before_taxes = calculate_taxes_on_taxable_items(
            before.total_charge, before.total_taxable_charge, discounts, tax_rate
        )
        after_taxes = calculate_taxes_on_taxable_items(
            after.total_charge, after.total_taxable_charge, discounts, tax_rate
        )
        before_price = calculate_projected_price(
            before.total_charge, before_taxes, finance_charges, discounts
        )
        after_price = calculate_projected_price(
            after.total_charge, after_taxes, finance_charges, discounts
        )

        if is_active:
            # Margins on the contracted price; taxes still follow the items.
            locked_price = to_decimal(finance.final_total_price) if finance else Decimal("0")
            locked_margin = calculate_projected_margin(
                locked_price, before.total_cost, finance_charges, before_taxes
            )
            projected_margin = calculate_projected_margin(
                locked_price, after.total_cost, finance_charges, after_taxes
            )
        else:
            locked_price = before_price
            locked_margin = calculate_projected_margin(
                before_price, before.total_cost, finance_charges, before_taxes
            )
            projected_margin = calculate_projected_margin(
                after_price, after.total_cost, finance_charges, after_taxes
            )

        return ProjectedFinancials(
            program_id=program_id,
            is_active=is_active,
            locked_price=locked_price,
            locked_margin=locked_margin,
            projected_price=after_price,
            projected_margin=projected_margin,
            projected_taxes=after_taxes,
            projected_total_cost=after.total_cost,
            projected_total_charge=after.total_charge,
            price_delta=calculate_variance(after_price, locked_price),
            changes=tuple(changes),
        )

    def _current_lines(self, program_id: UUID) -> dict[UUID, PricedLine]:
        stmt = (
            select(ProgramItemModel, TherapyModel.taxable)
            .outerjoin(TherapyModel, TherapyModel.id == ProgramItemModel.therapy_id)
            .where(ProgramItemModel.program_id == program_id)
            .where(ProgramItemModel.active_flag.is_(True))
        )
        lines: dict[UUID, PricedLine] = {}
        for item, taxable in self._session.execute(stmt).all():
            lines[item.id] = PricedLine(
                unit_cost=to_decimal(item.item_cost),
                unit_charge=to_decimal(item.item_charge),
                quantity=to_decimal(item.quantity),
                taxable=bool(taxable),
            )
        return lines

    def _apply_change(
        self,
        program_id: UUID,
        lines: dict[UUID, PricedLine],
        change: ItemChange,
        is_active: bool,
    ) -> None:
        if change.operation == ItemOperation.CREATE:
            therapy = self._catalog.get(change.therapy_id)
            lines[uuid4()] = PricedLine(
                unit_cost=to_decimal(therapy.cost),
                unit_charge=to_decimal(therapy.charge),
                quantity=to_decimal(change.quantity if change.quantity is not None else 1),
                taxable=therapy.taxable,
            )
            return

        item = self._session.get(ProgramItemModel, change.item_id)
        if item is None or item.program_id != program_id:
            raise ProgramItemNotFoundError(program_id, change.item_id)

        if change.operation == ItemOperation.DELETE:
            lines.pop(change.item_id, None)
            return

        if change.active_flag is False:
            lines.pop(change.item_id, None)
            return
        line = lines.get(change.item_id)
        if line is None:
            if not change.active_flag:
                # Inactive items do not contribute unless reactivated.
                return
            line = PricedLine(
                unit_cost=to_decimal(item.item_cost),
                unit_charge=to_decimal(item.item_charge),
                quantity=to_decimal(item.quantity),
                taxable=self._catalog.get(item.therapy_id).taxable,
            )

        unit_cost, unit_charge, taxable = line.unit_cost, line.unit_charge, line.taxable
        if change.therapy_id is not None and change.therapy_id != item.therapy_id:
            therapy = self._catalog.get(change.therapy_id)
            taxable = therapy.taxable
            if not is_active:
                unit_cost = to_decimal(therapy.cost)
                unit_charge = to_decimal(therapy.charge)
        quantity = (
            to_decimal(change.quantity) if change.quantity is not None else line.quantity
        )
        lines[change.item_id] = PricedLine(unit_cost, unit_charge, quantity, taxable)


# ---------------------------------------------------------------------------
# Active-program finance adjustment
# ---------------------------------------------------------------------------


class LockedPriceFinanceAdjuster:
    """
    Maintains margin and variance for an Active program against its
    contracted price.

    After the reconciler has refreshed totals and taxes, this recomputes:
        variance = projected price - locked price
        margin   = margin of the locked price over current cost
    and records ``contracted_at_margin`` the first time it runs.
    """

    def __init__(self, session: Session, settings: FinanceSettings | None = None):
        self._session = session
        self._settings = settings or FinanceSettings()
        self._reconciler = ProgramFinanceReconciler(session, self._settings)

    def adjust(self, program_id: UUID, actor_id: UUID | None = None) -> None:
        finance = self._reconciler.get_finance(program_id)
        if finance is None:
            raise ActiveFinanceAdjustmentError(
                program_id, "Active program has no finance record"
            )

        totals = self._reconciler.compute_totals(program_id)
        finance_charges = to_decimal(finance.finance_charges)
        discounts = to_decimal(finance.discounts)
        locked_price = to_decimal(finance.final_total_price)
        previous_margin = to_decimal(finance.margin)

        taxes = calculate_taxes_on_taxable_items(
            totals.total_charge,
            totals.total_taxable_charge,
            discounts,
            self._settings.tax_rate,
        )
        projected_price = calculate_projected_price(
            totals.total_charge, taxes, finance_charges, discounts
        )
        margin = calculate_projected_margin(
            locked_price, totals.total_cost, finance_charges, taxes
        )

        floor = self._settings.active_margin_floor
        if margin < floor and margin < previous_margin:
            logger.warning(
                "active_finance_adjustment_rejected",
                extra={
                    "program_id": str(program_id),
                    "locked_price": str(locked_price),
                    "margin": str(margin),
                    "previous_margin": str(previous_margin),
                    "margin_floor": str(floor),
                },
            )
            raise ActiveFinanceAdjustmentError(
                program_id,
                f"margin {margin} on contracted price {locked_price} "
                f"is below {floor}",
            )

        if finance.contracted_at_margin is None:
            finance.contracted_at_margin = previous_margin
        finance.taxes = taxes
        finance.margin = margin
        finance.variance = calculate_variance(projected_price, locked_price)
        if actor_id is not None:
            finance.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "active_finance_adjusted",
            extra={
                "program_id": str(program_id),
                "locked_price": str(locked_price),
                "projected_price": str(projected_price),
                "variance": str(finance.variance),
                "margin": str(margin),
                "contracted_at_margin": str(finance.contracted_at_margin),
            },
        )
