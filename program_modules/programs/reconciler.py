"""
Program Finance Reconciler (``program_modules.programs.reconciler``).

Responsibility
--------------
Keeps ``Program.total_cost``/``total_charge`` and the finance record's
``taxes``, ``final_total_price`` and ``margin`` consistent with the current
set of active items, subject to the Active-program price lock.

Architecture position
---------------------
**Modules layer** -- called by ``ProgramItemService`` inside the service's
unit of work.  Delegates all arithmetic to ``program_engines.financials``.
Never commits; the caller owns the transaction boundary.

Invariants enforced
-------------------
* Totals are written onto the program unconditionally, Active or not.
* Margin floor: for a non-Active program with negative finance charges, a
  margin at or below the floor raises ``MarginFloorViolationError`` and no
  finance write happens.
* Active programs: only ``taxes`` is updated here; ``margin`` and
  ``final_total_price`` belong to the Active-program finance adjuster.
* Idempotent: two calls with no intervening mutation persist identical
  values.

Failure modes
-------------
* Program missing  -> ``ProgramNotFoundError``.
* Margin floor  -> ``MarginFloorViolationError``.
* Storage errors (``SQLAlchemyError``) propagate unchanged.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from program_config.schema import FinanceSettings
from program_engines.financials import (
    PricedLine,
    calculate_line_totals,
    calculate_program_financials,
)
from program_kernel.db.types import to_decimal
from program_kernel.exceptions import MarginFloorViolationError, ProgramNotFoundError
from program_kernel.logging_config import get_logger
from program_modules.programs.models import (
    ProgramTotals,
    ReconciliationResult,
    is_active_status,
)
from program_modules.programs.orm import (
    ProgramFinanceModel,
    ProgramItemModel,
    ProgramModel,
    TherapyModel,
)

logger = get_logger("modules.programs.reconciler")


class ProgramFinanceReconciler:
    """
    Recomputes program aggregates and the finance record after item changes.

    Contract
    --------
    * ``lock_program`` must be the first statement of every mutation so that
      concurrent mutations of one program serialize on the program row.
    * ``recalculate_program`` flushes but never commits.
    """

    def __init__(self, session: Session, settings: FinanceSettings | None = None):
        self._session = session
        self._settings = settings or FinanceSettings()

    @property
    def settings(self) -> FinanceSettings:
        return self._settings

    def lock_program(self, program_id: UUID) -> ProgramModel:
        """Load the program with SELECT ... FOR UPDATE."""
        stmt = (
            select(ProgramModel)
            .where(ProgramModel.id == program_id)
            .with_for_update()
        )
        program = self._session.execute(stmt).scalar_one_or_none()
        if program is None:
            raise ProgramNotFoundError(program_id)
        return program

    def get_finance(self, program_id: UUID) -> ProgramFinanceModel | None:
        stmt = select(ProgramFinanceModel).where(
            ProgramFinanceModel.program_id == program_id
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def compute_totals(self, program_id: UUID) -> ProgramTotals:
        """Sum cost, charge and taxable charge over the program's active items."""
        stmt = (
            select(
                ProgramItemModel.item_cost,
                ProgramItemModel.item_charge,
                ProgramItemModel.quantity,
                TherapyModel.taxable,
            )
            .outerjoin(TherapyModel, TherapyModel.id == ProgramItemModel.therapy_id)
            .where(ProgramItemModel.program_id == program_id)
            .where(ProgramItemModel.active_flag.is_(True))
        )
        rows = self._session.execute(stmt).all()
        totals = calculate_line_totals(
            PricedLine(
                unit_cost=to_decimal(row.item_cost),
                unit_charge=to_decimal(row.item_charge),
                quantity=to_decimal(row.quantity),
                taxable=bool(row.taxable),
            )
            for row in rows
        )
        return ProgramTotals(
            total_cost=totals.total_cost,
            total_charge=totals.total_charge,
            total_taxable_charge=totals.total_taxable_charge,
            item_count=totals.line_count,
        )

    def recalculate_program(
        self,
        program_id: UUID,
        actor_id: UUID | None = None,
    ) -> ReconciliationResult:
        """
        Recompute totals and the finance record for one program.

        Preconditions: the program row is locked by the caller's transaction.
        Postconditions: program totals are written; the finance record is
            created or updated unless the margin floor rejects the change.

        Raises:
            ProgramNotFoundError: program does not exist.
            MarginFloorViolationError: non-Active margin floor breached.
        """
        program = self._session.get(ProgramModel, program_id)
        if program is None:
            raise ProgramNotFoundError(program_id)
        actor = actor_id or program.updated_by_id or program.created_by_id

        totals = self.compute_totals(program_id)

        program.total_cost = totals.total_cost
        program.total_charge = totals.total_charge
        program.updated_by_id = actor

        is_active = is_active_status(program.status)

        finance = self.get_finance(program_id)
        finance_charges = to_decimal(finance.finance_charges) if finance else Decimal("0")
        discounts = to_decimal(finance.discounts) if finance else Decimal("0")

        financials = calculate_program_financials(
            total_cost=totals.total_cost,
            total_charge=totals.total_charge,
            finance_charges=finance_charges,
            discounts=discounts,
            total_taxable_charge=totals.total_taxable_charge,
            tax_rate=self._settings.tax_rate,
        )

        if (
            not is_active
            and financials.margin <= self._settings.margin_floor
            and finance_charges < 0
        ):
            self._session.flush()
            logger.warning(
                "margin_floor_violation",
                extra={
                    "program_id": str(program_id),
                    "margin": str(financials.margin),
                    "margin_floor": str(self._settings.margin_floor),
                    "finance_charges": str(finance_charges),
                },
            )
            raise MarginFloorViolationError(
                program_id,
                financials.margin,
                finance_charges,
                self._settings.margin_floor,
            )

        finance_created = False
        if finance is None:
            finance = ProgramFinanceModel(
                program_id=program_id,
                finance_charges=Decimal("0"),
                discounts=Decimal("0"),
                taxes=financials.taxes,
                final_total_price=financials.program_price,
                margin=financials.margin,
                variance=Decimal("0"),
                created_by_id=actor,
            )
            self._session.add(finance)
            finance_created = True
        else:
            finance.taxes = financials.taxes
            if not is_active:
                finance.margin = financials.margin
                finance.final_total_price = financials.program_price
            finance.updated_by_id = actor

        self._session.flush()

        logger.info(
            "program_recalculated",
            extra={
                "program_id": str(program_id),
                "is_active": is_active,
                "item_count": totals.item_count,
                "total_cost": str(totals.total_cost),
                "total_charge": str(totals.total_charge),
                "taxes": str(financials.taxes),
                "program_price": str(financials.program_price),
                "margin": str(financials.margin),
                "finance_created": finance_created,
            },
        )

        return ReconciliationResult(
            program_id=program_id,
            is_active=is_active,
            totals=totals,
            financials=financials,
            finance_created=finance_created,
        )
