"""
Program Item Mutation Service (``program_modules.programs.service``).

Responsibility
--------------
Creates, updates and deletes program line items and keeps the program's
aggregates and finance record consistent with them, by composing the
``ProgramFinanceReconciler``, the bounds validator, the Active-program
finance adjuster and the therapy catalog.

Architecture position
---------------------
**Modules layer** -- ``ProgramItemService`` is the sole public entry point
for item mutations.  ``ProgramItemHandlers`` sits in front of it and maps
its exceptions onto the client-facing error taxonomy.

Invariants enforced
-------------------
* Each public mutation is ONE unit of work: lock program row, pre-check,
  mutate item, recalculate, adjust Active finances, commit.  Any exception
  rolls the whole unit back and is re-raised, so a rejected create leaves
  no item and no copied tasks behind, and a rejected update or delete
  leaves the item as it was.
* The program row is held with ``SELECT ... FOR UPDATE`` for the whole
  unit, so concurrent mutations of one program serialize.
* Price lock: while a program is Active, ``item_cost``/``item_charge`` are
  never changed through this service.  Supplied values are dropped and
  the drop is logged.
* Conditional repricing: a non-Active item is repriced from the catalog
  only when its therapy changes to a different therapy.
* Every unit carries a ``RequestDeadline``; expiry raises
  ``MutationTimeoutError``.

Failure modes
-------------
* Missing therapy/program/item  -> ``NotFoundError`` subclasses, before
  any write.
* Bounds or adjustment rejection  -> ``ValidationFailedError`` subclasses.
* Margin floor  -> ``MarginFloorViolationError``.
* Deadline  -> ``MutationTimeoutError``.
* Storage errors propagate unchanged after rollback.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Callable
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from program_config.schema import AppSettings
from program_kernel.db.engine import is_postgres
from program_kernel.domain.clock import RequestDeadline
from program_kernel.exceptions import (
    MarginFloorViolationError,
    ProgramItemNotFoundError,
    ProgramNotFoundError,
)
from program_kernel.logging_config import get_logger, timed_operation
from program_modules.programs.collaborators import (
    ActiveFinanceAdjuster,
    BoundsValidator,
    FinancialsProjector,
    LockedPriceBoundsValidator,
    LockedPriceFinanceAdjuster,
    TherapyCatalog,
)
from program_modules.programs.models import (
    CreateItemRequest,
    ItemChange,
    ItemOperation,
    ProgramItem,
    ProjectedFinancials,
    ReconciliationResult,
    UpdateItemRequest,
    is_active_status,
)
from program_modules.programs.orm import (
    ProgramItemModel,
    ProgramItemTaskModel,
    ProgramModel,
)
from program_modules.programs.reconciler import ProgramFinanceReconciler

logger = get_logger("modules.programs.service")

LOCKED_PRICE_FIELDS = ("item_cost", "item_charge")


class ProgramItemService:
    """
    Orchestrates item mutations and the finance recompute that follows them.

    Contract
    --------
    * Every mutating method commits on success and rolls back on any
      exception, which is re-raised to the caller.
    * ``preview_changes`` and ``list_items`` never write.

    Guarantees
    ----------
    * Collaborators are injectable; defaults are the locked-price
      implementations over the same session.
    * ``monotonic`` is injectable for deterministic deadline tests.
    """

    def __init__(
        self,
        session: Session,
        settings: AppSettings | None = None,
        bounds_validator: BoundsValidator | None = None,
        finance_adjuster: ActiveFinanceAdjuster | None = None,
        therapy_catalog: TherapyCatalog | None = None,
        projector: FinancialsProjector | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._session = session
        self._settings = settings or AppSettings()
        self._catalog = therapy_catalog or TherapyCatalog(session)
        self._reconciler = ProgramFinanceReconciler(session, self._settings.finance)
        default_validator = LockedPriceBoundsValidator(
            session, self._catalog, self._settings.finance
        )
        self._bounds_validator = bounds_validator or default_validator
        self._projector = projector or default_validator
        self._finance_adjuster = finance_adjuster or LockedPriceFinanceAdjuster(
            session, self._settings.finance
        )
        self._monotonic = monotonic

    # =========================================================================
    # Unit of work helpers
    # =========================================================================

    def _start(self) -> RequestDeadline:
        """Create the request deadline and push it down to PostgreSQL."""
        deadline = RequestDeadline(
            self._settings.request.timeout_seconds, monotonic=self._monotonic
        )
        if is_postgres(self._session):
            # SET does not accept bind parameters; the value is an int.
            self._session.execute(
                text(f"SET LOCAL statement_timeout = {max(1, deadline.remaining_ms)}")
            )
        return deadline

    def _finish(
        self,
        deadline: RequestDeadline,
        program: ProgramModel,
        actor_id: UUID,
        stage: str,
    ) -> ReconciliationResult:
        """Recalculate, adjust Active finances, then commit."""
        deadline.check(f"{stage}:recalculate")
        result = self._reconciler.recalculate_program(program.id, actor_id)
        if result.is_active:
            deadline.check(f"{stage}:adjust")
            self._finance_adjuster.adjust(program.id, actor_id=actor_id)
        deadline.check(f"{stage}:commit")
        self._session.commit()
        return result

    def _rollback(self) -> None:
        self._session.rollback()
        logger.warning("item_mutation_rolled_back")

    def _get_item(self, program_id: UUID, item_id: UUID) -> ProgramItemModel:
        item = self._session.get(ProgramItemModel, item_id)
        if item is None or item.program_id != program_id:
            raise ProgramItemNotFoundError(program_id, item_id)
        return item

    def _copy_default_tasks(self, item: ProgramItemModel, actor_id: UUID) -> int:
        """Copy the therapy's active task templates that the item lacks."""
        existing = set(
            self._session.execute(
                select(ProgramItemTaskModel.task_id).where(
                    ProgramItemTaskModel.item_id == item.id
                )
            ).scalars()
        )
        inserted = 0
        for template in self._catalog.default_tasks(item.therapy_id):
            if template.id in existing:
                continue
            item.tasks.append(
                ProgramItemTaskModel(
                    task_id=template.id,
                    task_name=template.task_name,
                    description=template.description,
                    task_delay=template.task_delay,
                    created_by_id=actor_id,
                )
            )
            inserted += 1
        self._session.flush()
        return inserted

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_item(
        self,
        program_id: UUID,
        request: CreateItemRequest,
        actor_id: UUID,
    ) -> ProgramItem:
        """Create an item priced from the therapy and copy its task templates."""
        with timed_operation(
            logger, "create_item", program_id=program_id, actor_id=actor_id
        ):
            try:
                deadline = self._start()
                program = self._reconciler.lock_program(program_id)
                deadline.check("create:lock")

                therapy = self._catalog.get(request.therapy_id)
                self._bounds_validator.validate(
                    program_id,
                    ItemChange(
                        operation=ItemOperation.CREATE,
                        therapy_id=request.therapy_id,
                        quantity=request.quantity,
                    ),
                )
                deadline.check("create:validate")

                item = ProgramItemModel(
                    program_id=program_id,
                    therapy_id=therapy.id,
                    quantity=request.quantity,
                    item_cost=therapy.cost,
                    item_charge=therapy.charge,
                    days_from_start=request.days_from_start,
                    days_between=request.days_between,
                    instructions=request.instructions,
                    active_flag=True,
                    created_by_id=actor_id,
                )
                self._session.add(item)
                self._session.flush()
                tasks_copied = self._copy_default_tasks(item, actor_id)

                result = self._finish(deadline, program, actor_id, "create")
                dto = item.to_dto()
            except Exception:
                self._rollback()
                raise

            logger.info(
                "item_created",
                extra={
                    "item_id": str(dto.id),
                    "therapy_id": str(dto.therapy_id),
                    "quantity": dto.quantity,
                    "item_cost": str(dto.item_cost),
                    "item_charge": str(dto.item_charge),
                    "tasks_copied": tasks_copied,
                    "is_active": result.is_active,
                },
            )
            return dto

    def update_item(
        self,
        program_id: UUID,
        item_id: UUID,
        request: UpdateItemRequest,
        actor_id: UUID,
    ) -> ProgramItem:
        """Apply a partial update under the price lock and repricing rules."""
        with timed_operation(
            logger,
            "update_item",
            program_id=program_id,
            item_id=item_id,
            actor_id=actor_id,
        ):
            try:
                deadline = self._start()
                program = self._reconciler.lock_program(program_id)
                deadline.check("update:lock")
                item = self._get_item(program_id, item_id)
                is_active = is_active_status(program.status)

                updates = request.supplied_fields()
                if is_active:
                    dropped = sorted(f for f in LOCKED_PRICE_FIELDS if f in updates)
                    for name in dropped:
                        del updates[name]
                    if dropped:
                        logger.warning(
                            "active_item_price_fields_dropped",
                            extra={"fields": dropped, "status": program.status},
                        )

                new_therapy_id = updates.get("therapy_id")
                repriced = False
                if new_therapy_id is not None and new_therapy_id != item.therapy_id:
                    therapy = self._catalog.get(new_therapy_id)
                    if not is_active:
                        updates["item_cost"] = therapy.cost
                        updates["item_charge"] = therapy.charge
                        repriced = True

                self._bounds_validator.validate(
                    program_id,
                    ItemChange(
                        operation=ItemOperation.UPDATE,
                        item_id=item_id,
                        therapy_id=new_therapy_id,
                        quantity=updates.get("quantity"),
                        active_flag=updates.get("active_flag"),
                    ),
                )
                deadline.check("update:validate")

                for name, value in updates.items():
                    setattr(item, name, value)
                item.updated_by_id = actor_id
                self._session.flush()

                self._finish(deadline, program, actor_id, "update")
                dto = item.to_dto()
            except Exception:
                self._rollback()
                raise

            logger.info(
                "item_updated",
                extra={
                    "fields": sorted(updates),
                    "repriced": repriced,
                    "is_active": is_active,
                },
            )
            return dto

    def delete_item(
        self,
        program_id: UUID,
        item_id: UUID,
        actor_id: UUID,
    ) -> None:
        """Delete an item and its copied tasks."""
        with timed_operation(
            logger,
            "delete_item",
            program_id=program_id,
            item_id=item_id,
            actor_id=actor_id,
        ):
            try:
                deadline = self._start()
                program = self._reconciler.lock_program(program_id)
                deadline.check("delete:lock")
                item = self._get_item(program_id, item_id)

                self._bounds_validator.validate(
                    program_id,
                    ItemChange(operation=ItemOperation.DELETE, item_id=item_id),
                )
                deadline.check("delete:validate")

                self._session.delete(item)
                self._session.flush()

                self._finish(deadline, program, actor_id, "delete")
            except Exception:
                self._rollback()
                raise

            logger.info("item_deleted")

    def recalculate(self, program_id: UUID, actor_id: UUID) -> ReconciliationResult:
        """
        Standalone recompute for maintenance and repair.

        With no item change to undo, a margin floor rejection still commits
        the refreshed program totals before it is re-raised.
        """
        with timed_operation(
            logger, "recalculate", program_id=program_id, actor_id=actor_id
        ):
            try:
                deadline = self._start()
                self._reconciler.lock_program(program_id)
                deadline.check("recalculate:lock")
                result = self._reconciler.recalculate_program(program_id, actor_id)
                deadline.check("recalculate:commit")
                self._session.commit()
            except MarginFloorViolationError:
                self._session.commit()
                raise
            except Exception:
                self._session.rollback()
                raise
            return result

    def sync_item_tasks(
        self,
        program_id: UUID,
        item_id: UUID,
        actor_id: UUID,
    ) -> int:
        """Copy any task templates added to the therapy since the item was created."""
        with timed_operation(
            logger,
            "sync_item_tasks",
            program_id=program_id,
            item_id=item_id,
            actor_id=actor_id,
        ) as summary:
            try:
                self._reconciler.lock_program(program_id)
                item = self._get_item(program_id, item_id)
                inserted = self._copy_default_tasks(item, actor_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            summary["tasks_copied"] = inserted
            return inserted

    # =========================================================================
    # Read-only
    # =========================================================================

    def preview_changes(
        self,
        program_id: UUID,
        changes: Sequence[ItemChange],
    ) -> ProjectedFinancials:
        """Project a set of item changes without persisting anything."""
        with timed_operation(logger, "preview_changes", program_id=program_id):
            try:
                projection = self._projector.project(program_id, changes)
            finally:
                self._session.rollback()
            logger.info(
                "item_changes_previewed",
                extra={
                    "change_count": len(changes),
                    "projected_price": str(projection.projected_price),
                    "projected_margin": str(projection.projected_margin),
                    "price_delta": str(projection.price_delta),
                },
            )
            return projection

    def list_items(self, program_id: UUID) -> list[ProgramItem]:
        """Items on the program ordered by days from start."""
        if self._session.get(ProgramModel, program_id) is None:
            raise ProgramNotFoundError(program_id)
        stmt = (
            select(ProgramItemModel)
            .where(ProgramItemModel.program_id == program_id)
            .order_by(ProgramItemModel.days_from_start, ProgramItemModel.created_at)
        )
        return [item.to_dto() for item in self._session.execute(stmt).scalars()]
