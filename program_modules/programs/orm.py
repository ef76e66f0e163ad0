"""
SQLAlchemy ORM persistence models for member programs.

Responsibility
--------------
Provide database-backed persistence for programs, the therapy catalog and
its task templates, program line items with their copied tasks, and the
one-per-program finance record.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``ProgramFinanceReconciler``,
the collaborators and ``ProgramItemService``.  Inherits from
``TrackedBase`` (kernel db layer).

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``ProgramFinanceModel`` is unique per program.
* ``ProgramItemTaskModel`` is unique on (item_id, task_id), so a task
  template is copied onto an item at most once.
* Deleting an item deletes its copied tasks (delete-orphan cascade).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from program_kernel.db.base import TrackedBase, UUIDString

# ---------------------------------------------------------------------------
# ProgramModel
# ---------------------------------------------------------------------------


class ProgramModel(TrackedBase):
    """
    A member's program enrollment.

    Guarantees:
        - ``total_cost``/``total_charge`` are written only by the reconciler.
        - ``status`` is stored as given; Active is matched case-insensitively.
    """

    __tablename__ = "member_programs"

    __table_args__ = (
        Index("idx_member_program_status", "status"),
        Index("idx_member_program_member", "member_id"),
    )

    program_name: Mapped[str] = mapped_column(String(255), nullable=False)
    member_id: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Quote")
    total_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_charge: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    items: Mapped[list["ProgramItemModel"]] = relationship(
        "ProgramItemModel",
        back_populates="program",
        cascade="all, delete-orphan",
    )

    finance: Mapped["ProgramFinanceModel | None"] = relationship(
        "ProgramFinanceModel",
        back_populates="program",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def to_dto(self):
        from program_modules.programs.models import Program

        return Program(
            id=self.id,
            program_name=self.program_name,
            status=self.status,
            total_cost=self.total_cost,
            total_charge=self.total_charge,
            member_id=self.member_id,
        )

    def __repr__(self) -> str:
        return f"<ProgramModel {self.program_name} [{self.status}]>"


# ---------------------------------------------------------------------------
# Therapy catalog
# ---------------------------------------------------------------------------


class TherapyModel(TrackedBase):
    """
    Therapy catalog entry. Read-only to the reconciliation subsystem.
    """

    __tablename__ = "therapies"

    therapy_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    charge: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    program_role_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    active_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    tasks: Mapped[list["TherapyTaskModel"]] = relationship(
        "TherapyTaskModel",
        back_populates="therapy",
        cascade="all, delete-orphan",
    )

    def to_dto(self):
        from program_modules.programs.models import Therapy

        return Therapy(
            id=self.id,
            therapy_name=self.therapy_name,
            cost=self.cost,
            charge=self.charge,
            taxable=self.taxable,
            program_role_id=self.program_role_id,
            active_flag=self.active_flag,
        )

    def __repr__(self) -> str:
        return f"<TherapyModel {self.therapy_name}>"


class TherapyTaskModel(TrackedBase):
    """Default task template copied onto every new item for the therapy."""

    __tablename__ = "therapy_tasks"

    __table_args__ = (
        Index("idx_therapy_task_therapy", "therapy_id"),
    )

    therapy_id: Mapped[UUID] = mapped_column(ForeignKey("therapies.id"), nullable=False)
    task_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    task_delay: Mapped[int] = mapped_column(default=0)
    active_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    therapy: Mapped["TherapyModel"] = relationship(
        "TherapyModel",
        back_populates="tasks",
    )

    def to_dto(self):
        from program_modules.programs.models import TherapyTask

        return TherapyTask(
            id=self.id,
            therapy_id=self.therapy_id,
            task_name=self.task_name,
            description=self.description,
            task_delay=self.task_delay,
            active_flag=self.active_flag,
        )


# ---------------------------------------------------------------------------
# Program items
# ---------------------------------------------------------------------------


class ProgramItemModel(TrackedBase):
    """
    A line item on a program.

    Guarantees:
        - ``item_cost``/``item_charge`` are snapshots of the therapy price,
          never read through to the catalog.
        - Only items with ``active_flag`` contribute to program totals.
    """

    __tablename__ = "member_program_items"

    __table_args__ = (
        Index("idx_program_item_program", "program_id"),
        Index("idx_program_item_therapy", "therapy_id"),
    )

    program_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_programs.id"), nullable=False
    )
    therapy_id: Mapped[UUID] = mapped_column(ForeignKey("therapies.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(default=1)
    item_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    item_charge: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    days_from_start: Mapped[int] = mapped_column(default=0)
    days_between: Mapped[int] = mapped_column(default=0)
    instructions: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    active_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    program: Mapped["ProgramModel"] = relationship(
        "ProgramModel",
        back_populates="items",
    )

    tasks: Mapped[list["ProgramItemTaskModel"]] = relationship(
        "ProgramItemTaskModel",
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self):
        from program_modules.programs.models import ProgramItem

        return ProgramItem(
            id=self.id,
            program_id=self.program_id,
            therapy_id=self.therapy_id,
            quantity=self.quantity,
            item_cost=self.item_cost,
            item_charge=self.item_charge,
            days_from_start=self.days_from_start,
            days_between=self.days_between,
            instructions=self.instructions,
            active_flag=self.active_flag,
            tasks=tuple(t.to_dto() for t in self.tasks),
        )

    def __repr__(self) -> str:
        return f"<ProgramItemModel {self.id} x{self.quantity}>"


class ProgramItemTaskModel(TrackedBase):
    """A therapy task template copied onto a program item."""

    __tablename__ = "member_program_item_tasks"

    __table_args__ = (
        UniqueConstraint("item_id", "task_id", name="uq_program_item_task"),
    )

    item_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_program_items.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[UUID] = mapped_column(ForeignKey("therapy_tasks.id"), nullable=False)
    task_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    task_delay: Mapped[int] = mapped_column(default=0)
    completed_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    item: Mapped["ProgramItemModel"] = relationship(
        "ProgramItemModel",
        back_populates="tasks",
    )

    def to_dto(self):
        from program_modules.programs.models import ProgramItemTask

        return ProgramItemTask(
            id=self.id,
            item_id=self.item_id,
            task_id=self.task_id,
            task_name=self.task_name,
            description=self.description,
            task_delay=self.task_delay,
            completed_flag=self.completed_flag,
        )


# ---------------------------------------------------------------------------
# ProgramFinanceModel
# ---------------------------------------------------------------------------


class ProgramFinanceModel(TrackedBase):
    """
    Finance record for a program, created lazily by the reconciler.

    Guarantees:
        - One row per program.
        - ``finance_charges``/``discounts`` are user inputs; ``taxes``,
          ``final_total_price``, ``margin`` and ``variance`` are computed.
        - ``contracted_at_margin`` is written once, the first time the
          Active-program adjuster sees the record.
    """

    __tablename__ = "member_program_finances"

    __table_args__ = (
        UniqueConstraint("program_id", name="uq_program_finance_program"),
    )

    program_id: Mapped[UUID] = mapped_column(
        ForeignKey("member_programs.id"), nullable=False
    )
    finance_charges: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    discounts: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    taxes: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    final_total_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    margin: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    contracted_at_margin: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    program: Mapped["ProgramModel"] = relationship(
        "ProgramModel",
        back_populates="finance",
    )

    def to_dto(self):
        from program_modules.programs.models import ProgramFinance

        return ProgramFinance(
            id=self.id,
            program_id=self.program_id,
            finance_charges=self.finance_charges,
            discounts=self.discounts,
            taxes=self.taxes,
            final_total_price=self.final_total_price,
            margin=self.margin,
            contracted_at_margin=self.contracted_at_margin,
            variance=self.variance,
        )

    def __repr__(self) -> str:
        return f"<ProgramFinanceModel {self.program_id} price={self.final_total_price}>"
