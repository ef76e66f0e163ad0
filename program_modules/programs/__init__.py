"""
Member programs: line items, the finance reconciler and the item mutation
entry points.

Public surface:
    ProgramItemService       -- transactional create/update/delete/preview
    ProgramItemHandlers      -- request boundary returning ItemMutationResult
    ProgramFinanceReconciler -- recompute totals, taxes, price and margin
"""

from program_modules.programs.collaborators import (
    ActiveFinanceAdjuster,
    BoundsValidator,
    FinancialsProjector,
    LockedPriceBoundsValidator,
    LockedPriceFinanceAdjuster,
    TherapyCatalog,
)
from program_modules.programs.handlers import (
    ItemMutationResult,
    MutationError,
    ProgramItemHandlers,
)
from program_modules.programs.models import (
    CreateItemRequest,
    ItemChange,
    ItemOperation,
    ProgramItem,
    ProgramStatus,
    ProgramTotals,
    ProjectedFinancials,
    ReconciliationResult,
    UpdateItemRequest,
    is_active_status,
)
from program_modules.programs.reconciler import ProgramFinanceReconciler
from program_modules.programs.service import ProgramItemService

__all__ = [
    "ActiveFinanceAdjuster",
    "BoundsValidator",
    "CreateItemRequest",
    "FinancialsProjector",
    "ItemChange",
    "ItemMutationResult",
    "ItemOperation",
    "LockedPriceBoundsValidator",
    "LockedPriceFinanceAdjuster",
    "MutationError",
    "ProgramFinanceReconciler",
    "ProgramItem",
    "ProgramItemHandlers",
    "ProgramItemService",
    "ProgramStatus",
    "ProgramTotals",
    "ProjectedFinancials",
    "ReconciliationResult",
    "TherapyCatalog",
    "UpdateItemRequest",
    "is_active_status",
]
