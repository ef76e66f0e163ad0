"""
Module: program_engines
Responsibility:
    Package entrypoint that re-exports the pure financial calculation
    functions used by the program reconciler, the Active-program collaborators
    and the preview path.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import program_kernel (types, logging).
    MUST NOT import program_modules or program_ingestion.

Invariants enforced:
    - Decimal-only arithmetic: all monetary amounts use ``Decimal``.
    - Totality: every function returns a value for any finite input,
      including zero and negative degenerate inputs.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from program_engines import calculate_program_financials
    fin = calculate_program_financials(
        total_cost=Decimal("0"),
        total_charge=Decimal("200"),
        finance_charges=Decimal("0"),
        discounts=Decimal("0"),
        total_taxable_charge=Decimal("100"),
    )
    fin.program_price  # Decimal("208.25")
"""

from program_engines.financials import (
    DEFAULT_TAX_RATE,
    LineTotals,
    PricedLine,
    ProgramFinancials,
    TemplateTotals,
    calculate_line_totals,
    calculate_program_financials,
    calculate_projected_margin,
    calculate_projected_price,
    calculate_taxes_on_taxable_items,
    calculate_template_totals,
    calculate_variance,
)

__all__ = [
    "DEFAULT_TAX_RATE",
    "LineTotals",
    "PricedLine",
    "ProgramFinancials",
    "TemplateTotals",
    "calculate_line_totals",
    "calculate_program_financials",
    "calculate_projected_margin",
    "calculate_projected_price",
    "calculate_taxes_on_taxable_items",
    "calculate_template_totals",
    "calculate_variance",
]
