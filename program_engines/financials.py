"""
Program Financial Calculations -- Pure Functions.

All functions are pure: no I/O, no side effects, no database.
They compute tax, projected price, margin and variance for a member program
from aggregate item totals and the program's finance adjustments.

Conventions:
    - ``None`` inputs are treated as zero.
    - Margins are fractions (0.25 == 25%), rounded to four places.
    - Currency results are rounded to cents (ROUND_HALF_UP).
    - Discounts may be stored as a positive magnitude or a negative
      adjustment; ``abs(discounts)`` is always the amount taken off.
    - A negative finance charge is a financing fee absorbed by the business.
      It never lowers the price; it raises the effective cost instead.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from program_kernel.db.types import ZERO, round_fraction, round_money, to_decimal
from program_kernel.logging_config import get_logger

logger = get_logger("engines.financials")

DEFAULT_TAX_RATE = Decimal("0.0825")


@dataclass(frozen=True)
class ProgramFinancials:
    """Computed price, margin and taxes for one program."""

    program_price: Decimal
    margin: Decimal
    taxes: Decimal
    total_cost: Decimal
    total_charge: Decimal


@dataclass(frozen=True)
class PricedLine:
    """One priced line: unit cost and charge times quantity."""

    unit_cost: Decimal
    unit_charge: Decimal
    quantity: Decimal
    taxable: bool = False


@dataclass(frozen=True)
class LineTotals:
    """Aggregates over a set of priced lines."""

    total_cost: Decimal
    total_charge: Decimal
    total_taxable_charge: Decimal
    line_count: int


@dataclass(frozen=True)
class TemplateTotals:
    """Totals and simple margin for a program template's item set."""

    total_cost: Decimal
    total_charge: Decimal
    margin: Decimal


def calculate_taxes_on_taxable_items(
    total_charge: Decimal | None,
    total_taxable_charge: Decimal | None,
    discounts: Decimal | None = None,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
) -> Decimal:
    """
    Tax on the taxable share of the charge, net of its share of the discount.

    The discount is apportioned by taxable_charge / total_charge so that a
    discount on a mixed program only reduces the tax base proportionally.
    """
    charge = to_decimal(total_charge)
    taxable = to_decimal(total_taxable_charge)
    if charge <= 0 or taxable <= 0:
        return round_money(ZERO)
    taxable_discount = abs(to_decimal(discounts)) * taxable / charge
    base = max(ZERO, taxable - taxable_discount)
    return round_money(base * to_decimal(tax_rate))


def calculate_projected_price(
    total_charge: Decimal | None,
    taxes: Decimal | None,
    finance_charges: Decimal | None = None,
    discounts: Decimal | None = None,
) -> Decimal:
    """Price = charge + positive finance charges - |discounts| + taxes."""
    fc = to_decimal(finance_charges)
    price = (
        to_decimal(total_charge)
        + max(ZERO, fc)
        - abs(to_decimal(discounts))
        + to_decimal(taxes)
    )
    return round_money(price)


def calculate_projected_margin(
    price: Decimal | None,
    total_cost: Decimal | None,
    finance_charges: Decimal | None = None,
    taxes: Decimal | None = None,
) -> Decimal:
    """
    Margin on the full program price.

    Taxes are passed through to the state, so they count as cost while the
    denominator stays the price the member pays. A negative finance charge is
    a financing fee and is added to cost. Returns 0 when the price is not
    positive.
    """
    program_price = to_decimal(price)
    if program_price <= 0:
        return round_fraction(ZERO)
    costs = (
        to_decimal(total_cost)
        + max(ZERO, -to_decimal(finance_charges))
        + to_decimal(taxes)
    )
    return round_fraction((program_price - costs) / program_price)


def calculate_variance(
    projected_price: Decimal | None,
    locked_price: Decimal | None,
) -> Decimal:
    """Variance = projected price - locked (contracted) price. >0 = over contract."""
    return round_money(to_decimal(projected_price) - to_decimal(locked_price))


def calculate_program_financials(
    total_cost: Decimal | None,
    total_charge: Decimal | None,
    finance_charges: Decimal | None,
    discounts: Decimal | None,
    total_taxable_charge: Decimal | None,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
) -> ProgramFinancials:
    """
    Compute price, margin and taxes together.

    Never raises for finite inputs; all fields are always populated.
    """
    cost = to_decimal(total_cost)
    charge = to_decimal(total_charge)
    taxes = calculate_taxes_on_taxable_items(
        charge, total_taxable_charge, discounts, tax_rate
    )
    price = calculate_projected_price(charge, taxes, finance_charges, discounts)
    margin = calculate_projected_margin(price, cost, finance_charges, taxes)

    logger.debug(
        "program_financials_calculated",
        extra={
            "total_cost": str(cost),
            "total_charge": str(charge),
            "program_price": str(price),
            "margin": str(margin),
            "taxes": str(taxes),
        },
    )

    return ProgramFinancials(
        program_price=price,
        margin=margin,
        taxes=taxes,
        total_cost=round_money(cost),
        total_charge=round_money(charge),
    )


def calculate_line_totals(lines: Iterable[PricedLine]) -> LineTotals:
    """Sum cost, charge and taxable charge over priced lines."""
    total_cost = ZERO
    total_charge = ZERO
    total_taxable = ZERO
    count = 0
    for line in lines:
        qty = to_decimal(line.quantity)
        line_charge = to_decimal(line.unit_charge) * qty
        total_cost += to_decimal(line.unit_cost) * qty
        total_charge += line_charge
        if line.taxable:
            total_taxable += line_charge
        count += 1
    return LineTotals(
        total_cost=round_money(total_cost),
        total_charge=round_money(total_charge),
        total_taxable_charge=round_money(total_taxable),
        line_count=count,
    )


def calculate_template_totals(lines: Iterable[PricedLine]) -> TemplateTotals:
    """Totals for a template item set, with margin = (charge - cost) / charge."""
    totals = calculate_line_totals(lines)
    if totals.total_charge <= 0:
        margin = round_fraction(ZERO)
    else:
        margin = round_fraction(
            (totals.total_charge - totals.total_cost) / totals.total_charge
        )
    return TemplateTotals(
        total_cost=totals.total_cost,
        total_charge=totals.total_charge,
        margin=margin,
    )
