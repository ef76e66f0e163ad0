"""
Module: program_kernel.db.types
Responsibility: Decimal coercion and the rounding helpers used for money
    and margin values.  Column precision comes from the type_annotation_map
    on Base; this module fixes the rounding every engine and service uses.
Architecture position: Kernel > DB.  May be imported by every layer.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for financial
      values.  round_fraction() is its counterpart for margin fractions.
    - No floats: to_decimal() converts through str() so float noise never
      enters a calculation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

MONEY_DECIMAL_PLACES = 2
FRACTION_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a stored or supplied numeric value to Decimal.

    None, empty strings and unparseable values become Decimal("0"), matching
    how missing finance columns are treated as zero.  Floats go through str()
    so binary noise is not carried into the result.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        return Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return ZERO


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places (cents by default).

    This is the ONLY sanctioned rounding function for currency values.
    """
    quantize_str = "1." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_fraction(value: Decimal) -> Decimal:
    """Round a margin fraction (0.2534 == 25.34%) to four places."""
    return round_money(value, FRACTION_DECIMAL_PLACES)
