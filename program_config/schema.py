"""
Settings schema.

Frozen dataclasses for every tunable of the reconciliation engine and the
progress importer.  YAML documents are parsed into these types by the loader;
services receive them by constructor injection and never read files or
environment variables themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class FinanceSettings:
    """Tax and margin rules for program financials."""

    tax_rate: Decimal = Decimal("0.0825")
    # Non-Active programs: reject when margin <= margin_floor with negative finance charges
    margin_floor: Decimal = Decimal("0")
    # Active programs: margin on the contracted (locked) price must stay >= this
    active_margin_floor: Decimal = Decimal("0")


@dataclass(frozen=True)
class RequestSettings:
    """Request-scoped limits applied at the mutation boundary."""

    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ImportSettings:
    """Progress spreadsheet import layout and batching."""

    batch_size: int = 100
    header_row: int = 5  # 1-based sheet row holding column labels
    max_logged_errors: int = 500
    processed_suffix: str = ".old"

    @property
    def first_data_row(self) -> int:
        return self.header_row + 1


@dataclass(frozen=True)
class AppSettings:
    """All settings for one deployment."""

    finance: FinanceSettings = field(default_factory=FinanceSettings)
    request: RequestSettings = field(default_factory=RequestSettings)
    imports: ImportSettings = field(default_factory=ImportSettings)
