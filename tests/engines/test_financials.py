"""
Tests for the pure program financial calculations.

No database. Figures are checked to the cent and margins to four places.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from program_engines.financials import (
    PricedLine,
    calculate_line_totals,
    calculate_program_financials,
    calculate_projected_margin,
    calculate_projected_price,
    calculate_taxes_on_taxable_items,
    calculate_template_totals,
    calculate_variance,
)


class TestTaxes:
    def test_tax_on_taxable_share_only(self):
        taxes = calculate_taxes_on_taxable_items(Decimal("200"), Decimal("100"))
        assert taxes == Decimal("8.25")

    def test_discount_is_apportioned_to_taxable_share(self):
        # Half the charge is taxable, so half the 40 discount reduces the tax base.
        taxes = calculate_taxes_on_taxable_items(
            Decimal("200"), Decimal("100"), Decimal("40")
        )
        assert taxes == Decimal("6.60")

    def test_negative_discount_counts_as_magnitude(self):
        positive = calculate_taxes_on_taxable_items(
            Decimal("200"), Decimal("100"), Decimal("40")
        )
        negative = calculate_taxes_on_taxable_items(
            Decimal("200"), Decimal("100"), Decimal("-40")
        )
        assert positive == negative

    def test_discount_larger_than_taxable_base_floors_at_zero(self):
        taxes = calculate_taxes_on_taxable_items(
            Decimal("100"), Decimal("100"), Decimal("500")
        )
        assert taxes == Decimal("0.00")

    @pytest.mark.parametrize(
        "charge,taxable",
        [("0", "100"), ("-10", "5"), ("100", "0"), (None, None)],
    )
    def test_zero_guards(self, charge, taxable):
        taxes = calculate_taxes_on_taxable_items(
            None if charge is None else Decimal(charge),
            None if taxable is None else Decimal(taxable),
        )
        assert taxes == Decimal("0.00")

    def test_custom_rate(self):
        taxes = calculate_taxes_on_taxable_items(
            Decimal("100"), Decimal("100"), tax_rate=Decimal("0.10")
        )
        assert taxes == Decimal("10.00")


class TestPriceAndMargin:
    def test_price_adds_positive_finance_charges(self):
        price = calculate_projected_price(
            Decimal("200"), Decimal("8.25"), Decimal("50"), Decimal("0")
        )
        assert price == Decimal("258.25")

    def test_negative_finance_charges_never_lower_price(self):
        price = calculate_projected_price(
            Decimal("200"), Decimal("8.25"), Decimal("-50"), Decimal("0")
        )
        assert price == Decimal("208.25")

    def test_price_subtracts_discount_magnitude(self):
        price = calculate_projected_price(
            Decimal("200"), Decimal("0"), None, Decimal("-25")
        )
        assert price == Decimal("175.00")

    def test_taxes_count_as_cost_against_full_price(self):
        # (208.25 - (100 + 8.25)) / 208.25
        margin = calculate_projected_margin(
            Decimal("208.25"), Decimal("100"), Decimal("0"), Decimal("8.25")
        )
        assert margin == Decimal("0.4802")

    def test_negative_finance_charges_raise_effective_cost(self):
        margin = calculate_projected_margin(
            Decimal("200"), Decimal("100"), Decimal("-50"), Decimal("0")
        )
        assert margin == Decimal("0.2500")

    def test_margin_zero_without_positive_price(self):
        assert calculate_projected_margin(Decimal("0"), Decimal("5")) == Decimal("0.0000")
        assert calculate_projected_margin(
            Decimal("-10"), Decimal("5"), None, Decimal("1")
        ) == Decimal("0.0000")
        assert calculate_projected_margin(None, Decimal("5")) == Decimal("0.0000")

    def test_margin_rounds_to_four_places(self):
        margin = calculate_projected_margin(Decimal("3"), Decimal("1"))
        assert margin == Decimal("0.6667")

    def test_variance_sign(self):
        assert calculate_variance(Decimal("110"), Decimal("100")) == Decimal("10.00")
        assert calculate_variance(Decimal("90"), Decimal("100.005")) == Decimal("-10.01")
        assert calculate_variance(None, None) == Decimal("0.00")


class TestProgramFinancials:
    def test_mixed_taxable_program(self):
        """Cost 100, charge 200, taxable 100, no adjustments."""
        result = calculate_program_financials(
            total_cost=Decimal("100"),
            total_charge=Decimal("200"),
            finance_charges=Decimal("0"),
            discounts=Decimal("0"),
            total_taxable_charge=Decimal("100"),
        )
        assert result.taxes == Decimal("8.25")
        assert result.program_price == Decimal("208.25")
        assert result.margin == Decimal("0.4802")
        assert result.total_cost == Decimal("100.00")
        assert result.total_charge == Decimal("200.00")

    def test_discount_and_finance_charge_together(self):
        result = calculate_program_financials(
            total_cost=Decimal("60"),
            total_charge=Decimal("200"),
            finance_charges=Decimal("20"),
            discounts=Decimal("40"),
            total_taxable_charge=Decimal("200"),
        )
        # Tax base 200 - 40 = 160
        assert result.taxes == Decimal("13.20")
        assert result.program_price == Decimal("193.20")
        # (193.20 - (60 + 13.20)) / 193.20
        assert result.margin == Decimal("0.6211")

    def test_fully_taxable_program(self):
        result = calculate_program_financials(
            total_cost=Decimal("50"),
            total_charge=Decimal("100"),
            finance_charges=Decimal("0"),
            discounts=Decimal("0"),
            total_taxable_charge=Decimal("100"),
        )
        assert result.program_price == Decimal("108.25")
        assert result.taxes == Decimal("8.25")
        assert result.margin == Decimal("0.4619")

    def test_taxes_alone_can_push_margin_negative(self):
        # Charge equals cost, so the tax is the whole loss.
        result = calculate_program_financials(
            Decimal("100"), Decimal("100"), Decimal("0"), Decimal("0"), Decimal("100")
        )
        assert result.margin == Decimal("-0.0762")

    def test_empty_program_is_all_zero(self):
        result = calculate_program_financials(None, None, None, None, None)
        assert result.program_price == Decimal("0.00")
        assert result.margin == Decimal("0.0000")
        assert result.taxes == Decimal("0.00")

    def test_logs_calculation(self, captured_logs):
        calculate_program_financials(
            Decimal("1"), Decimal("2"), Decimal("0"), Decimal("0"), Decimal("0")
        )
        records = [r for r in captured_logs() if r["message"] == "program_financials_calculated"]
        assert records
        assert records[-1]["program_price"] == "2.00"


_money = st.decimals(
    min_value=Decimal("-100000"),
    max_value=Decimal("100000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestFinancialsProperties:
    @given(cost=_money, charge=_money, fc=_money, disc=_money, taxable=_money)
    @settings(max_examples=200, deadline=None)
    def test_total_for_finite_inputs(self, cost, charge, fc, disc, taxable):
        result = calculate_program_financials(cost, charge, fc, disc, taxable)
        assert result.taxes >= 0
        assert result.program_price.as_tuple().exponent == -2
        assert result.margin.as_tuple().exponent == -4

    @given(charge=_money, taxable=_money, disc=_money)
    @settings(max_examples=200, deadline=None)
    def test_taxes_never_exceed_rate_times_taxable(self, charge, taxable, disc):
        taxes = calculate_taxes_on_taxable_items(charge, taxable, disc)
        assert taxes <= max(Decimal("0"), taxable) * Decimal("0.0825") + Decimal("0.01")


class TestLineTotals:
    def test_quantity_multiplies_and_taxable_split(self):
        totals = calculate_line_totals(
            [
                PricedLine(Decimal("40"), Decimal("100"), Decimal("2"), taxable=True),
                PricedLine(Decimal("30"), Decimal("50"), Decimal("1")),
            ]
        )
        assert totals.total_cost == Decimal("110.00")
        assert totals.total_charge == Decimal("250.00")
        assert totals.total_taxable_charge == Decimal("200.00")
        assert totals.line_count == 2

    def test_empty(self):
        totals = calculate_line_totals([])
        assert totals.total_cost == Decimal("0.00")
        assert totals.line_count == 0

    def test_template_margin(self):
        totals = calculate_template_totals(
            [PricedLine(Decimal("25"), Decimal("100"), Decimal("4"))]
        )
        assert totals.total_cost == Decimal("100.00")
        assert totals.total_charge == Decimal("400.00")
        assert totals.margin == Decimal("0.7500")

    def test_template_margin_zero_without_charge(self):
        totals = calculate_template_totals(
            [PricedLine(Decimal("25"), Decimal("0"), Decimal("1"))]
        )
        assert totals.margin == Decimal("0.0000")
