# Overview: Pytest coverage for line and order total arithmetic.

from decimal import Decimal
from types import SimpleNamespace

from tillcore.money import (
    ZERO,
    line_item_totals,
    money_str,
    order_totals,
    round_gateway_amount,
    to_money,
)


class TestLineTotals:
    def test_documented_example(self):
        """unit 10 x 3 at 5% tax with 2 off -> 30 / 1.5 / 29.5."""
        totals = line_item_totals(Decimal("10"), 3, Decimal("5"), Decimal("2"))
        assert totals.subtotal == Decimal("30.000")
        assert totals.tax_amount == Decimal("1.500")
        assert totals.total_amount == Decimal("29.500")

    def test_negative_quantity_negates_every_amount(self):
        sale = line_item_totals("2.750", 2, "10")
        reversal = line_item_totals("2.750", -2, "10")
        assert reversal.subtotal == -sale.subtotal
        assert reversal.tax_amount == -sale.tax_amount
        assert reversal.total_amount == -sale.total_amount

    def test_tax_rounds_half_up_to_three_places(self):
        # 0.335 * 10% = 0.0335 -> 0.034
        totals = line_item_totals("0.335", 1, "10")
        assert totals.tax_amount == Decimal("0.034")
        assert totals.total_amount == Decimal("0.369")

    def test_missing_tax_rate_counts_as_zero(self):
        totals = line_item_totals("4.000", 2, None)
        assert totals.tax_amount == ZERO
        assert totals.total_amount == Decimal("8.000")


class TestOrderTotals:
    def test_sums_stored_line_amounts(self):
        items = [
            SimpleNamespace(subtotal="30.000", tax_amount="1.500", discount_amount="2.000", total_amount="29.500"),
            SimpleNamespace(subtotal="5.000", tax_amount="0", discount_amount="0", total_amount="5.000"),
        ]
        totals = order_totals(items)
        assert totals.subtotal == Decimal("35.000")
        assert totals.tax_amount == Decimal("1.500")
        assert totals.discount_amount == Decimal("2.000")
        assert totals.total_amount == Decimal("34.500")

    def test_empty_order_is_zero(self):
        totals = order_totals([])
        assert totals.total_amount == ZERO
        assert totals.subtotal == ZERO


class TestConversions:
    def test_to_money_normalizes_scale(self):
        assert to_money(3) == Decimal("3.000")
        assert to_money("1.2345") == Decimal("1.235")
        assert to_money(None) == ZERO

    def test_money_str(self):
        assert money_str(Decimal("29.5")) == "29.500"
        assert money_str(None) is None

    def test_gateway_amount_is_plain_number(self):
        assert round_gateway_amount(Decimal("12.3456")) == 12.346
        assert isinstance(round_gateway_amount("1"), float)
