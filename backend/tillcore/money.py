# Overview: Pure money arithmetic for order lines and order totals.

"""
Money/Totals Calculator

All amounts are ``Decimal`` at three decimal places (BHD-style fils), rounded
half-up. Quantities are integers and may be negative on reversal lines, in
which case every derived amount carries the same sign.

Nothing in this module touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

MONEY_QUANT = Decimal("0.001")
ZERO = Decimal("0.000")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Normalize int/str/Decimal to a 3dp Decimal. None counts as zero."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def money_str(value) -> str | None:
    """Serialize an amount for JSON (string keeps every fils)."""
    if value is None:
        return None
    return str(to_money(value))


def round_gateway_amount(value) -> float:
    """Gateway wants a plain JSON number rounded to the nearest 0.001."""
    return float(to_money(value))


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


def line_item_totals(unit_price, quantity: int, tax_rate, discount_amount=ZERO) -> LineTotals:
    """
    subtotal = unit_price x quantity
    tax      = subtotal x tax_rate / 100
    total    = subtotal + tax - discount
    """
    subtotal = to_money(to_money(unit_price) * quantity)
    tax_amount = to_money(subtotal * Decimal(str(tax_rate or 0)) / HUNDRED)
    total_amount = to_money(subtotal + tax_amount - to_money(discount_amount))
    return LineTotals(subtotal=subtotal, tax_amount=tax_amount, total_amount=total_amount)


def order_totals(items: Iterable) -> OrderTotals:
    """Sum the stored per-line amounts of every current item."""
    subtotal = tax_amount = discount_amount = total_amount = ZERO
    for item in items:
        subtotal += to_money(item.subtotal)
        tax_amount += to_money(item.tax_amount)
        discount_amount += to_money(item.discount_amount)
        total_amount += to_money(item.total_amount)
    return OrderTotals(
        subtotal=to_money(subtotal),
        tax_amount=to_money(tax_amount),
        discount_amount=to_money(discount_amount),
        total_amount=to_money(total_amount),
    )
