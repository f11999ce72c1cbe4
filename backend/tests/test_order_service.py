# Overview: Pytest coverage for the order state machine, return bills and void bills.

"""
Order State Machine Tests

Covers:
- Totals invariant across item mutations
- DRAFT-only editing, confirm and cancel transitions
- Barcode scan-to-add with stock checks
- Return bills (quantity limits, negated amounts, cumulative returns)
- Void bills (same-day rule, manager capability, single void)
- Role and tenant visibility
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from tillcore.errors import (
    AccessDenied,
    Forbidden,
    InsufficientStock,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from tillcore.models import Order
from tillcore.services.filters import OrderFilter
from tillcore.services.order_service import ReturnLine, parse_return_lines
from tillcore.time_utils import utcnow


def _assert_totals_match_items(order):
    assert order.total_amount == sum((i.total_amount for i in order.items), Decimal("0"))
    assert order.subtotal == sum((i.subtotal for i in order.items), Decimal("0"))
    assert order.tax_amount == sum((i.tax_amount for i in order.items), Decimal("0"))
    assert order.discount_amount == sum((i.discount_amount for i in order.items), Decimal("0"))


# =============================================================================
# CREATION & NUMBERING
# =============================================================================


class TestCreateOrder:
    def test_new_order_is_empty_draft_sale(self, svc, cashier_actor, store_a):
        order = svc.orders.create_order(cashier_actor)
        assert order.status == "DRAFT"
        assert order.type == "SALE"
        assert order.store_id == store_a.id
        assert order.cashier_id == cashier_actor.user_id
        assert order.total_amount == Decimal("0")

    def test_order_numbers_count_per_store_and_day(self, svc, cashier_actor, admin_actor, store_a2):
        today = utcnow().strftime("%Y%m%d")
        first = svc.orders.create_order(cashier_actor)
        second = svc.orders.create_order(cashier_actor)
        other_store = svc.orders.create_order(admin_actor, store_id=store_a2.id)

        assert first.order_number == f"ORD-{today}-001"
        assert second.order_number == f"ORD-{today}-002"
        assert other_store.order_number == f"ORD-{today}-001"

    def test_rejects_unknown_customer_type(self, svc, cashier_actor):
        with pytest.raises(ValidationFailed):
            svc.orders.create_order(cashier_actor, customer_type="VIP")

    def test_rejects_closed_shift(self, svc, cashier_actor):
        shift = svc.shifts.open(cashier_actor, "0")
        svc.shifts.close(cashier_actor, "0")
        with pytest.raises(InvalidState):
            svc.orders.create_order(cashier_actor, shift_id=shift.id)

    def test_cannot_create_in_foreign_store(self, svc, cashier_actor, store_b):
        with pytest.raises(AccessDenied):
            svc.orders.create_order(cashier_actor, store_id=store_b.id)


# =============================================================================
# LINE ITEMS
# =============================================================================


class TestLineItems:
    def test_documented_totals_example(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        item = svc.orders.add_item(order.id, coffee.id, 3, cashier_actor, discount_amount="2")

        assert item.subtotal == Decimal("30.000")
        assert item.tax_amount == Decimal("1.500")
        assert item.total_amount == Decimal("29.500")
        order = svc.orders.get(order.id, cashier_actor)
        assert order.total_amount == Decimal("29.500")

    def test_line_snapshots_catalog_values(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        item = svc.orders.add_item(order.id, coffee.id, 1, cashier_actor)
        assert item.product_name == "Arabic Coffee"
        assert item.variant_name == "250g"
        assert item.sku == "COF-250"
        assert item.unit_price == Decimal("10.000")
        assert item.tax_rate == Decimal("5.000")

    def test_totals_follow_every_mutation(self, svc, cashier_actor, coffee, tea):
        order = svc.orders.create_order(cashier_actor)
        a = svc.orders.add_item(order.id, coffee.id, 2, cashier_actor)
        _assert_totals_match_items(svc.orders.get(order.id, cashier_actor))

        svc.orders.add_item(order.id, tea.id, 1, cashier_actor, discount_amount="0.500")
        _assert_totals_match_items(svc.orders.get(order.id, cashier_actor))

        svc.orders.update_item(order.id, a.id, cashier_actor, quantity=5)
        _assert_totals_match_items(svc.orders.get(order.id, cashier_actor))

        svc.orders.update_item(order.id, a.id, cashier_actor, discount_amount="1")
        _assert_totals_match_items(svc.orders.get(order.id, cashier_actor))

        order = svc.orders.remove_item(order.id, a.id, cashier_actor)
        _assert_totals_match_items(order)
        assert order.total_amount == Decimal("2.000")

    def test_wholesale_order_uses_wholesale_price(self, svc, cashier_actor, coffee, tea):
        order = svc.orders.create_order(cashier_actor, customer_type="WHOLESALE")
        coffee_line = svc.orders.add_item(order.id, coffee.id, 1, cashier_actor)
        tea_line = svc.orders.add_item(order.id, tea.id, 1, cashier_actor)
        assert coffee_line.unit_price == Decimal("8.000")
        # No wholesale price set: retail applies
        assert tea_line.unit_price == Decimal("2.500")

    def test_switching_customer_type_reprices_lines(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        svc.orders.add_item(order.id, coffee.id, 2, cashier_actor)

        order = svc.orders.update_meta(order.id, {"customer_type": "wholesale", "notes": "trade"}, cashier_actor)
        assert order.customer_type == "WHOLESALE"
        assert order.notes == "trade"
        assert order.items[0].unit_price == Decimal("8.000")
        assert order.subtotal == Decimal("16.000")
        _assert_totals_match_items(order)

    def test_update_meta_rejects_unknown_fields(self, svc, cashier_actor):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(ValidationFailed):
            svc.orders.update_meta(order.id, {"total_amount": "0.001"}, cashier_actor)

    def test_discount_cannot_exceed_line_amount(self, svc, cashier_actor, tea):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(ValidationFailed):
            svc.orders.add_item(order.id, tea.id, 1, cashier_actor, discount_amount="3")

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2.0", True])
    def test_rejects_bad_quantity(self, svc, cashier_actor, coffee, quantity):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(ValidationFailed):
            svc.orders.add_item(order.id, coffee.id, quantity, cashier_actor)

    def test_inactive_variant_is_not_sellable(self, svc, db_session, cashier_actor, coffee):
        coffee.is_active = False
        db_session.commit()
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(NotFound):
            svc.orders.add_item(order.id, coffee.id, 1, cashier_actor)

    def test_mutations_on_non_draft_fail(self, svc, cashier_actor, coffee, pending_order):
        order = pending_order(cashier_actor, coffee)
        item_id = order.items[0].id

        with pytest.raises(InvalidState):
            svc.orders.add_item(order.id, coffee.id, 1, cashier_actor)
        with pytest.raises(InvalidState):
            svc.orders.update_item(order.id, item_id, cashier_actor, quantity=1)
        with pytest.raises(InvalidState):
            svc.orders.remove_item(order.id, item_id, cashier_actor)
        with pytest.raises(InvalidState):
            svc.orders.update_meta(order.id, {"notes": "late edit"}, cashier_actor)


class TestBarcode:
    def test_scan_adds_then_merges(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        item, action = svc.orders.add_item_by_barcode(order.id, "6290000000011", 1, cashier_actor)
        assert action == "added"

        merged, action = svc.orders.add_item_by_barcode(order.id, "6290000000011", 2, cashier_actor)
        assert action == "updated"
        assert merged.id == item.id
        assert merged.quantity == 3

        order = svc.orders.get(order.id, cashier_actor)
        assert len(order.items) == 1
        _assert_totals_match_items(order)

    def test_scan_checks_combined_stock(self, svc, cashier_actor, tea):
        order = svc.orders.create_order(cashier_actor)
        svc.orders.add_item_by_barcode(order.id, "6290000000028", 2, cashier_actor)
        with pytest.raises(InsufficientStock):
            svc.orders.add_item_by_barcode(order.id, "6290000000028", 2, cashier_actor)

    def test_unknown_barcode(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(NotFound):
            svc.orders.add_item_by_barcode(order.id, "0000", 1, cashier_actor)


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitions:
    def test_confirm_requires_items(self, svc, cashier_actor):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(InvalidState):
            svc.orders.confirm(order.id, cashier_actor)

    def test_confirm_moves_to_pending(self, svc, cashier_actor, coffee):
        order = svc.orders.create_order(cashier_actor)
        svc.orders.add_item(order.id, coffee.id, 1, cashier_actor)
        order = svc.orders.confirm(order.id, cashier_actor)
        assert order.status == "PENDING"
        assert order.confirmed_at is not None

        with pytest.raises(InvalidState):
            svc.orders.confirm(order.id, cashier_actor)

    def test_cancel_requires_reason(self, svc, cashier_actor):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(ValidationFailed):
            svc.orders.cancel(order.id, "  ", cashier_actor)

    def test_cancel_pending_order(self, svc, cashier_actor, coffee, pending_order):
        order = pending_order(cashier_actor, coffee)
        order = svc.orders.cancel(order.id, "Customer left", cashier_actor)
        assert order.status == "CANCELLED"
        assert order.cancel_reason == "Customer left"
        assert order.cancelled_by_user_id == cashier_actor.user_id

    def test_paid_order_cannot_be_cancelled(self, svc, cashier_actor, coffee, paid_sale):
        order = paid_sale(cashier_actor, coffee)
        with pytest.raises(InvalidState):
            svc.orders.cancel(order.id, "Changed mind", cashier_actor)

    def test_partially_paid_order_cannot_be_cancelled(self, svc, cashier_actor, coffee, pending_order):
        order = pending_order(cashier_actor, coffee)
        svc.shifts.open(cashier_actor, "0")
        svc.payments.create_payment(order.id, "CASH", "5", cashier_actor)
        with pytest.raises(InvalidState):
            svc.orders.cancel(order.id, "Changed mind", cashier_actor)


# =============================================================================
# RETURNS
# =============================================================================


class TestReturnBill:
    def test_return_more_than_sold_fails(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=3)
        line = ReturnLine(original_item_id=sale.items[0].id, quantity=4)
        with pytest.raises(ValidationFailed):
            svc.orders.create_return_bill(sale.id, "Damaged", [line], cashier_actor)

    def test_return_lines_negate_the_original(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=3)
        original = sale.items[0]

        ret = svc.orders.create_return_bill(
            sale.id, "Damaged", [ReturnLine(original.id, 2)], cashier_actor
        )
        assert ret.type == "RETURN"
        assert ret.status == "DRAFT"
        assert ret.parent_order_id == sale.id
        assert ret.reason == "Damaged"

        line = ret.items[0]
        assert line.original_item_id == original.id
        assert line.quantity == -2
        assert line.subtotal == Decimal("-20.000")
        assert line.tax_amount == Decimal("-1.000")
        assert line.total_amount == Decimal("-21.000")
        assert ret.total_amount == Decimal("-21.000")

    def test_returns_are_cumulative(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=3)
        item_id = sale.items[0].id
        svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(item_id, 2)], cashier_actor)
        with pytest.raises(ValidationFailed):
            svc.orders.create_return_bill(sale.id, "Damaged again", [ReturnLine(item_id, 2)], cashier_actor)

    def test_cancelled_return_frees_quantity(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=3)
        item_id = sale.items[0].id
        first = svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(item_id, 3)], cashier_actor)
        svc.orders.cancel(first.id, "Raised by mistake", cashier_actor)
        again = svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(item_id, 3)], cashier_actor)
        assert again.items[0].quantity == -3

    def test_only_paid_sales_can_be_returned(self, svc, cashier_actor, coffee, pending_order):
        order = pending_order(cashier_actor, coffee)
        with pytest.raises(InvalidState):
            svc.orders.create_return_bill(order.id, "Damaged", [ReturnLine(order.items[0].id, 1)], cashier_actor)

    def test_return_requires_reason(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        with pytest.raises(ValidationFailed):
            svc.orders.create_return_bill(sale.id, "", [ReturnLine(sale.items[0].id, 1)], cashier_actor)

    def test_unknown_original_line(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        with pytest.raises(NotFound):
            svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(999999, 1)], cashier_actor)

    def test_other_cashier_in_store_can_take_return(self, svc, cashier_actor, cashier2_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        ret = svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(sale.items[0].id, 1)], cashier2_actor)
        assert ret.cashier_id == cashier2_actor.user_id

    def test_parent_is_untouched(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=3)
        before = sale.to_dict()
        svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(sale.items[0].id, 1)], cashier_actor)
        after = svc.orders.get(sale.id, cashier_actor).to_dict()
        assert after["status"] == before["status"] == "PAID"
        assert after["total_amount"] == before["total_amount"]
        assert after["items"] == before["items"]


class TestParseReturnLines:
    def test_parses_list(self):
        lines = parse_return_lines([{"original_item_id": 4, "quantity": 2}])
        assert lines == [ReturnLine(4, 2)]

    @pytest.mark.parametrize("raw", [
        None,
        [],
        ["x"],
        [{"original_item_id": "4", "quantity": 1}],
        [{"original_item_id": 4, "quantity": 0}],
        [{"original_item_id": 4, "quantity": 1}, {"original_item_id": 4, "quantity": 1}],
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationFailed):
            parse_return_lines(raw)


# =============================================================================
# VOIDS
# =============================================================================


class TestVoid:
    def test_manager_voids_todays_sale(self, svc, cashier_actor, manager_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee, quantity=2)
        void = svc.orders.void_order(sale.id, "Wrong customer", manager_actor)

        assert void.type == "VOID"
        assert void.parent_order_id == sale.id
        assert [i.quantity for i in void.items] == [-i.quantity for i in sale.items]
        assert void.total_amount == -sale.total_amount

    def test_cashier_cannot_void(self, svc, cashier_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        with pytest.raises(Forbidden):
            svc.orders.void_order(sale.id, "Wrong customer", cashier_actor)

    def test_prior_day_sale_cannot_be_voided(self, svc, db_session, cashier_actor, admin_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        order = db_session.get(Order, sale.id)
        order.created_at = utcnow() - timedelta(days=2)
        db_session.commit()

        with pytest.raises(InvalidState):
            svc.orders.void_order(sale.id, "Too late", admin_actor)

    def test_same_day_uses_store_timezone(self, svc, db_session, store_a, cashier_actor, manager_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        # 26 hours ago is never "today", whatever the zone
        order = db_session.get(Order, sale.id)
        order.created_at = utcnow() - timedelta(hours=26)
        store_a.timezone = "Asia/Bahrain"
        db_session.commit()

        with pytest.raises(InvalidState):
            svc.orders.void_order(sale.id, "Too late", manager_actor)

    def test_second_void_is_rejected(self, svc, cashier_actor, manager_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        svc.orders.void_order(sale.id, "Wrong customer", manager_actor)
        with pytest.raises(InvalidState):
            svc.orders.void_order(sale.id, "Again", manager_actor)

    def test_void_after_return_is_rejected(self, svc, cashier_actor, manager_actor, coffee, paid_sale):
        sale = paid_sale(cashier_actor, coffee)
        svc.orders.create_return_bill(sale.id, "Damaged", [ReturnLine(sale.items[0].id, 1)], cashier_actor)
        with pytest.raises(InvalidState):
            svc.orders.void_order(sale.id, "Wrong customer", manager_actor)


# =============================================================================
# VISIBILITY
# =============================================================================


class TestVisibility:
    def test_other_tenant_cannot_read(self, svc, cashier_actor, cashier_b_actor):
        order = svc.orders.create_order(cashier_actor)
        with pytest.raises(AccessDenied):
            svc.orders.get(order.id, cashier_b_actor)

    def test_cashier_sees_only_own_orders(self, svc, cashier_actor, cashier2_actor, manager_actor):
        mine = svc.orders.create_order(cashier_actor)
        svc.orders.create_order(cashier2_actor)

        with pytest.raises(AccessDenied):
            svc.orders.get(mine.id, cashier2_actor)
        assert svc.orders.get(mine.id, manager_actor).id == mine.id

        page = svc.orders.list(OrderFilter(), cashier_actor)
        assert page.total == 1
        assert page.items[0].id == mine.id

        assert svc.orders.list(OrderFilter(), manager_actor).total == 2

    def test_list_filters_by_status(self, svc, cashier_actor, coffee, pending_order):
        pending_order(cashier_actor, coffee)
        svc.orders.create_order(cashier_actor)

        page = svc.orders.list(OrderFilter(status="PENDING"), cashier_actor)
        assert page.total == 1
        assert page.items[0].status == "PENDING"

    def test_missing_order(self, svc, cashier_actor):
        with pytest.raises(NotFound):
            svc.orders.get(424242, cashier_actor)
