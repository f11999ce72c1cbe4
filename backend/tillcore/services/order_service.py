# Overview: Service-layer operations for orders; draft editing, confirmation, cancellation, return and void bills.

"""
Order State Machine

LIFECYCLE:
- DRAFT: lines may be added, changed and removed; header fields editable
- PENDING: confirmed (needs at least one line), accepting payments
- PAID: set by the payment engine once payments cover |total_amount|
- CANCELLED: terminal, reachable from DRAFT and PENDING only

REVERSALS:
- RETURN: partial reversal of a PAID SALE, one negated line per returned item
- VOID: full reversal of a PAID SALE made today (store-local calendar day),
  manager capability required
Both are new DRAFT orders linked via parent_order_id; the parent is never
touched. They are confirmed and paid out through the normal flow.

INVARIANT: order totals equal the sum of the current lines. Every line
mutation recomputes and stores them in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import InsufficientStock, InvalidState, NotFound, ValidationFailed
from ..models import Customer, CashShift, Order, OrderItem, Product, ProductVariant, Store
from ..models.orders import (
    CUSTOMER_TYPE_RETAIL,
    CUSTOMER_TYPES,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DRAFT,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING,
    ORDER_TYPE_RETURN,
    ORDER_TYPE_SALE,
    ORDER_TYPE_VOID,
    REVERSAL_ORDER_TYPES,
)
from ..models.payments import PAYMENT_STATUS_SUCCESS
from ..models.shifts import SHIFT_STATUS_OPEN
from ..money import ZERO, line_item_totals, order_totals, to_money
from ..permissions import CREATE_ORDER, CREATE_RETURN, VOID_ORDER, Actor
from ..time_utils import local_date, local_today, utcnow
from ..validation import (
    ModelValidationPolicy,
    parse_choice,
    parse_money,
    parse_quantity,
    require_text,
    validate_payload,
)
from .access import ensure_visible, require_capability, scope_query
from .concurrency import lock_for_update, run_with_retry
from .filters import OrderFilter, Page, paginate
from .inventory_service import InventoryService
from .sequence_service import next_order_number

logger = logging.getLogger(__name__)


ORDER_META_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"customer_id", "customer_type", "customer_name", "customer_phone", "notes"}),
)


@dataclass(frozen=True)
class ReturnLine:
    original_item_id: int
    quantity: int


def parse_return_lines(raw) -> list[ReturnLine]:
    """``[{"original_item_id": 1, "quantity": 2}, ...]`` -> ReturnLine list."""
    if not isinstance(raw, list) or not raw:
        raise ValidationFailed("items must be a non-empty list", details={"items": "must be a non-empty list"})
    lines = []
    seen = set()
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationFailed(f"items[{idx}] must be an object", details={f"items[{idx}]": "must be an object"})
        item_id = entry.get("original_item_id")
        if isinstance(item_id, bool) or not isinstance(item_id, int):
            raise ValidationFailed(
                f"items[{idx}].original_item_id must be an integer",
                details={f"items[{idx}].original_item_id": "must be an integer"},
            )
        if item_id in seen:
            raise ValidationFailed(
                f"items[{idx}].original_item_id is duplicated",
                details={f"items[{idx}].original_item_id": "is duplicated"},
            )
        seen.add(item_id)
        lines.append(ReturnLine(item_id, parse_quantity(entry.get("quantity"), f"items[{idx}].quantity")))
    return lines


class OrderService:
    def __init__(self, session, inventory: InventoryService | None = None):
        self.session = session
        self.inventory = inventory or InventoryService(session)

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_order(
        self,
        actor: Actor,
        *,
        customer_type: str = CUSTOMER_TYPE_RETAIL,
        customer_id: int | None = None,
        customer_name: str | None = None,
        customer_phone: str | None = None,
        notes: str | None = None,
        shift_id: int | None = None,
        store_id: int | None = None,
    ) -> Order:
        """
        Create an empty DRAFT SALE in the actor's store.

        The optional shift must be an OPEN shift in that store; the optional
        customer must belong to the same company and fills in name/phone
        when they are not given.
        """
        require_capability(actor, CREATE_ORDER)
        customer_type = parse_choice(customer_type or CUSTOMER_TYPE_RETAIL, "customer_type", CUSTOMER_TYPES)
        target_store_id = store_id or actor.store_id
        if not target_store_id:
            raise ValidationFailed("store_id is required", details={"store_id": "is required"})

        def _op() -> Order:
            store = self.session.get(Store, target_store_id)
            if not store:
                raise NotFound("Store not found")
            ensure_visible(actor, company_id=store.company_id, store_id=store.id, label="Store")

            if shift_id is not None:
                shift = self.session.get(CashShift, shift_id)
                if not shift or shift.store_id != store.id:
                    raise NotFound("Shift not found in this store")
                if shift.status != SHIFT_STATUS_OPEN:
                    raise InvalidState("Shift is not open")

            name, phone = customer_name, customer_phone
            if customer_id is not None:
                customer = self._customer_for(customer_id, store.company_id)
                name = name or customer.name
                phone = phone or customer.phone

            now = utcnow()
            order = Order(
                company_id=store.company_id,
                store_id=store.id,
                cashier_id=actor.user_id,
                shift_id=shift_id,
                customer_id=customer_id,
                customer_type=customer_type,
                customer_name=name,
                customer_phone=phone,
                notes=notes,
                order_number=next_order_number(self.session, store_id=store.id, business_date=now.date()),
                type=ORDER_TYPE_SALE,
                status=ORDER_STATUS_DRAFT,
                subtotal=ZERO,
                tax_amount=ZERO,
                discount_amount=ZERO,
                total_amount=ZERO,
                created_at=now,
            )
            self.session.add(order)
            self.session.flush()
            return order

        return run_with_retry(self.session, _op)

    # =========================================================================
    # LINE MUTATION (DRAFT only)
    # =========================================================================

    def add_item(self, order_id: int, variant_id: int, quantity, actor: Actor, discount_amount=ZERO) -> OrderItem:
        """Add a line priced by the order's customer type."""
        qty = parse_quantity(quantity)
        discount = to_money(parse_money(discount_amount, "discount_amount"))

        def _op() -> OrderItem:
            order = self._load_for_edit(order_id, actor)
            variant = self._sellable_variant(self.session.get(ProductVariant, variant_id), order)
            item = self._append_line(order, variant, qty, discount)
            self._recompute(order)
            return item

        return run_with_retry(self.session, _op)

    def add_item_by_barcode(
        self, order_id: int, barcode: str, quantity, actor: Actor, discount_amount=ZERO
    ) -> tuple[OrderItem, str]:
        """
        Scan-to-add. Merges into an existing line for the same variant.

        Stock in the order's store must cover the combined quantity on the
        line. Returns (item, "added" | "updated").
        """
        barcode = require_text(barcode, "barcode", max_length=64)
        qty = parse_quantity(quantity)
        discount = to_money(parse_money(discount_amount, "discount_amount"))

        def _op() -> tuple[OrderItem, str]:
            order = self._load_for_edit(order_id, actor)
            variant = (
                self.session.query(ProductVariant)
                .join(Product, ProductVariant.product_id == Product.id)
                .filter(ProductVariant.barcode == barcode, Product.company_id == order.company_id)
                .first()
            )
            if variant is None:
                raise NotFound("No product matches this barcode")
            variant = self._sellable_variant(variant, order)

            existing = next((i for i in order.items if i.variant_id == variant.id), None)
            combined = qty + (existing.quantity if existing else 0)
            available = self.inventory.available(variant.id, order.store_id)
            if available <= 0 or available < combined:
                raise InsufficientStock(
                    f"Only {available} of {variant.sku} in stock",
                    details={"available": available, "requested": combined},
                )

            if existing:
                self._reprice_line(existing, quantity=combined)
                self._recompute(order)
                return existing, "updated"

            item = self._append_line(order, variant, qty, discount)
            self._recompute(order)
            return item, "added"

        return run_with_retry(self.session, _op)

    def update_item(self, order_id: int, item_id: int, actor: Actor, *, quantity=None, discount_amount=None) -> OrderItem:
        if quantity is None and discount_amount is None:
            raise ValidationFailed("Nothing to update", details={"quantity": "or discount_amount is required"})
        qty = parse_quantity(quantity) if quantity is not None else None
        discount = to_money(parse_money(discount_amount, "discount_amount")) if discount_amount is not None else None

        def _op() -> OrderItem:
            order = self._load_for_edit(order_id, actor)
            item = self._item_of(order, item_id)
            self._reprice_line(item, quantity=qty, discount_amount=discount)
            self._recompute(order)
            return item

        return run_with_retry(self.session, _op)

    def remove_item(self, order_id: int, item_id: int, actor: Actor) -> Order:
        def _op() -> Order:
            order = self._load_for_edit(order_id, actor)
            item = self._item_of(order, item_id)
            order.items.remove(item)
            self.session.flush()
            self._recompute(order)
            return order

        return run_with_retry(self.session, _op)

    def update_meta(self, order_id: int, payload: dict, actor: Actor) -> Order:
        """
        Edit header fields of a DRAFT order.

        Changing customer_type reprices every line from the current catalog.
        """
        patch = validate_payload(model=Order, payload=payload, policy=ORDER_META_POLICY, partial=True)
        if "customer_type" in patch:
            patch["customer_type"] = parse_choice(patch["customer_type"], "customer_type", CUSTOMER_TYPES)

        def _op() -> Order:
            order = self._load_for_edit(order_id, actor)
            if patch.get("customer_id") is not None:
                self._customer_for(patch["customer_id"], order.company_id)
            repricing = "customer_type" in patch and patch["customer_type"] != order.customer_type
            for key, value in patch.items():
                setattr(order, key, value)
            if repricing:
                for item in order.items:
                    self._reprice_line(item, unit_price=item.variant.price_for(order.customer_type))
                self._recompute(order)
            return order

        return run_with_retry(self.session, _op)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def confirm(self, order_id: int, actor: Actor) -> Order:
        def _op() -> Order:
            order = self._load(order_id, actor, lock=True)
            if order.status != ORDER_STATUS_DRAFT:
                raise InvalidState("Only DRAFT orders can be confirmed")
            if not order.items:
                raise InvalidState("Cannot confirm order with no items")
            order.status = ORDER_STATUS_PENDING
            order.confirmed_at = utcnow()
            return order

        return run_with_retry(self.session, _op)

    def cancel(self, order_id: int, reason: str, actor: Actor) -> Order:
        reason = require_text(reason, "cancel_reason", max_length=2000)

        def _op() -> Order:
            order = self._load(order_id, actor, lock=True)
            if order.status not in (ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING):
                raise InvalidState("Only DRAFT or PENDING orders can be cancelled")
            if any(p.status == PAYMENT_STATUS_SUCCESS for p in order.payments):
                raise InvalidState("Refund the successful payments before cancelling this order")
            order.status = ORDER_STATUS_CANCELLED
            order.cancel_reason = reason
            order.cancelled_by_user_id = actor.user_id
            order.cancelled_at = utcnow()
            logger.info("Order %s cancelled by user %s", order.order_number, actor.user_id)
            return order

        return run_with_retry(self.session, _op)

    # =========================================================================
    # REVERSALS
    # =========================================================================

    def create_return_bill(self, original_order_id: int, reason: str, lines: list[ReturnLine], actor: Actor) -> Order:
        """
        Raise a DRAFT RETURN against a PAID SALE.

        Each line may return at most what is left of the original line after
        earlier non-cancelled RETURN/VOID bills. Reversal lines carry the
        original unit price and tax rate with no discount.
        """
        require_capability(actor, CREATE_RETURN)
        reason = require_text(reason, "reason", max_length=2000)
        if not lines:
            raise ValidationFailed("items must be a non-empty list", details={"items": "must be a non-empty list"})

        def _op() -> Order:
            parent = self._load_reversible(original_order_id, actor)
            originals = {item.id: item for item in parent.items}
            reversed_so_far = self._reversed_quantities(parent)

            plan = []
            for line in lines:
                original = originals.get(line.original_item_id)
                if original is None:
                    raise NotFound(f"Order item {line.original_item_id} is not on order {parent.order_number}")
                if line.quantity > original.quantity:
                    raise ValidationFailed(
                        f"Cannot return {line.quantity} of {original.sku}; only {original.quantity} sold",
                        details={"quantity": f"exceeds sold quantity {original.quantity}"},
                    )
                remaining = original.quantity - reversed_so_far.get(original.id, 0)
                if line.quantity > remaining:
                    raise ValidationFailed(
                        f"Cannot return {line.quantity} of {original.sku}; only {remaining} left to return",
                        details={"quantity": f"exceeds returnable quantity {remaining}"},
                    )
                plan.append((original, line.quantity))

            return self._spawn_reversal(parent, ORDER_TYPE_RETURN, reason, plan, actor)

        return run_with_retry(self.session, _op)

    def void_order(self, order_id: int, reason: str, actor: Actor) -> Order:
        """
        Raise a DRAFT VOID reversing every line of a PAID SALE made today.

        "Today" is the calendar day in the store's timezone, not a rolling
        24 hours.
        """
        require_capability(actor, VOID_ORDER, "Only managers and admins can void orders")
        reason = require_text(reason, "reason", max_length=2000)

        def _op() -> Order:
            parent = self._load_reversible(order_id, actor)
            tz_name = parent.store.timezone if parent.store else None
            if local_date(parent.created_at, tz_name) != local_today(tz_name):
                raise InvalidState("Only orders created today can be voided")
            if any(o.type == ORDER_TYPE_VOID and o.status != ORDER_STATUS_CANCELLED for o in parent.reversals):
                raise InvalidState("Order already has a void bill")
            reversed_so_far = self._reversed_quantities(parent)
            if any(reversed_so_far.values()):
                raise InvalidState("Order has return bills; use a return for the remaining items")
            plan = [(item, item.quantity) for item in parent.items]
            return self._spawn_reversal(parent, ORDER_TYPE_VOID, reason, plan, actor)

        return run_with_retry(self.session, _op)

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, order_id: int, actor: Actor) -> Order:
        return self._load(order_id, actor)

    def list(self, filters: OrderFilter, actor: Actor) -> Page:
        query = scope_query(
            self.session.query(Order),
            actor,
            company_col=Order.company_id,
            store_col=Order.store_id,
            owner_col=Order.cashier_id,
        )
        if filters.status:
            query = query.filter(Order.status == filters.status)
        if filters.type:
            query = query.filter(Order.type == filters.type)
        if filters.customer_type:
            query = query.filter(Order.customer_type == filters.customer_type)
        if filters.customer_id is not None:
            query = query.filter(Order.customer_id == filters.customer_id)
        if filters.cashier_id is not None:
            query = query.filter(Order.cashier_id == filters.cashier_id)
        if filters.store_id is not None:
            query = query.filter(Order.store_id == filters.store_id)
        if filters.shift_id is not None:
            query = query.filter(Order.shift_id == filters.shift_id)
        if filters.date_from:
            query = query.filter(Order.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(Order.created_at <= filters.date_to)
        return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), filters.paging)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _load(self, order_id: int, actor: Actor, *, lock: bool = False, owner_scoped: bool = True) -> Order:
        query = self.session.query(Order).filter_by(id=order_id)
        if lock:
            query = lock_for_update(query)
        order = query.first()
        if not order:
            raise NotFound("Order not found")
        ensure_visible(
            actor,
            company_id=order.company_id,
            store_id=order.store_id,
            owner_id=order.cashier_id if owner_scoped else None,
            label="Order",
        )
        return order

    def _load_for_edit(self, order_id: int, actor: Actor) -> Order:
        order = self._load(order_id, actor, lock=True)
        if order.status != ORDER_STATUS_DRAFT:
            raise InvalidState("Cannot modify order that is not in DRAFT status")
        return order

    def _load_reversible(self, order_id: int, actor: Actor) -> Order:
        # Returns are handled at store level, not only by the original cashier
        order = self._load(order_id, actor, lock=True, owner_scoped=False)
        if order.type != ORDER_TYPE_SALE:
            raise InvalidState("Only SALE orders can be reversed")
        if order.status != ORDER_STATUS_PAID:
            raise InvalidState("Only PAID orders can be reversed")
        return order

    def _customer_for(self, customer_id: int, company_id: int) -> Customer:
        customer = self.session.get(Customer, customer_id)
        if not customer or customer.company_id != company_id:
            raise NotFound("Customer not found")
        return customer

    def _sellable_variant(self, variant: ProductVariant | None, order: Order) -> ProductVariant:
        if (
            variant is None
            or not variant.is_active
            or not variant.product.is_active
            or variant.product.company_id != order.company_id
        ):
            raise NotFound("Product variant not found or inactive")
        return variant

    def _item_of(self, order: Order, item_id: int) -> OrderItem:
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFound("Order item not found")
        return item

    def _append_line(self, order: Order, variant: ProductVariant, quantity: int, discount) -> OrderItem:
        item = OrderItem(
            variant_id=variant.id,
            product_name=variant.product.name,
            variant_name=variant.name,
            sku=variant.sku,
            unit_price=to_money(variant.price_for(order.customer_type)),
            quantity=quantity,
            tax_rate=variant.product.tax_percent or ZERO,
            discount_amount=discount,
        )
        self._apply_line_totals(item)
        order.items.append(item)
        self.session.flush()
        return item

    def _reprice_line(self, item: OrderItem, *, quantity=None, discount_amount=None, unit_price=None) -> None:
        if quantity is not None:
            item.quantity = quantity
        if discount_amount is not None:
            item.discount_amount = discount_amount
        if unit_price is not None:
            item.unit_price = to_money(unit_price)
        self._apply_line_totals(item)

    @staticmethod
    def _apply_line_totals(item: OrderItem) -> None:
        totals = line_item_totals(item.unit_price, item.quantity, item.tax_rate, item.discount_amount)
        if item.quantity > 0 and to_money(item.discount_amount) > totals.subtotal + totals.tax_amount:
            raise ValidationFailed(
                "discount_amount cannot exceed the line amount",
                details={"discount_amount": "exceeds line amount"},
            )
        item.subtotal = totals.subtotal
        item.tax_amount = totals.tax_amount
        item.total_amount = totals.total_amount

    def _recompute(self, order: Order) -> None:
        totals = order_totals(order.items)
        order.subtotal = totals.subtotal
        order.tax_amount = totals.tax_amount
        order.discount_amount = totals.discount_amount
        order.total_amount = totals.total_amount
        order.updated_at = utcnow()
        self.session.flush()

    def _reversed_quantities(self, parent: Order) -> dict[int, int]:
        """original item id -> units already taken back by live reversal bills."""
        taken: dict[int, int] = {}
        for child in parent.reversals:
            if child.type not in REVERSAL_ORDER_TYPES or child.status == ORDER_STATUS_CANCELLED:
                continue
            for item in child.items:
                if item.original_item_id is not None:
                    taken[item.original_item_id] = taken.get(item.original_item_id, 0) - item.quantity
        return taken

    def _spawn_reversal(self, parent: Order, order_type: str, reason: str, plan, actor: Actor) -> Order:
        now = utcnow()
        reversal = Order(
            company_id=parent.company_id,
            store_id=parent.store_id,
            cashier_id=actor.user_id,
            customer_id=parent.customer_id,
            customer_type=parent.customer_type,
            customer_name=parent.customer_name,
            customer_phone=parent.customer_phone,
            parent_order_id=parent.id,
            order_number=next_order_number(self.session, store_id=parent.store_id, business_date=now.date()),
            type=order_type,
            status=ORDER_STATUS_DRAFT,
            reason=reason,
            subtotal=ZERO,
            tax_amount=ZERO,
            discount_amount=ZERO,
            total_amount=ZERO,
            created_at=now,
        )
        for original, quantity in plan:
            item = OrderItem(
                variant_id=original.variant_id,
                original_item_id=original.id,
                product_name=original.product_name,
                variant_name=original.variant_name,
                sku=original.sku,
                unit_price=original.unit_price,
                quantity=-quantity,
                tax_rate=original.tax_rate,
                discount_amount=ZERO,
            )
            self._apply_line_totals(item)
            reversal.items.append(item)
        self.session.add(reversal)
        self.session.flush()
        self._recompute(reversal)
        logger.info(
            "%s bill %s raised against %s by user %s",
            order_type, reversal.order_number, parent.order_number, actor.user_id,
        )
        return reversal
