from __future__ import annotations

from ..extensions import db
from tillcore.money import money_str
from tillcore.time_utils import to_utc_z, utcnow


ORDER_TYPE_SALE = "SALE"
ORDER_TYPE_RETURN = "RETURN"
ORDER_TYPE_VOID = "VOID"
ORDER_TYPES = (ORDER_TYPE_SALE, ORDER_TYPE_RETURN, ORDER_TYPE_VOID)
REVERSAL_ORDER_TYPES = (ORDER_TYPE_RETURN, ORDER_TYPE_VOID)

ORDER_STATUS_DRAFT = "DRAFT"
ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_PAID = "PAID"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUSES = (ORDER_STATUS_DRAFT, ORDER_STATUS_PENDING, ORDER_STATUS_PAID, ORDER_STATUS_CANCELLED)

CUSTOMER_TYPE_RETAIL = "RETAIL"
CUSTOMER_TYPE_WHOLESALE = "WHOLESALE"
CUSTOMER_TYPES = (CUSTOMER_TYPE_RETAIL, CUSTOMER_TYPE_WHOLESALE)


class Order(db.Model):
    """
    Sale, return or void bill.

    LIFECYCLE:
    - DRAFT: items may be added, changed, removed
    - PENDING: confirmed, accepting payments
    - PAID: successful payments cover |total_amount|
    - CANCELLED: terminal, only reachable from DRAFT/PENDING

    RETURN and VOID orders point at their SALE through ``parent_order_id``,
    carry negative quantities, and run through the same lifecycle.

    Totals are derived from the items and rewritten after every item change;
    clients never set them.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "order_number", name="uq_orders_store_number"),
        db.Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    parent_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    # Human-readable number, e.g. ORD-20260314-007
    order_number = db.Column(db.String(32), nullable=False)

    type = db.Column(db.String(16), nullable=False, default=ORDER_TYPE_SALE, index=True)
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_DRAFT, index=True)
    customer_type = db.Column(db.String(16), nullable=False, default=CUSTOMER_TYPE_RETAIL)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    # Why a RETURN/VOID bill was raised
    reason = db.Column(db.Text, nullable=True)

    cancel_reason = db.Column(db.Text, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Set once when stock first moves for this order; later settlements skip it
    inventory_applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    parent = db.relationship("Order", remote_side=[id], backref=db.backref("reversals", lazy=True))
    cashier = db.relationship("User", foreign_keys=[cashier_id])
    store = db.relationship("Store")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_reversal(self) -> bool:
        return self.type in REVERSAL_ORDER_TYPES

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "shift_id": self.shift_id,
            "customer_id": self.customer_id,
            "parent_order_id": self.parent_order_id,
            "order_number": self.order_number,
            "type": self.type,
            "status": self.status,
            "customer_type": self.customer_type,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "notes": self.notes,
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "discount_amount": money_str(self.discount_amount),
            "total_amount": money_str(self.total_amount),
            "reason": self.reason,
            "cancel_reason": self.cancel_reason,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "paid_at": to_utc_z(self.paid_at),
            "inventory_applied_at": to_utc_z(self.inventory_applied_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line.

    Product name, variant name, SKU, unit price and tax rate are snapshotted
    when the line is created so old orders stay accurate after catalog edits.
    Reversal lines have negative quantities and point back at the line they
    reverse through ``original_item_id``.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    original_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(255), nullable=True)
    sku = db.Column(db.String(64), nullable=True)

    unit_price = db.Column(db.Numeric(14, 3), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    tax_rate = db.Column(db.Numeric(6, 3), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    subtotal = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "original_item_id": self.original_item_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "sku": self.sku,
            "unit_price": money_str(self.unit_price),
            "quantity": self.quantity,
            "tax_rate": money_str(self.tax_rate),
            "discount_amount": money_str(self.discount_amount),
            "subtotal": money_str(self.subtotal),
            "tax_amount": money_str(self.tax_amount),
            "total_amount": money_str(self.total_amount),
            "created_at": to_utc_z(self.created_at),
        }


class OrderSequence(db.Model):
    """
    Atomic per-store, per-day order number counter.

    WHY: "max existing number + 1" races when two cashiers in the same store
    create orders at the same moment. The counter row is bumped with a single
    UPDATE, and the unique constraint settles who creates the first row.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "business_date", name="uq_order_sequences_store_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "business_date": self.business_date.isoformat(),
            "last_value": self.last_value,
        }
