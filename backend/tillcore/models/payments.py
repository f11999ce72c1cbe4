from __future__ import annotations

from ..extensions import db
from tillcore.money import money_str
from tillcore.time_utils import to_utc_z, utcnow


PAYMENT_METHOD_CASH = "CASH"
PAYMENT_METHOD_CARD = "CARD"
PAYMENT_METHOD_WALLET = "WALLET"
PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_CARD, PAYMENT_METHOD_WALLET)

PAYMENT_PROVIDER_INTERNAL = "INTERNAL"
PAYMENT_PROVIDER_GATEWAY = "GATEWAY"
PAYMENT_PROVIDERS = (PAYMENT_PROVIDER_INTERNAL, PAYMENT_PROVIDER_GATEWAY)

PAYMENT_STATUS_INITIATED = "INITIATED"
PAYMENT_STATUS_SUCCESS = "SUCCESS"
PAYMENT_STATUS_FAILED = "FAILED"
PAYMENT_STATUS_REFUNDED = "REFUNDED"
PAYMENT_STATUSES = (
    PAYMENT_STATUS_INITIATED,
    PAYMENT_STATUS_SUCCESS,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDED,
)


class Payment(db.Model):
    """
    One tender against one order.

    LIFECYCLE:
    - INITIATED -> SUCCESS | FAILED
    - SUCCESS -> REFUNDED
    FAILED and REFUNDED are terminal; a payment is refunded at most once.

    CASH payments are INTERNAL, linked to the cashier's open shift and
    succeed on creation. CARD/WALLET payments go through the gateway and
    keep the charge id in ``provider_ref`` and the raw response in
    ``provider_data``.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 3), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="BHD")
    method = db.Column(db.String(16), nullable=False, index=True)
    provider = db.Column(db.String(16), nullable=False, default=PAYMENT_PROVIDER_INTERNAL)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_INITIATED, index=True)

    provider_ref = db.Column(db.String(128), nullable=True, index=True)
    provider_data = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    refund_amount = db.Column(db.Numeric(14, 3), nullable=True)
    refund_reason = db.Column(db.Text, nullable=True)
    refund_ref = db.Column(db.String(128), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    succeeded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "company_id": self.company_id,
            "store_id": self.store_id,
            "shift_id": self.shift_id,
            "created_by_user_id": self.created_by_user_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "method": self.method,
            "provider": self.provider,
            "status": self.status,
            "provider_ref": self.provider_ref,
            "failure_reason": self.failure_reason,
            "notes": self.notes,
            "refund_amount": money_str(self.refund_amount),
            "refund_reason": self.refund_reason,
            "refund_ref": self.refund_ref,
            "refunded_by_user_id": self.refunded_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at),
            "succeeded_at": to_utc_z(self.succeeded_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
