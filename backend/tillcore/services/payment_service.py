# Overview: Service-layer operations for payments; capture, settlement, gateway webhooks, refunds and reporting.

"""
Payment Settlement Engine

WHY: Orders are settled by one or more payments. Cash settles on the spot
against the cashier's open shift; card and wallet go through the gateway and
settle later via webhook or an explicit verify call.

DESIGN PRINCIPLES:
- Split payments: an order is PAID once SUCCESS payments cover
  |total_amount| (reversal orders have negative totals and are paid out)
- Overpayment is refused before any row is written
- Settlement re-reads the paid total under the order row lock in the same
  transaction that flips the order to PAID, so it fires exactly once
- Gateway calls never run inside an open transaction; the payment row is
  committed INITIATED first and updated afterwards
- Webhooks are idempotent: only INITIATED payments transition
- A payment is refunded at most once (REFUNDED is terminal)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..errors import (
    ExternalGatewayError,
    InsufficientFunds,
    InvalidState,
    NotFound,
    TillError,
    ValidationFailed,
)
from ..models import Order, Payment
from ..models.orders import ORDER_STATUS_PAID, ORDER_STATUS_PENDING, ORDER_TYPE_SALE
from ..models.payments import (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHODS,
    PAYMENT_PROVIDER_GATEWAY,
    PAYMENT_PROVIDER_INTERNAL,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_INITIATED,
    PAYMENT_STATUS_REFUNDED,
    PAYMENT_STATUS_SUCCESS,
)
from ..money import ZERO, money_str, to_money
from ..permissions import PROCESS_PAYMENT, REFUND_PAYMENT, VIEW_REPORTS, Actor
from ..time_utils import utcnow
from ..validation import parse_choice, parse_money, require_text
from .access import ensure_visible, require_capability, scope_query
from .cash_shift_service import CashShiftService
from .concurrency import lock_for_update, run_with_retry
from .filters import Page, PaymentFilter, paginate
from .inventory_service import InventoryService

logger = logging.getLogger(__name__)

# Used when neither the request nor the order carries a phone number
FALLBACK_CUSTOMER_PHONE = "00000000"


@dataclass(frozen=True)
class PaymentSettings:
    currency: str = "BHD"
    redirect_url: str = "https://yourapp.com/payment/callback"
    webhook_url: str = "https://yourapp.com/api/webhooks/tap"

    @classmethod
    def from_config(cls, config) -> "PaymentSettings":
        return cls(
            currency=config.get("PAYMENT_CURRENCY", "BHD"),
            redirect_url=config.get("TAP_REDIRECT_URL", cls.redirect_url),
            webhook_url=config.get("TAP_WEBHOOK_URL", cls.webhook_url),
        )


@dataclass
class PaymentOutcome:
    payment: Payment
    requires_action: bool = False
    payment_url: str | None = None
    charge_id: str | None = None

    def to_dict(self) -> dict:
        data = {"payment": self.payment.to_dict(), "requires_action": self.requires_action}
        if self.requires_action:
            data["payment_url"] = self.payment_url
            data["charge_id"] = self.charge_id
        return data


class PaymentService:
    def __init__(
        self,
        session,
        gateway,
        *,
        shifts: CashShiftService | None = None,
        inventory: InventoryService | None = None,
        settings: PaymentSettings | None = None,
    ):
        self.session = session
        self.gateway = gateway
        self.shifts = shifts or CashShiftService(session)
        self.inventory = inventory or InventoryService(session)
        self.settings = settings or PaymentSettings()

    # =========================================================================
    # PAYMENT CREATION
    # =========================================================================

    def create_payment(
        self,
        order_id: int,
        method: str,
        amount,
        actor: Actor,
        *,
        customer_ref: str | None = None,
        notes: str | None = None,
    ) -> PaymentOutcome:
        """
        Take a payment against a PENDING order.

        CASH needs the actor's open shift in the order's store and succeeds
        immediately. CARD/WALLET commit an INITIATED row, request a gateway
        charge, and hand back the payment-page URL; a gateway failure marks
        the payment FAILED and raises ExternalGatewayError.
        """
        require_capability(actor, PROCESS_PAYMENT)
        method = parse_choice(method, "method", PAYMENT_METHODS)
        amount = to_money(parse_money(amount, "amount", allow_zero=False))

        def _create() -> Payment:
            order = self._lock_order(order_id)
            ensure_visible(actor, company_id=order.company_id, store_id=order.store_id, label="Order")
            if order.status != ORDER_STATUS_PENDING:
                raise InvalidState(
                    f"Cannot process payment for order with status {order.status}; order must be PENDING"
                )
            if order.is_reversal and method != PAYMENT_METHOD_CASH:
                raise ValidationFailed(
                    "Return and void bills are paid out in cash",
                    details={"method": "must be CASH for reversal orders"},
                )

            remaining = abs(to_money(order.total_amount)) - self.total_paid(order.id)
            if remaining <= 0:
                raise InvalidState("Order is already fully paid")
            if amount > remaining:
                raise InsufficientFunds(
                    f"Payment amount {amount} exceeds remaining balance {remaining}",
                    details={"remaining_amount": money_str(remaining)},
                )

            shift_id = None
            if method == PAYMENT_METHOD_CASH:
                shift_id = self.shifts.validate_cash_payment(actor.user_id, order.store_id)

            payment = Payment(
                order_id=order.id,
                company_id=order.company_id,
                store_id=order.store_id,
                shift_id=shift_id,
                created_by_user_id=actor.user_id,
                amount=amount,
                currency=self.settings.currency,
                method=method,
                provider=PAYMENT_PROVIDER_INTERNAL if method == PAYMENT_METHOD_CASH else PAYMENT_PROVIDER_GATEWAY,
                status=PAYMENT_STATUS_INITIATED,
                notes=notes,
            )
            self.session.add(payment)
            self.session.flush()

            if method == PAYMENT_METHOD_CASH:
                self._apply_success(
                    payment,
                    order,
                    {"method": PAYMENT_METHOD_CASH, "processed_by": actor.user_id, "timestamp": utcnow().isoformat()},
                )
            return payment

        payment = run_with_retry(self.session, _create)
        if payment.method == PAYMENT_METHOD_CASH:
            return PaymentOutcome(payment=payment)

        return self._start_gateway_charge(payment.id, customer_ref)

    def _start_gateway_charge(self, payment_id: int, customer_ref: str | None) -> PaymentOutcome:
        payment = self.session.get(Payment, payment_id)
        order = payment.order
        phone = customer_ref or order.customer_phone or FALLBACK_CUSTOMER_PHONE
        try:
            charge = self.gateway.create_charge(
                amount=payment.amount,
                currency=payment.currency,
                payment_id=payment.id,
                order_id=order.id,
                customer_phone=phone,
                redirect_url=self.settings.redirect_url,
                webhook_url=self.settings.webhook_url,
            )
        except ExternalGatewayError as exc:
            self._mark_failed(payment_id, exc.message)
            raise ExternalGatewayError(f"Failed to create TAP payment: {exc.message}", details=exc.details)

        def _store_charge() -> Payment:
            p = lock_for_update(self.session.query(Payment).filter_by(id=payment_id)).one()
            p.provider_ref = charge.charge_id
            p.provider_data = charge.raw
            return p

        payment = run_with_retry(self.session, _store_charge)
        logger.info("Gateway charge %s created for payment %s", charge.charge_id, payment.id)
        return PaymentOutcome(
            payment=payment,
            requires_action=True,
            payment_url=charge.payment_url,
            charge_id=charge.charge_id,
        )

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def mark_success(self, payment_id: int, provider_data: dict | None = None) -> Payment:
        """Transition an INITIATED payment to SUCCESS and settle its order. Idempotent."""
        def _op() -> Payment:
            payment = self._lock_payment(payment_id)
            if payment.status != PAYMENT_STATUS_INITIATED:
                logger.info("Payment %s already %s; success ignored", payment.id, payment.status)
                return payment
            self._apply_success(payment, self._lock_order(payment.order_id), provider_data)
            return payment

        return run_with_retry(self.session, _op)

    def total_paid(self, order_id: int) -> Decimal:
        """Sum of SUCCESS payments. Failed, refunded and pending ones never count."""
        total = (
            self.session.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.order_id == order_id, Payment.status == PAYMENT_STATUS_SUCCESS)
            .scalar()
        )
        return to_money(total)

    def _apply_success(self, payment: Payment, order: Order, provider_data: dict | None) -> None:
        """
        Caller holds the order row lock. Re-reads the paid total, records the
        success, and flips the order to PAID when it is covered.

        A gateway success that arrives after the order was settled or closed
        by other payments is recorded FAILED so SUCCESS never exceeds the
        order total; the captured money needs a manual refund.
        """
        target = abs(to_money(order.total_amount))
        paid = self.total_paid(order.id)
        amount = to_money(payment.amount)

        if order.status != ORDER_STATUS_PENDING or paid + amount > target:
            payment.status = PAYMENT_STATUS_FAILED
            payment.failure_reason = "Order no longer accepts this amount; captured funds must be refunded"
            if provider_data is not None:
                payment.provider_data = provider_data
            logger.error(
                "Payment %s succeeded at the gateway but order %s is %s with %s of %s paid",
                payment.id, order.order_number, order.status, paid, target,
            )
            return

        payment.status = PAYMENT_STATUS_SUCCESS
        payment.succeeded_at = utcnow()
        if provider_data is not None:
            payment.provider_data = provider_data
        self.session.flush()

        if paid + amount >= target:
            order.status = ORDER_STATUS_PAID
            order.paid_at = utcnow()
            if order.inventory_applied_at is not None:
                # Re-settled after a gateway refund; stock already moved
                logger.info("Order %s re-settled; inventory already applied", order.order_number)
            else:
                if order.type == ORDER_TYPE_SALE:
                    self.inventory.deduct_for_sale(order)
                else:
                    self.inventory.restore_for_reversal(order)
                order.inventory_applied_at = order.paid_at
            logger.info("Order %s settled (%s %s)", order.order_number, target, payment.currency)

    def _mark_failed(self, payment_id: int, reason: str, provider_data: dict | None = None) -> Payment:
        def _op() -> Payment:
            payment = self._lock_payment(payment_id)
            if payment.status != PAYMENT_STATUS_INITIATED:
                return payment
            payment.status = PAYMENT_STATUS_FAILED
            payment.failure_reason = reason
            if provider_data is not None:
                payment.provider_data = provider_data
            logger.warning("Payment %s failed: %s", payment.id, reason)
            return payment

        return run_with_retry(self.session, _op)

    # =========================================================================
    # GATEWAY CALLBACKS
    # =========================================================================

    def handle_webhook(self, raw_body: bytes | str, signature: str | None) -> dict:
        """
        Apply a gateway status push.

        The signature covers the raw body. The payment is found through
        ``reference.transaction`` (our id), then ``metadata.paymentId``, then
        the charge id. Replays of an already-applied status are no-ops.
        """
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("Rejected TAP webhook with invalid signature")
            raise ValidationFailed("Invalid webhook signature")

        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError):
            raise ValidationFailed("Webhook body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationFailed("Webhook body must be a JSON object")

        charge_id = payload.get("id")
        payment = self._resolve_webhook_payment(payload, charge_id)
        new_status = self.gateway.map_provider_status(payload.get("status"))
        return self._apply_provider_status(payment.id, new_status, payload, charge_id)

    def verify_payment(self, payment_id: int, actor: Actor) -> Payment:
        """Pull the charge from the gateway and apply its status now."""
        require_capability(actor, PROCESS_PAYMENT)
        payment = self.get(payment_id, actor)
        if payment.provider != PAYMENT_PROVIDER_GATEWAY or not payment.provider_ref:
            raise ValidationFailed("Only gateway payments with a charge can be verified")
        if payment.status != PAYMENT_STATUS_INITIATED:
            return payment
        charge = self.gateway.retrieve_charge(payment.provider_ref)
        self._apply_provider_status(payment.id, self.gateway.map_provider_status(charge.status), charge.raw, charge.charge_id)
        return self.session.get(Payment, payment_id)

    def _resolve_webhook_payment(self, payload: dict, charge_id) -> Payment:
        reference = payload.get("reference") or {}
        metadata = payload.get("metadata") or {}
        payment_ref = reference.get("transaction") or metadata.get("paymentId")
        if not payment_ref and not charge_id:
            logger.error("Webhook missing payment reference: %s", payload)
            raise ValidationFailed("Invalid webhook: missing payment reference")

        payment = None
        if payment_ref and str(payment_ref).isdigit():
            payment = self.session.get(Payment, int(payment_ref))
        if payment is None and charge_id:
            payment = self.session.query(Payment).filter_by(provider_ref=charge_id).first()
        if payment is None:
            logger.error("Payment not found for webhook: ref=%s charge=%s", payment_ref, charge_id)
            raise NotFound("Payment not found")
        if charge_id and payment.provider_ref and payment.provider_ref != charge_id:
            logger.warning("Webhook charge %s does not match payment %s (%s)", charge_id, payment.id, payment.provider_ref)
            raise ValidationFailed("Webhook charge does not match payment")
        return payment

    def _apply_provider_status(self, payment_id: int, new_status: str, payload: dict, charge_id=None) -> dict:
        def _op() -> dict:
            payment = self._lock_payment(payment_id)
            if payment.status != PAYMENT_STATUS_INITIATED:
                logger.info("Payment %s already %s; gateway %s ignored", payment.id, payment.status, new_status)
                return {"success": True, "payment_id": payment.id, "status": payment.status, "changed": False}

            if charge_id and not payment.provider_ref:
                payment.provider_ref = charge_id

            if new_status == PAYMENT_STATUS_SUCCESS:
                self._apply_success(payment, self._lock_order(payment.order_id), payload)
            elif new_status == PAYMENT_STATUS_FAILED:
                payment.status = PAYMENT_STATUS_FAILED
                payment.failure_reason = (payload.get("response") or {}).get("message") or "Payment failed"
                payment.provider_data = payload
                logger.warning("Payment %s failed at gateway: %s", payment.id, payment.failure_reason)
            else:
                payment.provider_data = payload
            return {
                "success": True,
                "payment_id": payment.id,
                "status": payment.status,
                "changed": payment.status != PAYMENT_STATUS_INITIATED,
            }

        return run_with_retry(self.session, _op)

    # =========================================================================
    # REFUNDS
    # =========================================================================

    def refund(self, payment_id: int, actor: Actor, *, amount=None, reason: str | None = None) -> Payment:
        """
        Refund a SUCCESS payment once, fully or partially.

        CASH is recorded immediately (physical hand-back) and leaves the order
        status alone. CARD/WALLET goes through the gateway first, and a PAID
        order drops back to PENDING. Stock is never moved by a refund.
        """
        require_capability(actor, REFUND_PAYMENT)
        reason = require_text(reason, "reason", max_length=2000)

        payment = self.get(payment_id, actor)
        refund_amount = self._check_refundable(payment, amount)

        refund_ref = None
        if payment.method != PAYMENT_METHOD_CASH:
            if not payment.provider_ref:
                raise ValidationFailed("Payment has no provider reference for refund")
            try:
                result = self.gateway.create_refund(
                    charge_id=payment.provider_ref,
                    amount=refund_amount,
                    currency=payment.currency,
                    reason=reason,
                    merchant_ref=f"refund-{payment.id}",
                )
            except ExternalGatewayError as exc:
                raise ExternalGatewayError(f"Failed to process TAP refund: {exc.message}", details=exc.details)
            refund_ref = result.refund_id

        def _op() -> Payment:
            p = self._lock_payment(payment_id)
            self._check_refundable(p, refund_amount)
            order = self._lock_order(p.order_id)
            p.status = PAYMENT_STATUS_REFUNDED
            p.refund_amount = refund_amount
            p.refund_reason = reason
            p.refund_ref = refund_ref
            p.refunded_by_user_id = actor.user_id
            p.refunded_at = utcnow()
            if p.method != PAYMENT_METHOD_CASH and order.status == ORDER_STATUS_PAID:
                order.status = ORDER_STATUS_PENDING
                order.paid_at = None
            logger.info("Payment %s refunded %s by user %s", p.id, refund_amount, actor.user_id)
            return p

        try:
            return run_with_retry(self.session, _op)
        except TillError:
            if refund_ref:
                logger.error("Gateway refund %s issued but payment %s could not be updated", refund_ref, payment_id)
            raise

    @staticmethod
    def _check_refundable(payment: Payment, amount) -> Decimal:
        if payment.status == PAYMENT_STATUS_REFUNDED:
            raise InvalidState("Payment is already refunded")
        if payment.status != PAYMENT_STATUS_SUCCESS:
            raise InvalidState("Only successful payments can be refunded")
        if amount is None:
            return to_money(payment.amount)
        refund_amount = to_money(parse_money(amount, "amount", allow_zero=False))
        if refund_amount > to_money(payment.amount):
            raise ValidationFailed(
                "Refund amount cannot exceed payment amount",
                details={"amount": f"exceeds payment amount {money_str(payment.amount)}"},
            )
        return refund_amount

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, payment_id: int, actor: Actor) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if not payment:
            raise NotFound("Payment not found")
        ensure_visible(
            actor,
            company_id=payment.company_id,
            store_id=payment.store_id,
            owner_id=payment.created_by_user_id,
            label="Payment",
        )
        return payment

    def list(self, filters: PaymentFilter, actor: Actor) -> Page:
        query = scope_query(
            self.session.query(Payment),
            actor,
            company_col=Payment.company_id,
            store_col=Payment.store_id,
            owner_col=Payment.created_by_user_id,
        )
        if filters.order_id is not None:
            query = query.filter(Payment.order_id == filters.order_id)
        if filters.method:
            query = query.filter(Payment.method == filters.method)
        if filters.status:
            query = query.filter(Payment.status == filters.status)
        if filters.provider:
            query = query.filter(Payment.provider == filters.provider)
        if filters.store_id is not None:
            query = query.filter(Payment.store_id == filters.store_id)
        if filters.date_from:
            query = query.filter(Payment.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(Payment.created_at <= filters.date_to)
        return paginate(query.order_by(Payment.created_at.desc(), Payment.id.desc()), filters.paging)

    def order_summary(self, order_id: int, actor: Actor) -> dict:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFound("Order not found")
        ensure_visible(actor, company_id=order.company_id, store_id=order.store_id, label="Order")
        total = abs(to_money(order.total_amount))
        paid = self.total_paid(order.id)
        remaining = max(total - paid, ZERO)
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "order_status": order.status,
            "total_amount": money_str(order.total_amount),
            "total_paid": money_str(paid),
            "remaining_amount": money_str(remaining),
            "is_fully_paid": total > 0 and remaining == 0,
            "payments": [p.to_dict() for p in order.payments],
        }

    def statistics(
        self,
        actor: Actor,
        *,
        store_id: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict:
        require_capability(actor, VIEW_REPORTS)
        query = scope_query(
            self.session.query(Payment),
            actor,
            company_col=Payment.company_id,
            store_col=Payment.store_id,
        )
        if store_id is not None:
            query = query.filter(Payment.store_id == store_id)
        if date_from:
            query = query.filter(Payment.created_at >= date_from)
        if date_to:
            query = query.filter(Payment.created_at <= date_to)

        total_amount = ZERO
        total_count = 0
        by_method: dict[str, dict] = {}
        by_status: dict[str, int] = {}
        for payment in query.all():
            by_status[payment.status] = by_status.get(payment.status, 0) + 1
            if payment.status != PAYMENT_STATUS_SUCCESS:
                continue
            total_amount += to_money(payment.amount)
            total_count += 1
            bucket = by_method.setdefault(payment.method, {"count": 0, "amount": ZERO})
            bucket["count"] += 1
            bucket["amount"] += to_money(payment.amount)

        return {
            "total_amount": money_str(total_amount),
            "total_count": total_count,
            "by_method": {
                m: {"count": b["count"], "amount": money_str(b["amount"])} for m, b in sorted(by_method.items())
            },
            "by_status": dict(sorted(by_status.items())),
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _lock_order(self, order_id: int) -> Order:
        order = lock_for_update(self.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFound("Order not found")
        return order

    def _lock_payment(self, payment_id: int) -> Payment:
        payment = lock_for_update(self.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFound("Payment not found")
        return payment
