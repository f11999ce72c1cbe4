# Overview: Service-layer operations for cash shifts; open/close, reconciliation and the cash-payment gate.

"""
Cash Shift Ledger

WHY: Cashier accountability. Each shift has an opening float and a counted
close; the difference from what the drawer should hold exposes errors and
theft.

RECONCILIATION (at close):
- total_cash = SUCCESS CASH payments linked to the shift, where cash paid
  out on RETURN/VOID orders counts negative
- expected = opening + total_cash
- difference = closing - expected -> BALANCED / EXCESS / SHORT

IMMUTABLE: a CLOSED shift is never reopened or edited.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, InvalidState, NotFound, ValidationFailed
from ..models import CashShift, Order, Payment, Store
from ..models.orders import REVERSAL_ORDER_TYPES
from ..models.payments import PAYMENT_METHOD_CASH, PAYMENT_STATUS_SUCCESS
from ..models.shifts import SHIFT_STATUS_CLOSED, SHIFT_STATUS_OPEN
from ..money import ZERO, money_str, to_money
from ..permissions import MANAGE_SHIFTS, Actor
from ..time_utils import utcnow
from ..validation import parse_money
from .access import ensure_visible, require_capability, scope_query
from .concurrency import lock_for_update, run_with_retry
from .filters import Page, ShiftFilter, paginate

logger = logging.getLogger(__name__)


class CashShiftService:
    def __init__(self, session):
        self.session = session

    # =========================================================================
    # OPEN / CLOSE
    # =========================================================================

    def open(self, actor: Actor, opening_cash, notes: str | None = None, store_id: int | None = None) -> CashShift:
        """
        Open a shift for the actor in a store (their own store by default).

        At most one OPEN shift per (user, store); the partial unique index
        backs the up-front check against concurrent opens.
        """
        opening = to_money(parse_money(opening_cash, "opening_cash"))
        target_store_id = store_id or actor.store_id
        if not target_store_id:
            raise ValidationFailed("store_id is required", details={"store_id": "is required"})

        def _op() -> CashShift:
            store = self.session.get(Store, target_store_id)
            if not store:
                raise NotFound("Store not found")
            ensure_visible(actor, company_id=store.company_id, store_id=store.id, label="Store")

            if self._open_shift_for(actor.user_id, store.id) is not None:
                raise Conflict("You already have an open shift in this store")

            shift = CashShift(
                user_id=actor.user_id,
                company_id=store.company_id,
                store_id=store.id,
                status=SHIFT_STATUS_OPEN,
                opening_cash=opening,
                opening_notes=notes,
                opened_at=utcnow(),
            )
            self.session.add(shift)
            try:
                self.session.flush()
            except IntegrityError:
                raise Conflict("You already have an open shift in this store")
            logger.info("Shift %s opened by user %s in store %s", shift.id, actor.user_id, store.id)
            return shift

        return run_with_retry(self.session, _op)

    def close(self, actor: Actor, closing_cash, notes: str | None = None, shift_id: int | None = None) -> CashShift:
        """
        Close a shift and reconcile the drawer.

        Without ``shift_id`` the actor's own open shift in their store is
        closed. Closing somebody else's shift requires MANAGE_SHIFTS.
        """
        closing = to_money(parse_money(closing_cash, "closing_cash"))

        def _op() -> CashShift:
            if shift_id is not None:
                shift = lock_for_update(self.session.query(CashShift).filter_by(id=shift_id)).first()
                if not shift:
                    raise NotFound("Shift not found")
            else:
                shift = self._open_shift_for(actor.user_id, actor.store_id, lock=True)
                if not shift:
                    raise NotFound("No open shift found")

            ensure_visible(actor, company_id=shift.company_id, store_id=shift.store_id, label="Shift")
            if shift.user_id != actor.user_id:
                require_capability(actor, MANAGE_SHIFTS, "Only the shift owner or a manager can close this shift")
            if shift.status != SHIFT_STATUS_OPEN:
                raise InvalidState("Shift is already closed")

            total_cash = self.cash_total(shift.id)
            expected = to_money(shift.opening_cash) + total_cash
            shift.closing_cash = closing
            shift.expected_cash = to_money(expected)
            shift.difference = to_money(closing - expected)
            shift.status = SHIFT_STATUS_CLOSED
            shift.closing_notes = notes
            shift.closed_by_user_id = actor.user_id
            shift.closed_at = utcnow()
            logger.info(
                "Shift %s closed: expected %s, counted %s, %s",
                shift.id, shift.expected_cash, closing, shift.cash_status,
            )
            return shift

        return run_with_retry(self.session, _op)

    # =========================================================================
    # CASH GATE
    # =========================================================================

    def validate_cash_payment(self, user_id: int, store_id: int) -> int:
        """Return the open shift id cash payments must link to, or fail."""
        shift = self._open_shift_for(user_id, store_id)
        if not shift:
            raise InvalidState("You must open a cash shift before accepting cash payments")
        return shift.id

    def cash_total(self, shift_id: int) -> Decimal:
        """Net cash taken on a shift: sales in, reversal payouts out."""
        rows = (
            self.session.query(Payment.amount, Order.type)
            .join(Order, Payment.order_id == Order.id)
            .filter(
                Payment.shift_id == shift_id,
                Payment.method == PAYMENT_METHOD_CASH,
                Payment.status == PAYMENT_STATUS_SUCCESS,
            )
            .all()
        )
        total = ZERO
        for amount, order_type in rows:
            total += -to_money(amount) if order_type in REVERSAL_ORDER_TYPES else to_money(amount)
        return to_money(total)

    # =========================================================================
    # READS
    # =========================================================================

    def current_shift(self, actor: Actor) -> CashShift | None:
        return self._open_shift_for(actor.user_id, actor.store_id)

    def get(self, shift_id: int, actor: Actor) -> CashShift:
        shift = self.session.get(CashShift, shift_id)
        if not shift:
            raise NotFound("Shift not found")
        ensure_visible(actor, company_id=shift.company_id, store_id=shift.store_id, owner_id=shift.user_id, label="Shift")
        return shift

    def detail(self, shift: CashShift) -> dict:
        """Shift row plus the running drawer figures (final once CLOSED)."""
        data = shift.to_dict()
        total_cash = self.cash_total(shift.id)
        data["total_cash_payments"] = money_str(total_cash)
        data["current_expected_cash"] = money_str(to_money(shift.opening_cash) + total_cash)
        return data

    def list(self, filters: ShiftFilter, actor: Actor) -> Page:
        query = scope_query(
            self.session.query(CashShift),
            actor,
            company_col=CashShift.company_id,
            store_col=CashShift.store_id,
            owner_col=CashShift.user_id,
        )
        if filters.status:
            query = query.filter(CashShift.status == filters.status)
        if filters.user_id is not None:
            query = query.filter(CashShift.user_id == filters.user_id)
        if filters.store_id is not None:
            query = query.filter(CashShift.store_id == filters.store_id)
        if filters.date_from:
            query = query.filter(CashShift.opened_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(CashShift.opened_at <= filters.date_to)
        return paginate(query.order_by(CashShift.opened_at.desc(), CashShift.id.desc()), filters.paging)

    def summary(self, shift_id: int, actor: Actor) -> dict:
        """Per-method totals and counts of SUCCESS payments linked to the shift."""
        shift = self.get(shift_id, actor)
        payments = (
            self.session.query(Payment)
            .filter(Payment.shift_id == shift.id, Payment.status == PAYMENT_STATUS_SUCCESS)
            .all()
        )
        by_method: dict[str, dict] = {}
        for payment in payments:
            bucket = by_method.setdefault(payment.method, {"count": 0, "amount": ZERO})
            bucket["count"] += 1
            bucket["amount"] += to_money(payment.amount)
        return {
            "shift": shift.to_dict(),
            "by_method": {
                method: {"count": b["count"], "amount": money_str(b["amount"])}
                for method, b in sorted(by_method.items())
            },
            "payment_count": len(payments),
            "net_cash": money_str(self.cash_total(shift.id)),
        }

    def _open_shift_for(self, user_id: int, store_id: int | None, *, lock: bool = False) -> CashShift | None:
        query = self.session.query(CashShift).filter_by(
            user_id=user_id, store_id=store_id, status=SHIFT_STATUS_OPEN
        )
        if lock:
            query = lock_for_update(query)
        return query.first()
