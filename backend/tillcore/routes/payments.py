# Overview: Flask API routes for payments; parses input and returns JSON responses.

"""
Payment API Routes

DESIGN:
- CASH settles immediately against the caller's open shift
- CARD/WALLET return a gateway payment-page URL; settlement arrives by
  webhook or POST /<id>/verify
- Refunds are one-shot per payment

SECURITY:
- PROCESS_PAYMENT for taking and verifying payments
- REFUND_PAYMENT for refunds, VIEW_REPORTS for statistics
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..errors import TillError
from ..permissions import PROCESS_PAYMENT, REFUND_PAYMENT, VIEW_REPORTS
from ..services.context import services
from ..services.filters import PaymentFilter, date_arg, int_arg
from ..validation import parse_id, require_json_object

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
@require_auth
@require_capability(PROCESS_PAYMENT)
def create_payment_route():
    """
    Take a payment against a PENDING order.

    Request body:
    {
        "order_id": 42,
        "method": "CASH" | "CARD" | "WALLET",
        "amount": "10.500",
        "customer_ref": "+973 3333 4444",  (optional, phone for the gateway)
        "notes": "..."  (optional)
    }

    Returns:
        201: payment (+ payment_url/charge_id when requires_action)
        400: invalid input or amount above remaining balance
        409: order not PENDING, or no open cash shift
        502: gateway failure
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        outcome = services().payments.create_payment(
            parse_id(data.get("order_id"), "order_id"),
            data.get("method"),
            data.get("amount"),
            g.actor,
            customer_ref=data.get("customer_ref"),
            notes=data.get("notes"),
        )
        return jsonify(outcome.to_dict()), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/")
@require_auth
def list_payments_route():
    try:
        page = services().payments.list(PaymentFilter.from_args(request.args), g.actor)
        return jsonify(page.to_dict()), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/statistics")
@require_auth
@require_capability(VIEW_REPORTS)
def payment_statistics_route():
    """Query: store_id, date_from, date_to (ISO-8601)."""
    try:
        stats = services().payments.statistics(
            g.actor,
            store_id=int_arg(request.args, "store_id"),
            date_from=date_arg(request.args, "date_from"),
            date_to=date_arg(request.args, "date_to"),
        )
        return jsonify(stats), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute payment statistics")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        payment = services().payments.get(payment_id, g.actor)
        return jsonify({"payment": payment.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>")
@require_auth
def order_payments_route(order_id: int):
    """Payments of one order with total, paid, remaining and fully-paid flag."""
    try:
        summary = services().payments.order_summary(order_id, g.actor)
        return jsonify(summary), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order payments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REFUND & VERIFY
# =============================================================================

@payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_capability(REFUND_PAYMENT)
def refund_payment_route(payment_id: int):
    """Request body: {"reason": "...", "amount": "5.000"  (optional, default full)}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        payment = services().payments.refund(
            payment_id,
            g.actor,
            amount=data.get("amount"),
            reason=data.get("reason"),
        )
        return jsonify({"payment": payment.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/verify")
@require_auth
@require_capability(PROCESS_PAYMENT)
def verify_payment_route(payment_id: int):
    """Fetch the gateway charge and apply its status now."""
    try:
        payment = services().payments.verify_payment(payment_id, g.actor)
        return jsonify({"payment": payment.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500
