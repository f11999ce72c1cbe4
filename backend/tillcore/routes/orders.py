# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Draft editing (lines, header) only while the order is DRAFT
- Confirm moves DRAFT -> PENDING, cancel ends DRAFT/PENDING
- Return and void bills are new orders linked to the paid sale

SECURITY:
- CREATE_ORDER for drafting, confirming and cancelling
- CREATE_RETURN for return bills, VOID_ORDER for void bills
- Every read and write is scoped to the caller's company/store/role
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..errors import TillError
from ..permissions import CREATE_ORDER, CREATE_RETURN, VOID_ORDER
from ..services.context import services
from ..services.filters import OrderFilter
from ..services.order_service import parse_return_lines
from ..validation import parse_id, require_json_object

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION & QUERIES
# =============================================================================

@orders_bp.post("/")
@require_auth
@require_capability(CREATE_ORDER)
def create_order_route():
    """
    Create a DRAFT sale.

    Request body (all optional):
    {
        "customer_type": "RETAIL" | "WHOLESALE",
        "customer_id": 3,
        "customer_name": "...",
        "customer_phone": "...",
        "notes": "...",
        "shift_id": 7,
        "store_id": 1
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True) or {})
        order = services().orders.create_order(
            g.actor,
            customer_type=data.get("customer_type") or "RETAIL",
            customer_id=parse_id(data.get("customer_id"), "customer_id", required=False),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            notes=data.get("notes"),
            shift_id=parse_id(data.get("shift_id"), "shift_id", required=False),
            store_id=parse_id(data.get("store_id"), "store_id", required=False),
        )
        return jsonify({"order": order.to_dict()}), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@require_auth
def list_orders_route():
    """List orders visible to the caller. Query: status, type, customer_type, ids, date range, page, limit."""
    try:
        page = services().orders.list(OrderFilter.from_args(request.args), g.actor)
        return jsonify(page.to_dict(lambda o: o.to_dict(include_items=False))), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = services().orders.get(order_id, g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>")
@require_auth
@require_capability(CREATE_ORDER)
def update_order_route(order_id: int):
    """Edit customer fields and notes of a DRAFT order."""
    try:
        data = require_json_object(request.get_json(silent=True))
        order = services().orders.update_meta(order_id, data, g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINE ITEMS
# =============================================================================

@orders_bp.post("/<int:order_id>/items")
@require_auth
@require_capability(CREATE_ORDER)
def add_item_route(order_id: int):
    """
    Request body:
    {
        "variant_id": 12,
        "quantity": 2,
        "discount_amount": "0.500"  (optional)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        orders = services().orders
        orders.add_item(
            order_id,
            parse_id(data.get("variant_id"), "variant_id"),
            data.get("quantity"),
            g.actor,
            discount_amount=data.get("discount_amount", 0),
        )
        return jsonify({"order": orders.get(order_id, g.actor).to_dict()}), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items/barcode")
@require_auth
@require_capability(CREATE_ORDER)
def add_item_by_barcode_route(order_id: int):
    """
    Scan-to-add. Merges with an existing line for the same variant.

    Request body: {"barcode": "629...", "quantity": 1, "discount_amount": 0}
    Returns the order and "action": "added" | "updated".
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        orders = services().orders
        item, action = orders.add_item_by_barcode(
            order_id,
            data.get("barcode"),
            data.get("quantity", 1),
            g.actor,
            discount_amount=data.get("discount_amount", 0),
        )
        return jsonify({
            "action": action,
            "item": item.to_dict(),
            "order": orders.get(order_id, g.actor).to_dict(),
        }), 200 if action == "updated" else 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add order item by barcode")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_capability(CREATE_ORDER)
def update_item_route(order_id: int, item_id: int):
    """Request body: {"quantity": 3} and/or {"discount_amount": "1.000"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        orders = services().orders
        orders.update_item(
            order_id,
            item_id,
            g.actor,
            quantity=data.get("quantity"),
            discount_amount=data.get("discount_amount"),
        )
        return jsonify({"order": orders.get(order_id, g.actor).to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_capability(CREATE_ORDER)
def remove_item_route(order_id: int, item_id: int):
    try:
        order = services().orders.remove_item(order_id, item_id, g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/confirm")
@require_auth
@require_capability(CREATE_ORDER)
def confirm_order_route(order_id: int):
    try:
        order = services().orders.confirm(order_id, g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_capability(CREATE_ORDER)
def cancel_order_route(order_id: int):
    """Request body: {"cancel_reason": "Customer left"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        order = services().orders.cancel(order_id, data.get("cancel_reason"), g.actor)
        return jsonify({"order": order.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVERSALS
# =============================================================================

@orders_bp.post("/return")
@require_auth
@require_capability(CREATE_RETURN)
def create_return_route():
    """
    Raise a RETURN bill against a PAID sale.

    Request body:
    {
        "original_order_id": 42,
        "reason": "Damaged",
        "items": [{"original_item_id": 101, "quantity": 1}]
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        order = services().orders.create_return_bill(
            parse_id(data.get("original_order_id"), "original_order_id"),
            data.get("reason"),
            parse_return_lines(data.get("items")),
            g.actor,
        )
        return jsonify({"order": order.to_dict()}), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return bill")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/void")
@require_auth
@require_capability(VOID_ORDER)
def void_order_route(order_id: int):
    """Request body: {"reason": "Wrong customer"}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        order = services().orders.void_order(order_id, data.get("reason"), g.actor)
        return jsonify({"order": order.to_dict()}), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void order")
        return jsonify({"error": "Internal server error"}), 500
