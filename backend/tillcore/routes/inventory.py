# Overview: Flask API routes for store inventory; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_capability
from ..errors import TillError, ValidationFailed
from ..permissions import ADJUST_INVENTORY, VIEW_REPORTS
from ..services.context import services
from ..services.filters import int_arg
from ..validation import require_json_object

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/<int:inventory_id>/adjust")
@require_auth
@require_capability(ADJUST_INVENTORY)
def adjust_inventory_route(inventory_id: int):
    """
    Apply a signed correction.

    Request body: {"delta": -2, "reason": "Damaged in storage"}
    Returns 409 if the result would go below zero.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        delta = data.get("delta")
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationFailed("delta must be an integer", details={"delta": "must be an integer"})
        record = services().inventory.adjust(inventory_id, delta, g.actor, reason=data.get("reason"))
        return jsonify({"inventory": record.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/low-stock")
@require_auth
@require_capability(VIEW_REPORTS)
def low_stock_route():
    """Records at or below reorder level. Query: store_id (optional)."""
    try:
        records = services().inventory.low_stock(g.actor, store_id=int_arg(request.args, "store_id"))
        return jsonify({"items": [r.to_dict() for r in records], "count": len(records)}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list low stock")
        return jsonify({"error": "Internal server error"}), 500
