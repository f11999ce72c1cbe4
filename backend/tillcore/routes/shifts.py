# Overview: Flask API routes for cash shifts; parses input and returns JSON responses.

"""
Cash Shift API Routes

DESIGN:
- One OPEN shift per (user, store); cash payments need it
- Close reconciles counted cash against opening + net cash taken
- Closing another user's shift requires MANAGE_SHIFTS
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import TillError
from ..services.context import services
from ..services.filters import ShiftFilter
from ..validation import parse_id, require_json_object

shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/open")
@require_auth
def open_shift_route():
    """Request body: {"opening_cash": "50.000", "notes": "...", "store_id": 1  (optional)}"""
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = services().shifts.open(
            g.actor,
            data.get("opening_cash"),
            notes=data.get("notes"),
            store_id=parse_id(data.get("store_id"), "store_id", required=False),
        )
        return jsonify({"shift": shift.to_dict()}), 201
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/close")
@require_auth
def close_shift_route():
    """
    Request body:
    {
        "closing_cash": "125.000",
        "notes": "...",
        "shift_id": 9  (optional; default is the caller's open shift)
    }
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        shift = services().shifts.close(
            g.actor,
            data.get("closing_cash"),
            notes=data.get("notes"),
            shift_id=parse_id(data.get("shift_id"), "shift_id", required=False),
        )
        return jsonify({"shift": shift.to_dict()}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
@require_auth
def current_shift_route():
    try:
        shifts = services().shifts
        shift = shifts.current_shift(g.actor)
        return jsonify({"shift": shifts.detail(shift) if shift else None}), 200
    except Exception:
        current_app.logger.exception("Failed to get current shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/")
@require_auth
def list_shifts_route():
    try:
        page = services().shifts.list(ShiftFilter.from_args(request.args), g.actor)
        return jsonify(page.to_dict()), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list shifts")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/<int:shift_id>")
@require_auth
def get_shift_route(shift_id: int):
    try:
        shifts = services().shifts
        return jsonify({"shift": shifts.detail(shifts.get(shift_id, g.actor))}), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/<int:shift_id>/summary")
@require_auth
def shift_summary_route(shift_id: int):
    try:
        summary = services().shifts.summary(shift_id, g.actor)
        return jsonify(summary), 200
    except TillError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to summarize shift")
        return jsonify({"error": "Internal server error"}), 500
