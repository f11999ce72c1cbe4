# Overview: Inbound payment gateway webhooks.

"""
TAP webhook endpoint

The gateway retries anything that is not a 2xx, so this route always answers
200. Processing failures are logged and reported in the body as
``{"success": false, "error": ...}``.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import TillError
from ..services.context import services

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADER = "x-tap-signature"


@webhooks_bp.post("/tap")
def tap_webhook_route():
    raw_body = request.get_data(cache=True)
    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = services().payments.handle_webhook(raw_body, signature)
        return jsonify(result), 200
    except TillError as e:
        current_app.logger.warning("TAP webhook not applied: %s", e.message)
        return jsonify({"success": False, "error": e.message}), 200
    except Exception:
        current_app.logger.exception("TAP webhook processing failed")
        return jsonify({"success": False, "error": "Internal error"}), 200
