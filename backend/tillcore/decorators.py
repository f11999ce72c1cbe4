# Overview: Request and capability decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .permissions import validate_capability_code
from .services import session_service


def _is_authenticated() -> bool:
    return getattr(g, "actor", None) is not None


def require_auth(f):
    """
    Require a bearer token and establish the caller.

    Sets ``g.actor`` (tillcore.permissions.Actor): user id, role, and the
    tenant context captured when the session was issued.

    Returns 401 for a missing, unknown, expired or revoked token, or a
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()
        actor = session_service.validate_session(db.session, token)
        if actor is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def require_capability(capability: str):
    """
    Require a capability of the caller's role. Must sit under @require_auth.
    """
    if not validate_capability_code(capability):
        raise ValueError(f"Unknown capability: {capability}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            actor = g.actor
            if not actor.can(capability):
                current_app.logger.info(
                    "Capability %s denied for user %s (%s) on %s %s",
                    capability, actor.user_id, actor.role.value, request.method, request.path,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_capability": capability,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
