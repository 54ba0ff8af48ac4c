# Overview: Request identity decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app


def _is_authenticated() -> bool:
    return bool(getattr(g, "user_id", None))


def _is_admin() -> bool:
    return _is_authenticated() and g.user_role in current_app.config["ADMIN_ROLES"]


def require_user(f):
    """
    Require an identified user.

    Identity is established upstream by the gateway, which forwards:
    - X-User-Id: opaque user identifier
    - X-User-Role: role name (customer, staff, admin)

    Sets g.user_id and g.user_role. Returns 401 when X-User-Id is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get("X-User-Id") or "").strip()
        if not user_id:
            return jsonify({"error": "Authentication required"}), 401

        g.user_id = user_id
        g.user_role = (request.headers.get("X-User-Role") or "customer").strip().lower()
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require a staff role (ADMIN_ROLES). Must be stacked under @require_user."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401

        if not _is_admin():
            return jsonify({"error": "Permission denied"}), 403

        return f(*args, **kwargs)

    return decorated_function


def is_admin() -> bool:
    return _is_admin()
