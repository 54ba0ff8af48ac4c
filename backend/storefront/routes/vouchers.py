# Overview: Flask API routes for vouchers; parses input and returns JSON responses.

# backend/storefront/routes/vouchers.py
"""
Voucher API Routes

WHY: Customers check codes while editing their cart and browse vouchers
they can use; staff create, edit, disable and gift vouchers.

DESIGN:
- /apply only evaluates; nothing is consumed until checkout succeeds
- DELETE is a soft disable, vouchers referenced by orders are kept
- gifting to many users reports per-user failures instead of aborting
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_admin
from ..errors import DomainError, ValidationError
from ..services import voucher_service
from ..validation import coerce_int


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


# =============================================================================
# CUSTOMER
# =============================================================================

@vouchers_bp.post("/apply")
@require_user
def apply_voucher_route():
    """
    Evaluate a voucher code against a subtotal.

    Request body:
    {
        "code": "SALE20",
        "subtotal": 150000
    }

    Returns:
        200: {"voucher": VoucherAccepted | VoucherRejected}
        400: Invalid input
    """
    try:
        data = request.get_json(silent=True) or {}
        code = data.get("code")
        if not code:
            return jsonify({"error": "code is required"}), 400
        subtotal = coerce_int("subtotal", data.get("subtotal", 0), minimum=0)

        decision = voucher_service.evaluate_code(code, subtotal, g.user_id)
        return jsonify({"voucher": decision.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply voucher")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.get("/public")
def list_public_vouchers_route():
    vouchers = voucher_service.list_public_vouchers()
    return jsonify({"vouchers": [v.to_dict() for v in vouchers]}), 200


@vouchers_bp.get("/mine")
@require_user
def list_my_vouchers_route():
    """Unused vouchers gifted to the calling user."""
    grants = voucher_service.list_user_grants(g.user_id)
    return jsonify({"grants": [grant.to_dict() for grant in grants]}), 200


# =============================================================================
# ADMINISTRATION
# =============================================================================

@vouchers_bp.get("")
@require_user
@require_admin
def list_vouchers_route():
    status = request.args.get("status")
    try:
        vouchers = voucher_service.list_vouchers(status)
        return jsonify({"vouchers": [v.to_dict() for v in vouchers]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@vouchers_bp.post("")
@require_user
@require_admin
def create_voucher_route():
    """
    Create a voucher.

    Request body:
    {
        "code": "SALE20",
        "name": "Autumn sale",
        "type": "percentage",           (percentage | fixed_amount | free_shipping)
        "value": 20,
        "min_order_value": 100000,
        "max_discount": 20000,          (optional)
        "total_usage_limit": 100,       (optional, unlimited when omitted)
        "per_user_limit": 1,
        "start_date": "2026-10-01T00:00:00Z",
        "end_date": "2026-10-31T23:59:59Z",
        "is_public": true
    }

    Returns:
        201: Voucher created
        400: Invalid input
        409: Code already exists
    """
    try:
        data = request.get_json(silent=True) or {}
        voucher = voucher_service.create_voucher(data, user_id=g.user_id)
        current_app.logger.info("Voucher %s created by %s", voucher.code, g.user_id)
        return jsonify({"voucher": voucher.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create voucher")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.get("/stats")
@require_user
@require_admin
def voucher_stats_route():
    return jsonify({"stats": voucher_service.get_voucher_stats()}), 200


@vouchers_bp.get("/<int:voucher_id>")
@require_user
@require_admin
def get_voucher_route(voucher_id: int):
    try:
        voucher = voucher_service.get_voucher(voucher_id)
        return jsonify({"voucher": voucher.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@vouchers_bp.patch("/<int:voucher_id>")
@require_user
@require_admin
def update_voucher_route(voucher_id: int):
    """Patch editable fields; code, type and usage_count are fixed."""
    try:
        data = request.get_json(silent=True) or {}
        voucher = voucher_service.update_voucher(voucher_id, data)
        return jsonify({"voucher": voucher.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update voucher")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.delete("/<int:voucher_id>")
@require_user
@require_admin
def deactivate_voucher_route(voucher_id: int):
    try:
        voucher = voucher_service.deactivate_voucher(voucher_id)
        current_app.logger.info("Voucher %s deactivated by %s", voucher.code, g.user_id)
        return jsonify({"voucher": voucher.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate voucher")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.post("/<int:voucher_id>/gift")
@require_user
@require_admin
def gift_voucher_route(voucher_id: int):
    """
    Gift a voucher to one or more users.

    Request body:
    {
        "user_ids": ["u1", "u2"],
        "source": "admin_gift",        (optional)
        "source_details": "Loyalty"    (optional)
    }

    Returns:
        200: {"success": n, "failed": m, "errors": {user_id: message}}
        400: Invalid input
        404: Voucher not found
    """
    try:
        data = request.get_json(silent=True) or {}
        user_ids = data.get("user_ids")
        if not isinstance(user_ids, list) or not user_ids:
            raise ValidationError("user_ids must be a non-empty list")

        voucher_service.get_voucher(voucher_id)
        result = voucher_service.gift_voucher_to_users(
            [str(u) for u in user_ids],
            voucher_id,
            source=data.get("source") or voucher_service.SOURCE_ADMIN_GIFT,
            source_details=data.get("source_details"),
        )
        current_app.logger.info(
            "Voucher %s gifted by %s: %s succeeded, %s failed",
            voucher_id, g.user_id, result["success"], result["failed"],
        )
        return jsonify(result), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to gift voucher")
        return jsonify({"error": "Internal server error"}), 500
