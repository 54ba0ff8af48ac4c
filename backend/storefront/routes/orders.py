# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/storefront/routes/orders.py
"""
Order API Routes

WHY: Customers follow their orders; staff move them through fulfillment.

DESIGN:
- Orders are only created by checkout, there is no POST here
- Status changes go through the order state machine; an illegal move is 409
- Customers only see their own orders
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_admin, is_admin
from ..errors import DomainError, NotFoundError, ValidationError
from ..services import order_service
from ..validation import coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _get_visible_order(order_id: int):
    """Orders belonging to someone else look like missing orders."""
    order = order_service.get_order(order_id)
    if not is_admin() and order.customer_id != g.user_id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# CUSTOMER
# =============================================================================

@orders_bp.get("/mine")
@require_user
def list_my_orders_route():
    orders = order_service.list_customer_orders(g.user_id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


@orders_bp.get("/<int:order_id>")
@require_user
def get_order_route(order_id: int):
    try:
        order = _get_visible_order(order_id)
        return jsonify({"order": order.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# STAFF
# =============================================================================

@orders_bp.get("")
@require_user
@require_admin
def list_orders_route():
    """
    List orders, newest first.

    Query params:
        status: filter by status (optional)
        limit: max rows (default 100, max 500)
        offset: rows to skip (default 0)
    """
    try:
        status = request.args.get("status")
        limit = coerce_int("limit", request.args.get("limit", 100), minimum=1, maximum=500)
        offset = coerce_int("offset", request.args.get("offset", 0), minimum=0)

        orders = order_service.list_orders(status, limit=limit, offset=offset)
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "counts": order_service.count_by_status(),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.post("/<int:order_id>/status")
@require_user
@require_admin
def advance_order_route(order_id: int):
    """
    Move an order to a new status.

    Request body:
    {
        "status": "preparing",
        "note": "Packed by Lan"  (optional)
    }

    Returns:
        200: Order updated
        400: Unknown status
        404: Order not found
        409: Transition not allowed
    """
    try:
        data = request.get_json(silent=True) or {}
        target = data.get("status")
        if not target:
            raise ValidationError("status is required")

        order = order_service.advance(order_id, target, actor_user_id=g.user_id, note=data.get("note"))
        current_app.logger.info("Order %s moved to %s by %s", order.order_number, target, g.user_id)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_user
@require_admin
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel(order_id, actor_user_id=g.user_id, note=data.get("note"))
        current_app.logger.info("Order %s cancelled by %s", order.order_number, g.user_id)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_user
@require_admin
def order_history_route(order_id: int):
    try:
        events = order_service.get_status_history(order_id)
        return jsonify({"history": [event.to_dict() for event in events]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
