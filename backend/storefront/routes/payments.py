# Overview: Flask API routes for payments and reconciliation; parses input and returns JSON responses.

# backend/storefront/routes/payments.py
"""
Payment Reconciliation API Routes

WHY: Bank transfers and e-wallet payments are checked by staff against the
shop account before the order moves on.

DESIGN:
- Customers see and cancel their own pending payments
- Staff confirm (order -> confirmed in the same transaction) or reject
  (order untouched) pending payments
- Gateway-style processing/settle endpoints for integrations
- Only pending payments accept staff actions; others answer 409
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user, require_admin, is_admin
from ..errors import DomainError, NotFoundError, ValidationError
from ..services import order_service, payment_service
from ..validation import coerce_bool


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _get_visible_payment(payment_id: int):
    payment = payment_service.get_payment(payment_id)
    if not is_admin() and payment.user_id != g.user_id:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


# =============================================================================
# CUSTOMER
# =============================================================================

@payments_bp.get("/mine")
@require_user
def list_my_payments_route():
    payments = payment_service.list_user_payments(g.user_id)
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200


@payments_bp.get("/<int:payment_id>")
@require_user
def get_payment_route(payment_id: int):
    try:
        payment = _get_visible_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@payments_bp.get("/orders/<int:order_id>")
@require_user
def get_order_payment_route(order_id: int):
    """Latest payment for an order (the QR screen polls this)."""
    try:
        order = order_service.get_order(order_id)
        if not is_admin() and order.customer_id != g.user_id:
            raise NotFoundError(f"Order {order_id} not found")

        payment = payment_service.get_payment_by_order(order_id)
        if not payment:
            raise NotFoundError(f"No payment for order {order_id}")
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@payments_bp.post("/<int:payment_id>/cancel")
@require_user
def cancel_payment_route(payment_id: int):
    """
    Customer abandons a pending payment.

    Returns:
        200: Payment cancelled (order stays pending)
        404: Payment not found
        409: Payment is no longer pending
    """
    try:
        _get_visible_payment(payment_id)
        payment = payment_service.cancel_payment(payment_id, g.user_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STAFF
# =============================================================================

@payments_bp.get("")
@require_user
@require_admin
def list_payments_route():
    """
    List payments, newest first.

    Query params:
        status: pending | processing | success | failed | cancelled (optional)
    """
    try:
        payments = payment_service.list_payments(request.args.get("status"))
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@payments_bp.get("/stats")
@require_user
@require_admin
def payment_stats_route():
    return jsonify({"stats": payment_service.get_payment_summary()}), 200


@payments_bp.post("/<int:payment_id>/confirm")
@require_user
@require_admin
def confirm_payment_route(payment_id: int):
    """
    Confirm a pending payment.

    Request body:
    {
        "note": "Matched VCB statement line 42"  (optional)
    }

    Returns:
        200: Payment success, order confirmed
        404: Payment not found
        409: Payment not pending, or order can no longer be confirmed
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.confirm(payment_id, g.user_id, note=data.get("note"))
        current_app.logger.info(
            "Payment %s for order %s confirmed by %s",
            payment.transaction_id, payment.order_number, g.user_id,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "order": payment.order.to_dict(),
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/reject")
@require_user
@require_admin
def reject_payment_route(payment_id: int):
    """
    Reject a pending payment. The order keeps its status.

    Request body:
    {
        "reason": "Amount does not match"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        payment = payment_service.reject(payment_id, data.get("reason"), g.user_id)
        current_app.logger.info(
            "Payment %s for order %s rejected by %s",
            payment.transaction_id, payment.order_number, g.user_id,
        )
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/processing")
@require_user
@require_admin
def mark_processing_route(payment_id: int):
    try:
        payment = payment_service.mark_processing(payment_id, g.user_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark payment processing")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/settle")
@require_user
@require_admin
def settle_payment_route(payment_id: int):
    """
    Record the gateway outcome for a processing payment.

    Request body:
    {
        "succeeded": true,
        "note": "Gateway ref 8812"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "succeeded" not in data:
            raise ValidationError("succeeded is required")
        succeeded = coerce_bool("succeeded", data["succeeded"])

        payment = payment_service.settle(payment_id, succeeded, g.user_id, note=data.get("note"))
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle payment")
        return jsonify({"error": "Internal server error"}), 500
