# Overview: Flask API routes for checkout; parses the cart payload and returns JSON responses.

# backend/storefront/routes/checkout.py
"""
Checkout API Routes

WHY: The cart lives in the client session; checkout receives it whole,
prices it and places the order in one call.

DESIGN:
- /quote prices a cart (and a voucher code) without writing anything
- POST / places the order: order, stock, voucher redemption and payment
  are written together or not at all
- guests may check out; X-User-Id is used when present
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import DomainError
from ..services import checkout_service
from ..services.cart_service import Cart
from ..services.checkout_service import CustomerInfo
from ..services.payment_methods import PAYMENT_METHODS


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _optional_user_id():
    return (request.headers.get("X-User-Id") or "").strip() or None


@checkout_bp.get("/payment-methods")
def list_payment_methods_route():
    return jsonify({"payment_methods": [m.to_dict() for m in PAYMENT_METHODS]}), 200


@checkout_bp.post("/quote")
def quote_route():
    """
    Price a cart.

    Request body:
    {
        "items": [{"product_id": "p1", "name": "Milk", "unit_price": 25000, "quantity": 2}],
        "voucher_code": "SALE20"  (optional)
    }

    Returns:
        200: {cart, totals, voucher}; a rejected voucher is reported, not raised
        400: Invalid cart
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = Cart.from_dict(data)
        result = checkout_service.quote(
            cart,
            user_id=_optional_user_id(),
            voucher_code=data.get("voucher_code"),
        )
        return jsonify(result), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote cart")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("")
def place_order_route():
    """
    Place an order.

    Request body:
    {
        "items": [...],
        "customer": {"name": "...", "phone": "...", "address": "..."},
        "payment_method": "bank_transfer",
        "voucher_code": "SALE20",  (optional)
        "note": "Leave at the door"  (optional)
    }

    Returns:
        201: {order, payment, totals, voucher}
        400: Invalid input or voucher rejected (with reason)
        409: Voucher ran out or insufficient stock
        503: Storage unavailable
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = Cart.from_dict(data)
        customer = CustomerInfo.from_dict(data.get("customer"))

        result = checkout_service.place_order(
            cart,
            customer,
            user_id=_optional_user_id(),
            payment_method=data.get("payment_method"),
            voucher_code=data.get("voucher_code"),
            note=data.get("note"),
        )
        return jsonify(result.to_dict()), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500
