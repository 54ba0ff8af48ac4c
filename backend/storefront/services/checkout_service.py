# Overview: Checkout orchestration; turns a cart into an order (and payment) in one transaction.

"""
Checkout Service

FLOW:
1. Validate customer fields and the cart; every line must match an active
   catalog product at its current price (ValidationError, nothing written)
2. Evaluate the voucher code, if any (rejection raises VoucherRejectedError
   carrying the reason; a bad code is never silently dropped)
3. Price the cart with the pricing engine
4. In ONE transaction:
   - create the order in pending
   - decrement stock for tracked products (conditional; any short line aborts)
   - redeem the voucher (guarded increment; a late exhaustion aborts)
   - open a pending payment for methods that need confirmation
5. Clear the cart only after the commit

On any failure the store and the cart are left exactly as they were.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import InsufficientStockError, ValidationError, VoucherRejectedError
from ..extensions import db
from ..models import Order, Payment, Product
from ..validation import optional_text, require_text
from . import order_service, payment_service, voucher_service
from .cart_service import Cart
from .concurrency import guarded_update, run_in_transaction
from .money import to_amount
from .payment_methods import VALID_PAYMENT_METHODS, is_enabled, requires_confirmation
from .pricing_service import VOUCHER_FREE_SHIPPING, OrderTotals, calculate_totals


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: str
    address: str

    @classmethod
    def from_dict(cls, data: dict | None) -> "CustomerInfo":
        data = data or {}
        return cls(
            name=require_text("customer_name", data.get("name")),
            phone=require_text("customer_phone", data.get("phone"), max_length=32),
            address=require_text("address", data.get("address"), max_length=1000),
        )


@dataclass(frozen=True)
class CheckoutSettings:
    shipping_fee: int
    free_shipping_threshold: int
    bank_account: payment_service.BankAccount

    @classmethod
    def from_config(cls, config) -> "CheckoutSettings":
        return cls(
            shipping_fee=to_amount(config["SHIPPING_FEE"]),
            free_shipping_threshold=to_amount(config["FREE_SHIPPING_THRESHOLD"]),
            bank_account=payment_service.BankAccount.from_config(config),
        )


@dataclass
class CheckoutResult:
    order: Order
    payment: Payment | None
    totals: OrderTotals
    decision: voucher_service.VoucherAccepted | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "payment": self.payment.to_dict() if self.payment else None,
            "totals": self.totals.to_dict(),
            "voucher": self.decision.to_dict() if self.decision else None,
        }


def _settings(settings: CheckoutSettings | None) -> CheckoutSettings:
    return settings or CheckoutSettings.from_config(current_app.config)


def _price(cart: Cart, decision, settings: CheckoutSettings) -> OrderTotals:
    return calculate_totals(
        cart.items,
        settings.free_shipping_threshold,
        settings.shipping_fee,
        decision,
    )


def _voucher_benefit(decision, totals: OrderTotals, settings: CheckoutSettings) -> int:
    """Amount the customer saved: the discount, or the waived fee for free-shipping vouchers."""
    if decision.type == VOUCHER_FREE_SHIPPING:
        if totals.subtotal and totals.subtotal < settings.free_shipping_threshold:
            return settings.shipping_fee
        return 0
    return totals.discount


# =============================================================================
# QUOTE
# =============================================================================

def quote(
    cart: Cart,
    user_id: str | None = None,
    voucher_code: str | None = None,
    settings: CheckoutSettings | None = None,
) -> dict:
    """
    Price a cart without writing anything.

    A rejected voucher is reported next to the un-discounted totals so the
    user can see why while editing their cart.
    """
    settings = _settings(settings)
    decision = None
    if voucher_code:
        decision = voucher_service.evaluate_code(voucher_code, cart.subtotal, user_id)

    accepted = decision if decision is not None and decision.accepted else None
    totals = _price(cart, accepted, settings)
    return {
        "cart": cart.to_dict(),
        "totals": totals.to_dict(),
        "voucher": decision.to_dict() if decision is not None else None,
    }


# =============================================================================
# PLACE ORDER
# =============================================================================

def _catalog_product(item) -> Product:
    """The active catalog row for a cart line whose price still matches it."""
    product = db.session.get(Product, item.product_id)
    if product is None or not product.is_active:
        raise ValidationError(
            f"{item.name} is no longer available",
            details={"product_id": item.product_id},
        )
    if item.unit_price != product.price:
        raise ValidationError(
            f"The price of {product.name} has changed, please review your cart",
            details={"product_id": product.id, "unit_price": product.price},
        )
    return product


def verify_cart(cart: Cart) -> None:
    """Check every line against the catalog before it is priced."""
    for item in cart.items:
        _catalog_product(item)


def _decrement_stock(cart: Cart) -> None:
    for item in cart.items:
        product = _catalog_product(item)
        if product.stock is None:
            continue

        decremented = guarded_update(
            db.session.query(Product).filter(
                Product.id == item.product_id,
                Product.stock >= item.quantity,
            ),
            {Product.stock: Product.stock - item.quantity},
        )
        if not decremented:
            raise InsufficientStockError(
                f"Not enough stock for {item.name}",
                details={"product_id": item.product_id, "requested": item.quantity},
            )


def place_order(
    cart: Cart,
    customer: CustomerInfo,
    user_id: str | None,
    payment_method: str,
    voucher_code: str | None = None,
    note: str | None = None,
    settings: CheckoutSettings | None = None,
) -> CheckoutResult:
    """
    Place an order for the cart.

    Raises:
        ValidationError: empty cart, missing customer fields, bad payment method,
            product no longer available or its price changed
        VoucherRejectedError: the voucher code was rejected (carries reason)
        VoucherExhaustedError: the voucher ran out between evaluation and commit
        InsufficientStockError: a tracked product cannot cover its line
        StoreUnavailableError: storage failure, nothing written
    """
    settings = _settings(settings)

    if cart is None or cart.is_empty:
        raise ValidationError("Cart is empty")
    require_text("customer_name", customer.name)
    require_text("customer_phone", customer.phone, max_length=32)
    require_text("address", customer.address, max_length=1000)
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}"
        )
    if not is_enabled(payment_method):
        raise ValidationError(f"Payment method {payment_method} is not available")
    note = optional_text("note", note, max_length=1000)
    verify_cart(cart)

    decision = None
    if voucher_code and voucher_code.strip():
        result = voucher_service.evaluate_code(voucher_code, cart.subtotal, user_id)
        if not result.accepted:
            raise VoucherRejectedError(result)
        decision = result

    totals = _price(cart, decision, settings)
    draft = order_service.OrderDraft(
        customer_name=customer.name,
        customer_phone=customer.phone,
        address=customer.address,
        payment_method=payment_method,
        items=cart.to_order_items(),
        subtotal=totals.subtotal,
        discount=totals.discount,
        shipping_fee=totals.shipping_fee,
        total=totals.total,
        customer_id=user_id,
        voucher_code=decision.code if decision else None,
        note=note,
    )

    def _op():
        order = order_service.create_order(draft, actor_user_id=user_id, commit=False)
        _decrement_stock(cart)

        if decision is not None:
            voucher_service.redeem(
                decision,
                user_id=user_id,
                order_id=order.id,
                order_number=order.order_number,
                discount_amount=_voucher_benefit(decision, totals, settings),
                order_total=totals.total,
            )

        payment = None
        if requires_confirmation(payment_method) and totals.total > 0:
            payment = payment_service.create_payment(
                order,
                payment_method,
                settings.bank_account,
                user_id=user_id,
                commit=False,
            )
        return order, payment

    order, payment = run_in_transaction(_op)
    cart.clear()

    current_app.logger.info(
        "Order %s placed: total=%s method=%s voucher=%s",
        order.order_number, order.total, payment_method, order.voucher_code,
    )
    return CheckoutResult(order=order, payment=payment, totals=totals, decision=decision)
