"""
Checkout tests.

Verifies:
- order, stock decrement, voucher redemption and payment are written together
- any failure leaves the store and the cart untouched
- rejected vouchers surface their reason instead of being dropped
"""

import pytest

from storefront.errors import (
    InsufficientStockError,
    ValidationError,
    VoucherExhaustedError,
    VoucherRejectedError,
)
from storefront.extensions import db
from storefront.models import Order, Payment, Product, Voucher, VoucherRedemption
from storefront.services import checkout_service
from storefront.services.cart_service import Cart
from storefront.services.checkout_service import CustomerInfo


CUSTOMER = CustomerInfo(name="Le Van C", phone="0987654321", address="1 Tran Hung Dao, Hanoi")


def _cart(*lines):
    cart = Cart()
    for product_id, price, quantity, stock in lines:
        cart.add_item(product_id, f"Product {product_id}", price, stock=stock)
        if quantity > 1:
            cart.set_quantity(product_id, quantity)
    return cart


def _counts(db_session):
    db_session.expire_all()
    return (
        db_session.query(Order).count(),
        db_session.query(Payment).count(),
        db_session.query(VoucherRedemption).count(),
    )


class TestPlaceOrder:

    def test_bank_transfer_with_voucher(self, db_session, make_product, make_voucher, settings):
        make_product("p1", price=75000, stock=5)
        voucher = make_voucher(value=20, max_discount=20000, total_usage_limit=10)
        cart = _cart(("p1", 75000, 2, 5))

        result = checkout_service.place_order(
            cart, CUSTOMER, "user-1", "bank_transfer", voucher_code="sale20", settings=settings,
        )

        assert result.totals.to_dict() == {
            "subtotal": 150000,
            "shipping_fee": 30000,
            "discount": 20000,
            "total": 160000,
        }
        assert result.order.status == "pending"
        assert result.order.voucher_code == "SALE20"
        assert result.payment.status == "pending"
        assert result.payment.amount == 160000
        assert cart.is_empty

        db_session.expire_all()
        assert db_session.get(Product, "p1").stock == 3
        assert db_session.get(Voucher, voucher.id).usage_count == 1
        redemption = db_session.query(VoucherRedemption).one()
        assert redemption.order_id == result.order.id
        assert redemption.discount_amount == 20000

    def test_cash_on_delivery_creates_no_payment(self, db_session, make_product, settings):
        make_product("p1", price=250000)
        cart = _cart(("p1", 250000, 1, None))

        result = checkout_service.place_order(cart, CUSTOMER, "user-1", "cod", settings=settings)

        assert result.payment is None
        assert result.totals.shipping_fee == 0
        assert result.order.total == 250000

    def test_untracked_stock_is_not_decremented(self, db_session, make_product, settings):
        make_product("p1", price=10000, stock=None)
        checkout_service.place_order(_cart(("p1", 10000, 3, None)), CUSTOMER, None, "cod", settings=settings)

        db_session.expire_all()
        assert db_session.get(Product, "p1").stock is None

    def test_free_shipping_redemption_records_waived_fee(self, db_session, make_product, make_voucher, settings):
        make_product("p1", price=50000)
        make_voucher("SHIPFREE", type="free_shipping", value=0)

        result = checkout_service.place_order(
            _cart(("p1", 50000, 1, None)), CUSTOMER, "user-1", "cod", voucher_code="SHIPFREE", settings=settings,
        )

        assert result.totals.shipping_fee == 0
        assert result.totals.discount == 0
        assert db_session.query(VoucherRedemption).one().discount_amount == 30000


class TestPlaceOrderFailures:

    def test_empty_cart(self, db_session, settings):
        with pytest.raises(ValidationError):
            checkout_service.place_order(Cart(), CUSTOMER, "user-1", "cod", settings=settings)

    @pytest.mark.parametrize(
        "customer",
        [
            CustomerInfo(name="", phone="0987654321", address="Hanoi"),
            CustomerInfo(name="Le Van C", phone=" ", address="Hanoi"),
            CustomerInfo(name="Le Van C", phone="0987654321", address=""),
        ],
    )
    def test_missing_customer_fields(self, db_session, make_product, settings, customer):
        make_product("p1")
        cart = _cart(("p1", 50000, 1, None))
        with pytest.raises(ValidationError):
            checkout_service.place_order(cart, customer, "user-1", "cod", settings=settings)
        assert not cart.is_empty
        assert _counts(db_session) == (0, 0, 0)

    def test_invalid_payment_method(self, db_session, make_product, settings):
        make_product("p1")
        with pytest.raises(ValidationError):
            checkout_service.place_order(_cart(("p1", 50000, 1, None)), CUSTOMER, "user-1", "cash", settings=settings)

    def test_rejected_voucher_raises_with_reason(self, db_session, make_product, make_voucher, settings):
        make_product("p1", price=50000)
        make_voucher(min_order_value=100000)
        cart = _cart(("p1", 50000, 1, None))

        with pytest.raises(VoucherRejectedError) as exc:
            checkout_service.place_order(cart, CUSTOMER, "user-1", "cod", voucher_code="SALE20", settings=settings)

        assert exc.value.reason == "below_minimum"
        assert not cart.is_empty
        assert _counts(db_session) == (0, 0, 0)

    def test_insufficient_stock_rolls_everything_back(self, db_session, make_product, make_voucher, settings):
        make_product("p1", price=50000, stock=10)
        make_product("p2", price=50000, stock=1)
        voucher = make_voucher()
        cart = _cart(("p1", 50000, 2, 10), ("p2", 50000, 1, 1))
        # p2 sold out elsewhere after it was added to this cart
        db_session.get(Product, "p2").stock = 0
        db_session.commit()

        with pytest.raises(InsufficientStockError):
            checkout_service.place_order(
                cart, CUSTOMER, "user-1", "bank_transfer", voucher_code="SALE20", settings=settings,
            )

        assert _counts(db_session) == (0, 0, 0)
        assert db_session.get(Product, "p1").stock == 10
        assert db_session.get(Voucher, voucher.id).usage_count == 0
        assert not cart.is_empty

    def test_voucher_exhausted_between_evaluation_and_commit(self, db_session, make_product, make_voucher,
                                                             settings, monkeypatch):
        make_product("p1", price=150000)
        voucher = make_voucher(total_usage_limit=1)
        cart = _cart(("p1", 150000, 1, None))

        # Someone else takes the last use right after our evaluation
        original = checkout_service.voucher_service.evaluate_code

        def evaluate_then_race(*args, **kwargs):
            decision = original(*args, **kwargs)
            db.session.query(Voucher).filter_by(id=voucher.id).update({"usage_count": 1})
            db.session.commit()
            return decision

        monkeypatch.setattr(checkout_service.voucher_service, "evaluate_code", evaluate_then_race)

        with pytest.raises(VoucherExhaustedError):
            checkout_service.place_order(
                cart, CUSTOMER, "user-1", "bank_transfer", voucher_code="SALE20", settings=settings,
            )

        assert _counts(db_session) == (0, 0, 0)
        assert not cart.is_empty

    def test_line_price_must_match_catalog(self, db_session, make_product, settings):
        make_product("p1", price=500000, stock=5)
        cart = _cart(("p1", 1, 1, 5))

        with pytest.raises(ValidationError) as exc:
            checkout_service.place_order(cart, CUSTOMER, "user-1", "bank_transfer", settings=settings)

        assert exc.value.details == {"product_id": "p1", "unit_price": 500000}
        assert _counts(db_session) == (0, 0, 0)
        assert db_session.get(Product, "p1").stock == 5
        assert not cart.is_empty

    def test_guest_checkouts_share_per_user_limit(self, db_session, make_product, make_voucher, settings):
        make_product("p1", price=150000)
        make_voucher(per_user_limit=1)

        checkout_service.place_order(
            _cart(("p1", 150000, 1, None)), CUSTOMER, None, "cod", voucher_code="SALE20", settings=settings,
        )
        with pytest.raises(VoucherRejectedError) as exc:
            checkout_service.place_order(
                _cart(("p1", 150000, 1, None)), CUSTOMER, None, "cod", voucher_code="SALE20", settings=settings,
            )

        assert exc.value.reason == "per_user_exceeded"
        assert _counts(db_session) == (1, 0, 1)

    def test_inactive_product(self, db_session, make_product, settings):
        make_product("p1", is_active=False)
        with pytest.raises(ValidationError):
            checkout_service.place_order(_cart(("p1", 50000, 1, None)), CUSTOMER, "user-1", "cod", settings=settings)


class TestQuote:

    def test_quote_reports_rejection_without_discount(self, db_session, make_voucher, settings):
        make_voucher(min_order_value=500000)
        result = checkout_service.quote(_cart(("p1", 150000, 1, None)), "user-1", "SALE20", settings=settings)

        assert result["voucher"]["accepted"] is False
        assert result["voucher"]["reason"] == "below_minimum"
        assert result["totals"]["total"] == 180000

    def test_quote_applies_accepted_voucher(self, db_session, make_voucher, settings):
        make_voucher(value=20, max_discount=20000)
        result = checkout_service.quote(_cart(("p1", 150000, 1, None)), "user-1", "SALE20", settings=settings)

        assert result["voucher"]["accepted"] is True
        assert result["totals"]["total"] == 160000
        assert db_session.query(VoucherRedemption).count() == 0
