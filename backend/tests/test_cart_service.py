"""
Cart tests.

Verifies:
- quantity stays >= 1 and within the stock seen at add time
- decreasing to zero removes the line
- client JSON round-trips into a validated cart
"""

import pytest

from storefront.errors import ValidationError
from storefront.services.cart_service import Cart


@pytest.fixture
def cart():
    cart = Cart()
    cart.add_item("p1", "Milk", 25000, stock=3)
    cart.add_item("p2", "Bread", 15000)
    return cart


class TestCartMutations:

    def test_add_existing_product_increases_quantity(self, cart):
        cart.add_item("p1", "Milk", 25000, stock=3)
        assert cart.find("p1").quantity == 2
        assert len(cart.items) == 2

    def test_increase_beyond_stock_is_rejected(self, cart):
        cart.increase("p1")
        cart.increase("p1")
        with pytest.raises(ValidationError):
            cart.increase("p1")
        assert cart.find("p1").quantity == 3

    def test_untracked_stock_has_no_cap(self, cart):
        for _ in range(50):
            cart.increase("p2")
        assert cart.find("p2").quantity == 51

    def test_decrease_to_zero_removes_line(self, cart):
        assert cart.decrease("p2") is None
        assert cart.find("p2") is None

    def test_set_quantity(self, cart):
        cart.set_quantity("p1", 3)
        assert cart.find("p1").quantity == 3
        with pytest.raises(ValidationError):
            cart.set_quantity("p1", 4)
        assert cart.set_quantity("p1", 0) is None
        assert cart.find("p1") is None

    def test_out_of_stock_product_cannot_be_added(self):
        with pytest.raises(ValidationError):
            Cart().add_item("p9", "Eggs", 30000, stock=0)

    def test_unknown_product_is_rejected(self, cart):
        with pytest.raises(ValidationError):
            cart.increase("nope")

    def test_clear(self, cart):
        cart.clear()
        assert cart.is_empty
        assert cart.subtotal == 0


class TestCartDerivedValues:

    def test_subtotal_and_item_count(self, cart):
        cart.increase("p1")
        assert cart.subtotal == 25000 * 2 + 15000
        assert cart.item_count == 3

    def test_to_order_items(self, cart):
        cart.increase("p1")
        items = cart.to_order_items()
        assert [(i.product_id, i.quantity, i.line_total) for i in items] == [
            ("p1", 2, 50000),
            ("p2", 1, 15000),
        ]


class TestCartFromDict:

    def test_round_trip(self, cart):
        rebuilt = Cart.from_dict(cart.to_dict())
        assert rebuilt.to_dict() == cart.to_dict()

    def test_duplicate_lines_are_merged(self):
        cart = Cart.from_dict({"items": [
            {"product_id": "p1", "name": "Milk", "unit_price": 25000, "quantity": 1},
            {"product_id": "p1", "name": "Milk", "unit_price": 25000, "quantity": 2},
        ]})
        assert cart.find("p1").quantity == 3

    @pytest.mark.parametrize(
        "item",
        [
            {"product_id": "p1", "name": "Milk", "unit_price": 25000, "quantity": 0},
            {"product_id": "p1", "name": "Milk", "unit_price": -1, "quantity": 1},
            {"product_id": "p1", "name": "Milk", "unit_price": 1.5, "quantity": 1},
            {"product_id": "", "name": "Milk", "unit_price": 25000, "quantity": 1},
            {"product_id": "p1", "name": "Milk", "unit_price": 25000, "quantity": 5, "stock_at_add_time": 2},
        ],
    )
    def test_invalid_items_are_rejected(self, item):
        with pytest.raises(ValidationError):
            Cart.from_dict({"items": [item]})

    def test_missing_items_is_empty_cart(self):
        assert Cart.from_dict({}).is_empty
        assert Cart.from_dict(None).is_empty
