# Overview: Session-owned shopping cart value object handed to checkout.

"""
Cart

One cart per session; the caller (route, CLI, test) owns it and passes it to
checkout explicitly. Nothing here touches the database.

RULES:
- every line has quantity >= 1; decreasing to zero removes the line
- when the stock seen at add time is known, quantity never exceeds it
- adding a product already in the cart bumps its quantity by one
- prices are captured at add time; checkout re-reads nothing from the catalog
  except stock
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import ValidationError
from ..validation import coerce_int, coerce_optional_int, require_text
from .money import to_amount
from .order_service import OrderItemDraft


@dataclass
class CartItem:
    product_id: str
    name: str
    unit_price: int
    quantity: int = 1
    stock_at_add_time: int | None = None

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "stock_at_add_time": self.stock_at_add_time,
            "line_total": self.line_total,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(
            product_id=require_text("product_id", data.get("product_id"), max_length=64),
            name=require_text("name", data.get("name")),
            unit_price=coerce_int("unit_price", data.get("unit_price"), minimum=0),
            quantity=coerce_int("quantity", data.get("quantity", 1), minimum=1),
            stock_at_add_time=coerce_optional_int("stock_at_add_time", data.get("stock_at_add_time"), minimum=0),
        )


@dataclass
class Cart:
    items: list[CartItem] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def find(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def _require(self, product_id: str) -> CartItem:
        item = self.find(product_id)
        if item is None:
            raise ValidationError(f"Product {product_id} is not in the cart")
        return item

    @staticmethod
    def _check_stock(item: CartItem, quantity: int) -> None:
        if item.stock_at_add_time is not None and quantity > item.stock_at_add_time:
            raise ValidationError(
                f"Only {item.stock_at_add_time} of {item.name} available",
                details={"product_id": item.product_id, "available": item.stock_at_add_time},
            )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_item(self, product_id: str, name: str, unit_price, stock: int | None = None) -> CartItem:
        """Add one unit; an existing line for the product is increased instead."""
        existing = self.find(product_id)
        if existing:
            if stock is not None:
                existing.stock_at_add_time = stock
            return self.increase(product_id)

        if stock is not None and stock < 1:
            raise ValidationError(f"{name} is out of stock", details={"product_id": product_id})

        price = to_amount(unit_price, fallback=-1)
        if price < 0:
            raise ValidationError(f"Invalid price for {name}")

        item = CartItem(
            product_id=product_id,
            name=name,
            unit_price=price,
            quantity=1,
            stock_at_add_time=stock,
        )
        self.items.append(item)
        return item

    def increase(self, product_id: str) -> CartItem:
        item = self._require(product_id)
        self._check_stock(item, item.quantity + 1)
        item.quantity += 1
        return item

    def decrease(self, product_id: str) -> CartItem | None:
        """Returns None once the line drops to zero and is removed."""
        item = self._require(product_id)
        if item.quantity <= 1:
            self.remove(product_id)
            return None
        item.quantity -= 1
        return item

    def set_quantity(self, product_id: str, quantity) -> CartItem | None:
        item = self._require(product_id)
        quantity = coerce_int("quantity", quantity, minimum=0)
        if quantity == 0:
            self.remove(product_id)
            return None
        self._check_stock(item, quantity)
        item.quantity = quantity
        return item

    def remove(self, product_id: str) -> None:
        self.items = [item for item in self.items if item.product_id != product_id]

    def clear(self) -> None:
        self.items = []

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    @property
    def subtotal(self) -> int:
        return sum(item.line_total for item in self.items)

    @property
    def item_count(self) -> int:
        """Total units, not distinct lines."""
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_order_items(self) -> list[OrderItemDraft]:
        return [
            OrderItemDraft(
                product_id=item.product_id,
                product_name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in self.items
        ]

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "item_count": self.item_count,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Cart":
        """Rebuild a cart from client JSON; duplicate product lines are merged."""
        raw_items = (data or {}).get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")

        cart = cls()
        for raw in raw_items:
            if not isinstance(raw, dict):
                raise ValidationError("Each cart item must be an object")
            item = CartItem.from_dict(raw)
            existing = cart.find(item.product_id)
            if existing:
                existing.quantity += item.quantity
                cart._check_stock(existing, existing.quantity)
            else:
                cart._check_stock(item, item.quantity)
                cart.items.append(item)
        return cart
