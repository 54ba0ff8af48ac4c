# Overview: Pure order-total calculation; no database access.

"""
Pricing Engine

Turns line items plus an optional accepted voucher into the four order totals.

RULES:
- subtotal = sum(unit_price * quantity), each term read through to_amount()
- shipping is waived at/above the threshold, for an empty cart, and for
  FREE_SHIPPING vouchers
- the discount is clamped to the subtotal after the voucher-type rule, so the
  total can never go negative
- FREE_SHIPPING vouchers express their benefit through shipping_fee, never
  through discount

The engine trusts its input: minimum-order and usage checks belong to the
voucher validator.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Any, Iterable, Mapping

from .money import round_amount, to_amount


VOUCHER_PERCENTAGE = "percentage"
VOUCHER_FIXED_AMOUNT = "fixed_amount"
VOUCHER_FREE_SHIPPING = "free_shipping"

VALID_VOUCHER_TYPES = [
    VOUCHER_PERCENTAGE,
    VOUCHER_FIXED_AMOUNT,
    VOUCHER_FREE_SHIPPING,
]


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    shipping_fee: int
    discount: int
    total: int

    def to_dict(self) -> dict:
        return asdict(self)


def _item_field(item: Any, name: str):
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def calculate_subtotal(items: Iterable[Any]) -> int:
    return sum(
        to_amount(_item_field(item, "unit_price")) * to_amount(_item_field(item, "quantity"))
        for item in items
    )


def calculate_shipping_fee(
    subtotal: int,
    shipping_threshold: int,
    shipping_fee: int,
    voucher_decision=None,
) -> int:
    if voucher_decision is not None and voucher_decision.type == VOUCHER_FREE_SHIPPING:
        return 0
    if subtotal == 0 or subtotal >= to_amount(shipping_threshold):
        return 0
    return to_amount(shipping_fee)


def calculate_discount(subtotal: int, voucher_decision=None) -> int:
    if voucher_decision is None:
        return 0

    value = to_amount(voucher_decision.value)

    if voucher_decision.type == VOUCHER_PERCENTAGE:
        discount = round_amount(Decimal(subtotal) * Decimal(value) / Decimal(100))
        if voucher_decision.max_discount is not None:
            discount = min(discount, to_amount(voucher_decision.max_discount))
    elif voucher_decision.type == VOUCHER_FIXED_AMOUNT:
        discount = value
    else:
        discount = 0

    return min(discount, subtotal)


def calculate_totals(
    items: Iterable[Any],
    shipping_threshold: int,
    shipping_fee: int,
    voucher_decision=None,
) -> OrderTotals:
    """
    Compute {subtotal, shipping_fee, discount, total} for a cart.

    Args:
        items: CartItem / OrderItem objects or mappings with unit_price and quantity
        shipping_threshold: subtotal at/above which shipping is free
        shipping_fee: flat fee charged below the threshold
        voucher_decision: a VoucherAccepted, or None

    Returns:
        OrderTotals with finite non-negative integers
    """
    items = list(items)
    subtotal = calculate_subtotal(items)
    shipping = calculate_shipping_fee(subtotal, shipping_threshold, shipping_fee, voucher_decision)
    discount = calculate_discount(subtotal, voucher_decision)
    total = max(subtotal + shipping - discount, 0)

    return OrderTotals(
        subtotal=subtotal,
        shipping_fee=shipping,
        discount=discount,
        total=total,
    )
