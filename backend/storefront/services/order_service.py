# Overview: Service-layer operations for orders; owns the order status state machine.

"""
Order Lifecycle Service

================================================================================
STATE MACHINE
================================================================================

    pending -> confirmed -> preparing -> delivering -> completed
    pending   -> cancelled
    confirmed -> cancelled

RULES:
1. Exactly the six edges above are allowed; everything else, including a
   transition to the current state, raises InvalidTransitionError
2. An order that has started fulfillment (preparing/delivering) cannot be
   cancelled; completed and cancelled are terminal
3. Orders are only created by checkout, always in pending, with an item list
   that never changes afterwards
4. Every transition stamps updated_at, appends an OrderStatusEvent and queues
   order_status_changed for delivery after commit
5. Cash-on-delivery orders are advanced by staff directly; other orders are
   usually confirmed by payment reconciliation

No stock restock or voucher release happens on cancellation.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import update

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, OrderSequence, OrderStatusEvent
from ..signals import order_status_changed, queue_signal
from ..time_utils import utcnow
from ..validation import require_text
from .concurrency import lock_for_update, run_in_transaction
from .money import to_amount
from .payment_methods import VALID_PAYMENT_METHODS


STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PREPARING = "preparing"
STATUS_DELIVERING = "delivering"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = {
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PREPARING,
    STATUS_DELIVERING,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
}

ALLOWED_TRANSITIONS = {
    (STATUS_PENDING, STATUS_CONFIRMED),
    (STATUS_CONFIRMED, STATUS_PREPARING),
    (STATUS_PREPARING, STATUS_DELIVERING),
    (STATUS_DELIVERING, STATUS_COMPLETED),
    (STATUS_PENDING, STATUS_CANCELLED),
    (STATUS_CONFIRMED, STATUS_CANCELLED),
}


@dataclass
class OrderItemDraft:
    product_id: str
    product_name: str
    unit_price: int
    quantity: int
    line_total: int


@dataclass
class OrderDraft:
    """Everything checkout hands over to create an order."""
    customer_name: str
    customer_phone: str
    address: str
    payment_method: str
    items: list[OrderItemDraft] = field(default_factory=list)
    subtotal: int = 0
    discount: int = 0
    shipping_fee: int = 0
    total: int = 0
    customer_id: str | None = None
    voucher_code: str | None = None
    note: str | None = None


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """True only for the six allowed edges."""
    return (from_status, to_status) in ALLOWED_TRANSITIONS


def next_statuses(from_status: str) -> list[str]:
    return sorted(to for (frm, to) in ALLOWED_TRANSITIONS if frm == from_status)


# =============================================================================
# ORDER NUMBERS
# =============================================================================

def generate_order_number(now: datetime | None = None) -> str:
    """
    Allocate the next order number for the day: ORDyymmddNNNN.

    Must run inside the caller's transaction; the per-day counter row is
    bumped with a single UPDATE so concurrent checkouts never share a number.
    """
    day_key = (now or utcnow()).strftime("%y%m%d")

    stmt = (
        update(OrderSequence)
        .where(OrderSequence.day_key == day_key)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(day_key=day_key)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(OrderSequence(day_key=day_key, next_number=2))
        db.session.flush()
        next_num = 1

    return f"ORD{day_key}{next_num:04d}"


# =============================================================================
# CREATION
# =============================================================================

def _validate_draft(draft: OrderDraft) -> None:
    if not draft.items:
        raise ValidationError("Cannot create an order with no items")

    require_text("customer_name", draft.customer_name)
    require_text("customer_phone", draft.customer_phone, max_length=32)
    require_text("address", draft.address, max_length=1000)

    if draft.payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {draft.payment_method}. Must be one of {VALID_PAYMENT_METHODS}"
        )

    line_sum = 0
    for index, item in enumerate(draft.items, start=1):
        if not item.product_id:
            raise ValidationError(f"Item {index} has no product_id")
        if not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError(f"Item {index} must have a quantity of at least 1")
        if to_amount(item.unit_price, fallback=-1) != item.unit_price:
            raise ValidationError(f"Item {index} has an invalid unit price")
        if item.line_total != item.unit_price * item.quantity:
            raise ValidationError(f"Item {index} line total does not match unit price x quantity")
        line_sum += item.line_total

    for name in ("subtotal", "discount", "shipping_fee", "total"):
        value = getattr(draft, name)
        if to_amount(value, fallback=-1) != value:
            raise ValidationError(f"{name} must be a non-negative amount")

    if line_sum != draft.subtotal:
        raise ValidationError(
            "Order subtotal does not match its items",
            details={"subtotal": draft.subtotal, "items_total": line_sum},
        )

    expected_total = draft.subtotal + draft.shipping_fee - draft.discount
    if draft.total != expected_total:
        raise ValidationError(
            "Order total is inconsistent with subtotal, shipping and discount",
            details={"total": draft.total, "expected_total": expected_total},
        )


def create_order(draft: OrderDraft, actor_user_id: str | None = None, *, commit: bool = True) -> Order:
    """
    Create an order in pending.

    Args:
        draft: priced order contents
        actor_user_id: who placed it (None for guests)
        commit: False when the caller owns the transaction (checkout)

    Raises:
        ValidationError: empty items, missing customer fields or inconsistent totals
    """
    _validate_draft(draft)

    def _op():
        now = utcnow()
        order = Order(
            order_number=generate_order_number(now),
            customer_id=draft.customer_id,
            customer_name=draft.customer_name.strip(),
            customer_phone=draft.customer_phone.strip(),
            address=draft.address.strip(),
            subtotal=draft.subtotal,
            discount=draft.discount,
            shipping_fee=draft.shipping_fee,
            total=draft.total,
            voucher_code=draft.voucher_code,
            payment_method=draft.payment_method,
            status=STATUS_PENDING,
            note=draft.note,
            created_at=now,
            updated_at=now,
        )
        order.items = [
            OrderItem(
                product_id=str(item.product_id),
                product_name=item.product_name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in draft.items
        ]
        db.session.add(order)
        db.session.flush()

        _record_transition(order, None, STATUS_PENDING, actor_user_id, "Order placed", now)
        return order

    return run_in_transaction(_op, commit=commit)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _record_transition(
    order: Order,
    from_status: str | None,
    to_status: str,
    actor_user_id: str | None,
    note: str | None,
    occurred_at: datetime,
) -> None:
    db.session.add(OrderStatusEvent(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        note=note[:255] if note else None,
        occurred_at=occurred_at,
    ))
    queue_signal(
        order_status_changed,
        order_id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
    )


def advance_locked(order: Order, target_status: str, actor_user_id: str | None = None, note: str | None = None) -> Order:
    """Apply a transition to an order the caller has already loaded (and locked)."""
    validate_status(target_status)

    current = order.status
    if not can_transition(current, target_status):
        raise InvalidTransitionError(current, target_status)

    now = utcnow()
    order.status = target_status
    order.updated_at = now
    _record_transition(order, current, target_status, actor_user_id, note, now)
    return order


def advance(
    order: Order | int,
    target_status: str,
    actor_user_id: str | None = None,
    note: str | None = None,
    *,
    commit: bool = True,
) -> Order:
    """
    Move an order along the state machine.

    Raises:
        NotFoundError: order does not exist
        ValidationError: target_status is not a known status
        InvalidTransitionError: the edge is not allowed
    """
    order_id = order.id if isinstance(order, Order) else order

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not locked:
            raise NotFoundError(f"Order {order_id} not found")
        return advance_locked(locked, target_status, actor_user_id, note)

    return run_in_transaction(_op, commit=commit)


def cancel(order: Order | int, actor_user_id: str | None = None, note: str | None = None) -> Order:
    return advance(order, STATUS_CANCELLED, actor_user_id, note)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise NotFoundError(f"Order {order_number} not found")
    return order


def list_orders(status: str | None = None, limit: int = 100, offset: int = 0) -> list[Order]:
    q = db.session.query(Order)
    if status:
        validate_status(status)
        q = q.filter_by(status=status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()


def list_customer_orders(customer_id: str) -> list[Order]:
    return db.session.query(Order).filter_by(
        customer_id=customer_id,
    ).order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_status_history(order_id: int) -> list[OrderStatusEvent]:
    get_order(order_id)
    return db.session.query(OrderStatusEvent).filter_by(
        order_id=order_id,
    ).order_by(OrderStatusEvent.occurred_at, OrderStatusEvent.id).all()


def count_by_status() -> dict:
    counts = {status: 0 for status in VALID_STATUSES}
    rows = db.session.query(Order.status, db.func.count(Order.id)).group_by(Order.status).all()
    for status, count in rows:
        counts[status] = count
    return counts
