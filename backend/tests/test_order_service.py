"""
Order lifecycle tests.

Verifies:
- exactly six status edges are allowed; every other pair is rejected
- creation validates items, customer fields and totals
- transitions append history and emit order_status_changed after commit
- order numbers follow ORDyymmddNNNN and increase per day
"""

import itertools
import re
from datetime import datetime

import pytest

from storefront.errors import InvalidTransitionError, NotFoundError, ValidationError
from storefront.models import Order, OrderStatusEvent
from storefront.services import order_service
from storefront.signals import order_status_changed


ALLOWED = {
    ("pending", "confirmed"),
    ("confirmed", "preparing"),
    ("preparing", "delivering"),
    ("delivering", "completed"),
    ("pending", "cancelled"),
    ("confirmed", "cancelled"),
}

STATUSES = sorted(order_service.VALID_STATUSES)


# =============================================================================
# STATE MACHINE
# =============================================================================


@pytest.mark.parametrize("from_status,to_status", list(itertools.product(STATUSES, STATUSES)))
def test_can_transition_matches_allowed_edges(from_status, to_status):
    assert order_service.can_transition(from_status, to_status) == ((from_status, to_status) in ALLOWED)


def test_next_statuses():
    assert order_service.next_statuses("pending") == ["cancelled", "confirmed"]
    assert order_service.next_statuses("completed") == []


class TestAdvance:

    def _walk(self, order, *statuses):
        for status in statuses:
            order = order_service.advance(order.id, status, actor_user_id="admin-1")
        return order

    def test_happy_path_to_completed(self, db_session, make_order):
        order = make_order()
        order = self._walk(order, "confirmed", "preparing", "delivering", "completed")
        assert order.status == "completed"

        history = order_service.get_status_history(order.id)
        assert [(e.from_status, e.to_status) for e in history] == [
            (None, "pending"),
            ("pending", "confirmed"),
            ("confirmed", "preparing"),
            ("preparing", "delivering"),
            ("delivering", "completed"),
        ]

    def test_same_state_is_rejected(self, db_session, make_order):
        order = make_order()
        with pytest.raises(InvalidTransitionError) as exc:
            order_service.advance(order.id, "pending")
        assert exc.value.current == "pending"
        assert exc.value.requested == "pending"

    @pytest.mark.parametrize("path", [("confirmed", "preparing"), ("confirmed", "preparing", "delivering")])
    def test_cannot_cancel_after_fulfillment_started(self, db_session, make_order, path):
        order = self._walk(make_order(), *path)
        with pytest.raises(InvalidTransitionError):
            order_service.cancel(order.id)

    def test_cancel_from_confirmed(self, db_session, make_order):
        order = self._walk(make_order(), "confirmed")
        order = order_service.cancel(order.id, actor_user_id="admin-1", note="Customer called")
        assert order.status == "cancelled"

    def test_rejected_transition_writes_nothing(self, db_session, make_order):
        order = make_order()
        before = order.updated_at
        with pytest.raises(InvalidTransitionError):
            order_service.advance(order.id, "completed")

        db_session.expire_all()
        reloaded = db_session.get(Order, order.id)
        assert reloaded.status == "pending"
        assert reloaded.updated_at == before
        assert db_session.query(OrderStatusEvent).filter_by(order_id=order.id).count() == 1

    def test_unknown_status(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_service.advance(order.id, "shipped")

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.advance(9999, "confirmed")

    def test_advance_stamps_updated_at(self, db_session, make_order):
        order = make_order()
        before = order.updated_at
        order = order_service.advance(order.id, "confirmed")
        assert order.updated_at >= before


class TestSignals:

    def test_signal_sent_after_commit(self, db_session, make_order):
        received = []

        def receiver(sender, **payload):
            received.append(payload)

        order = make_order()
        with order_status_changed.connected_to(receiver):
            order_service.advance(order.id, "confirmed", actor_user_id="admin-1")

        assert len(received) == 1
        assert received[0]["order_id"] == order.id
        assert received[0]["from_status"] == "pending"
        assert received[0]["to_status"] == "confirmed"
        assert received[0]["actor_user_id"] == "admin-1"

    def test_no_signal_for_rejected_transition(self, db_session, make_order):
        received = []

        def receiver(sender, **payload):
            received.append(payload)

        order = make_order()
        with order_status_changed.connected_to(receiver):
            with pytest.raises(InvalidTransitionError):
                order_service.advance(order.id, "delivering")

        assert received == []

    def test_failing_receiver_does_not_undo_transition(self, db_session, make_order):
        def receiver(sender, **payload):
            raise RuntimeError("notification service down")

        order = make_order()
        with order_status_changed.connected_to(receiver):
            order = order_service.advance(order.id, "confirmed")

        assert order.status == "confirmed"


# =============================================================================
# CREATION
# =============================================================================


def _draft(**overrides):
    item = order_service.OrderItemDraft(
        product_id="p1",
        product_name="Milk",
        unit_price=50000,
        quantity=3,
        line_total=150000,
    )
    fields = dict(
        customer_name="Tran Thi B",
        customer_phone="0912345678",
        address="5 Nguyen Hue, HCMC",
        payment_method="cod",
        items=[item],
        subtotal=150000,
        discount=0,
        shipping_fee=30000,
        total=180000,
        customer_id="user-1",
    )
    fields.update(overrides)
    return order_service.OrderDraft(**fields)


class TestCreateOrder:

    def test_creates_pending_order_with_items(self, db_session):
        order = order_service.create_order(_draft())
        assert order.status == "pending"
        assert order.total == 180000
        assert [(i.product_id, i.quantity, i.line_total) for i in order.items] == [("p1", 3, 150000)]
        assert re.fullmatch(r"ORD\d{6}\d{4}", order.order_number)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"items": []},
            {"customer_name": "  "},
            {"customer_phone": ""},
            {"address": None},
            {"payment_method": "cash"},
            {"total": 170000},
            {"subtotal": 140000, "total": 170000},
            {"discount": 200000, "total": -20000},
        ],
    )
    def test_invalid_drafts_are_rejected(self, db_session, overrides):
        with pytest.raises(ValidationError):
            order_service.create_order(_draft(**overrides))
        assert db_session.query(Order).count() == 0

    def test_line_total_must_match(self, db_session):
        bad_item = order_service.OrderItemDraft("p1", "Milk", 50000, 3, 100000)
        with pytest.raises(ValidationError):
            order_service.create_order(_draft(items=[bad_item], subtotal=100000, total=130000))


class TestOrderNumbers:

    def test_numbers_increase_within_a_day(self, db_session):
        now = datetime(2026, 10, 19, 8, 30)
        first = order_service.generate_order_number(now)
        second = order_service.generate_order_number(now)
        db_session.commit()

        assert first == "ORD2610190001"
        assert second == "ORD2610190002"

    def test_numbers_restart_each_day(self, db_session):
        order_service.generate_order_number(datetime(2026, 10, 19))
        assert order_service.generate_order_number(datetime(2026, 10, 20)) == "ORD2610200001"


class TestQueries:

    def test_list_and_count(self, db_session, make_order):
        a = make_order(customer_id="user-1")
        make_order(customer_id="user-2")
        order_service.advance(a.id, "confirmed")

        assert [o.status for o in order_service.list_orders("confirmed")] == ["confirmed"]
        assert len(order_service.list_customer_orders("user-2")) == 1
        counts = order_service.count_by_status()
        assert counts["pending"] == 1
        assert counts["confirmed"] == 1
        assert counts["completed"] == 0

    def test_get_by_number(self, db_session, make_order):
        order = make_order()
        assert order_service.get_order_by_number(order.order_number).id == order.id
        with pytest.raises(NotFoundError):
            order_service.get_order_by_number("ORD0000000000")
