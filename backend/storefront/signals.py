# Overview: Status-change signals for subscribers outside the core (notification fan-out, chat, analytics).

"""
Signals are queued on the SQLAlchemy session while a unit of work runs and
sent only after it commits; a rolled-back transaction sends nothing.

Receivers get the app as sender plus keyword payloads:

    order_status_changed:   order_id, order_number, customer_id, from_status, to_status, actor_user_id
    payment_status_changed: payment_id, order_id, user_id, from_status, to_status, actor_user_id
"""

from __future__ import annotations

from blinker import Namespace
from flask import current_app

from .extensions import db

_signals = Namespace()

order_status_changed = _signals.signal("order-status-changed")
payment_status_changed = _signals.signal("payment-status-changed")

_PENDING_KEY = "storefront_pending_signals"


def queue_signal(signal, **payload) -> None:
    db.session.info.setdefault(_PENDING_KEY, []).append((signal, payload))


def discard_pending_signals() -> None:
    db.session.info.pop(_PENDING_KEY, None)


def send_pending_signals() -> None:
    """
    Deliver queued signals. Receiver failures are logged, never raised:
    the write they describe has already been committed.
    """
    pending = db.session.info.pop(_PENDING_KEY, [])
    app = current_app._get_current_object()
    for signal, payload in pending:
        try:
            signal.send(app, **payload)
        except Exception:
            app.logger.exception("Status signal receiver failed for %s", signal.name)
