# Overview: Service-layer operations for payments; owns the payment status state machine and reconciliation.

"""
Payment Reconciliation Service

WHY: Bank transfers and e-wallet payments are not trusted until staff (or a
gateway callback) confirms them. Confirmation is what moves the order forward.

STATE MACHINE:
    pending -> processing -> success
    pending -> success                  (staff confirm)
    pending -> failed | cancelled
    processing -> failed
    success, failed and cancelled are terminal.

RECONCILIATION RULES:
- confirm() and the order's advance to confirmed commit together or not at all
- reject() marks the payment failed but leaves the order alone: a failed
  payment is not a withdrawn purchase, staff may ask for a new payment
- only pending payments accept staff actions; anything else raises
  InvalidStateError and changes nothing
- amount is copied from the order total at creation and never changes
"""

from __future__ import annotations

import secrets
import string
import time
import json
import unicodedata
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import quote

from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, Payment, PaymentStatusEvent
from ..signals import payment_status_changed, queue_signal
from ..time_utils import utcnow
from . import order_service
from .concurrency import lock_for_update, run_in_transaction
from .payment_methods import (
    METHOD_BANK_TRANSFER,
    VALID_PAYMENT_METHODS,
    is_enabled,
    requires_confirmation,
)


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

VALID_STATUSES = [
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SUCCESS,
    STATUS_FAILED,
    STATUS_CANCELLED,
]

ACTIVE_STATUSES = [STATUS_PENDING, STATUS_PROCESSING, STATUS_SUCCESS]

ALLOWED_TRANSITIONS = {
    (STATUS_PENDING, STATUS_PROCESSING),
    (STATUS_PENDING, STATUS_SUCCESS),
    (STATUS_PENDING, STATUS_FAILED),
    (STATUS_PENDING, STATUS_CANCELLED),
    (STATUS_PROCESSING, STATUS_SUCCESS),
    (STATUS_PROCESSING, STATUS_FAILED),
}

DEFAULT_REJECT_REASON = "Transaction could not be verified"
DEFAULT_CONFIRM_NOTE = "Confirmed by staff"


def can_transition(from_status: str, to_status: str) -> bool:
    return (from_status, to_status) in ALLOWED_TRANSITIONS


# =============================================================================
# QR CODE GENERATION
# =============================================================================

@dataclass(frozen=True)
class BankAccount:
    bank_bin: str
    bank_name: str
    bank_short_name: str
    account_number: str
    account_name: str
    qr_template: str = "compact2"

    @classmethod
    def from_config(cls, config) -> "BankAccount":
        return cls(
            bank_bin=config["SHOP_BANK_BIN"],
            bank_name=config["SHOP_BANK_NAME"],
            bank_short_name=config["SHOP_BANK_SHORT_NAME"],
            account_number=config["SHOP_BANK_ACCOUNT_NUMBER"],
            account_name=config["SHOP_BANK_ACCOUNT_NAME"],
            qr_template=config.get("VIETQR_TEMPLATE", "compact2"),
        )


VIETQR_BASE_URL = "https://img.vietqr.io/image"
EWALLET_QR_BASE_URL = "https://api.qrserver.com/v1/create-qr-code/"


def strip_diacritics(text: str) -> str:
    """Vietnamese text -> plain ASCII letters (đ/Đ have no decomposition, so map them by hand)."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("đ", "d").replace("Đ", "D")


def transfer_content(description: str) -> str:
    """Bank transfer memo: ASCII letters, digits and spaces, at most 50 characters."""
    return re.sub(r"[^a-zA-Z0-9\s]", "", strip_diacritics(description))[:50]


def generate_vietqr_url(amount: int, description: str, account: BankAccount) -> str:
    """QR image that any Vietnamese banking app can scan to pre-fill the transfer."""
    return (
        f"{VIETQR_BASE_URL}/{account.bank_bin}-{account.account_number}-{account.qr_template}.png"
        f"?amount={amount}"
        f"&addInfo={quote(transfer_content(description))}"
        f"&accountName={quote(account.account_name)}"
    )


def generate_ewallet_qr_url(method: str, amount: int, transaction_id: str) -> str:
    # Placeholder QR until the wallet SDKs are integrated
    content = json.dumps({
        "method": method,
        "amount": amount,
        "transactionId": transaction_id,
        "timestamp": int(time.time() * 1000),
    }, separators=(",", ":"))
    return f"{EWALLET_QR_BASE_URL}?size=250x250&data={quote(content)}"


def generate_qr_code(method: str, amount: int, transaction_id: str, account: BankAccount) -> str:
    if method == METHOD_BANK_TRANSFER:
        return generate_vietqr_url(amount, transaction_id, account)
    return generate_ewallet_qr_url(method, amount, transaction_id)


_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_transaction_id() -> str:
    """TXN + base36 millisecond timestamp + 6 random base36 characters."""
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"TXN{timestamp}{random_part}"


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def create_payment(
    order: Order,
    method: str,
    account: BankAccount,
    user_id: str | None = None,
    *,
    commit: bool = True,
) -> Payment:
    """
    Open a pending payment for an order.

    Args:
        order: the order being paid (must be pending)
        method: any enabled method except cash on delivery
        account: shop bank account shown for bank transfers
        user_id: paying user
        commit: False when the caller owns the transaction (checkout)

    Raises:
        ValidationError: unknown/disabled method, cash on delivery, nothing to pay
        ConflictError: the order already has an active payment
    """
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
    if not requires_confirmation(method):
        raise ValidationError("Cash on delivery orders do not take a payment record")
    if not is_enabled(method):
        raise ValidationError(f"Payment method {method} is not available")

    def _op():
        locked = lock_for_update(db.session.query(Order).filter_by(id=order.id)).first()
        if not locked:
            raise NotFoundError(f"Order {order.id} not found")
        if locked.status != order_service.STATUS_PENDING:
            raise ValidationError(f"Cannot take a payment for an order in status {locked.status}")
        if locked.total <= 0:
            raise ValidationError("Order has nothing to pay")

        active = db.session.query(Payment).filter(
            Payment.order_id == locked.id,
            Payment.status.in_(ACTIVE_STATUSES),
        ).first()
        if active:
            raise ConflictError(
                f"Order {locked.order_number} already has an active payment",
                details={"payment_id": active.id},
            )

        now = utcnow()
        transaction_id = generate_transaction_id()
        payment = Payment(
            order_id=locked.id,
            order_number=locked.order_number,
            user_id=user_id,
            amount=locked.total,
            method=method,
            status=STATUS_PENDING,
            transaction_id=transaction_id,
            qr_code_url=generate_qr_code(method, locked.total, transaction_id, account),
            created_at=now,
            updated_at=now,
        )
        if method == METHOD_BANK_TRANSFER:
            payment.bank_info = {
                "bank_name": account.bank_name,
                "bank_short_name": account.bank_short_name,
                "account_number": account.account_number,
                "account_name": account.account_name,
                "content": transaction_id,
            }

        db.session.add(payment)
        db.session.flush()
        _record_transition(payment, None, STATUS_PENDING, user_id, None, now)
        return payment

    return run_in_transaction(_op, commit=commit)


# =============================================================================
# RECONCILIATION
# =============================================================================

def _record_transition(
    payment: Payment,
    from_status: str | None,
    to_status: str,
    actor_user_id: str | None,
    note: str | None,
    occurred_at: datetime,
) -> None:
    db.session.add(PaymentStatusEvent(
        payment_id=payment.id,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        note=note[:255] if note else None,
        occurred_at=occurred_at,
    ))
    queue_signal(
        payment_status_changed,
        payment_id=payment.id,
        order_id=payment.order_id,
        user_id=payment.user_id,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
    )


def _lock_payment(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _transition(payment: Payment, to_status: str, operation: str, actor_user_id: str | None, note: str | None) -> datetime:
    if not can_transition(payment.status, to_status):
        raise InvalidStateError(payment.status, operation)
    now = utcnow()
    from_status = payment.status
    payment.status = to_status
    payment.updated_at = now
    _record_transition(payment, from_status, to_status, actor_user_id, note, now)
    return now


def _confirm_order_locked(payment: Payment, actor_user_id: str | None) -> None:
    order = lock_for_update(db.session.query(Order).filter_by(id=payment.order_id)).first()
    if not order:
        raise NotFoundError(f"Order {payment.order_id} not found")
    # Staff may already have confirmed the order by hand
    if order.status == order_service.STATUS_CONFIRMED:
        return
    order_service.advance_locked(
        order,
        order_service.STATUS_CONFIRMED,
        actor_user_id,
        note=f"Payment {payment.transaction_id} confirmed",
    )


def confirm(payment_id: int, actor_user_id: str | None, note: str | None = None) -> Payment:
    """
    Staff confirm a pending payment and the owning order moves to confirmed.

    Raises:
        NotFoundError: payment or order missing
        InvalidStateError: payment is not pending (order untouched)
        InvalidTransitionError: the order can no longer be confirmed (payment untouched)
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(payment.status, "confirm")

        _confirm_order_locked(payment, actor_user_id)

        now = _transition(payment, STATUS_SUCCESS, "confirm", actor_user_id, note or DEFAULT_CONFIRM_NOTE)
        payment.paid_at = now
        payment.admin_note = note or DEFAULT_CONFIRM_NOTE
        payment.confirmed_by_user_id = actor_user_id
        return payment

    return run_in_transaction(_op)


def reject(payment_id: int, reason: str | None, actor_user_id: str | None) -> Payment:
    """
    Staff reject a pending payment. The order keeps its status.

    Raises:
        NotFoundError: payment missing
        InvalidStateError: payment is not pending
    """
    reason = (reason or "").strip() or DEFAULT_REJECT_REASON

    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(payment.status, "reject")

        now = _transition(payment, STATUS_FAILED, "reject", actor_user_id, reason)
        payment.reject_reason = reason[:255]
        payment.rejected_at = now
        return payment

    return run_in_transaction(_op)


def cancel_payment(payment_id: int, actor_user_id: str | None) -> Payment:
    """The customer abandoned the payment screen; the order stays pending for a later payment."""
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(payment.status, "cancel")
        _transition(payment, STATUS_CANCELLED, "cancel", actor_user_id, "Cancelled by customer")
        return payment

    return run_in_transaction(_op)


def mark_processing(payment_id: int, actor_user_id: str | None = None) -> Payment:
    """Gateway acknowledged the payment and is settling it."""
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != STATUS_PENDING:
            raise InvalidStateError(payment.status, "process")
        _transition(payment, STATUS_PROCESSING, "process", actor_user_id, None)
        return payment

    return run_in_transaction(_op)


def settle(payment_id: int, succeeded: bool, actor_user_id: str | None = None, note: str | None = None) -> Payment:
    """
    Gateway outcome for a processing payment.

    Success confirms the order in the same transaction, exactly like confirm().
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != STATUS_PROCESSING:
            raise InvalidStateError(payment.status, "settle")

        if succeeded:
            _confirm_order_locked(payment, actor_user_id)
            now = _transition(payment, STATUS_SUCCESS, "settle", actor_user_id, note)
            payment.paid_at = now
        else:
            reason = note or DEFAULT_REJECT_REASON
            now = _transition(payment, STATUS_FAILED, "settle", actor_user_id, reason)
            payment.reject_reason = reason[:255]
            payment.rejected_at = now
        return payment

    return run_in_transaction(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def get_payment_by_order(order_id: int) -> Payment | None:
    """Most recent payment for an order (earlier ones failed or were cancelled)."""
    return db.session.query(Payment).filter_by(
        order_id=order_id,
    ).order_by(Payment.id.desc()).first()


def list_payments(status: str | None = None) -> list[Payment]:
    q = db.session.query(Payment)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid payment status: {status}. Must be one of {VALID_STATUSES}")
        q = q.filter_by(status=status)
    return q.order_by(Payment.created_at.desc(), Payment.id.desc()).all()


def list_pending_payments() -> list[Payment]:
    return list_payments(STATUS_PENDING)


def list_user_payments(user_id: str) -> list[Payment]:
    return db.session.query(Payment).filter_by(
        user_id=user_id,
    ).order_by(Payment.created_at.desc(), Payment.id.desc()).all()


def get_payment_history(payment_id: int) -> list[PaymentStatusEvent]:
    get_payment(payment_id)
    return db.session.query(PaymentStatusEvent).filter_by(
        payment_id=payment_id,
    ).order_by(PaymentStatusEvent.occurred_at, PaymentStatusEvent.id).all()


# =============================================================================
# STATISTICS
# =============================================================================

def count_by_status() -> dict:
    counts = {status: 0 for status in VALID_STATUSES}
    rows = db.session.query(Payment.status, db.func.count(Payment.id)).group_by(Payment.status).all()
    for status, count in rows:
        counts[status] = count
    return counts


def total_revenue() -> int:
    """Sum of successful payments."""
    total = db.session.query(
        db.func.coalesce(db.func.sum(Payment.amount), 0)
    ).filter(Payment.status == STATUS_SUCCESS).scalar()
    return int(total or 0)


def stats_by_method() -> list[dict]:
    stats = {method: {"count": 0, "amount": 0} for method in VALID_PAYMENT_METHODS}
    rows = db.session.query(
        Payment.method,
        db.func.count(Payment.id),
        db.func.coalesce(db.func.sum(Payment.amount), 0),
    ).filter(Payment.status == STATUS_SUCCESS).group_by(Payment.method).all()
    for method, count, amount in rows:
        stats[method] = {"count": count, "amount": int(amount)}
    return [{"method": method, **data} for method, data in stats.items()]


def stats_by_day(days: int = 7, now: datetime | None = None) -> list[dict]:
    """Successful payments per day for the last `days` days, oldest first, empty days included."""
    now = now or utcnow()
    start_day = (now - timedelta(days=days - 1)).date()
    stats = {
        (start_day + timedelta(days=offset)).isoformat(): {"count": 0, "amount": 0}
        for offset in range(days)
    }

    since = datetime.combine(start_day, datetime.min.time())
    payments = db.session.query(Payment).filter(
        Payment.status == STATUS_SUCCESS,
        Payment.created_at >= since,
    ).all()
    for payment in payments:
        key = payment.created_at.date().isoformat()
        if key in stats:
            stats[key]["count"] += 1
            stats[key]["amount"] += payment.amount

    return [{"date": day, **data} for day, data in stats.items()]


def get_payment_summary() -> dict:
    return {
        "counts": count_by_status(),
        "total_revenue": total_revenue(),
        "by_method": stats_by_method(),
        "by_day": stats_by_day(),
    }
