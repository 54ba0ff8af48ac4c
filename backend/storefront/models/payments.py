from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    Payment awaiting (or having received) confirmation for one order.

    amount is copied from the order total at creation and never changes.
    An order has at most one active (pending, processing or success) payment;
    a new one may only be opened after the previous one failed or was cancelled.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.String(128), nullable=True, index=True)

    amount = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)  # bank_transfer, momo, vnpay, zalopay
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    transaction_id = db.Column(db.String(64), nullable=False, unique=True)
    qr_code_url = db.Column(db.Text, nullable=True)
    bank_info = db.Column(db.JSON, nullable=True)

    admin_note = db.Column(db.String(255), nullable=True)
    reject_reason = db.Column(db.String(255), nullable=True)
    confirmed_by_user_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "amount": self.amount,
            "method": self.method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "qr_code_url": self.qr_code_url,
            "bank_info": self.bank_info,
            "admin_note": self.admin_note,
            "reject_reason": self.reject_reason,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "paid_at": to_utc_z(self.paid_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "version_id": self.version_id,
        }


class PaymentStatusEvent(db.Model):
    """Append-only record of every payment status transition."""
    __tablename__ = "payment_status_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    actor_user_id = db.Column(db.String(128), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
