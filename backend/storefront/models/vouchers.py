from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Voucher(db.Model):
    """
    Discount code with eligibility constraints.

    value is a percent (1-100) for PERCENTAGE vouchers and an amount for
    FIXED_AMOUNT vouchers; FREE_SHIPPING ignores it.
    usage_count is only ever changed by the guarded redemption update.
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        db.CheckConstraint("end_date > start_date", name="ck_vouchers_window"),
        db.CheckConstraint(
            "total_usage_limit IS NULL OR usage_count <= total_usage_limit",
            name="ck_vouchers_usage_limit",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    type = db.Column(db.String(32), nullable=False)  # percentage, fixed_amount, free_shipping
    value = db.Column(db.Integer, nullable=False, default=0)
    min_order_value = db.Column(db.Integer, nullable=False, default=0)
    max_discount = db.Column(db.Integer, nullable=True)

    total_usage_limit = db.Column(db.Integer, nullable=True)
    per_user_limit = db.Column(db.Integer, nullable=False, default=1)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    source = db.Column(db.String(32), nullable=False, default="promotion")
    is_public = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "value": self.value,
            "min_order_value": self.min_order_value,
            "max_discount": self.max_discount,
            "total_usage_limit": self.total_usage_limit,
            "per_user_limit": self.per_user_limit,
            "usage_count": self.usage_count,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "status": self.status,
            "source": self.source,
            "is_public": self.is_public,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class UserVoucherGrant(db.Model):
    """A voucher privately allocated ("gifted") to one user."""
    __tablename__ = "user_voucher_grants"
    __table_args__ = (
        db.Index("ix_user_voucher_grants_user_voucher", "user_id", "voucher_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, index=True)

    source = db.Column(db.String(32), nullable=False, default="admin_gift")
    source_details = db.Column(db.String(255), nullable=True)

    usage_count = db.Column(db.Integer, nullable=False, default=0)
    redeemed_at = db.Column(db.DateTime, nullable=True)  # set once the last allowed use is consumed

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    voucher = db.relationship("Voucher", backref=db.backref("grants", lazy=True))

    def to_dict(self) -> dict:
        voucher = self.voucher
        return {
            "id": self.id,
            "user_id": self.user_id,
            "voucher_id": self.voucher_id,
            "voucher_code": voucher.code if voucher else None,
            "voucher_name": voucher.name if voucher else None,
            "voucher_type": voucher.type if voucher else None,
            "voucher_value": voucher.value if voucher else None,
            "usage_limit": voucher.per_user_limit if voucher else None,
            "expires_at": to_utc_z(voucher.end_date) if voucher else None,
            "source": self.source,
            "source_details": self.source_details,
            "usage_count": self.usage_count,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "created_at": to_utc_z(self.created_at),
        }


class VoucherRedemption(db.Model):
    """Append-only voucher usage log; one row per order that used a voucher."""
    __tablename__ = "voucher_redemptions"
    __table_args__ = (
        db.Index("ix_voucher_redemptions_voucher_user", "voucher_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, index=True)
    grant_id = db.Column(db.Integer, db.ForeignKey("user_voucher_grants.id"), nullable=True)
    user_id = db.Column(db.String(128), nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    order_number = db.Column(db.String(32), nullable=False)
    voucher_code = db.Column(db.String(64), nullable=False)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    order_total = db.Column(db.Integer, nullable=False, default=0)

    redeemed_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_id": self.voucher_id,
            "grant_id": self.grant_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "voucher_code": self.voucher_code,
            "discount_amount": self.discount_amount,
            "order_total": self.order_total,
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
