# Overview: Voucher validation, redemption, administration and gifting.

"""
Voucher Service

EVALUATION (pure, idempotent):
    evaluate() runs the eligibility checks in a fixed order and stops at the
    first failure:
        not_found -> inactive -> not_started -> expired -> below_minimum
        -> usage_exceeded -> per_user_exceeded
    It never writes. Callers may evaluate as often as they like while a cart
    is being edited.

REDEMPTION (inside the order-creation transaction):
    redeem() increments usage_count with a guarded UPDATE
    (status = active AND usage_count < total_usage_limit at write time).
    Two checkouts racing for the last use can both pass evaluate(); exactly
    one wins the guard, the other gets VoucherExhaustedError and its whole
    order is rolled back.

PUBLIC vs GIFTED:
    Public vouchers are open to anyone with the code. Private vouchers are
    only usable by users holding a UserVoucherGrant for them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError, ValidationError, VoucherExhaustedError
from ..extensions import db
from ..models import Voucher, UserVoucherGrant, VoucherRedemption
from ..time_utils import to_naive_utc, utcnow
from ..validation import (
    coerce_bool,
    coerce_datetime,
    coerce_int,
    coerce_optional_int,
    optional_text,
    require_text,
)
from .concurrency import guarded_update, lock_for_update, run_in_transaction
from .money import to_amount
from .pricing_service import (
    VALID_VOUCHER_TYPES,
    VOUCHER_FIXED_AMOUNT,
    VOUCHER_FREE_SHIPPING,
    VOUCHER_PERCENTAGE,
)


# =============================================================================
# CONSTANTS
# =============================================================================

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
VALID_STATUSES = [STATUS_ACTIVE, STATUS_INACTIVE]

SOURCE_ADMIN_GIFT = "admin_gift"
SOURCE_PURCHASE_REWARD = "purchase_reward"
SOURCE_PROMOTION = "promotion"
SOURCE_REFERRAL = "referral"
SOURCE_NEW_USER = "new_user"
VALID_SOURCES = [
    SOURCE_ADMIN_GIFT,
    SOURCE_PURCHASE_REWARD,
    SOURCE_PROMOTION,
    SOURCE_REFERRAL,
    SOURCE_NEW_USER,
]

REASON_NOT_FOUND = "not_found"
REASON_INACTIVE = "inactive"
REASON_NOT_STARTED = "not_started"
REASON_EXPIRED = "expired"
REASON_BELOW_MINIMUM = "below_minimum"
REASON_USAGE_EXCEEDED = "usage_exceeded"
REASON_PER_USER_EXCEEDED = "per_user_exceeded"

REJECTION_MESSAGES = {
    REASON_NOT_FOUND: "Voucher code is not valid",
    REASON_INACTIVE: "Voucher is not active",
    REASON_NOT_STARTED: "Voucher is not valid yet",
    REASON_EXPIRED: "Voucher has expired",
    REASON_BELOW_MINIMUM: "Order subtotal is below the voucher minimum",
    REASON_USAGE_EXCEEDED: "Voucher has been fully redeemed",
    REASON_PER_USER_EXCEEDED: "You have already used this voucher the maximum number of times",
}


# =============================================================================
# DECISIONS
# =============================================================================

@dataclass(frozen=True)
class VoucherAccepted:
    """Everything the pricing engine and redemption need from an eligible voucher."""
    voucher_id: int | None
    code: str
    type: str
    value: int
    max_discount: int | None = None
    user_id: str | None = None
    grant_id: int | None = None

    accepted = True

    def to_dict(self) -> dict:
        return {
            "accepted": True,
            "voucher_id": self.voucher_id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "max_discount": self.max_discount,
            "grant_id": self.grant_id,
        }


@dataclass(frozen=True)
class VoucherRejected:
    reason: str
    message: str
    code: str | None = None
    min_order_value: int | None = None

    accepted = False

    def to_dict(self) -> dict:
        data = {
            "accepted": False,
            "reason": self.reason,
            "message": self.message,
            "code": self.code,
        }
        if self.min_order_value is not None:
            data["min_order_value"] = self.min_order_value
        return data


def _reject(reason: str, code: str | None = None, **extra) -> VoucherRejected:
    return VoucherRejected(reason=reason, message=REJECTION_MESSAGES[reason], code=code, **extra)


def normalize_code(code: str) -> str:
    """Normalize to uppercase, no spaces."""
    return (code or "").upper().strip().replace(" ", "")


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate(
    voucher: Voucher | None,
    subtotal,
    user_id: str | None,
    user_redemption_count: int,
    now: datetime | None = None,
    grant_id: int | None = None,
) -> VoucherAccepted | VoucherRejected:
    """
    Decide whether voucher may be applied to an order of this subtotal by this user.

    Pure: reads the voucher's fields and the supplied counters, writes nothing.

    Args:
        voucher: Voucher (or None when the code matched nothing)
        subtotal: order subtotal before shipping and discount
        user_id: acting user (opaque identifier from the identity gateway)
        user_redemption_count: how many times this user already redeemed it
        now: evaluation time (defaults to utcnow())
        grant_id: the user's grant backing this redemption, if any

    Returns:
        VoucherAccepted or VoucherRejected(reason)
    """
    if voucher is None:
        return _reject(REASON_NOT_FOUND)

    code = voucher.code
    now = to_naive_utc(now) if now else utcnow()

    if voucher.status != STATUS_ACTIVE:
        return _reject(REASON_INACTIVE, code)

    if now < to_naive_utc(voucher.start_date):
        return _reject(REASON_NOT_STARTED, code)

    if now > to_naive_utc(voucher.end_date):
        return _reject(REASON_EXPIRED, code)

    min_order_value = to_amount(voucher.min_order_value)
    if to_amount(subtotal) < min_order_value:
        return _reject(REASON_BELOW_MINIMUM, code, min_order_value=min_order_value)

    if voucher.total_usage_limit is not None:
        if to_amount(voucher.usage_count) >= to_amount(voucher.total_usage_limit):
            return _reject(REASON_USAGE_EXCEEDED, code)

    per_user_limit = to_amount(voucher.per_user_limit) or 1
    if to_amount(user_redemption_count) >= per_user_limit:
        return _reject(REASON_PER_USER_EXCEEDED, code)

    return VoucherAccepted(
        voucher_id=voucher.id,
        code=code,
        type=voucher.type,
        value=to_amount(voucher.value),
        max_discount=to_amount(voucher.max_discount) if voucher.max_discount is not None else None,
        user_id=user_id,
        grant_id=grant_id,
    )


def count_user_redemptions(voucher_id: int, user_id: str | None) -> int:
    """Redemptions by this user; guest checkouts (no user_id) share one count."""
    q = db.session.query(VoucherRedemption).filter(VoucherRedemption.voucher_id == voucher_id)
    if user_id:
        q = q.filter(VoucherRedemption.user_id == user_id)
    else:
        q = q.filter(VoucherRedemption.user_id.is_(None))
    return q.count()


def _latest_grant(user_id: str | None, voucher_id: int) -> UserVoucherGrant | None:
    if not user_id:
        return None
    return db.session.query(UserVoucherGrant).filter_by(
        user_id=user_id,
        voucher_id=voucher_id,
    ).order_by(UserVoucherGrant.redeemed_at.isnot(None), UserVoucherGrant.id.desc()).first()


def evaluate_code(
    code: str,
    subtotal,
    user_id: str | None,
    now: datetime | None = None,
) -> VoucherAccepted | VoucherRejected:
    """
    Look up a code and evaluate it for this user.

    Private vouchers are reported as not_found to users without a grant so
    their existence does not leak.
    """
    voucher = get_voucher_by_code(code)
    if voucher is None:
        return _reject(REASON_NOT_FOUND, normalize_code(code) or None)

    grant = _latest_grant(user_id, voucher.id)
    if not voucher.is_public and grant is None:
        return _reject(REASON_NOT_FOUND, voucher.code)

    # An unredeemed grant carries its own per-user counter
    if grant is not None and grant.redeemed_at is None:
        redemptions = grant.usage_count or 0
        grant_id = grant.id
    else:
        redemptions = count_user_redemptions(voucher.id, user_id)
        grant_id = None

    return evaluate(
        voucher,
        subtotal,
        user_id,
        redemptions,
        now=now,
        grant_id=grant_id,
    )


# =============================================================================
# REDEMPTION
# =============================================================================

def redeem(
    decision: VoucherAccepted,
    *,
    user_id: str | None,
    order_id: int,
    order_number: str,
    discount_amount: int,
    order_total: int,
    now: datetime | None = None,
) -> VoucherRedemption:
    """
    Consume one use of an accepted voucher for a just-created order.

    Runs inside the caller's transaction and never commits. Any failed guard
    raises VoucherExhaustedError so the caller's whole unit of work rolls back.
    """
    now = now or utcnow()

    voucher_query = db.session.query(Voucher).filter(
        Voucher.id == decision.voucher_id,
        Voucher.status == STATUS_ACTIVE,
        or_(
            Voucher.total_usage_limit.is_(None),
            Voucher.usage_count < Voucher.total_usage_limit,
        ),
    )
    incremented = guarded_update(voucher_query, {
        Voucher.usage_count: Voucher.usage_count + 1,
        Voucher.version_id: Voucher.version_id + 1,
        Voucher.updated_at: now,
    })
    if not incremented:
        raise VoucherExhaustedError(decision.code)

    voucher = lock_for_update(db.session.query(Voucher).filter_by(id=decision.voucher_id)).populate_existing().first()
    per_user_limit = voucher.per_user_limit or 1

    grant_id = None
    if decision.grant_id and user_id:
        # The grant's own counter is the per-user limit for gifted uses
        grant_query = db.session.query(UserVoucherGrant).filter(
            UserVoucherGrant.id == decision.grant_id,
            UserVoucherGrant.user_id == user_id,
            UserVoucherGrant.redeemed_at.is_(None),
            UserVoucherGrant.usage_count < per_user_limit,
        )
        if not guarded_update(grant_query, {UserVoucherGrant.usage_count: UserVoucherGrant.usage_count + 1}):
            raise VoucherExhaustedError(decision.code, reason=REASON_PER_USER_EXCEEDED)
        grant_id = decision.grant_id
        db.session.query(UserVoucherGrant).filter(
            UserVoucherGrant.id == decision.grant_id,
            UserVoucherGrant.usage_count >= per_user_limit,
            UserVoucherGrant.redeemed_at.is_(None),
        ).update({UserVoucherGrant.redeemed_at: now}, synchronize_session=False)
    else:
        if not voucher.is_public:
            raise VoucherExhaustedError(decision.code, reason=REASON_PER_USER_EXCEEDED)
        if count_user_redemptions(voucher.id, user_id) >= per_user_limit:
            raise VoucherExhaustedError(decision.code, reason=REASON_PER_USER_EXCEEDED)

    redemption = VoucherRedemption(
        voucher_id=voucher.id,
        grant_id=grant_id,
        user_id=user_id,
        order_id=order_id,
        order_number=order_number,
        voucher_code=voucher.code,
        discount_amount=discount_amount,
        order_total=order_total,
        redeemed_at=now,
    )
    db.session.add(redemption)
    db.session.flush()
    return redemption


# =============================================================================
# LOOKUPS
# =============================================================================

def get_voucher(voucher_id: int) -> Voucher:
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise NotFoundError(f"Voucher {voucher_id} not found")
    return voucher


def get_voucher_by_code(code: str) -> Voucher | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return db.session.query(Voucher).filter_by(code=normalized).first()


def list_vouchers(status: str | None = None) -> list[Voucher]:
    q = db.session.query(Voucher)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Voucher.created_at.desc(), Voucher.id.desc()).all()


def list_public_vouchers(now: datetime | None = None) -> list[Voucher]:
    """Active public vouchers whose validity window contains now."""
    now = now or utcnow()
    return db.session.query(Voucher).filter(
        Voucher.status == STATUS_ACTIVE,
        Voucher.is_public.is_(True),
        Voucher.start_date <= now,
        Voucher.end_date >= now,
    ).order_by(Voucher.end_date).all()


def get_voucher_stats() -> dict:
    total_vouchers = db.session.query(Voucher).count()
    active_vouchers = db.session.query(Voucher).filter_by(status=STATUS_ACTIVE).count()
    total_usage = db.session.query(VoucherRedemption).count()
    total_discount = db.session.query(
        db.func.coalesce(db.func.sum(VoucherRedemption.discount_amount), 0)
    ).scalar() or 0

    return {
        "total_vouchers": total_vouchers,
        "active_vouchers": active_vouchers,
        "total_usage": total_usage,
        "total_discount": int(total_discount),
    }


# =============================================================================
# ADMINISTRATION
# =============================================================================

def _validate_value(voucher_type: str, value: int) -> None:
    if voucher_type == VOUCHER_PERCENTAGE and not 1 <= value <= 100:
        raise ValidationError("Percentage vouchers need a value between 1 and 100")
    if voucher_type == VOUCHER_FIXED_AMOUNT and value <= 0:
        raise ValidationError("Fixed amount vouchers need a positive value")


def _validate_invariants(voucher: Voucher) -> None:
    if voucher.end_date <= voucher.start_date:
        raise ValidationError("end_date must be after start_date")
    if voucher.total_usage_limit is not None and voucher.total_usage_limit < (voucher.usage_count or 0):
        raise ValidationError("total_usage_limit cannot be below the current usage_count")
    _validate_value(voucher.type, voucher.value)


def create_voucher(data: dict, user_id: str | None = None) -> Voucher:
    """
    Create a voucher from admin input.

    Raises:
        ValidationError: malformed fields or broken invariants
        ConflictError: the code already exists
    """
    code = normalize_code(require_text("code", data.get("code"), max_length=64))
    voucher_type = data.get("type")
    if voucher_type not in VALID_VOUCHER_TYPES:
        raise ValidationError(f"Invalid voucher type: {voucher_type}. Must be one of {VALID_VOUCHER_TYPES}")

    status = data.get("status") or STATUS_ACTIVE
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid voucher status: {status}. Must be one of {VALID_STATUSES}")

    source = data.get("source") or SOURCE_PROMOTION
    if source not in VALID_SOURCES:
        raise ValidationError(f"Invalid voucher source: {source}. Must be one of {VALID_SOURCES}")

    value = data.get("value")
    if voucher_type == VOUCHER_FREE_SHIPPING and value is None:
        value = 0

    if "start_date" not in data or "end_date" not in data:
        raise ValidationError("start_date and end_date are required")

    voucher = Voucher(
        code=code,
        name=require_text("name", data.get("name") or code),
        description=optional_text("description", data.get("description"), max_length=2000),
        type=voucher_type,
        value=coerce_int("value", value, minimum=0),
        min_order_value=coerce_int("min_order_value", data.get("min_order_value") or 0, minimum=0),
        max_discount=coerce_optional_int("max_discount", data.get("max_discount"), minimum=0),
        total_usage_limit=coerce_optional_int("total_usage_limit", data.get("total_usage_limit"), minimum=1),
        per_user_limit=coerce_int("per_user_limit", data.get("per_user_limit") or 1, minimum=1),
        usage_count=0,
        start_date=coerce_datetime("start_date", data.get("start_date")),
        end_date=coerce_datetime("end_date", data.get("end_date")),
        status=status,
        source=source,
        is_public=coerce_bool("is_public", data.get("is_public", True)),
        created_by_user_id=user_id,
    )
    _validate_invariants(voucher)

    def _op():
        if db.session.query(Voucher).filter_by(code=code).first():
            raise ConflictError(f"Voucher code {code} already exists")
        db.session.add(voucher)
        return voucher

    return run_in_transaction(_op)


UPDATABLE_FIELDS = {
    "name": lambda v: require_text("name", v),
    "description": lambda v: optional_text("description", v, max_length=2000),
    "value": lambda v: coerce_int("value", v, minimum=0),
    "min_order_value": lambda v: coerce_int("min_order_value", v, minimum=0),
    "max_discount": lambda v: coerce_optional_int("max_discount", v, minimum=0),
    "total_usage_limit": lambda v: coerce_optional_int("total_usage_limit", v, minimum=1),
    "per_user_limit": lambda v: coerce_int("per_user_limit", v, minimum=1),
    "start_date": lambda v: coerce_datetime("start_date", v),
    "end_date": lambda v: coerce_datetime("end_date", v),
    "is_public": lambda v: coerce_bool("is_public", v),
}


def update_voucher(voucher_id: int, data: dict) -> Voucher:
    """
    Patch editable voucher fields.

    code, type and usage_count are not editable: orders already reference the
    code, and usage_count only moves through redeem().
    """
    def _op():
        voucher = lock_for_update(db.session.query(Voucher).filter_by(id=voucher_id)).first()
        if not voucher:
            raise NotFoundError(f"Voucher {voucher_id} not found")

        for key, coerce in UPDATABLE_FIELDS.items():
            if key in data:
                setattr(voucher, key, coerce(data[key]))

        if "status" in data:
            if data["status"] not in VALID_STATUSES:
                raise ValidationError(f"Invalid voucher status: {data['status']}. Must be one of {VALID_STATUSES}")
            voucher.status = data["status"]

        _validate_invariants(voucher)
        voucher.updated_at = utcnow()
        return voucher

    return run_in_transaction(_op)


def deactivate_voucher(voucher_id: int) -> Voucher:
    """Soft delete: vouchers referenced by orders are never removed."""
    return update_voucher(voucher_id, {"status": STATUS_INACTIVE})


def deactivate_expired_vouchers(now: datetime | None = None) -> int:
    """Flip active vouchers past their end_date to inactive. Returns the count."""
    now = now or utcnow()

    def _op():
        return db.session.query(Voucher).filter(
            Voucher.status == STATUS_ACTIVE,
            Voucher.end_date < now,
        ).update({
            Voucher.status: STATUS_INACTIVE,
            Voucher.version_id: Voucher.version_id + 1,
            Voucher.updated_at: now,
        }, synchronize_session=False)

    return run_in_transaction(_op)


# =============================================================================
# GIFTING
# =============================================================================

def gift_voucher(
    user_id: str,
    voucher_id: int,
    source: str = SOURCE_ADMIN_GIFT,
    source_details: str | None = None,
) -> UserVoucherGrant:
    """
    Privately allocate a voucher to one user.

    Raises:
        NotFoundError: voucher does not exist
        ValidationError: voucher is inactive or already ended, or bad source
        ConflictError: the user already holds an unused grant for it
    """
    if not user_id:
        raise ValidationError("user_id is required")
    if source not in VALID_SOURCES:
        raise ValidationError(f"Invalid voucher source: {source}. Must be one of {VALID_SOURCES}")

    def _op():
        voucher = db.session.get(Voucher, voucher_id)
        if not voucher:
            raise NotFoundError(f"Voucher {voucher_id} not found")
        if voucher.status != STATUS_ACTIVE:
            raise ValidationError("Cannot gift an inactive voucher")
        if voucher.end_date < utcnow():
            raise ValidationError("Cannot gift an expired voucher")

        existing = db.session.query(UserVoucherGrant).filter_by(
            user_id=user_id,
            voucher_id=voucher_id,
        ).filter(UserVoucherGrant.redeemed_at.is_(None)).first()
        if existing:
            raise ConflictError("User already holds this voucher")

        grant = UserVoucherGrant(
            user_id=user_id,
            voucher_id=voucher_id,
            source=source,
            source_details=source_details,
            usage_count=0,
        )
        db.session.add(grant)
        return grant

    return run_in_transaction(_op)


def gift_voucher_to_users(
    user_ids: list[str],
    voucher_id: int,
    source: str = SOURCE_ADMIN_GIFT,
    source_details: str | None = None,
) -> dict:
    """
    Gift one voucher to many users; each grant commits on its own.

    Returns:
        {"success": n, "failed": m, "errors": {user_id: message}}
    """
    success = 0
    errors = {}
    for user_id in user_ids:
        try:
            gift_voucher(user_id, voucher_id, source, source_details)
            success += 1
        except (ValidationError, ConflictError, NotFoundError) as exc:
            errors[user_id] = exc.message

    return {"success": success, "failed": len(errors), "errors": errors}


def list_user_grants(user_id: str, now: datetime | None = None) -> list[UserVoucherGrant]:
    """Unused grants whose voucher has not ended yet."""
    now = now or utcnow()
    return db.session.query(UserVoucherGrant).join(Voucher).filter(
        UserVoucherGrant.user_id == user_id,
        UserVoucherGrant.redeemed_at.is_(None),
        Voucher.end_date >= now,
    ).order_by(Voucher.end_date).all()
