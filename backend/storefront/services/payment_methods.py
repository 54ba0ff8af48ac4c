"""Payment methods offered at checkout."""

from __future__ import annotations

from dataclasses import dataclass

METHOD_COD = "cod"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_MOMO = "momo"
METHOD_VNPAY = "vnpay"
METHOD_ZALOPAY = "zalopay"


@dataclass(frozen=True)
class PaymentMethodOption:
    id: str
    name: str
    description: str
    fee_percent: float
    enabled: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "fee_percent": self.fee_percent,
            "enabled": self.enabled,
        }


PAYMENT_METHODS = [
    PaymentMethodOption(METHOD_COD, "Cash on delivery", "Pay in cash when the order arrives", 0, True),
    PaymentMethodOption(METHOD_BANK_TRANSFER, "Bank transfer", "Transfer to the shop's bank account via VietQR", 0, True),
    PaymentMethodOption(METHOD_MOMO, "MoMo", "Pay with the MoMo e-wallet", 1.5, True),
    PaymentMethodOption(METHOD_VNPAY, "VNPay", "Pay with a VNPay QR code", 1.1, True),
    PaymentMethodOption(METHOD_ZALOPAY, "ZaloPay", "Pay with the ZaloPay e-wallet", 1.2, False),  # not integrated yet
]

VALID_PAYMENT_METHODS = [m.id for m in PAYMENT_METHODS]


def get_method(method_id: str) -> PaymentMethodOption | None:
    for method in PAYMENT_METHODS:
        if method.id == method_id:
            return method
    return None


def is_enabled(method_id: str) -> bool:
    method = get_method(method_id)
    return bool(method and method.enabled)


def requires_confirmation(method_id: str) -> bool:
    """Every method except cash on delivery needs a Payment record confirmed by staff or a gateway."""
    return method_id != METHOD_COD
