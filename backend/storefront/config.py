# backend/storefront/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Pricing (amounts in the currency's smallest unit; VND has none)
    CURRENCY = os.environ.get("CURRENCY", "VND")
    LOCALE = os.environ.get("LOCALE", "vi_VN")
    SHIPPING_FEE = _env_int("SHIPPING_FEE", 30000)
    FREE_SHIPPING_THRESHOLD = _env_int("FREE_SHIPPING_THRESHOLD", 200000)

    # Shop account shown on bank-transfer payments (VietQR)
    SHOP_BANK_BIN = os.environ.get("SHOP_BANK_BIN", "970436")
    SHOP_BANK_NAME = os.environ.get("SHOP_BANK_NAME", "Vietcombank")
    SHOP_BANK_SHORT_NAME = os.environ.get("SHOP_BANK_SHORT_NAME", "VCB")
    SHOP_BANK_ACCOUNT_NUMBER = os.environ.get("SHOP_BANK_ACCOUNT_NUMBER", "0000000000")
    SHOP_BANK_ACCOUNT_NAME = os.environ.get("SHOP_BANK_ACCOUNT_NAME", "STOREFRONT")
    VIETQR_TEMPLATE = os.environ.get("VIETQR_TEMPLATE", "compact2")

    # Roles forwarded by the identity gateway that may act as staff
    ADMIN_ROLES = ("admin", "staff")
