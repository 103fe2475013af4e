# backend/shopcore/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cashback: 2% of final price, valid for 30 days from earning
    CASHBACK_RATE_BPS = int(os.environ.get("CASHBACK_RATE_BPS", "200"))
    CASHBACK_EXPIRY_DAYS = int(os.environ.get("CASHBACK_EXPIRY_DAYS", "30"))
    CASHBACK_EXPIRING_SOON_DAYS = int(os.environ.get("CASHBACK_EXPIRING_SOON_DAYS", "7"))

    # Sellers without the MANAGER role may discount at most 20% of gross total
    NON_MANAGER_DISCOUNT_LIMIT_BPS = int(os.environ.get("NON_MANAGER_DISCOUNT_LIMIT_BPS", "2000"))

    # Flat delivery fee per delivery type (cents)
    DELIVERY_FEES_CENTS = {
        "PICKUP": 0,
        "POSTAL": int(os.environ.get("DELIVERY_FEE_POSTAL_CENTS", "1500000")),
        "COURIER": int(os.environ.get("DELIVERY_FEE_COURIER_CENTS", "2000000")),
    }

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
