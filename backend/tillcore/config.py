# backend/tillcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sessions issued through the CLI expire after this many hours
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))

    # Payment gateway (TAP)
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "BHD")
    TAP_BASE_URL = os.environ.get("TAP_BASE_URL", "https://api.tap.company/v2")
    TAP_SECRET_KEY = os.environ.get("TAP_SECRET_KEY", "")
    TAP_WEBHOOK_SECRET = os.environ.get("TAP_WEBHOOK_SECRET", "")
    TAP_TIMEOUT_SECONDS = float(os.environ.get("TAP_TIMEOUT_SECONDS", "30"))
    TAP_REDIRECT_URL = os.environ.get("TAP_REDIRECT_URL", "https://yourapp.com/payment/callback")
    TAP_WEBHOOK_URL = os.environ.get("TAP_WEBHOOK_URL", "https://yourapp.com/api/webhooks/tap")
    TAP_PHONE_COUNTRY_CODE = os.environ.get("TAP_PHONE_COUNTRY_CODE", "+973")
