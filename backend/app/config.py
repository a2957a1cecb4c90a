# backend/app/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Card payments (Stripe-compatible REST API). Empty key disables card checkout.
    PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "https://api.stripe.com")
    PAYMENT_GATEWAY_SECRET_KEY = os.environ.get("PAYMENT_GATEWAY_SECRET_KEY", "")
    # VND is zero-decimal: amounts are sent to the gateway as stored
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "vnd")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "15"))

    CHECKOUT_RETRY_ATTEMPTS = int(os.environ.get("CHECKOUT_RETRY_ATTEMPTS", "3"))
