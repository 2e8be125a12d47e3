# backend/storefront/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Anonymous carts expire after this many days without a mutation
    CART_TTL_DAYS = int(os.environ.get("CART_TTL_DAYS", "7"))

    # Flat fee charged on HOME_DELIVERY orders; store pickup is free
    DELIVERY_FEE_CENTS = int(os.environ.get("DELIVERY_FEE_CENTS", "800"))

    # Transient datastore faults re-run the whole ledger unit of work
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
