# backend/shopbill/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopbill.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopbill.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Upper bound for one create/edit/cancel transaction. PostgreSQL gets a
    # statement_timeout, SQLite a busy timeout on the connection.
    UNIT_OF_WORK_TIMEOUT_SECONDS = float(os.environ.get("UNIT_OF_WORK_TIMEOUT_SECONDS", "10"))

    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "INV")

    # Edit restrictions for finalized invoices
    EDIT_LOCK_PERIOD_DAYS = int(os.environ.get("EDIT_LOCK_PERIOD_DAYS", "30"))
    CASHIER_EDIT_WINDOW_HOURS = int(os.environ.get("CASHIER_EDIT_WINDOW_HOURS", "24"))

    HELD_CART_RETENTION_DAYS = int(os.environ.get("HELD_CART_RETENTION_DAYS", "7"))
