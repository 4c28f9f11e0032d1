# backend/stockbook/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Static shared secret for the API. Empty disables the gate (local dev only).
    ACCESS_KEY = os.environ.get("ACCESS_KEY", "")

    # Invoice numbering: PREFIX-NNNN
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    INVOICE_NUMBER_PAD = int(os.environ.get("INVOICE_NUMBER_PAD", "4"))
    # Tier 1 of the allocator (invoice_sequences counter row)
    INVOICE_SEQUENCE_ENABLED = _env_bool("INVOICE_SEQUENCE_ENABLED", True)

    # "atomic": one DB transaction per invoice operation
    # "stepwise": commit after every step, failures surface as PartialWriteError
    INVOICE_WORKFLOW_MODE = os.environ.get("INVOICE_WORKFLOW_MODE", "atomic")

    # Display defaults, read only by stockbook.formatting
    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "₹")
    DATE_FORMAT = os.environ.get("DATE_FORMAT", "%d/%m/%Y")

    # Telegram delivery of new-invoice summaries (disabled unless both are set)
    TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID", "")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "5"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
