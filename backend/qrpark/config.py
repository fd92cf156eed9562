# backend/qrpark/config.py
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

    # SQLite DB stored in backend/instance/qrpark.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///qrpark.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # QR serial format: prefix + zero-padded decimal (SR000001)
    QR_SERIAL_PREFIX = os.environ.get("QR_SERIAL_PREFIX", "SR")
    QR_SERIAL_WIDTH = int(os.environ.get("QR_SERIAL_WIDTH", "6"))
    QR_MAX_BATCH_SIZE = int(os.environ.get("QR_MAX_BATCH_SIZE", "1000"))

    # Credits debited from the owner on activation (0 = free activation)
    QR_ACTIVATION_CREDIT_COST = int(os.environ.get("QR_ACTIVATION_CREDIT_COST", "0"))

    # Ledger policy: may a debit drive a balance below zero?
    CREDIT_ALLOW_NEGATIVE_BALANCE = _env_bool("CREDIT_ALLOW_NEGATIVE_BALANCE", True)

    ORPHAN_FALLBACK_ROLE_NAME = os.environ.get(
        "ORPHAN_FALLBACK_ROLE_NAME", "Limited Staff (No Permissions)"
    )

    SECURITY_EVENT_RETENTION_DAYS = int(os.environ.get("SECURITY_EVENT_RETENTION_DAYS", "90"))
