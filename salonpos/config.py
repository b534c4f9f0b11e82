"""Configuration objects loaded by the application factory."""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///salonpos.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Bearer tokens expire after 24 hours
    AUTH_TOKEN_MAX_AGE = int(os.environ.get("AUTH_TOKEN_MAX_AGE", 86400))

    # Loyalty: every Nth visit is free
    LOYALTY_INTERVAL = int(os.environ.get("LOYALTY_INTERVAL", 10))
    LOYALTY_ENABLED = _env_bool("LOYALTY_ENABLED", True)

    CLIENT_CODE_MAX_ATTEMPTS = int(os.environ.get("CLIENT_CODE_MAX_ATTEMPTS", 1000))
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "REC")

    SYNC_BATCH_SIZE = int(os.environ.get("SYNC_BATCH_SIZE", 100))

    # Printed on receipts
    SALON_NAME = os.environ.get("SALON_NAME", "Salon de Coiffure")
    SALON_ADDRESS = os.environ.get("SALON_ADDRESS", "Abidjan, Côte d'Ivoire")
    SALON_PHONE = os.environ.get("SALON_PHONE", "+225 00 00 00 00")
    SALON_EMAIL = os.environ.get("SALON_EMAIL", "contact@salon.ci")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
