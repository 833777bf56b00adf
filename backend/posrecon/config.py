# backend/posrecon/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///posrecon.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Tenant resolution for clerk-facing routes (issued by the auth layer upstream)
    TENANT_HEADER = os.environ.get("TENANT_HEADER", "X-Tenant-Id")

    # Webhook background processing
    WEBHOOK_WORKERS = int(os.environ.get("WEBHOOK_WORKERS", "4"))
    WEBHOOK_SHUTDOWN_GRACE_SECONDS = float(os.environ.get("WEBHOOK_SHUTDOWN_GRACE_SECONDS", "10"))
    WEBHOOK_PROCESS_INLINE = _env_bool("WEBHOOK_PROCESS_INLINE", False)

    # Durable inbox for acknowledged deliveries
    WEBHOOK_RECOVER_ON_STARTUP = _env_bool("WEBHOOK_RECOVER_ON_STARTUP", True)
    WEBHOOK_INBOX_CLAIM_TIMEOUT_SECONDS = int(os.environ.get("WEBHOOK_INBOX_CLAIM_TIMEOUT_SECONDS", "60"))
    WEBHOOK_INBOX_MAX_ATTEMPTS = int(os.environ.get("WEBHOOK_INBOX_MAX_ATTEMPTS", "5"))

    # Retry policy for lock/busy errors on the transactional store
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_SECONDS = float(os.environ.get("DB_RETRY_BACKOFF_SECONDS", "0.1"))

    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    )
