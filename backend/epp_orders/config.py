# backend/epp_orders/config.py
from __future__ import annotations
import json
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Fallback approvers used when a workflow level carries no explicit email.
# Override with ROLE_APPROVERS='{"MANAGER": {"id": "...", "name": "...", "email": "..."}}'
DEFAULT_ROLE_APPROVERS = {
    "MANAGER": {"id": "manager_001", "name": "Manager", "email": "manager@company.com"},
    "HR": {"id": "hr_001", "name": "HR Representative", "email": "hr@company.com"},
    "FINANCE": {"id": "finance_001", "name": "Finance Team", "email": "finance@company.com"},
    "DEPARTMENT_HEAD": {"id": "dept_head_001", "name": "Department Head", "email": "depthead@company.com"},
    "ADMIN": {"id": "admin_001", "name": "System Admin", "email": "admin@company.com"},
}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/epp_orders.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///epp_orders.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Unit-of-work retry on lock/stale-data conflicts
    DB_RETRY_ATTEMPTS = _env_int("DB_RETRY_ATTEMPTS", 3)
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))

    # Order numbering
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")

    # Pricing and installments
    DEFAULT_TAX_RATE_BPS = _env_int("DEFAULT_TAX_RATE_BPS", 1000)  # 10%
    DEFAULT_INSTALLMENT_MONTHS = _env_int("DEFAULT_INSTALLMENT_MONTHS", 6)
    INSTALLMENT_PAYMENT_DELAY_DAYS = _env_int("INSTALLMENT_PAYMENT_DELAY_DAYS", 5)

    # Approver fallback table
    ROLE_APPROVERS = (
        json.loads(os.environ["ROLE_APPROVERS"])
        if os.environ.get("ROLE_APPROVERS")
        else DEFAULT_ROLE_APPROVERS
    )

    # Email delivery: "outbox" keeps messages in memory and logs them, "smtp" sends them
    EMAIL_PROVIDER = os.environ.get("EMAIL_PROVIDER", "outbox").lower()
    EMAIL_FROM_ADDRESS = os.environ.get(
        "EMAIL_FROM_ADDRESS",
        "EPP Orders <noreply@epp-orders.local>",
    )
    SMTP_HOST = os.environ.get("SMTP_HOST", "localhost")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)
    SMTP_TIMEOUT = _env_int("SMTP_TIMEOUT", 10)
