# backend/retailcore/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///retailcore.sqlite3")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Trigger gateway authentication
    CRON_SECRET = os.environ.get("CRON_SECRET") or None
    TRUST_SCHEDULER_HEADER = _env_bool("TRUST_SCHEDULER_HEADER", default=False)
    SCHEDULER_HEADER_NAME = os.environ.get("SCHEDULER_HEADER_NAME", "X-Scheduler-Cron")

    # Automation engine
    JOB_TENANT_TIMEOUT_SECONDS = float(os.environ.get("JOB_TENANT_TIMEOUT_SECONDS", "120"))
    PRICE_MULTIPLIER_MIN = os.environ.get("PRICE_MULTIPLIER_MIN", "0.70")
    PRICE_MULTIPLIER_MAX = os.environ.get("PRICE_MULTIPLIER_MAX", "1.30")
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))

    # Outbound notifications (webhook relay in front of the email/SMS provider)
    NOTIFICATION_WEBHOOK_URL = os.environ.get("NOTIFICATION_WEBHOOK_URL") or None
    NOTIFICATION_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_TIMEOUT_SECONDS", "10"))


@dataclass(frozen=True)
class AutomationConfig:
    """
    Settings shared by the trigger gateway and every automation job.

    Built once from the Flask config when the app starts and handed to the
    JobRunner; jobs receive it through their JobContext.
    """
    cron_secret: str | None = None
    trust_scheduler_header: bool = False
    scheduler_header_name: str = "X-Scheduler-Cron"
    tenant_timeout_seconds: float = 120.0
    price_multiplier_min: Decimal = Decimal("0.70")
    price_multiplier_max: Decimal = Decimal("1.30")
    low_stock_threshold: int = 10
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "AutomationConfig":
        minimum = Decimal(str(config.get("PRICE_MULTIPLIER_MIN", "0.70")))
        maximum = Decimal(str(config.get("PRICE_MULTIPLIER_MAX", "1.30")))
        if minimum <= 0 or maximum < minimum:
            raise ValueError("PRICE_MULTIPLIER_MIN/MAX must satisfy 0 < min <= max")

        return cls(
            cron_secret=config.get("CRON_SECRET") or None,
            trust_scheduler_header=bool(config.get("TRUST_SCHEDULER_HEADER", False)),
            scheduler_header_name=config.get("SCHEDULER_HEADER_NAME") or "X-Scheduler-Cron",
            tenant_timeout_seconds=float(config.get("JOB_TENANT_TIMEOUT_SECONDS", 120)),
            price_multiplier_min=minimum,
            price_multiplier_max=maximum,
            low_stock_threshold=int(config.get("LOW_STOCK_THRESHOLD", 10)),
            notification_webhook_url=config.get("NOTIFICATION_WEBHOOK_URL") or None,
            notification_timeout_seconds=float(config.get("NOTIFICATION_TIMEOUT_SECONDS", 10)),
        )
