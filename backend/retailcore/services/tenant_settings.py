# Overview: Typed view over the free-form Tenant.settings document.

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class TenantSettingsError(ValueError):
    """Raised when a tenant settings document holds a value of the wrong type."""


# document key (camelCase, as stored by the admin UI) -> (attribute, kind)
_FIELD_MAP = {
    "companyName": ("company_name", "str"),
    "email": ("email", "str"),
    "timezone": ("timezone", "timezone"),
    "emailNotifications": ("email_notifications", "bool"),
    "smsNotifications": ("sms_notifications", "bool"),
    "taxEnabled": ("tax_enabled", "bool"),
    "taxRate": ("tax_rate", "decimal"),
    "taxLabel": ("tax_label", "str"),
    "lowStockThreshold": ("low_stock_threshold", "int"),
    "attendanceAutoClockout": ("attendance_auto_clockout", "bool"),
    "happyHourStart": ("happy_hour_start", "hour"),
    "happyHourEnd": ("happy_hour_end", "hour"),
    "happyHourMultiplier": ("happy_hour_multiplier", "decimal"),
    "highDemandSales": ("high_demand_sales", "int"),
    "highDemandMultiplier": ("high_demand_multiplier", "decimal"),
    "clearanceStockLevel": ("clearance_stock_level", "int"),
    "clearanceMultiplier": ("clearance_multiplier", "decimal"),
    "scarcityMultiplier": ("scarcity_multiplier", "decimal"),
}


@dataclass(frozen=True)
class TenantSettings:
    """
    Settings of one tenant, validated once at the tenant boundary.

    Jobs read these attributes instead of poking into the raw JSON document.
    Absent keys fall back to the defaults below; unknown keys are ignored.
    """
    company_name: str | None = None
    email: str | None = None
    # IANA name; business-hour rules (happy hour, end of day) use local time
    timezone: str = "UTC"
    email_notifications: bool = True
    sms_notifications: bool = False

    tax_enabled: bool = False
    tax_rate: Decimal = Decimal("0")
    tax_label: str = "Tax"

    low_stock_threshold: int | None = None
    attendance_auto_clockout: bool = True

    # Dynamic pricing
    happy_hour_start: int = 14
    happy_hour_end: int = 16
    happy_hour_multiplier: Decimal = Decimal("0.90")
    high_demand_sales: int = 20
    high_demand_multiplier: Decimal = Decimal("1.05")
    clearance_stock_level: int = 50
    clearance_multiplier: Decimal = Decimal("0.80")
    scarcity_multiplier: Decimal = Decimal("1.10")

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> "TenantSettings":
        if document is None:
            return cls()
        if not isinstance(document, Mapping):
            raise TenantSettingsError("settings must be an object")

        values: dict[str, Any] = {}
        for key, (attr, kind) in _FIELD_MAP.items():
            if key not in document or document[key] is None:
                continue
            values[attr] = _coerce(key, document[key], kind)

        settings = cls(**values)
        if settings.tax_rate < 0 or settings.tax_rate > 100:
            raise TenantSettingsError("taxRate must be between 0 and 100")
        return settings

    def local_time(self, moment: datetime) -> datetime:
        """Convert a UTC-naive moment to this tenant's wall-clock time (still naive)."""
        aware = moment.replace(tzinfo=dt_timezone.utc)
        return aware.astimezone(ZoneInfo(self.timezone)).replace(tzinfo=None)

    def to_dict(self) -> dict:
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = str(value) if isinstance(value, Decimal) else value
        return out


def _coerce(key: str, value: Any, kind: str) -> Any:
    if kind == "str":
        if not isinstance(value, str):
            raise TenantSettingsError(f"{key} must be a string")
        return value

    if kind == "bool":
        if not isinstance(value, bool):
            raise TenantSettingsError(f"{key} must be a boolean")
        return value

    if kind in ("int", "hour"):
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise TenantSettingsError(f"{key} must be an integer")
        if value < 0:
            raise TenantSettingsError(f"{key} must be >= 0")
        if kind == "hour" and value > 24:
            raise TenantSettingsError(f"{key} must be an hour between 0 and 24")
        return value

    if kind == "decimal":
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise TenantSettingsError(f"{key} must be a number")
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise TenantSettingsError(f"{key} must be a number")
        if not result.is_finite():
            raise TenantSettingsError(f"{key} must be a number")
        return result

    if kind == "timezone":
        if not isinstance(value, str):
            raise TenantSettingsError(f"{key} must be a string")
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise TenantSettingsError(f"{key} must be a valid IANA timezone")
        return value

    raise TenantSettingsError(f"unsupported setting kind for {key}")
