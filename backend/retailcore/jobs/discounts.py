# Overview: Discount lifecycle: activate codes entering their window, retire expired or exhausted ones.

from __future__ import annotations

from ..extensions import db
from ..models import Discount
from ..time_utils import to_naive_utc
from .base import AutomationJob, JobContext

USAGE_ALERT_THRESHOLDS = (80, 90, 100)


def desired_state(discount: Discount, now) -> bool:
    now = to_naive_utc(now)
    in_window = to_naive_utc(discount.valid_from) <= now <= to_naive_utc(discount.valid_until)
    exhausted = discount.usage_limit is not None and discount.usage_count >= discount.usage_limit
    return in_window and not exhausted


def deactivation_reason(discount: Discount, now) -> str:
    now = to_naive_utc(now)
    if to_naive_utc(discount.valid_until) < now:
        return "expired (validUntil date passed)"
    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        return "reached usage limit"
    return "outside its validity window"


def usage_alert_level(discount: Discount) -> int:
    """Highest alert threshold the code's usage has crossed, 0 below the first."""
    if not discount.usage_limit:
        return 0
    percent = discount.usage_count * 100 / discount.usage_limit
    return max((t for t in USAGE_ALERT_THRESHOLDS if percent >= t), default=0)


def _usage(discount: Discount) -> str:
    if discount.usage_limit is None:
        return f"{discount.usage_count or 0}"
    return f"{discount.usage_count or 0} / {discount.usage_limit}"


class DiscountManagementJob(AutomationJob):
    """
    Toggle Discount.is_active to match its validity window and usage limit.

    Inactive codes inside their window with uses left are switched on;
    active codes that expired or ran out are switched off. The toggle is its
    own guard.

    Codes with a usage limit also raise an alert each time usage crosses
    80, 90 and 100 percent. usage_alert_level records the last threshold
    reported, so each threshold is reported once; it drops back when the
    limit is raised.
    """
    name = "discount-management"
    path = "discounts/manage"
    description = "Activate and deactivate discounts by date and usage"

    def run_for_tenant(self, ctx: JobContext) -> None:
        rows = (
            db.session.query(Discount.id)
            .filter(Discount.tenant_id == ctx.tenant_id)
            .order_by(Discount.id.asc())
            .all()
        )
        for (discount_id,) in rows:
            ctx.attempt(f"Discount {discount_id}", lambda did=discount_id: self._reconcile(ctx, did))

    def _reconcile(self, ctx: JobContext, discount_id: int):
        discount = db.session.get(Discount, discount_id)
        toggled = self._toggle(ctx, discount)
        alerted = self._usage_alert(ctx, discount)
        if not (toggled or alerted):
            return False

    def _toggle(self, ctx: JobContext, discount: Discount) -> bool:
        target = desired_state(discount, ctx.now)
        if discount.is_active == target:
            return False

        discount.is_active = target
        ctx.audit(
            "discount.activated" if target else "discount.deactivated",
            "discount",
            discount.id,
            {"is_active": [not target, target], "code": discount.code},
        )

        if ctx.settings.email_notifications and ctx.settings.email:
            code = discount.code
            name = discount.name or "No name"
            if target:
                subject = f"Discount Activated: {code}"
                body = (
                    f'The discount "{code}" ({name}) has been automatically activated.\n\n'
                    f"Valid until: {discount.valid_until:%Y-%m-%d}\n"
                    f"Usage limit: {discount.usage_limit or 'Unlimited'}"
                )
            else:
                subject = f"Discount Deactivated: {code}"
                body = (
                    f'The discount "{code}" ({name}) has been automatically deactivated.\n\n'
                    f"Reason: {deactivation_reason(discount, ctx.now)}\n"
                    f"Usage count: {_usage(discount)}"
                )
            ctx.defer(lambda: ctx.send_email(ctx.settings.email, subject, body))
        return True

    def _usage_alert(self, ctx: JobContext, discount: Discount) -> bool:
        level = usage_alert_level(discount)
        reported = discount.usage_alert_level or 0
        if level == reported:
            return False

        discount.usage_alert_level = level
        if level < reported:
            return False

        ctx.audit(
            "discount.usage_alert",
            "discount",
            discount.id,
            {"threshold": level, "usage_count": discount.usage_count, "usage_limit": discount.usage_limit},
        )

        if ctx.settings.email_notifications and ctx.settings.email:
            code = discount.code
            remaining = max(discount.usage_limit - discount.usage_count, 0)
            percent = discount.usage_count * 100 / discount.usage_limit
            outlook = (
                "This discount has reached its usage limit and is deactivated."
                if level >= 100
                else "Please review and consider creating a new discount if needed."
            )
            subject = f"Discount Usage Alert: {code} - {level}% Used"
            body = (
                f"Discount Usage Alert for {ctx.company_name}\n\n"
                f'The discount "{code}" ({discount.name or "No name"}) has reached '
                f"{percent:.1f}% of its usage limit.\n\n"
                f"Current usage: {_usage(discount)}\nRemaining uses: {remaining}\n\n{outlook}"
            )
            ctx.defer(lambda: ctx.send_email(ctx.settings.email, subject, body))
        return True

    def summarize(self, result, options) -> str:
        message = f"Updated {result.processed} discounts"
        if result.failed:
            message += f", {result.failed} failed"
        return message
