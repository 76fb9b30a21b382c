# Overview: Suspicious activity detection over transactions, cash drawers and audit logs.

from __future__ import annotations

from collections import defaultdict

import sqlalchemy as sa

from ..extensions import db
from ..models import AuditLogEntry, CashDrawerSession, SecurityAlert, Transaction, User
from ..models.sales import TXN_CANCELLED, TXN_REFUNDED
from ..time_utils import hours_before, to_utc_z
from .base import AutomationJob, JobContext, OptionSpec

LOGIN_FAILED_ACTION = "auth.login_failed"


class SuspiciousActivityJob(AutomationJob):
    """
    Count, per staff member over the trailing windowHours: refunds, voids,
    discounts applied, large discounts, failed logins and cash drawer
    discrepancies. Actors crossing a threshold get one SecurityAlert.

    Read-only towards business data. Guard: an actor with an alert raised
    inside the current window is not alerted again.
    """
    name = "suspicious-activity"
    path = "security/suspicious-activity"
    description = "Flag staff activity that crosses fraud thresholds"
    options = (
        OptionSpec("windowHours", float, default=24.0, minimum=1),
        OptionSpec("refundThreshold", int, default=5, minimum=1),
        OptionSpec("voidThreshold", int, default=10, minimum=1),
        OptionSpec("discountCountThreshold", int, default=20, minimum=1),
        OptionSpec("discountThreshold", float, default=100.0, minimum=0),
        OptionSpec("failedLoginThreshold", int, default=5, minimum=1),
        OptionSpec("cashShortageThreshold", float, default=50.0, minimum=0),
        OptionSpec("cashOverageThreshold", float, default=100.0, minimum=0),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        since = hours_before(ctx.now, ctx.options["window_hours"])
        metrics = self._collect(ctx, since)

        for user_id in sorted(metrics):
            reasons = self.reasons(metrics[user_id], ctx.options)
            if not reasons:
                continue
            ctx.attempt(
                f"User {user_id}",
                lambda uid=user_id, r=reasons: self._raise_alert(ctx, uid, since, metrics[uid], r),
            )

    def _collect(self, ctx: JobContext, since) -> dict[int, dict[str, int]]:
        metrics: dict[int, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        tenant_id = ctx.tenant_id
        opts = ctx.options

        def count_transactions(metric, *criteria):
            rows = (
                db.session.query(Transaction.user_id, sa.func.count(Transaction.id))
                .filter(Transaction.tenant_id == tenant_id, Transaction.user_id.isnot(None), *criteria)
                .group_by(Transaction.user_id)
                .all()
            )
            for user_id, count in rows:
                metrics[user_id][metric] += int(count)

        changed_in_window = (Transaction.updated_at >= since, Transaction.updated_at <= ctx.now)
        created_in_window = (Transaction.created_at >= since, Transaction.created_at <= ctx.now)

        count_transactions("refunds", Transaction.status == TXN_REFUNDED, *changed_in_window)
        count_transactions("voids", Transaction.status == TXN_CANCELLED, *changed_in_window)
        count_transactions("discounts_applied", Transaction.discount_amount > 0, *created_in_window)
        count_transactions(
            "large_discounts", Transaction.discount_amount >= opts["discount_threshold"], *created_in_window
        )

        failed_logins = (
            db.session.query(AuditLogEntry.actor_user_id, sa.func.count(AuditLogEntry.id))
            .filter(
                AuditLogEntry.tenant_id == tenant_id,
                AuditLogEntry.action == LOGIN_FAILED_ACTION,
                AuditLogEntry.actor_user_id.isnot(None),
                AuditLogEntry.created_at >= since,
                AuditLogEntry.created_at <= ctx.now,
            )
            .group_by(AuditLogEntry.actor_user_id)
            .all()
        )
        for user_id, count in failed_logins:
            metrics[user_id]["failed_logins"] += int(count)

        drawers = (
            db.session.query(CashDrawerSession.user_id, sa.func.count(CashDrawerSession.id))
            .filter(
                CashDrawerSession.tenant_id == tenant_id,
                CashDrawerSession.closed_at >= since,
                CashDrawerSession.closed_at <= ctx.now,
                sa.or_(
                    CashDrawerSession.shortage >= opts["cash_shortage_threshold"],
                    CashDrawerSession.overage >= opts["cash_overage_threshold"],
                ),
            )
            .group_by(CashDrawerSession.user_id)
            .all()
        )
        for user_id, count in drawers:
            metrics[user_id]["cash_discrepancies"] += int(count)

        return {uid: dict(values) for uid, values in metrics.items()}

    @staticmethod
    def reasons(m: dict[str, int], opts: dict) -> list[str]:
        out = []
        if m.get("refunds", 0) >= opts["refund_threshold"]:
            out.append(f"Excessive refunds: {m['refunds']} (threshold: {opts['refund_threshold']})")
        if m.get("voids", 0) >= opts["void_threshold"]:
            out.append(f"Excessive voids: {m['voids']} (threshold: {opts['void_threshold']})")
        if m.get("discounts_applied", 0) >= opts["discount_count_threshold"]:
            out.append(
                f"Frequent discounts: {m['discounts_applied']} (threshold: {opts['discount_count_threshold']})"
            )
        if m.get("large_discounts", 0) > 0:
            out.append(f"Large discounts: {m['large_discounts']} >= {opts['discount_threshold']:g}")
        if m.get("failed_logins", 0) >= opts["failed_login_threshold"]:
            out.append(
                f"Failed logins: {m['failed_logins']} (threshold: {opts['failed_login_threshold']})"
            )
        if m.get("cash_discrepancies", 0) > 0:
            out.append(f"Cash drawer discrepancies: {m['cash_discrepancies']}")
        return out

    def _raise_alert(self, ctx: JobContext, user_id: int, since, metrics: dict, reasons: list[str]):
        recent = (
            db.session.query(SecurityAlert.id)
            .filter(
                SecurityAlert.tenant_id == ctx.tenant_id,
                SecurityAlert.actor_user_id == user_id,
                SecurityAlert.window_end > since,
            )
            .first()
        )
        if recent is not None:
            return False

        alert = SecurityAlert(
            tenant_id=ctx.tenant_id,
            actor_user_id=user_id,
            window_start=since,
            window_end=ctx.now,
            metrics=metrics,
            reasons=reasons,
            created_at=ctx.now,
        )
        db.session.add(alert)
        db.session.flush()
        ctx.audit("security.alert_raised", "user", user_id, {"alert_id": alert.id, "reasons": reasons})

        if ctx.settings.email:
            user = db.session.get(User, user_id)
            who = user.name if user else f"user {user_id}"
            body = (
                f"Suspicious activity detected for {who} between {to_utc_z(since)} and {to_utc_z(ctx.now)}:\n\n"
                + "\n".join(f"- {r}" for r in reasons)
                + "\n\nPlease review these activities."
            )
            ctx.defer(lambda: ctx.send_email(ctx.settings.email, f"Security Alert - {ctx.company_name}", body))

    def summarize(self, result, options) -> str:
        message = f"Raised {result.processed} security alerts"
        if result.failed:
            message += f", {result.failed} failed"
        return message
