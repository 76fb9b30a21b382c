# Overview: End-of-day auto-close of cash drawer sessions left open.

from __future__ import annotations

import sqlalchemy as sa

from ..extensions import db
from ..models import CashDrawerSession, Transaction, User
from ..models.sales import DRAWER_CLOSED, DRAWER_OPEN, PAYMENT_CASH, TXN_COMPLETED
from ..money import quantize_money
from ..time_utils import to_utc_z
from .base import AutomationJob, JobContext, OptionSpec

AUTO_CLOSE_NOTE = "[AUTO] Automatically closed at end of business day."


class CashDrawerAutoCloseJob(AutomationJob):
    """
    Close drawers still open once the tenant's business day is over.

    The business day ends at endOfDayHour on the tenant's local clock;
    forceClose skips that check. No physical count exists, so the closing
    amount is the expected amount: opening float plus the cashier's completed
    cash sales since the drawer opened.

    Guard: the open -> closed transition.
    """
    name = "cash-drawer-auto-close"
    path = "cash-drawer/auto-close"
    description = "Close cash drawers left open at end of day and email the report"
    options = (
        OptionSpec("endOfDayHour", int, default=22, minimum=0, maximum=24),
        OptionSpec("forceClose", bool, default=False),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        if not ctx.options["force_close"]:
            if ctx.settings.local_time(ctx.now).hour < ctx.options["end_of_day_hour"]:
                return

        rows = (
            db.session.query(CashDrawerSession.id)
            .filter(
                CashDrawerSession.tenant_id == ctx.tenant_id,
                CashDrawerSession.status == DRAWER_OPEN,
                CashDrawerSession.opened_at <= ctx.now,
            )
            .order_by(CashDrawerSession.opened_at.asc(), CashDrawerSession.id.asc())
            .all()
        )
        for (drawer_id,) in rows:
            ctx.attempt(f"Drawer {drawer_id}", lambda did=drawer_id: self._close(ctx, did))

    def _cash_sales(self, ctx: JobContext, drawer: CashDrawerSession):
        total = (
            db.session.query(sa.func.coalesce(sa.func.sum(Transaction.total), 0))
            .filter(
                Transaction.tenant_id == ctx.tenant_id,
                Transaction.user_id == drawer.user_id,
                Transaction.status == TXN_COMPLETED,
                Transaction.payment_method == PAYMENT_CASH,
                Transaction.created_at >= drawer.opened_at,
                Transaction.created_at <= ctx.now,
            )
            .scalar()
        )
        return quantize_money(total)

    def _close(self, ctx: JobContext, drawer_id: int):
        drawer = db.session.get(CashDrawerSession, drawer_id)
        if drawer is None or drawer.status != DRAWER_OPEN:
            return False

        opening = quantize_money(drawer.opening_amount)
        cash_sales = self._cash_sales(ctx, drawer)
        expected = opening + cash_sales

        drawer.expected_amount = expected
        drawer.closing_amount = expected
        drawer.shortage = 0
        drawer.overage = 0
        drawer.status = DRAWER_CLOSED
        drawer.closed_at = ctx.now
        drawer.auto_closed = True
        drawer.notes = f"{drawer.notes}\n{AUTO_CLOSE_NOTE}" if drawer.notes else AUTO_CLOSE_NOTE

        ctx.audit(
            "cash_drawer.auto_closed",
            "cash_drawer_session",
            drawer.id,
            {
                "status": [DRAWER_OPEN, DRAWER_CLOSED],
                "expected_amount": str(expected),
                "cash_sales": str(cash_sales),
            },
        )

        if ctx.settings.email_notifications and ctx.settings.email:
            cashier = db.session.get(User, drawer.user_id)
            cashier_name = cashier.name if cashier else "Unknown"
            company = ctx.company_name
            closed_at = to_utc_z(ctx.now)
            ctx.defer(lambda: ctx.send_email(
                ctx.settings.email,
                f"End of Day Cash Drawer Report - {company}",
                f"End of Day Cash Drawer Report\n{company}\n{closed_at}\n\n"
                f"Cashier: {cashier_name}\n"
                f"Opening amount: {opening}\n"
                f"Cash sales: {cash_sales}\n"
                f"Expected amount: {expected}\n"
                f"Closing amount: {expected}\n\n"
                f"This drawer was automatically closed at end of business day. "
                f"Please verify the closing amount.",
            ))

    def summarize(self, result, options) -> str:
        message = f"Auto-closed {result.processed} cash drawers"
        if result.failed:
            message += f", {result.failed} failed"
        return message
