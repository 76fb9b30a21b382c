# Overview: Auto clock-out of attendance sessions left open past the grace period.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Attendance
from ..time_utils import hours_before, hours_between, to_utc_z
from .base import AutomationJob, JobContext, OptionSpec

AUTO_CLOCKOUT_NOTE = "[AUTO] Automatically clocked out after grace period."


class AutoClockOutJob(AutomationJob):
    """
    Close sessions whose clock_in is older than gracePeriodHours.

    Guard: only rows with clock_out IS NULL are selected, and the row is
    re-checked before it is closed, so a re-run finds nothing to do.
    Tenants with attendanceAutoClockout disabled are skipped.
    """
    name = "auto-clockout"
    path = "attendance/auto-clockout"
    description = "Clock out staff who forgot to clock out"
    options = (
        OptionSpec("gracePeriodHours", float, default=12.0, minimum=0),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        if not ctx.settings.attendance_auto_clockout:
            return

        cutoff = hours_before(ctx.now, ctx.options["grace_period_hours"])
        sessions = (
            db.session.query(Attendance)
            .filter(
                Attendance.tenant_id == ctx.tenant_id,
                Attendance.clock_out.is_(None),
                Attendance.clock_in < cutoff,
            )
            .order_by(Attendance.clock_in.asc(), Attendance.id.asc())
            .all()
        )
        for session_id in [s.id for s in sessions]:
            ctx.attempt(f"Session {session_id}", lambda sid=session_id: self._clock_out(ctx, sid))

    def _clock_out(self, ctx: JobContext, session_id: int):
        session = db.session.get(Attendance, session_id)
        if session is None or session.clock_out is not None:
            return False

        hours = hours_between(session.clock_in, ctx.now)
        session.clock_out = ctx.now
        session.auto_clock_out = True
        session.total_hours = Decimal(str(hours))
        session.notes = f"{session.notes}\n{AUTO_CLOCKOUT_NOTE}" if session.notes else AUTO_CLOCKOUT_NOTE

        ctx.audit(
            "attendance.auto_clock_out",
            "attendance",
            session.id,
            {"clock_out": to_utc_z(ctx.now), "total_hours": str(session.total_hours)},
        )

        user = session.user
        clock_in = to_utc_z(session.clock_in)
        clock_out = to_utc_z(ctx.now)
        user_name = user.name if user else "Employee"
        user_email = user.email if user else None

        if ctx.settings.email_notifications and user_email:
            ctx.defer(lambda: ctx.send_email(
                user_email,
                f"Auto Clock-Out: {user_name}",
                f"Hello {user_name},\n\n"
                f"Your attendance session has been automatically clocked out.\n\n"
                f"Clock-in: {clock_in}\nClock-out: {clock_out}\nTotal hours: {hours} hours\n\n"
                f"If this is incorrect, please contact your manager.\n\n{ctx.company_name}",
            ))
        if ctx.settings.email and ctx.settings.email != user_email:
            ctx.defer(lambda: ctx.send_email(
                ctx.settings.email,
                f"Auto Clock-Out Alert: {user_name}",
                f"An employee has been automatically clocked out:\n\n"
                f"Employee: {user_name}\nClock-in: {clock_in}\nClock-out: {clock_out}\n"
                f"Total hours: {hours} hours\n\nPlease review this attendance record.",
            ))

    def summarize(self, result, options) -> str:
        message = f"Auto-clocked out {result.processed} sessions"
        if result.failed:
            message += f", {result.failed} failed"
        return message
