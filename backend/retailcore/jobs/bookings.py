# Overview: Booking automations: no-show detection and appointment reminders.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Booking
from ..models.bookings import BOOKING_NO_SHOW, BOOKING_OPEN_STATUSES
from ..services.notifications import NotificationError
from ..time_utils import minutes_before, to_utc_z
from .base import AutomationJob, JobContext, OptionSpec


def _when(booking: Booking) -> str:
    return booking.start_time.strftime("%Y-%m-%d %H:%M UTC")


class NoShowJob(AutomationJob):
    """
    Mark open bookings as no_show once gracePeriodMinutes have passed since
    their start time.

    Guard: the pending/confirmed -> no_show transition; a no_show booking is
    never selected again.
    """
    name = "no-show"
    path = "bookings/no-show"
    description = "Mark missed appointments as no-show and send a follow-up"
    options = (
        OptionSpec("gracePeriodMinutes", int, default=15, minimum=0),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        cutoff = minutes_before(ctx.now, ctx.options["grace_period_minutes"])
        rows = (
            db.session.query(Booking.id)
            .filter(
                Booking.tenant_id == ctx.tenant_id,
                Booking.status.in_(BOOKING_OPEN_STATUSES),
                Booking.start_time < cutoff,
                Booking.checked_in_at.is_(None),
            )
            .order_by(Booking.start_time.asc(), Booking.id.asc())
            .all()
        )
        for (booking_id,) in rows:
            ctx.attempt(f"Booking {booking_id}", lambda bid=booking_id: self._mark(ctx, bid))

    def _mark(self, ctx: JobContext, booking_id: int):
        booking = db.session.get(Booking, booking_id)
        if booking is None or booking.status not in BOOKING_OPEN_STATUSES:
            return False

        previous = booking.status
        booking.status = BOOKING_NO_SHOW
        ctx.audit("booking.no_show", "booking", booking.id, {"status": [previous, BOOKING_NO_SHOW]})

        company = ctx.company_name
        service = booking.service_name
        when = _when(booking)
        if ctx.settings.email_notifications and booking.customer_email:
            email = booking.customer_email
            ctx.defer(lambda: ctx.send_email(
                email,
                f"Missed Appointment - {company}",
                f"We noticed you missed your appointment with {company}.\n\n"
                f"Service: {service}\nScheduled: {when}\n\n"
                f"If you'd like to reschedule, please contact us.\n\n{company}",
            ))
        if ctx.settings.sms_notifications and booking.customer_phone:
            phone = booking.customer_phone
            ctx.defer(lambda: ctx.send_sms(
                phone,
                f"We noticed you missed your appointment for {service} on {when}. "
                f"Contact us to reschedule. - {company}",
            ))

    def summarize(self, result, options) -> str:
        message = f"Detected {result.processed} no-shows"
        if result.failed:
            message += f", {result.failed} failed"
        return message


class BookingReminderJob(AutomationJob):
    """
    Remind customers of bookings starting within
    [now + hoursBefore, now + hoursBefore + 1h].

    Guard: reminder_sent. Each enabled channel (email, SMS) is tried with
    its inline retry. The flag is set as soon as one channel delivers, and
    a channel that failed alongside it is recorded on the audit entry and
    not retried. Only when every channel fails does the booking count as
    failed, leaving the flag unset for the next run.
    """
    name = "booking-reminders"
    path = "booking-reminders"
    description = "Send reminders for upcoming bookings"
    options = (
        OptionSpec("hoursBefore", float, default=24.0, minimum=0),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        if not (ctx.settings.email_notifications or ctx.settings.sms_notifications):
            return

        window_start = ctx.now + timedelta(hours=ctx.options["hours_before"])
        window_end = window_start + timedelta(hours=1)
        rows = (
            db.session.query(Booking.id)
            .filter(
                Booking.tenant_id == ctx.tenant_id,
                Booking.status.in_(BOOKING_OPEN_STATUSES),
                Booking.reminder_sent.is_(False),
                Booking.start_time >= window_start,
                Booking.start_time <= window_end,
            )
            .order_by(Booking.start_time.asc(), Booking.id.asc())
            .all()
        )
        for (booking_id,) in rows:
            ctx.attempt(f"Booking {booking_id}", lambda bid=booking_id: self._remind(ctx, bid))

    def _remind(self, ctx: JobContext, booking_id: int):
        booking = db.session.get(Booking, booking_id)
        if booking is None or booking.reminder_sent or booking.status not in BOOKING_OPEN_STATUSES:
            return False

        company = ctx.company_name
        when = _when(booking)
        deliveries = []
        if ctx.settings.email_notifications and booking.customer_email:
            deliveries.append(("email", lambda: ctx.send_email(
                booking.customer_email,
                f"Appointment Reminder - {company}",
                f"Hello {booking.customer_name},\n\n"
                f"This is a reminder of your appointment with {company}.\n\n"
                f"Service: {booking.service_name}\nWhen: {when}\n"
                + (f"Staff: {booking.staff_name}\n" if booking.staff_name else "")
                + f"\nWe look forward to seeing you!\n\n{company}",
                required=True,
            )))
        if ctx.settings.sms_notifications and booking.customer_phone:
            deliveries.append(("sms", lambda: ctx.send_sms(
                booking.customer_phone,
                f"Reminder: {booking.service_name} with {company} on {when}.",
                required=True,
            )))
        if not deliveries:
            return False

        sent, failed, last_error = [], [], None
        for channel, deliver in deliveries:
            try:
                deliver()
            except NotificationError as exc:
                failed.append(channel)
                last_error = exc
                continue
            sent.append(channel)
        # Nothing delivered: fail the unit so the next run retries. Once any
        # channel got through the reminder counts as sent.
        if not sent:
            raise last_error

        booking.reminder_sent = True
        changes = {"start_time": to_utc_z(booking.start_time), "channels": sent}
        if failed:
            changes["failed_channels"] = failed
            current_app.logger.warning(
                "job %s tenant=%s booking %s reminder not delivered via %s",
                ctx.job_name, ctx.tenant_id, booking.id, ", ".join(failed),
            )
        ctx.audit("booking.reminder_sent", "booking", booking.id, changes)

    def summarize(self, result, options) -> str:
        message = f"Sent {result.processed} booking reminders"
        if result.failed:
            message += f", {result.failed} failed"
        return message
