# Overview: Pytest coverage for the no-show and booking reminder jobs.

from datetime import timedelta

from retailcore.models import AuditLogEntry, Booking

from conftest import NOW


def _booking(db_session, tenant, start_time, **overrides):
    values = {
        "customer_name": "Robin Guest",
        "customer_email": "robin@example.test",
        "service_name": "Haircut",
        "status": "confirmed",
    }
    values.update(overrides)
    booking = Booking(tenant_id=tenant.id, start_time=start_time, **values)
    db_session.add(booking)
    db_session.commit()
    return booking


class TestNoShowJob:

    def test_missed_booking_marked_no_show(self, db_session, runner, notifier, tenant_a):
        booking = _booking(db_session, tenant_a, NOW - timedelta(minutes=20))

        result = runner.run("no-show", {"gracePeriodMinutes": 15}, now=NOW)

        assert result.success is True
        assert result.processed == 1
        assert result.message == "Detected 1 no-shows"
        assert db_session.get(Booking, booking.id).status == "no_show"

        [email] = notifier.emails
        assert email["to"] == "robin@example.test"
        assert email["subject"] == "Missed Appointment - Acme Retail"
        assert notifier.sms == []

    def test_rerun_is_a_no_op(self, db_session, runner, notifier, tenant_a):
        _booking(db_session, tenant_a, NOW - timedelta(minutes=20))
        runner.run("no-show", {}, now=NOW)

        result = runner.run("no-show", {}, now=NOW + timedelta(minutes=5))

        assert result.processed == 0
        assert len(notifier.emails) == 1
        assert db_session.query(AuditLogEntry).filter_by(action="booking.no_show").count() == 1

    def test_within_grace_period_untouched(self, db_session, runner, notifier, tenant_a):
        exactly_at_cutoff = _booking(db_session, tenant_a, NOW - timedelta(minutes=15))
        recent = _booking(db_session, tenant_a, NOW - timedelta(minutes=10))

        result = runner.run("no-show", {"gracePeriodMinutes": "15"}, now=NOW)

        assert result.processed == 0
        assert db_session.get(Booking, exactly_at_cutoff.id).status == "confirmed"
        assert db_session.get(Booking, recent.id).status == "confirmed"

    def test_checked_in_and_closed_bookings_skipped(self, db_session, runner, notifier, tenant_a):
        checked_in = _booking(
            db_session, tenant_a, NOW - timedelta(hours=1), checked_in_at=NOW - timedelta(minutes=55)
        )
        completed = _booking(db_session, tenant_a, NOW - timedelta(hours=2), status="completed")
        pending = _booking(db_session, tenant_a, NOW - timedelta(hours=3), status="pending")

        result = runner.run("no-show", {}, now=NOW)

        assert result.processed == 1
        assert db_session.get(Booking, checked_in.id).status == "confirmed"
        assert db_session.get(Booking, completed.id).status == "completed"
        assert db_session.get(Booking, pending.id).status == "no_show"

    def test_sms_follow_up_when_enabled(self, db_session, runner, notifier, tenant_a):
        tenant_a.settings = dict(tenant_a.settings, smsNotifications=True, emailNotifications=False)
        db_session.commit()
        _booking(db_session, tenant_a, NOW - timedelta(hours=1), customer_phone="+15550100")

        runner.run("no-show", {}, now=NOW)

        assert notifier.emails == []
        assert notifier.sms[0]["to"] == "+15550100"

    def test_follow_up_failure_does_not_undo_transition(self, db_session, runner, notifier, tenant_a):
        notifier.failing.add("robin@example.test")
        booking = _booking(db_session, tenant_a, NOW - timedelta(hours=1))

        result = runner.run("no-show", {}, now=NOW)

        assert (result.processed, result.failed) == (1, 0)
        assert db_session.get(Booking, booking.id).status == "no_show"


class TestBookingReminderJob:

    def test_reminds_bookings_in_window(self, db_session, runner, notifier, tenant_a):
        due = _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30), staff_name="Sam")
        later = _booking(db_session, tenant_a, NOW + timedelta(hours=26))
        sooner = _booking(db_session, tenant_a, NOW + timedelta(hours=2))

        result = runner.run("booking-reminders", {"hoursBefore": "24"}, now=NOW)

        assert result.processed == 1
        assert result.message == "Sent 1 booking reminders"
        assert db_session.get(Booking, due.id).reminder_sent is True
        assert db_session.get(Booking, later.id).reminder_sent is False
        assert db_session.get(Booking, sooner.id).reminder_sent is False

        [email] = notifier.emails
        assert email["subject"] == "Appointment Reminder - Acme Retail"
        assert "Staff: Sam" in email["message"]

    def test_reminder_sent_once(self, db_session, runner, notifier, tenant_a):
        _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30))
        runner.run("booking-reminders", {}, now=NOW)

        result = runner.run("booking-reminders", {}, now=NOW + timedelta(minutes=10))

        assert result.processed == 0
        assert len(notifier.emails) == 1

    def test_failed_delivery_leaves_booking_for_next_run(self, db_session, runner, notifier, tenant_a):
        booking = _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30))
        notifier.failing.add("robin@example.test")

        result = runner.run("booking-reminders", {}, now=NOW)

        assert (result.processed, result.failed) == (0, 1)
        assert result.errors[0].startswith(f"Booking {booking.id}:")
        assert db_session.get(Booking, booking.id).reminder_sent is False
        assert db_session.query(AuditLogEntry).filter_by(action="booking.reminder_sent").count() == 0

        notifier.failing.clear()
        retry = runner.run("booking-reminders", {}, now=NOW)

        assert retry.processed == 1
        assert db_session.get(Booking, booking.id).reminder_sent is True

    def test_partial_delivery_marks_reminder_sent(self, db_session, runner, notifier, tenant_a):
        tenant_a.settings = dict(tenant_a.settings, smsNotifications=True)
        db_session.commit()
        booking = _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30), customer_phone="+15550100")
        notifier.failing.add("+15550100")

        first = runner.run("booking-reminders", {}, now=NOW)
        second = runner.run("booking-reminders", {}, now=NOW + timedelta(minutes=10))

        assert (first.processed, first.failed) == (1, 0)
        assert (second.processed, second.failed) == (0, 0)
        assert len(notifier.emails_to("robin@example.test")) == 1
        assert notifier.sms == []
        assert db_session.get(Booking, booking.id).reminder_sent is True

        entry = db_session.query(AuditLogEntry).filter_by(action="booking.reminder_sent").one()
        assert entry.changes["channels"] == ["email"]
        assert entry.changes["failed_channels"] == ["sms"]

    def test_sms_only_delivery(self, db_session, runner, notifier, tenant_a):
        tenant_a.settings = dict(tenant_a.settings, smsNotifications=True)
        db_session.commit()
        _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30), customer_phone="+15550100")
        notifier.failing.add("robin@example.test")

        result = runner.run("booking-reminders", {}, now=NOW)

        assert result.processed == 1
        assert [s["to"] for s in notifier.sms] == ["+15550100"]

    def test_booking_without_contact_is_not_counted(self, db_session, runner, notifier, tenant_a):
        booking = _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30), customer_email=None)

        result = runner.run("booking-reminders", {}, now=NOW)

        assert (result.processed, result.failed) == (0, 0)
        assert db_session.get(Booking, booking.id).reminder_sent is False

    def test_notifications_disabled_skips_tenant(self, db_session, runner, notifier, tenant_a):
        tenant_a.settings = dict(tenant_a.settings, emailNotifications=False, smsNotifications=False)
        db_session.commit()
        _booking(db_session, tenant_a, NOW + timedelta(hours=24, minutes=30))

        result = runner.run("booking-reminders", {}, now=NOW)

        assert result.processed == 0
        assert notifier.emails == []
