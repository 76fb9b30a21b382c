from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_NO_SHOW = "no_show"
BOOKING_OPEN_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED)


class Booking(db.Model):
    """
    Customer appointment.

    LIFECYCLE: pending -> confirmed -> completed | cancelled | no_show.
    The no-show job moves open bookings to no_show once the grace period
    after start_time has elapsed; reminder_sent guards the reminder job.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.Index("ix_bookings_tenant_status_start", "tenant_id", "status", "start_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)
    service_name = db.Column(db.String(255), nullable=False)
    staff_name = db.Column(db.String(255), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BOOKING_PENDING)
    reminder_sent = db.Column(db.Boolean, nullable=False, default=False)
    checked_in_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_name": self.customer_name,
            "service_name": self.service_name,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "status": self.status,
            "reminder_sent": self.reminder_sent,
        }
