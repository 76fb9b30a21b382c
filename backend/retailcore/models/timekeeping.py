from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Attendance(db.Model):
    """
    Clock-in/clock-out session of a staff member.

    An open session has clock_out NULL. The auto clock-out job closes
    sessions left open past the grace period and flags them auto_clock_out
    so payroll can review them.
    """
    __tablename__ = "attendance"
    __table_args__ = (
        db.Index("ix_attendance_tenant_open", "tenant_id", "clock_out"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    clock_in = db.Column(db.DateTime(timezone=True), nullable=False)
    clock_out = db.Column(db.DateTime(timezone=True), nullable=True)
    total_hours = db.Column(db.Numeric(8, 2), nullable=True)
    auto_clock_out = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("attendance", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "clock_in": to_utc_z(self.clock_in),
            "clock_out": to_utc_z(self.clock_out),
            "total_hours": str(self.total_hours) if self.total_hours is not None else None,
            "auto_clock_out": self.auto_clock_out,
            "notes": self.notes,
        }
