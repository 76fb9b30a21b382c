from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    Append-only audit record.

    Written in the same DB transaction as the change it describes; never
    updated or deleted by application code.
    """
    __tablename__ = "audit_log_entries"
    __table_args__ = (
        db.Index("ix_audit_tenant_action_created", "tenant_id", "action", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    changes = db.Column(db.JSON, nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    actor = db.Column(db.String(64), nullable=True)  # "system:<job>" for automation writes
    success = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "changes": self.changes,
            "actor_user_id": self.actor_user_id,
            "actor": self.actor,
            "success": self.success,
            "created_at": to_utc_z(self.created_at),
        }


class SecurityAlert(db.Model):
    """Raised by the suspicious-activity job; never touches business data."""
    __tablename__ = "security_alerts"
    __table_args__ = (
        db.Index("ix_security_alerts_actor_window", "tenant_id", "actor_user_id", "window_start"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    window_end = db.Column(db.DateTime(timezone=True), nullable=False)
    metrics = db.Column(db.JSON, nullable=False)
    reasons = db.Column(db.JSON, nullable=False)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor_user_id": self.actor_user_id,
            "window_start": to_utc_z(self.window_start),
            "window_end": to_utc_z(self.window_end),
            "metrics": self.metrics,
            "reasons": self.reasons,
            "acknowledged_at": to_utc_z(self.acknowledged_at),
        }
