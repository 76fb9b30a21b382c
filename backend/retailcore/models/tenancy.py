from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

TENANT_ACTIVE = "active"
TENANT_TRIAL = "trial"
TENANT_SUSPENDED = "suspended"
TENANT_STATUSES = {TENANT_ACTIVE, TENANT_TRIAL, TENANT_SUSPENDED}


class Tenant(db.Model):
    """
    Multi-tenant root: every business using the platform is a Tenant.

    All stock, rules, bookings and logs carry tenant_id; nothing is shared
    across tenants. `settings` is the free-form settings document edited by
    tenant admins; it is only read through TenantSettings.from_document.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=TENANT_ACTIVE, index=True)
    settings = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} slug={self.slug!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Branch(db.Model):
    """Physical location of a tenant. Branch codes are unique per tenant."""
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_branches_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("branches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class User(db.Model):
    """
    Staff member of a tenant.

    Credentials live with the authentication service; this table only keeps
    what the automation jobs need (contact details and attribution).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(32), nullable=False, default="cashier")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }
