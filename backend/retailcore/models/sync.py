from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

SYNC_ENTITY_PRODUCT = "product"
SYNC_ENTITY_CUSTOMER = "customer"
SYNC_ENTITY_DISCOUNT = "discount"

CONFLICT_OPEN = "open"
CONFLICT_RESOLVED = "resolved"


class BranchEntitySnapshot(db.Model):
    """
    A branch's local copy of a tenant-level record (product, customer,
    discount). Branch terminals write `payload` and set is_dirty; the
    multi-branch sync job merges dirty copies back into the tenant record
    and fans the winner out to every branch.
    """
    __tablename__ = "branch_entity_snapshots"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "entity_type", "entity_id", name="uq_branch_snapshots_entity"),
        db.Index("ix_branch_snapshots_dirty", "tenant_id", "is_dirty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    entity_type = db.Column(db.String(16), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    payload = db.Column(db.JSON, nullable=False)
    is_dirty = db.Column(db.Boolean, nullable=False, default=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")


class SyncConflict(db.Model):
    """Divergent branch copies left for a human under the 'manual' policy."""
    __tablename__ = "sync_conflicts"
    __table_args__ = (
        db.Index("ix_sync_conflicts_entity", "tenant_id", "entity_type", "entity_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    entity_type = db.Column(db.String(16), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    candidates = db.Column(db.JSON, nullable=False)  # [{branch_id, updated_at, payload}]
    status = db.Column(db.String(16), nullable=False, default=CONFLICT_OPEN)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "candidates": self.candidates,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
