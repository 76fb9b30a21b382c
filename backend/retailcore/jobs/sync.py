# Overview: Multi-branch synchronization of branch-edited products, customers and discounts.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Branch, BranchEntitySnapshot, Customer, Discount, Product, SyncConflict
from ..models.sync import (
    CONFLICT_OPEN,
    SYNC_ENTITY_CUSTOMER,
    SYNC_ENTITY_DISCOUNT,
    SYNC_ENTITY_PRODUCT,
)
from ..money import quantize_money
from ..time_utils import parse_iso_datetime, to_naive_utc, to_utc_z
from .base import AutomationJob, JobContext, JobParameterError, OptionSpec

POLICY_LAST_WRITE_WINS = "last-write-wins"
POLICY_MANUAL = "manual"

ENTITY_MODELS = {
    SYNC_ENTITY_PRODUCT: Product,
    SYNC_ENTITY_CUSTOMER: Customer,
    SYNC_ENTITY_DISCOUNT: Discount,
}

# Fields a branch may change; anything else in a payload is ignored.
SYNCED_FIELDS = {
    SYNC_ENTITY_PRODUCT: ("name", "description", "base_price", "low_stock_threshold", "reorder_point", "is_active"),
    SYNC_ENTITY_CUSTOMER: ("name", "email", "phone"),
    SYNC_ENTITY_DISCOUNT: (
        "name", "value", "min_purchase_amount", "max_discount_amount", "valid_from", "valid_until", "is_active",
    ),
}
MONEY_FIELDS = {"base_price", "value", "min_purchase_amount", "max_discount_amount"}
DATETIME_FIELDS = {"valid_from", "valid_until"}


class SyncError(ValueError):
    pass


def _coerce_field(field: str, value):
    if value is None:
        return None
    if field in MONEY_FIELDS:
        return quantize_money(value)
    if field in DATETIME_FIELDS:
        return parse_iso_datetime(value) if isinstance(value, str) else to_naive_utc(value)
    return value


def _serialize_field(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    if hasattr(value, "quantize"):
        return str(value)
    return value


def synced_view(entity_type: str, payload: dict) -> dict:
    """The comparable part of a payload: allowlisted fields, normalized."""
    return {
        f: _coerce_field(f, payload[f])
        for f in SYNCED_FIELDS[entity_type]
        if f in payload
    }


def pick_winner(snapshots: list[BranchEntitySnapshot]) -> BranchEntitySnapshot:
    """Latest updated_at wins; equal timestamps go to the lowest branch id."""
    return max(snapshots, key=lambda s: (to_naive_utc(s.updated_at), -s.branch_id))


class MultiBranchSyncJob(AutomationJob):
    """
    Merge dirty branch copies back into the tenant record and push the result
    to every branch copy.

    last-write-wins: the newest copy (branch or central record) wins; ties
    between branches go to the lowest branch id.
    manual: divergent dirty copies are left as one open SyncConflict per
    entity; entities with an open conflict are skipped until it is resolved.

    Guard: is_dirty is cleared on every copy once the entity is merged.
    """
    name = "multi-branch-sync"
    path = "sync/multi-branch"
    description = "Synchronize branch edits with conflict resolution"
    options = (
        OptionSpec(
            "conflictResolution",
            str,
            default=POLICY_LAST_WRITE_WINS,
            choices=(POLICY_LAST_WRITE_WINS, POLICY_MANUAL),
        ),
        OptionSpec("entityTypes", str, default=",".join(ENTITY_MODELS)),
    )

    def parse_options(self, params):
        options = super().parse_options(params)
        types = tuple(t.strip() for t in options["entity_types"].split(",") if t.strip())
        unknown = [t for t in types if t not in ENTITY_MODELS]
        if not types or unknown:
            raise JobParameterError(f"entityTypes must be a comma list of: {', '.join(ENTITY_MODELS)}")
        options["entity_types"] = types
        return options

    def run_for_tenant(self, ctx: JobContext) -> None:
        rows = (
            db.session.query(BranchEntitySnapshot.entity_type, BranchEntitySnapshot.entity_id)
            .filter(
                BranchEntitySnapshot.tenant_id == ctx.tenant_id,
                BranchEntitySnapshot.is_dirty.is_(True),
                BranchEntitySnapshot.entity_type.in_(ctx.options["entity_types"]),
            )
            .distinct()
            .all()
        )
        touched_branches: set[int] = set()
        for entity_type, entity_id in sorted(rows):
            ctx.attempt(
                f"{entity_type.capitalize()} {entity_id}",
                lambda et=entity_type, eid=entity_id: self._sync_entity(ctx, et, eid, touched_branches),
            )

        if touched_branches:
            for branch in db.session.query(Branch).filter(Branch.id.in_(touched_branches)):
                branch.last_synced_at = ctx.now

    def _sync_entity(self, ctx: JobContext, entity_type: str, entity_id: int, touched: set):
        entity = (
            db.session.query(ENTITY_MODELS[entity_type])
            .filter_by(id=entity_id, tenant_id=ctx.tenant_id)
            .first()
        )
        if entity is None:
            raise SyncError("record not found")

        copies = (
            db.session.query(BranchEntitySnapshot)
            .filter_by(tenant_id=ctx.tenant_id, entity_type=entity_type, entity_id=entity_id)
            .order_by(BranchEntitySnapshot.branch_id.asc())
            .all()
        )
        dirty = [c for c in copies if c.is_dirty]
        if not dirty:
            return False

        if ctx.options["conflict_resolution"] == POLICY_MANUAL:
            views = {repr(sorted(synced_view(entity_type, c.payload or {}).items())) for c in dirty}
            if len(views) > 1:
                return self._record_conflict(ctx, entity_type, entity_id, dirty)

        winner = pick_winner(dirty)
        central_newer = (
            entity.updated_at is not None
            and to_naive_utc(entity.updated_at) > to_naive_utc(winner.updated_at)
        )

        changes = {}
        if not central_newer:
            for field, value in synced_view(entity_type, winner.payload or {}).items():
                current = getattr(entity, field)
                if current != value:
                    changes[field] = [_serialize_field(current), _serialize_field(value)]
                    setattr(entity, field, value)
            entity.updated_at = to_naive_utc(winner.updated_at)

        merged = {f: _serialize_field(getattr(entity, f)) for f in SYNCED_FIELDS[entity_type]}
        for copy in copies:
            copy.payload = dict(copy.payload or {}, **merged)
            copy.is_dirty = False
            copy.synced_at = ctx.now
            copy.updated_at = to_naive_utc(entity.updated_at) if entity.updated_at else ctx.now
            touched.add(copy.branch_id)

        ctx.audit(
            "sync.merged",
            entity_type,
            entity_id,
            {
                "policy": ctx.options["conflict_resolution"],
                "source_branch_id": None if central_newer else winner.branch_id,
                "changes": changes,
            },
        )

    def _record_conflict(self, ctx: JobContext, entity_type: str, entity_id: int, dirty: list):
        already_open = (
            db.session.query(SyncConflict.id)
            .filter_by(tenant_id=ctx.tenant_id, entity_type=entity_type, entity_id=entity_id, status=CONFLICT_OPEN)
            .first()
        )
        if already_open is not None:
            return False

        candidates = [
            {"branch_id": c.branch_id, "updated_at": to_utc_z(c.updated_at), "payload": c.payload}
            for c in dirty
        ]
        conflict = SyncConflict(
            tenant_id=ctx.tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            candidates=candidates,
            status=CONFLICT_OPEN,
            created_at=ctx.now,
        )
        db.session.add(conflict)
        db.session.flush()
        ctx.audit("sync.conflict", entity_type, entity_id, {"conflict_id": conflict.id, "branches": len(dirty)})

    def summarize(self, result, options) -> str:
        message = f"Synchronized {result.processed} records"
        if result.failed:
            message += f", {result.failed} failed"
        return message

