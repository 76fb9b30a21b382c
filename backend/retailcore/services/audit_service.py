# Overview: Append-only audit log writer used by the stock ledger and the automation jobs.

from __future__ import annotations

from typing import Any, Optional

from ..extensions import db
from ..models import AuditLogEntry
"""
Audit log invariants (authoritative)

- Append-only: entries are inserted, never updated or deleted.
- Entries are written inside the same DB transaction as the change they
  describe, so a rolled-back change leaves no audit trace.
- created_at is system time; callers pass `created_at` only when they run
  against an injected clock (jobs running with an explicit `now`).
"""


def append_audit_entry(
    *,
    tenant_id: int,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    changes: Optional[dict[str, Any]] = None,
    actor_user_id: int | None = None,
    actor: str | None = None,
    success: bool = True,
    created_at=None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes=changes,
        actor_user_id=actor_user_id,
        actor=actor,
        success=success,
    )
    if created_at is not None:
        entry.created_at = created_at
    db.session.add(entry)
    db.session.flush()  # assigns entry.id without committing
    return entry


def list_audit_entries(
    tenant_id: int,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[AuditLogEntry]:
    q = db.session.query(AuditLogEntry).filter(AuditLogEntry.tenant_id == tenant_id)
    if action:
        q = q.filter(AuditLogEntry.action == action)
    if entity_type:
        q = q.filter(AuditLogEntry.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditLogEntry.entity_id == entity_id)
    return q.order_by(AuditLogEntry.id.desc()).limit(limit).all()
