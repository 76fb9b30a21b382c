"""
Tenant lookup and scoping helpers.

SECURITY INVARIANTS:
1. Every job run is scoped to one tenant at a time.
2. Entity IDs coming from callers must be validated against that tenant
   before they are touched (require_tenant_owns).
3. Suspended tenants are never processed by automation jobs.

USAGE:
    from retailcore.services.tenant_service import get_tenant, list_active_tenants

    tenant = get_tenant(tenant_id)
    settings = get_tenant_settings(tenant)
"""

from __future__ import annotations

import re

from ..extensions import db
from ..models import Tenant
from ..models.tenancy import TENANT_ACTIVE, TENANT_TRIAL, TENANT_STATUSES
from .tenant_settings import TenantSettings

ACTIVE_STATUSES = (TENANT_ACTIVE, TENANT_TRIAL)

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,62}$")


class TenantNotFound(ValueError):
    """Raised when a tenant id does not exist."""


class TenantAccessError(ValueError):
    """Raised when an entity is addressed through a tenant that does not own it."""


def get_tenant(tenant_id) -> Tenant:
    """
    Resolve a tenant id as supplied by a trigger (int or numeric string).

    Raises TenantNotFound for unknown or malformed ids.
    """
    try:
        tid = int(tenant_id)
    except (TypeError, ValueError):
        raise TenantNotFound(f"Tenant {tenant_id!r} not found")
    tenant = db.session.get(Tenant, tid)
    if tenant is None:
        raise TenantNotFound(f"Tenant {tid} not found")
    return tenant


def list_active_tenants() -> list[Tenant]:
    """Tenants automation jobs iterate when no tenantId is given (id order)."""
    return (
        db.session.query(Tenant)
        .filter(Tenant.status.in_(ACTIVE_STATUSES))
        .order_by(Tenant.id.asc())
        .all()
    )


def resolve_tenants(tenant_id=None) -> list[Tenant]:
    """One explicit tenant, or every active tenant when tenant_id is None."""
    if tenant_id is None or tenant_id == "":
        return list_active_tenants()
    tenant = get_tenant(tenant_id)
    if tenant.status not in ACTIVE_STATUSES:
        raise TenantNotFound(f"Tenant {tenant.id} is {tenant.status}")
    return [tenant]


def get_tenant_settings(tenant: Tenant) -> TenantSettings:
    return TenantSettings.from_document(tenant.settings)


def require_tenant_owns(entity, tenant_id: int):
    """
    Validate that an entity row belongs to the tenant.

    Returns the entity unchanged so callers can chain.
    """
    if entity is None:
        raise TenantAccessError("Entity not found")
    if entity.tenant_id != tenant_id:
        raise TenantAccessError(
            f"{type(entity).__name__} {entity.id} does not belong to tenant {tenant_id}"
        )
    return entity


def create_tenant(*, name: str, slug: str, status: str = TENANT_ACTIVE, settings: dict | None = None) -> Tenant:
    name = (name or "").strip()
    slug = (slug or "").strip().lower()
    if not name:
        raise ValueError("name is required")
    if not _SLUG_RE.match(slug):
        raise ValueError("slug must be lowercase letters, digits or '-'")
    if status not in TENANT_STATUSES:
        raise ValueError(f"status must be one of {sorted(TENANT_STATUSES)}")
    if db.session.query(Tenant).filter_by(slug=slug).first():
        raise ValueError(f"slug {slug!r} already in use")

    # validate before persisting so a bad document never lands in the table
    TenantSettings.from_document(settings)

    tenant = Tenant(name=name, slug=slug, status=status, settings=settings or {})
    db.session.add(tenant)
    db.session.flush()
    return tenant
