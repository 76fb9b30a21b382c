from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"

TAX_APPLIES_ALL = "all"
TAX_APPLIES_PRODUCTS = "products"
TAX_APPLIES_SERVICES = "services"
TAX_APPLIES_CATEGORIES = "categories"


class Discount(db.Model):
    """
    Discount code of a tenant.

    Codes are stored upper-case. usage_count only moves through
    rule_resolver.redeem_discount, which increments it with a conditional
    UPDATE so usage_count never passes usage_limit.
    """
    __tablename__ = "discounts"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_discounts_tenant_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    type = db.Column(db.String(16), nullable=False)  # percentage | fixed
    value = db.Column(db.Numeric(12, 2), nullable=False)
    min_purchase_amount = db.Column(db.Numeric(12, 2), nullable=True)
    max_discount_amount = db.Column(db.Numeric(12, 2), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    # highest usage alert threshold (80, 90, 100) already reported; 0 = none
    usage_alert_level = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

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
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "value": str(self.value),
            "min_purchase_amount": str(self.min_purchase_amount) if self.min_purchase_amount is not None else None,
            "max_discount_amount": str(self.max_discount_amount) if self.max_discount_amount is not None else None,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "is_active": self.is_active,
        }


class TaxRule(db.Model):
    """
    Tenant tax rule. Higher priority wins; product_ids / category_ids narrow
    the rule to specific items.
    """
    __tablename__ = "tax_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    rate = db.Column(db.Numeric(6, 3), nullable=False)
    label = db.Column(db.String(64), nullable=False, default="Tax")
    applies_to = db.Column(db.String(16), nullable=False, default=TAX_APPLIES_ALL)
    category_ids = db.Column(db.JSON, nullable=True)
    product_ids = db.Column(db.JSON, nullable=True)
    priority = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "rate": str(self.rate),
            "label": self.label,
            "applies_to": self.applies_to,
            "category_ids": self.category_ids or [],
            "product_ids": self.product_ids or [],
            "priority": self.priority,
            "is_active": self.is_active,
        }
