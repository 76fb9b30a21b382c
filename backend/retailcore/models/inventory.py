from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

MOVEMENT_SALE = "sale"
MOVEMENT_PURCHASE = "purchase"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_DAMAGE = "damage"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_TYPES = {
    MOVEMENT_SALE,
    MOVEMENT_PURCHASE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
    MOVEMENT_DAMAGE,
    MOVEMENT_TRANSFER,
}

PRODUCT_REGULAR = "regular"
PRODUCT_BUNDLE = "bundle"
PRODUCT_SERVICE = "service"

PO_DRAFT = "draft"
PO_ORDERED = "ordered"
PO_RECEIVED = "received"
PO_CANCELLED = "cancelled"
PO_IN_TRANSIT_STATUSES = (PO_DRAFT, PO_ORDERED)


def _money(value):
    return str(value) if value is not None else None


class Product(db.Model):
    """
    Sellable item of a tenant.

    `stock` is the mutable counter kept consistent with StockMovement:
    stock == SUM(stock_movements.quantity) for the product. Only
    services.stock_ledger writes it. `version_id` makes every stock write a
    conditional update, so concurrent writers fail with StaleDataError
    instead of losing an update.

    `base_price` is the list price; `price` is the effective price, which the
    dynamic pricing job derives from base_price.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    product_type = db.Column(db.String(16), nullable=False, default=PRODUCT_REGULAR)
    category_id = db.Column(db.String(64), nullable=True, index=True)

    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    allow_out_of_stock_sales = db.Column(db.Boolean, nullable=False, default=False)
    low_stock_threshold = db.Column(db.Integer, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    branch_stock = db.relationship(
        "ProductBranchStock",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock} tenant_id={self.tenant_id}>"

    def stock_for_branch(self, branch_id: int) -> int:
        for row in self.branch_stock:
            if row.branch_id == branch_id:
                return row.stock
        return 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "product_type": self.product_type,
            "category_id": self.category_id,
            "base_price": _money(self.base_price),
            "price": _money(self.price),
            "stock": self.stock,
            "branch_stock": {str(row.branch_id): row.stock for row in self.branch_stock},
            "track_inventory": self.track_inventory,
            "allow_out_of_stock_sales": self.allow_out_of_stock_sales,
            "low_stock_threshold": self.low_stock_threshold,
            "reorder_point": self.reorder_point,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductBranchStock(db.Model):
    __tablename__ = "product_branch_stock"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_product_branch_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    stock = db.Column(db.Integer, nullable=False, default=0)


class ProductBundle(db.Model):
    __tablename__ = "product_bundles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)

    items = db.relationship("BundleItem", backref="bundle", lazy=True, cascade="all, delete-orphan")


class BundleItem(db.Model):
    __tablename__ = "bundle_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    bundle_id = db.Column(db.Integer, db.ForeignKey("product_bundles.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)


class StockMovement(db.Model):
    """
    One immutable stock ledger entry.

    Append-only: rows are inserted by services.stock_ledger and never
    updated or deleted. new_stock == previous_stock + quantity.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_tenant_product", "tenant_id", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "transaction_id": self.transaction_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    po_number = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PO_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship("PurchaseOrderLine", backref="purchase_order", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "po_number": self.po_number,
            "status": self.status,
            "notes": self.notes,
            "lines": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrderLine(db.Model):
    __tablename__ = "purchase_order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "product_id": self.product_id, "quantity": self.quantity}


class ReorderSuggestion(db.Model):
    """
    Output of the predictive replenishment job.

    One row per product per analysis day; the unique constraint is what makes
    re-running the job on the same day a no-op.
    """
    __tablename__ = "reorder_suggestions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "product_id", "window_date", name="uq_reorder_suggestions_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    window_date = db.Column(db.Date, nullable=False)

    current_stock = db.Column(db.Integer, nullable=False)
    in_transit = db.Column(db.Integer, nullable=False, default=0)
    avg_daily_sales = db.Column(db.Numeric(12, 2), nullable=False)
    projected_need = db.Column(db.Integer, nullable=False)
    suggested_quantity = db.Column(db.Integer, nullable=False)

    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "window_date": self.window_date.isoformat(),
            "current_stock": self.current_stock,
            "in_transit": self.in_transit,
            "avg_daily_sales": _money(self.avg_daily_sales),
            "projected_need": self.projected_need,
            "suggested_quantity": self.suggested_quantity,
            "purchase_order_id": self.purchase_order_id,
        }


class StockAlert(db.Model):
    """Open while a product sits at or below its low-stock threshold."""
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index("ix_stock_alerts_open", "tenant_id", "product_id", "resolved_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    current_stock = db.Column(db.Integer, nullable=False)
    threshold = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
