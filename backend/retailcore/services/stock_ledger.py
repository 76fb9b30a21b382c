# Overview: Stock ledger; the only writer of Product.stock and StockMovement rows.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Branch, Product, ProductBranchStock, ProductBundle, StockMovement, Tenant
from ..models.inventory import MOVEMENT_TYPES, PRODUCT_SERVICE
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .tenant_settings import TenantSettings
"""
Stock ledger invariants (authoritative)

- Product.stock is a cached counter: it always equals SUM(quantity) over the
  product's StockMovement rows. ProductBranchStock.stock equals the same sum
  restricted to that branch.
- StockMovement rows are append-only and satisfy
  new_stock == previous_stock + quantity, where previous/new describe the
  bucket that was checked (the branch bucket for branch-scoped movements,
  the product total otherwise).
- A movement and its counter update are flushed together and committed
  together; a failure leaves neither.
- Stock may not go negative unless Product.allow_out_of_stock_sales is set.
- Concurrent writers are serialized by SELECT ... FOR UPDATE where the
  database honours it and by the Product version_id check everywhere; a lost
  race surfaces as StaleDataError and is retried by run_with_retry.
- Products with track_inventory=False are never adjusted.
"""

DEFAULT_MOVEMENT_LIMIT = 50


class StockLedgerError(ValueError):
    pass


class ProductNotFound(StockLedgerError):
    pass


class InvalidMovement(StockLedgerError):
    pass


class InsufficientStock(StockLedgerError):
    def __init__(self, product_id: int, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: available {available}, requested {requested}"
        )


def _get_product(product_id: int, tenant_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found")
    return product


def _get_branch_bucket(product: Product, branch_id: int, *, lock: bool = False) -> ProductBranchStock:
    branch = db.session.query(Branch).filter_by(id=branch_id, tenant_id=product.tenant_id).first()
    if branch is None:
        raise InvalidMovement(f"Branch {branch_id} not found")

    query = db.session.query(ProductBranchStock).filter_by(product_id=product.id, branch_id=branch_id)
    if lock:
        query = lock_for_update(query)
    bucket = query.first()
    if bucket is None:
        bucket = ProductBranchStock(product_id=product.id, branch_id=branch_id, stock=0)
        db.session.add(bucket)
        product.branch_stock.append(bucket)
    return bucket


def _validate_movement(quantity, movement_type: str) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise InvalidMovement(f"Unknown movement type {movement_type!r}")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidMovement("quantity must be an integer")
    if quantity == 0:
        raise InvalidMovement("quantity must be non-zero")


def _adjust_stock_inner(
    *,
    product_id: int,
    tenant_id: int,
    quantity: int,
    movement_type: str,
    branch_id: int | None = None,
    transaction_id: int | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> tuple[int, StockMovement | None]:
    """Core adjustment without retry or commit. Returns (new_stock, movement)."""
    _validate_movement(quantity, movement_type)

    product = _get_product(product_id, tenant_id, lock=True)

    bucket = None
    if branch_id is not None:
        bucket = _get_branch_bucket(product, branch_id, lock=True)

    if not product.track_inventory:
        return (bucket.stock if bucket is not None else product.stock), None

    previous = bucket.stock if bucket is not None else product.stock
    new_stock = previous + quantity

    if not product.allow_out_of_stock_sales:
        if new_stock < 0:
            raise InsufficientStock(product.id, previous, -quantity)
        if product.stock + quantity < 0:
            raise InsufficientStock(product.id, product.stock, -quantity)

    if bucket is not None:
        bucket.stock = new_stock
    product.stock = product.stock + quantity
    product.updated_at = utcnow()

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product.id,
        branch_id=branch_id,
        type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new_stock,
        transaction_id=transaction_id,
        user_id=user_id,
        reason=reason,
        notes=notes,
        created_at=utcnow(),
    )
    db.session.add(movement)
    # Flushing here runs the versioned UPDATE on products; a concurrent
    # writer makes it raise StaleDataError.
    db.session.flush()

    current_app.logger.debug(
        "stock movement tenant=%s product=%s branch=%s type=%s qty=%s %s->%s",
        tenant_id, product.id, branch_id, movement_type, quantity, previous, new_stock,
    )
    return new_stock, movement


def adjust_stock(
    product_id: int,
    tenant_id: int,
    quantity: int,
    movement_type: str,
    *,
    branch_id: int | None = None,
    transaction_id: int | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> int:
    """
    Apply a signed stock delta and append the matching movement.

    Returns the new stock of the checked bucket (branch stock when branch_id
    is given, otherwise the product total).

    Raises:
        InvalidMovement: unknown movement type, zero or non-integer quantity, unknown branch
        ProductNotFound: no product with that id inside the tenant
        InsufficientStock: the delta would take stock below zero

    With commit=False the caller owns the transaction (and its retries); the
    writes are only flushed.
    """
    kwargs = dict(
        product_id=product_id,
        tenant_id=tenant_id,
        quantity=quantity,
        movement_type=movement_type,
        branch_id=branch_id,
        transaction_id=transaction_id,
        user_id=user_id,
        reason=reason,
        notes=notes,
    )

    if not commit:
        new_stock, _ = _adjust_stock_inner(**kwargs)
        return new_stock

    def _op():
        try:
            new_stock, _ = _adjust_stock_inner(**kwargs)
        except Exception:
            db.session.rollback()
            raise
        db.session.commit()
        return new_stock

    return run_with_retry(_op)


def adjust_bundle_stock(
    bundle_id: int,
    tenant_id: int,
    bundle_quantity: int,
    movement_type: str,
    *,
    branch_id: int | None = None,
    transaction_id: int | None = None,
    user_id: int | None = None,
    reason: str | None = None,
    commit: bool = True,
) -> dict[int, int]:
    """
    Move stock for every component of a bundle.

    bundle_quantity is a signed delta in bundles (-2 sells two bundles); each
    component moves by item.quantity * bundle_quantity. All components are
    adjusted in one transaction: if any of them lacks stock, none move.

    Returns {product_id: new_stock}.
    """
    def _inner():
        bundle = db.session.query(ProductBundle).filter_by(id=bundle_id, tenant_id=tenant_id).first()
        if bundle is None:
            raise ProductNotFound(f"Bundle {bundle_id} not found")
        if not bundle.track_inventory:
            return {}

        results = {}
        for item in bundle.items:
            new_stock, _ = _adjust_stock_inner(
                product_id=item.product_id,
                tenant_id=tenant_id,
                quantity=item.quantity * bundle_quantity,
                movement_type=movement_type,
                branch_id=branch_id,
                transaction_id=transaction_id,
                user_id=user_id,
                reason=reason,
                notes=f"bundle {bundle_id}",
            )
            results[item.product_id] = new_stock
        return results

    if not commit:
        return _inner()

    def _op():
        try:
            results = _inner()
        except Exception:
            db.session.rollback()
            raise
        db.session.commit()
        return results

    return run_with_retry(_op)


def get_stock(product_id: int, tenant_id: int, branch_id: int | None = None) -> int:
    product = _get_product(product_id, tenant_id)
    if branch_id is None:
        return product.stock
    return product.stock_for_branch(branch_id)


def get_stock_movements(
    product_id: int,
    tenant_id: int,
    branch_id: int | None = None,
    limit: int = DEFAULT_MOVEMENT_LIMIT,
) -> list[StockMovement]:
    """Movements of one product, newest first."""
    _get_product(product_id, tenant_id)
    q = db.session.query(StockMovement).filter_by(product_id=product_id, tenant_id=tenant_id)
    if branch_id is not None:
        q = q.filter(StockMovement.branch_id == branch_id)
    return q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def resolve_low_stock_threshold(
    product: Product,
    *,
    threshold: int | None = None,
    tenant_threshold: int | None = None,
    default_threshold: int = 10,
) -> int:
    """explicit argument -> product -> tenant settings -> configured default"""
    if threshold is not None:
        return threshold
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    if tenant_threshold is not None:
        return tenant_threshold
    return default_threshold


def get_low_stock(
    tenant_id: int,
    branch_id: int | None = None,
    threshold: int | None = None,
    *,
    default_threshold: int = 10,
) -> list[Product]:
    """
    Active, stock-tracked products whose effective stock is at or below their
    threshold. Effective stock is the branch bucket when branch_id is given.
    Ordered by effective stock ascending, then id.
    """
    tenant = db.session.get(Tenant, tenant_id)
    tenant_threshold = None
    if tenant is not None:
        tenant_threshold = TenantSettings.from_document(tenant.settings).low_stock_threshold

    products = (
        db.session.query(Product)
        .filter(
            Product.tenant_id == tenant_id,
            Product.is_active.is_(True),
            Product.track_inventory.is_(True),
            Product.product_type != PRODUCT_SERVICE,
        )
        .order_by(Product.id.asc())
        .all()
    )

    low = []
    for product in products:
        stock = product.stock if branch_id is None else product.stock_for_branch(branch_id)
        limit = resolve_low_stock_threshold(
            product,
            threshold=threshold,
            tenant_threshold=tenant_threshold,
            default_threshold=default_threshold,
        )
        if stock <= limit:
            low.append((stock, product.id, product))

    low.sort(key=lambda row: (row[0], row[1]))
    return [row[2] for row in low]
