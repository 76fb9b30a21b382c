# Overview: Stock automations: predictive replenishment and low-stock alerts.

from __future__ import annotations

import math
from decimal import Decimal

import sqlalchemy as sa

from ..extensions import db
from ..models import (
    Product,
    PurchaseOrder,
    PurchaseOrderLine,
    ReorderSuggestion,
    StockAlert,
    Transaction,
    TransactionItem,
)
from ..models.inventory import PO_DRAFT, PO_IN_TRANSIT_STATUSES, PRODUCT_SERVICE
from ..models.sales import TXN_COMPLETED
from ..money import quantize_money
from ..services.stock_ledger import get_low_stock, resolve_low_stock_threshold
from ..time_utils import days_before
from .base import AutomationJob, JobContext, OptionSpec

REPORT_PREVIEW_LIMIT = 20


def reorder_quantity(
    *,
    units_sold: int,
    analysis_days: int,
    prediction_days: int,
    current_stock: int,
    in_transit: int,
    threshold: int,
) -> tuple[Decimal, int, int]:
    """
    Returns (avg_daily_sales, projected_need, suggested_quantity).

    suggested = ceil(projected need + threshold - (stock + in-transit));
    zero or less means no reorder is needed.
    """
    rate = Decimal(units_sold) / Decimal(analysis_days)
    need = rate * prediction_days
    suggested = math.ceil(need + threshold - (current_stock + in_transit))
    return rate, math.ceil(need), suggested


class PredictiveStockJob(AutomationJob):
    """
    Project each product's need over predictionDays from its sales over the
    trailing analysisDays, net of stock on hand and quantities already on
    open purchase orders, and record a ReorderSuggestion when it falls short.

    Guard: one suggestion per product per day (unique constraint); a re-run
    on the same day skips products that already have one.
    """
    name = "predictive-stock"
    path = "stock/predictive"
    description = "Suggest reorders from recent sales velocity"
    options = (
        OptionSpec("analysisDays", int, default=30, minimum=1, maximum=365),
        OptionSpec("predictionDays", int, default=7, minimum=1, maximum=365),
        OptionSpec("autoCreatePurchaseOrders", bool, default=False),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        analysis_days = ctx.options["analysis_days"]
        sold = self._units_sold(ctx, analysis_days)
        if not sold:
            return
        in_transit = self._in_transit(ctx)
        window_date = ctx.now.date()

        existing = {
            pid for (pid,) in db.session.query(ReorderSuggestion.product_id).filter(
                ReorderSuggestion.tenant_id == ctx.tenant_id,
                ReorderSuggestion.window_date == window_date,
            )
        }

        created: list[int] = []
        for product_id in sorted(sold):
            if product_id in existing:
                continue
            ctx.attempt(
                f"Product {product_id}",
                lambda pid=product_id: self._suggest(ctx, pid, sold[pid], in_transit.get(pid, 0), created),
            )

        if created and ctx.options["auto_create_purchase_orders"]:
            ctx.attempt("Purchase order", lambda: self._create_purchase_order(ctx, created))

        if created:
            self._report(ctx, created)

    def _units_sold(self, ctx: JobContext, analysis_days: int) -> dict[int, int]:
        since = days_before(ctx.now, analysis_days)
        rows = (
            db.session.query(TransactionItem.product_id, sa.func.sum(TransactionItem.quantity))
            .join(Transaction, Transaction.id == TransactionItem.transaction_id)
            .join(Product, Product.id == TransactionItem.product_id)
            .filter(
                Transaction.tenant_id == ctx.tenant_id,
                Transaction.status == TXN_COMPLETED,
                Transaction.created_at >= since,
                Transaction.created_at <= ctx.now,
                Product.tenant_id == ctx.tenant_id,
                Product.track_inventory.is_(True),
                Product.is_active.is_(True),
                Product.product_type != PRODUCT_SERVICE,
            )
            .group_by(TransactionItem.product_id)
            .all()
        )
        return {pid: int(qty) for pid, qty in rows if qty and qty > 0}

    def _in_transit(self, ctx: JobContext) -> dict[int, int]:
        rows = (
            db.session.query(PurchaseOrderLine.product_id, sa.func.sum(PurchaseOrderLine.quantity))
            .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderLine.purchase_order_id)
            .filter(
                PurchaseOrder.tenant_id == ctx.tenant_id,
                PurchaseOrder.status.in_(PO_IN_TRANSIT_STATUSES),
            )
            .group_by(PurchaseOrderLine.product_id)
            .all()
        )
        return {pid: int(qty or 0) for pid, qty in rows}

    def _suggest(self, ctx: JobContext, product_id: int, units_sold: int, in_transit: int, created: list):
        product = db.session.get(Product, product_id)
        threshold = resolve_low_stock_threshold(
            product,
            tenant_threshold=ctx.settings.low_stock_threshold,
            default_threshold=ctx.config.low_stock_threshold,
        )
        rate, need, suggested = reorder_quantity(
            units_sold=units_sold,
            analysis_days=ctx.options["analysis_days"],
            prediction_days=ctx.options["prediction_days"],
            current_stock=product.stock,
            in_transit=in_transit,
            threshold=threshold,
        )
        if suggested <= 0:
            return False

        suggestion = ReorderSuggestion(
            tenant_id=ctx.tenant_id,
            product_id=product.id,
            window_date=ctx.now.date(),
            current_stock=product.stock,
            in_transit=in_transit,
            avg_daily_sales=quantize_money(rate),
            projected_need=need,
            suggested_quantity=suggested,
        )
        db.session.add(suggestion)
        db.session.flush()
        ctx.audit("stock.reorder_suggested", "product", product.id, {"suggested_quantity": suggested})
        ctx.defer(lambda: created.append(suggestion.id))

    def _create_purchase_order(self, ctx: JobContext, suggestion_ids: list[int]):
        suggestions = (
            db.session.query(ReorderSuggestion)
            .filter(ReorderSuggestion.id.in_(suggestion_ids), ReorderSuggestion.purchase_order_id.is_(None))
            .order_by(ReorderSuggestion.id.asc())
            .all()
        )
        if not suggestions:
            return False

        po = PurchaseOrder(
            tenant_id=ctx.tenant_id,
            po_number=f"AUTO-{ctx.now:%Y%m%d}-{ctx.tenant_id}",
            status=PO_DRAFT,
            notes=f"Generated from reorder suggestions ({ctx.options['prediction_days']}-day projection)",
        )
        for s in suggestions:
            po.lines.append(PurchaseOrderLine(product_id=s.product_id, quantity=s.suggested_quantity))
        db.session.add(po)
        db.session.flush()
        for s in suggestions:
            s.purchase_order_id = po.id
        ctx.audit("purchase_order.auto_created", "purchase_order", po.id, {"lines": len(suggestions)})
        return False  # the purchase order is a by-product, not a processed entity

    def _report(self, ctx: JobContext, suggestion_ids: list[int]) -> None:
        if not (ctx.settings.email_notifications and ctx.settings.email):
            return
        rows = (
            db.session.query(ReorderSuggestion, Product)
            .join(Product, Product.id == ReorderSuggestion.product_id)
            .filter(ReorderSuggestion.id.in_(suggestion_ids))
            .order_by(ReorderSuggestion.suggested_quantity.desc())
            .all()
        )
        lines = [
            f"- {p.name}{f' (SKU: {p.sku})' if p.sku else ''}: stock {s.current_stock}, "
            f"in transit {s.in_transit}, avg daily sales {s.avg_daily_sales}, reorder {s.suggested_quantity}"
            for s, p in rows[:REPORT_PREVIEW_LIMIT]
        ]
        if len(rows) > REPORT_PREVIEW_LIMIT:
            lines.append(f"... and {len(rows) - REPORT_PREVIEW_LIMIT} more products")
        ctx.send_email(
            ctx.settings.email,
            f"Predictive Stock Replenishment Report - {ctx.company_name}",
            f"Analysis period: last {ctx.options['analysis_days']} days\n"
            f"Prediction window: next {ctx.options['prediction_days']} days\n\n" + "\n".join(lines),
        )

    def summarize(self, result, options) -> str:
        message = f"Generated {result.processed} stock predictions"
        if result.failed:
            message += f", {result.failed} failed"
        return message


class LowStockAlertJob(AutomationJob):
    """
    Keep one open StockAlert per product at or below its low-stock threshold
    and resolve alerts whose product has recovered.

    Guard: an open alert (resolved_at IS NULL) for the product.
    """
    name = "low-stock-alerts"
    path = "stock/low-stock-alerts"
    description = "Raise and resolve low-stock alerts"
    options = (
        OptionSpec("threshold", int, default=None, minimum=0),
        OptionSpec("branchId", int, default=None, minimum=1),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        branch_id = ctx.options["branch_id"]
        low = get_low_stock(
            ctx.tenant_id,
            branch_id=branch_id,
            threshold=ctx.options["threshold"],
            default_threshold=ctx.config.low_stock_threshold,
        )
        low_ids = {p.id for p in low}

        open_alerts = {
            a.product_id: a.id
            for a in db.session.query(StockAlert).filter(
                StockAlert.tenant_id == ctx.tenant_id,
                StockAlert.resolved_at.is_(None),
                StockAlert.branch_id.is_(None) if branch_id is None else StockAlert.branch_id == branch_id,
            )
        }

        opened: list[str] = []
        for product in low:
            if product.id in open_alerts:
                continue
            pid = product.id
            ctx.attempt(f"Product {pid}", lambda pid=pid: self._open(ctx, pid, branch_id, opened))

        for product_id, alert_id in sorted(open_alerts.items()):
            if product_id in low_ids:
                continue
            ctx.attempt(f"Alert {alert_id}", lambda aid=alert_id: self._resolve(ctx, aid))

        if opened and ctx.settings.email_notifications and ctx.settings.email:
            ctx.send_email(
                ctx.settings.email,
                f"Low Stock Alert - {ctx.company_name}",
                "The following products are running low:\n\n" + "\n".join(opened),
            )

    def _open(self, ctx: JobContext, product_id: int, branch_id, opened: list):
        product = db.session.get(Product, product_id)
        stock = product.stock if branch_id is None else product.stock_for_branch(branch_id)
        threshold = resolve_low_stock_threshold(
            product,
            threshold=ctx.options["threshold"],
            tenant_threshold=ctx.settings.low_stock_threshold,
            default_threshold=ctx.config.low_stock_threshold,
        )
        alert = StockAlert(
            tenant_id=ctx.tenant_id,
            product_id=product.id,
            branch_id=branch_id,
            current_stock=stock,
            threshold=threshold,
            created_at=ctx.now,
        )
        db.session.add(alert)
        db.session.flush()
        ctx.audit("stock.low_stock_alert", "product", product.id, {"stock": stock, "threshold": threshold})
        line = f"- {product.name}: {stock} left (threshold {threshold})"
        ctx.defer(lambda: opened.append(line))

    def _resolve(self, ctx: JobContext, alert_id: int):
        alert = db.session.get(StockAlert, alert_id)
        if alert is None or alert.resolved_at is not None:
            return False
        alert.resolved_at = ctx.now
        ctx.audit("stock.low_stock_resolved", "product", alert.product_id, None)

    def summarize(self, result, options) -> str:
        message = f"Updated {result.processed} low-stock alerts"
        if result.failed:
            message += f", {result.failed} failed"
        return message
