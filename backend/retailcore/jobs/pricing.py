# Overview: Dynamic pricing from time of day, recent demand and stock level.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa

from ..extensions import db
from ..models import Product, Transaction, TransactionItem
from ..models.inventory import PRODUCT_SERVICE
from ..models.sales import TXN_COMPLETED
from ..money import quantize_money, to_decimal
from ..services.tenant_settings import TenantSettings
from ..time_utils import days_before
from .base import AutomationJob, JobContext, OptionSpec

DEMAND_WINDOW_DAYS = 7
ONE = Decimal("1")


@dataclass(frozen=True)
class PricingFactors:
    time: Decimal = ONE
    demand: Decimal = ONE
    stock: Decimal = ONE

    @property
    def combined(self) -> Decimal:
        return self.time * self.demand * self.stock


def in_happy_hour(hour: int, start: int, end: int) -> bool:
    """[start, end) in hours; a window with start > end wraps past midnight."""
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def pricing_factors(
    product: Product,
    *,
    now: datetime,
    units_sold: int,
    settings: TenantSettings,
    time_based: bool = True,
    demand_based: bool = True,
    stock_based: bool = True,
) -> PricingFactors:
    time_factor = demand_factor = stock_factor = ONE

    local_hour = settings.local_time(now).hour
    if time_based and in_happy_hour(local_hour, settings.happy_hour_start, settings.happy_hour_end):
        time_factor = settings.happy_hour_multiplier

    if demand_based and units_sold > settings.high_demand_sales:
        demand_factor = settings.high_demand_multiplier

    if stock_based and product.track_inventory:
        if product.stock > settings.clearance_stock_level:
            stock_factor = settings.clearance_multiplier
        elif product.reorder_point is not None and product.stock <= product.reorder_point:
            stock_factor = settings.scarcity_multiplier

    return PricingFactors(time=time_factor, demand=demand_factor, stock=stock_factor)


def clamp(value: Decimal, minimum: Decimal, maximum: Decimal) -> Decimal:
    return max(minimum, min(maximum, value))


def dynamic_price(base_price, factors: PricingFactors, minimum: Decimal, maximum: Decimal) -> Decimal:
    """base_price x clamped(time x demand x stock), rounded to cents."""
    return quantize_money(to_decimal(base_price) * clamp(factors.combined, minimum, maximum))


class DynamicPricingJob(AutomationJob):
    """
    Recompute Product.price from Product.base_price.

    Factors compose multiplicatively and the product is clamped to the
    configured [PRICE_MULTIPLIER_MIN, PRICE_MULTIPLIER_MAX] band. Every factor
    is opt-in: a run without enable flags leaves prices untouched. Happy
    hour is evaluated on the tenant's local clock (settings timezone). The price
    is always derived from base_price, so re-running with the same inputs
    yields the same price and changes nothing.
    """
    name = "dynamic-pricing"
    path = "pricing/dynamic"
    description = "Adjust effective prices by time of day, demand and stock"
    options = (
        OptionSpec("enableTimeBased", bool, default=False),
        OptionSpec("enableDemandBased", bool, default=False),
        OptionSpec("enableStockBased", bool, default=False),
    )

    def run_for_tenant(self, ctx: JobContext) -> None:
        opts = ctx.options
        if not (opts["enable_time_based"] or opts["enable_demand_based"] or opts["enable_stock_based"]):
            return

        units = self._units_sold(ctx) if opts["enable_demand_based"] else {}
        product_ids = [
            pid for (pid,) in db.session.query(Product.id)
            .filter(
                Product.tenant_id == ctx.tenant_id,
                Product.is_active.is_(True),
                Product.product_type != PRODUCT_SERVICE,
            )
            .order_by(Product.id.asc())
            .all()
        ]
        for product_id in product_ids:
            ctx.attempt(
                f"Product {product_id}",
                lambda pid=product_id: self._reprice(ctx, pid, units.get(pid, 0)),
            )

    def _units_sold(self, ctx: JobContext) -> dict[int, int]:
        since = days_before(ctx.now, DEMAND_WINDOW_DAYS)
        rows = (
            db.session.query(TransactionItem.product_id, sa.func.sum(TransactionItem.quantity))
            .join(Transaction, Transaction.id == TransactionItem.transaction_id)
            .filter(
                Transaction.tenant_id == ctx.tenant_id,
                Transaction.status == TXN_COMPLETED,
                Transaction.created_at >= since,
                Transaction.created_at <= ctx.now,
                TransactionItem.product_id.isnot(None),
            )
            .group_by(TransactionItem.product_id)
            .all()
        )
        return {pid: int(qty or 0) for pid, qty in rows}

    def _reprice(self, ctx: JobContext, product_id: int, units_sold: int):
        product = db.session.get(Product, product_id)
        if product is None or product.base_price is None or to_decimal(product.base_price) <= 0:
            return False

        factors = pricing_factors(
            product,
            now=ctx.now,
            units_sold=units_sold,
            settings=ctx.settings,
            time_based=ctx.options["enable_time_based"],
            demand_based=ctx.options["enable_demand_based"],
            stock_based=ctx.options["enable_stock_based"],
        )
        new_price = dynamic_price(
            product.base_price, factors, ctx.config.price_multiplier_min, ctx.config.price_multiplier_max
        )
        old_price = quantize_money(product.price)
        if new_price == old_price:
            return False

        product.price = new_price
        ctx.audit(
            "product.price_changed",
            "product",
            product.id,
            {
                "price": [str(old_price), str(new_price)],
                "base_price": str(quantize_money(product.base_price)),
                "multiplier": str(factors.combined),
                "factors": {"time": str(factors.time), "demand": str(factors.demand), "stock": str(factors.stock)},
            },
        )

    def summarize(self, result, options) -> str:
        message = f"Updated prices for {result.processed} products"
        if result.failed:
            message += f", {result.failed} failed"
        return message
