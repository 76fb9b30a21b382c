# Overview: Pytest coverage for predictive replenishment and low-stock alerts.

from datetime import timedelta
from decimal import Decimal

import pytest

from retailcore.jobs import JobParameterError
from retailcore.jobs.stock import reorder_quantity
from retailcore.models import AuditLogEntry, PurchaseOrder, PurchaseOrderLine, ReorderSuggestion, StockAlert
from retailcore.services.stock_ledger import adjust_stock

from conftest import NOW


def _purchase_order(db_session, tenant, product, quantity, status="ordered"):
    po = PurchaseOrder(tenant_id=tenant.id, po_number=f"PO-{status}", status=status)
    po.lines.append(PurchaseOrderLine(product_id=product.id, quantity=quantity))
    db_session.add(po)
    db_session.commit()
    return po


class TestReorderQuantity:

    def test_projection(self):
        rate, need, suggested = reorder_quantity(
            units_sold=60, analysis_days=30, prediction_days=7, current_stock=5, in_transit=0, threshold=10
        )

        assert rate == Decimal("2")
        assert need == 14
        assert suggested == 19

    def test_fractional_need_rounds_up(self):
        _, need, suggested = reorder_quantity(
            units_sold=10, analysis_days=30, prediction_days=7, current_stock=0, in_transit=0, threshold=0
        )

        assert need == 3
        assert suggested == 3

    def test_enough_stock(self):
        _, _, suggested = reorder_quantity(
            units_sold=60, analysis_days=30, prediction_days=7, current_stock=20, in_transit=10, threshold=10
        )

        assert suggested <= 0


class TestPredictiveStockJob:

    def test_suggests_reorder_from_sales_velocity(self, db_session, runner, notifier, tenant_a, make_product, make_sale):
        product = make_product(tenant_a, name="Coffee beans", sku="CB-1", stock=5)
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=5))

        result = runner.run("predictive-stock", {"analysisDays": 30, "predictionDays": 7}, now=NOW)

        assert result.processed == 1
        assert result.message == "Generated 1 stock predictions"
        suggestion = db_session.query(ReorderSuggestion).one()
        assert suggestion.product_id == product.id
        assert suggestion.window_date == NOW.date()
        assert suggestion.avg_daily_sales == Decimal("2.00")
        assert suggestion.projected_need == 14
        assert suggestion.suggested_quantity == 19
        assert suggestion.purchase_order_id is None

        [report] = notifier.emails_to("owner@acme.test")
        assert report["subject"] == "Predictive Stock Replenishment Report - Acme Retail"
        assert "Coffee beans (SKU: CB-1)" in report["message"]

    def test_open_purchase_orders_count_as_stock(self, db_session, runner, notifier, tenant_a, make_product, make_sale):
        product = make_product(tenant_a, stock=5)
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=5))
        _purchase_order(db_session, tenant_a, product, 10, status="ordered")
        _purchase_order(db_session, tenant_a, product, 100, status="received")

        runner.run("predictive-stock", {}, now=NOW)

        suggestion = db_session.query(ReorderSuggestion).one()
        assert suggestion.in_transit == 10
        assert suggestion.suggested_quantity == 9

    def test_same_day_rerun_is_a_no_op(self, db_session, runner, notifier, tenant_a, make_product, make_sale):
        product = make_product(tenant_a, stock=5)
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=5))
        runner.run("predictive-stock", {}, now=NOW)

        result = runner.run("predictive-stock", {}, now=NOW + timedelta(hours=3))

        assert (result.processed, result.failed) == (0, 0)
        assert db_session.query(ReorderSuggestion).count() == 1

    def test_auto_creates_purchase_order(self, db_session, runner, notifier, tenant_a, make_product, make_sale):
        product = make_product(tenant_a, stock=5)
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=5))

        result = runner.run("predictive-stock", {"autoCreatePurchaseOrders": "true"}, now=NOW)

        assert result.processed == 1
        po = db_session.query(PurchaseOrder).one()
        assert po.po_number == f"AUTO-20250616-{tenant_a.id}"
        assert po.status == "draft"
        assert [(line.product_id, line.quantity) for line in po.lines] == [(product.id, 19)]
        assert db_session.query(ReorderSuggestion).one().purchase_order_id == po.id

    def test_well_stocked_and_unsold_products_skipped(
        self, db_session, runner, notifier, tenant_a, make_product, make_sale
    ):
        stocked = make_product(tenant_a, name="Stocked", stock=500)
        make_product(tenant_a, name="Unsold", stock=0)
        make_sale(tenant_a, stocked, 60, created_at=NOW - timedelta(days=5))

        result = runner.run("predictive-stock", {}, now=NOW)

        assert result.processed == 0
        assert db_session.query(ReorderSuggestion).count() == 0
        assert notifier.emails == []

    def test_only_completed_sales_in_window_count(self, db_session, runner, notifier, tenant_a, make_product, make_sale):
        product = make_product(tenant_a, stock=5)
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=45))
        make_sale(tenant_a, product, 60, created_at=NOW - timedelta(days=2), status="cancelled")

        result = runner.run("predictive-stock", {}, now=NOW)

        assert result.processed == 0

    def test_rejects_out_of_range_options(self, db_session, runner, tenant_a):
        with pytest.raises(JobParameterError):
            runner.run("predictive-stock", {"analysisDays": 0}, now=NOW)


class TestLowStockAlertJob:

    def test_opens_one_alert_per_low_product(self, db_session, runner, notifier, tenant_a, make_product):
        low = make_product(tenant_a, name="Milk", stock=3)
        make_product(tenant_a, name="Rice", stock=50)

        result = runner.run("low-stock-alerts", {}, now=NOW)

        assert result.processed == 1
        alert = db_session.query(StockAlert).one()
        assert alert.product_id == low.id
        assert (alert.current_stock, alert.threshold) == (3, 10)
        assert alert.created_at == NOW
        assert alert.resolved_at is None

        [email] = notifier.emails
        assert email["subject"] == "Low Stock Alert - Acme Retail"
        assert "- Milk: 3 left (threshold 10)" in email["message"]

    def test_rerun_does_not_duplicate(self, db_session, runner, notifier, tenant_a, make_product):
        make_product(tenant_a, stock=3)
        runner.run("low-stock-alerts", {}, now=NOW)

        result = runner.run("low-stock-alerts", {}, now=NOW + timedelta(hours=1))

        assert result.processed == 0
        assert db_session.query(StockAlert).count() == 1
        assert len(notifier.emails) == 1

    def test_recovered_product_resolves_alert(self, db_session, runner, notifier, tenant_a, make_product):
        product = make_product(tenant_a, stock=3)
        runner.run("low-stock-alerts", {}, now=NOW)
        adjust_stock(product.id, tenant_a.id, 20, "purchase")

        later = NOW + timedelta(hours=1)
        result = runner.run("low-stock-alerts", {}, now=later)

        assert result.processed == 1
        assert db_session.query(StockAlert).one().resolved_at == later
        assert db_session.query(AuditLogEntry).filter_by(action="stock.low_stock_resolved").count() == 1

    def test_threshold_override(self, db_session, runner, notifier, tenant_a, make_product):
        make_product(tenant_a, stock=3)

        result = runner.run("low-stock-alerts", {"threshold": "2"}, now=NOW)

        assert result.processed == 0

    def test_branch_scope(self, db_session, runner, notifier, tenant_a, branch_a1, make_product):
        product = make_product(tenant_a, stock=0)
        adjust_stock(product.id, tenant_a.id, 40, "purchase")
        adjust_stock(product.id, tenant_a.id, 2, "purchase", branch_id=branch_a1.id)

        whole = runner.run("low-stock-alerts", {}, now=NOW)
        branch = runner.run("low-stock-alerts", {"branchId": branch_a1.id}, now=NOW)

        assert whole.processed == 0
        assert branch.processed == 1
        assert db_session.query(StockAlert).one().branch_id == branch_a1.id
