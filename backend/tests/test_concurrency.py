# Overview: Pytest coverage for concurrent writers on a shared SQLite file.

"""
Concurrent Writer Tests

Each worker runs in its own thread with its own app context, so it gets its
own session and its own database connection.

Verifies:
1. A stock write that loses the optimistic version check is retried against
   the winner's committed stock
2. A usage-limited discount code is never redeemed past its limit
"""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import Discount, Product, StockMovement, Tenant
from retailcore.services import stock_ledger
from retailcore.services.concurrency import run_with_retry
from retailcore.services.rule_resolver import DiscountError, redeem_discount

from conftest import NOW, RecordingNotifier


@pytest.fixture
def file_app(tmp_path):
    """Application bound to a fresh SQLite file that several connections can share."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'shared.db'}",
            'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
            'LOG_LEVEL': 'WARNING',
        },
        notifier=RecordingNotifier(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def shop(file_app):
    tenant = Tenant(name="Acme Retail", slug="acme", status="active", settings={"companyName": "Acme Retail"})
    db.session.add(tenant)
    db.session.commit()
    return tenant


def _in_worker(app, func, errors):
    def target():
        with app.app_context():
            try:
                func()
            except Exception as exc:
                errors.append(exc)
    return threading.Thread(target=target)


class TestConcurrentStockWrites:

    def test_lost_update_is_retried_with_fresh_stock(self, file_app, shop, monkeypatch):
        product = Product(
            tenant_id=shop.id, name="Widget", base_price=Decimal("10.00"), price=Decimal("10.00"), stock=10
        )
        db.session.add(product)
        db.session.commit()
        product_id, tenant_id = product.id, shop.id

        real_get_product = stock_ledger._get_product
        real_inner = stock_ledger._adjust_stock_inner
        seen_stock = []
        inner_errors = []
        worker_errors = []

        def get_product_then_interleave(*args, **kwargs):
            first_call = not seen_stock
            loaded = real_get_product(*args, **kwargs)
            seen_stock.append(loaded.stock)
            if first_call:
                # Another session restocks and commits between our read and our write
                worker = _in_worker(
                    file_app,
                    lambda: stock_ledger.adjust_stock(product_id, tenant_id, 5, "purchase"),
                    worker_errors,
                )
                worker.start()
                worker.join(timeout=30)
            return loaded

        def recording_inner(**kwargs):
            try:
                return real_inner(**kwargs)
            except Exception as exc:
                inner_errors.append(exc)
                raise

        monkeypatch.setattr(stock_ledger, "_get_product", get_product_then_interleave)
        monkeypatch.setattr(stock_ledger, "_adjust_stock_inner", recording_inner)

        new_stock = stock_ledger.adjust_stock(product_id, tenant_id, -3, "sale")

        assert worker_errors == []
        assert [type(exc) for exc in inner_errors] == [StaleDataError]
        # our first read, the worker's read, our retry
        assert seen_stock == [10, 10, 15]
        assert new_stock == 12

        db.session.expire_all()
        assert db.session.get(Product, product_id).stock == 12
        movements = db.session.query(StockMovement).order_by(StockMovement.id.asc()).all()
        assert [(m.quantity, m.previous_stock, m.new_stock) for m in movements] == [(5, 10, 15), (-3, 15, 12)]


class TestConcurrentRedemption:

    @pytest.mark.parametrize("usage_limit,workers", [(1, 5), (3, 8)])
    def test_usage_limit_holds_under_contention(self, file_app, shop, usage_limit, workers):
        discount = Discount(
            tenant_id=shop.id,
            code="FLASH",
            type="percentage",
            value=Decimal("10"),
            valid_from=NOW - timedelta(days=1),
            valid_until=NOW + timedelta(days=1),
            is_active=True,
            usage_count=0,
            usage_limit=usage_limit,
        )
        db.session.add(discount)
        db.session.commit()
        discount_id, tenant_id = discount.id, shop.id

        start = threading.Barrier(workers)
        outcomes = []
        errors = []

        def redeem():
            start.wait(timeout=30)
            try:
                run_with_retry(lambda: redeem_discount(tenant_id, "flash", now=NOW), attempts=10, backoff_base=0.02)
                outcomes.append("redeemed")
            except DiscountError as exc:
                db.session.rollback()
                outcomes.append(type(exc).__name__)

        threads = [_in_worker(file_app, redeem, errors) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert errors == []
        assert sorted(outcomes) == ["LimitReached"] * (workers - usage_limit) + ["redeemed"] * usage_limit

        db.session.expire_all()
        assert db.session.get(Discount, discount_id).usage_count == usage_limit
