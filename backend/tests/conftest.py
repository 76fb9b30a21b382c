"""
Pytest fixtures for retailcore backend tests.

Provides the test database, two tenants for isolation checks, a recording
notifier, the job runner and the test client.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import Branch, Customer, Discount, Product, Tenant, Transaction, TransactionItem, User
from retailcore.models.sales import TXN_COMPLETED

# Monday 10:00 UTC: outside the default 14-16 happy hour
NOW = datetime(2025, 6, 16, 10, 0, 0)

CRON_SECRET = "test-secret"


class RecordingNotifier:
    """Notifier double that records every send; recipients in `failing` raise."""

    def __init__(self):
        self.emails = []
        self.sms = []
        self.failing = set()

    def reset(self):
        self.emails.clear()
        self.sms.clear()
        self.failing.clear()

    def send_email(self, to, subject, message):
        if to in self.failing:
            raise RuntimeError(f"provider rejected {to}")
        self.emails.append({"to": to, "subject": subject, "message": message})

    def send_sms(self, to, message):
        if to in self.failing:
            raise RuntimeError(f"provider rejected {to}")
        self.sms.append({"to": to, "message": message})

    def emails_to(self, address):
        return [e for e in self.emails if e["to"] == address]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'CRON_SECRET': CRON_SECRET,
            'LOG_LEVEL': 'WARNING',
        },
        notifier=RecordingNotifier(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def runner(app):
    return app.extensions["job_runner"]


@pytest.fixture(scope='function')
def notifier(runner):
    """The notifier wired into the job runner, emptied for this test."""
    runner.notifier.reset()
    yield runner.notifier
    runner.notifier.reset()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(
        name="Acme Retail",
        slug="acme",
        status="active",
        settings={"companyName": "Acme Retail", "email": "owner@acme.test"},
    )
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(
        name="Beta Salon",
        slug="beta",
        status="active",
        settings={"companyName": "Beta Salon", "email": "owner@beta.test"},
    )
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a1(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Downtown", code="A1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Harbour", code="A2")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def user_a(db_session, tenant_a):
    user = User(tenant_id=tenant_a.id, name="Casey Cashier", email="casey@acme.test", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products; stock is seeded directly (no movement)."""
    def _make(tenant, **overrides):
        values = {
            "name": "Widget",
            "base_price": Decimal("10.00"),
            "price": Decimal("10.00"),
            "stock": 0,
        }
        values.update(overrides)
        product = Product(tenant_id=tenant.id, **values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_discount(db_session):
    def _make(tenant, code="SAVE10", **overrides):
        values = {
            "type": "percentage",
            "value": Decimal("10"),
            "valid_from": NOW - timedelta(days=1),
            "valid_until": NOW + timedelta(days=30),
            "is_active": True,
            "usage_count": 0,
        }
        values.update(overrides)
        discount = Discount(tenant_id=tenant.id, code=code, **values)
        db_session.add(discount)
        db_session.commit()
        return discount

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(tenant, name="Jordan Shopper", email="jordan@example.test", **overrides):
        customer = Customer(tenant_id=tenant.id, name=name, email=email, **overrides)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def make_sale(db_session):
    """Factory for a completed transaction selling `quantity` of one product."""
    def _make(tenant, product, quantity, *, created_at=NOW - timedelta(days=1), status=TXN_COMPLETED, **overrides):
        txn = Transaction(
            tenant_id=tenant.id,
            status=status,
            subtotal=Decimal(product.price) * quantity,
            total=Decimal(product.price) * quantity,
            created_at=created_at,
            updated_at=created_at,
            **overrides,
        )
        txn.items.append(
            TransactionItem(product_id=product.id, name=product.name, quantity=quantity, unit_price=product.price)
        )
        db_session.add(txn)
        db_session.commit()
        return txn

    return _make
