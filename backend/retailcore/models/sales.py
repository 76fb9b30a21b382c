from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

TXN_COMPLETED = "completed"
TXN_PENDING = "pending"
TXN_REFUNDED = "refunded"
TXN_CANCELLED = "cancelled"

PAYMENT_CASH = "cash"

DRAWER_OPEN = "open"
DRAWER_CLOSED = "closed"


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "tenant_id": self.tenant_id, "name": self.name, "email": self.email, "phone": self.phone}


class Transaction(db.Model):
    """
    Point-of-sale transaction. user_id is the cashier who rang it up and is
    the actor the suspicious-activity job attributes refunds and voids to.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    receipt_number = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TXN_COMPLETED)
    payment_method = db.Column(db.String(16), nullable=True)  # cash | card | ...
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_code = db.Column(db.String(64), nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship("TransactionItem", backref="transaction", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "tax_amount": str(self.tax_amount),
            "total": str(self.total),
            "created_at": to_utc_z(self.created_at),
        }


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)


class SavedCart(db.Model):
    """
    Cart parked by a customer. reminder_sent_at is the abandoned-cart job's
    guard: a cart is reminded at most once.
    """
    __tablename__ = "saved_carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=True)
    items = db.Column(db.JSON, nullable=False, default=list)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer")


class CashDrawerSession(db.Model):
    """
    One cashier's drawer from opening count to close. The open -> closed
    transition is the end-of-day auto-close job's guard.
    """
    __tablename__ = "cash_drawer_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)

    opening_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    closing_amount = db.Column(db.Numeric(12, 2), nullable=True)
    expected_amount = db.Column(db.Numeric(12, 2), nullable=True)
    shortage = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    overage = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=DRAWER_OPEN)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    auto_closed = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
