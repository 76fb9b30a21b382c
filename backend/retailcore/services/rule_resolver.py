# Overview: Tax and discount rule evaluation over a cart snapshot.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

import sqlalchemy as sa

from ..extensions import db
from ..models import Discount, TaxRule, Tenant
from ..models.inventory import PRODUCT_BUNDLE, PRODUCT_REGULAR, PRODUCT_SERVICE
from ..models.pricing import (
    DISCOUNT_PERCENTAGE,
    TAX_APPLIES_ALL,
    TAX_APPLIES_CATEGORIES,
    TAX_APPLIES_PRODUCTS,
    TAX_APPLIES_SERVICES,
)
from ..money import quantize_money, to_decimal
from ..time_utils import to_naive_utc, utcnow
from .tenant_settings import TenantSettings
"""
Rule resolver invariants

- compute_tax / quote_discount are pure: they read the rows handed to them
  and never write.
- Tax rules are evaluated by priority DESC, then id ASC; the first rule that
  applies to any item wins. When none applies, the tenant's flat tax
  settings are used; when those are disabled, tax is zero.
- Discount validation never touches usage_count. redeem_discount is the only
  writer, and increments with one conditional UPDATE so concurrent
  redemptions can never push usage_count past usage_limit.
- All amounts are Decimal, rounded half-up to cents.
"""

DEFAULT_TAX_LABEL = "Tax"


class DiscountError(ValueError):
    code = "discount_error"


class InvalidCode(DiscountError):
    code = "invalid_code"


class NotYetValid(DiscountError):
    code = "not_yet_valid"


class Expired(DiscountError):
    code = "expired"


class LimitReached(DiscountError):
    code = "limit_reached"


class BelowMinimum(DiscountError):
    code = "below_minimum"


@dataclass(frozen=True)
class TaxItem:
    product_id: int | None = None
    product_type: str = PRODUCT_REGULAR
    category_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaxItem":
        product_id = data.get("product_id", data.get("productId"))
        category_id = data.get("category_id", data.get("categoryId"))
        return cls(
            product_id=int(product_id) if product_id not in (None, "") else None,
            product_type=data.get("product_type", data.get("productType")) or PRODUCT_REGULAR,
            category_id=str(category_id) if category_id not in (None, "") else None,
        )


@dataclass(frozen=True)
class TaxResult:
    rate: Decimal
    label: str
    amount: Decimal
    rule_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "tax_rate": str(self.rate),
            "tax_label": self.label,
            "tax_amount": str(self.amount),
            "rule_id": self.rule_id,
        }


@dataclass(frozen=True)
class DiscountQuote:
    code: str
    name: str | None
    type: str
    value: Decimal
    discount_amount: Decimal
    final_total: Decimal

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "value": str(self.value),
            "discount_amount": str(self.discount_amount),
            "final_total": str(self.final_total),
        }


# ---- tax ----------------------------------------------------------------

def _id_set(values) -> set[str]:
    return {str(v) for v in (values or [])}


def rule_applies(rule: TaxRule, items: Sequence[TaxItem]) -> bool:
    """
    Explicit product ids override category ids, which override the coarse
    applies_to predicate.
    """
    product_ids = _id_set(rule.product_ids)
    if product_ids:
        return any(item.product_id is not None and str(item.product_id) in product_ids for item in items)

    if rule.applies_to == TAX_APPLIES_CATEGORIES or rule.category_ids:
        category_ids = _id_set(rule.category_ids)
        if not category_ids:
            return False
        return any(item.category_id is not None and item.category_id in category_ids for item in items)

    if rule.applies_to == TAX_APPLIES_ALL:
        return True
    if rule.applies_to == TAX_APPLIES_PRODUCTS:
        return any(item.product_type in (PRODUCT_REGULAR, PRODUCT_BUNDLE) for item in items)
    if rule.applies_to == TAX_APPLIES_SERVICES:
        return any(item.product_type == PRODUCT_SERVICE for item in items)
    return False


def _ordered_rules(rules: Iterable[TaxRule]) -> list[TaxRule]:
    active = [r for r in rules if r.is_active]
    return sorted(active, key=lambda r: (-(r.priority or 0), r.id or 0))


def compute_tax(
    rules: Iterable[TaxRule],
    items: Sequence[TaxItem],
    subtotal,
    settings: TenantSettings | None = None,
) -> TaxResult:
    subtotal = to_decimal(subtotal)
    for rule in _ordered_rules(rules):
        if rule_applies(rule, items):
            rate = to_decimal(rule.rate)
            return TaxResult(
                rate=rate,
                label=rule.label or DEFAULT_TAX_LABEL,
                amount=quantize_money(subtotal * rate / 100),
                rule_id=rule.id,
            )

    if settings is not None and settings.tax_enabled and settings.tax_rate:
        return TaxResult(
            rate=settings.tax_rate,
            label=settings.tax_label or DEFAULT_TAX_LABEL,
            amount=quantize_money(subtotal * settings.tax_rate / 100),
        )

    return TaxResult(rate=Decimal("0"), label=DEFAULT_TAX_LABEL, amount=quantize_money(0))


def resolve_tax(tenant_id: int, subtotal, items: Sequence[Mapping[str, Any] | TaxItem]) -> TaxResult:
    """Load the tenant's active rules and settings, then compute_tax."""
    rules = (
        db.session.query(TaxRule)
        .filter(TaxRule.tenant_id == tenant_id, TaxRule.is_active.is_(True))
        .all()
    )
    tenant = db.session.get(Tenant, tenant_id)
    settings = TenantSettings.from_document(tenant.settings) if tenant is not None else None
    tax_items = [i if isinstance(i, TaxItem) else TaxItem.from_mapping(i) for i in items]
    return compute_tax(rules, tax_items, subtotal, settings)


# ---- discounts ----------------------------------------------------------

def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _check_window(discount: Discount, now: datetime) -> None:
    now = to_naive_utc(now)
    if discount.valid_from is not None and now < to_naive_utc(discount.valid_from):
        raise NotYetValid(f"Discount code {discount.code} is not valid yet")
    if discount.valid_until is not None and now > to_naive_utc(discount.valid_until):
        raise Expired(f"Discount code {discount.code} has expired")


def quote_discount(discount: Discount | None, subtotal, now: datetime) -> DiscountQuote:
    """
    Validate a discount row against a subtotal and price it.

    Raises InvalidCode, NotYetValid, Expired, LimitReached or BelowMinimum.
    """
    if discount is None or not discount.is_active:
        raise InvalidCode("Invalid or inactive discount code")

    _check_window(discount, now)

    if discount.usage_limit is not None and discount.usage_count >= discount.usage_limit:
        raise LimitReached(f"Discount code {discount.code} has reached its usage limit")

    subtotal = to_decimal(subtotal)
    if discount.min_purchase_amount is not None and subtotal < to_decimal(discount.min_purchase_amount):
        raise BelowMinimum(
            f"Minimum purchase amount of {quantize_money(discount.min_purchase_amount)} required"
        )

    value = to_decimal(discount.value)
    if discount.type == DISCOUNT_PERCENTAGE:
        amount = subtotal * value / 100
        if discount.max_discount_amount is not None:
            amount = min(amount, to_decimal(discount.max_discount_amount))
    else:
        amount = min(value, subtotal)

    amount = quantize_money(max(amount, Decimal("0")))
    return DiscountQuote(
        code=discount.code,
        name=discount.name,
        type=discount.type,
        value=value,
        discount_amount=amount,
        final_total=quantize_money(max(Decimal("0"), subtotal - amount)),
    )


def find_discount(tenant_id: int, code: str, *, active_only: bool = True) -> Discount | None:
    q = db.session.query(Discount).filter(
        Discount.tenant_id == tenant_id,
        sa.func.upper(Discount.code) == normalize_code(code),
    )
    if active_only:
        q = q.filter(Discount.is_active.is_(True))
    return q.first()


def validate_discount(tenant_id: int, code: str, subtotal, now: datetime | None = None) -> DiscountQuote:
    """Side-effect free; safe to call any number of times before checkout."""
    if not normalize_code(code):
        raise InvalidCode("Discount code is required")
    return quote_discount(find_discount(tenant_id, code), subtotal, now or utcnow())


def redeem_discount(tenant_id: int, code: str, now: datetime | None = None, *, commit: bool = True) -> Discount:
    """
    Count one use of a discount once a sale is finalized.

    The increment is a single conditional UPDATE; zero affected rows means
    the code is unusable, and the reason is reported as the matching
    DiscountError.
    """
    now = to_naive_utc(now or utcnow())
    normalized = normalize_code(code)

    stmt = (
        sa.update(Discount)
        .where(
            Discount.tenant_id == tenant_id,
            sa.func.upper(Discount.code) == normalized,
            Discount.is_active.is_(True),
            Discount.valid_from <= now,
            Discount.valid_until >= now,
            sa.or_(Discount.usage_limit.is_(None), Discount.usage_count < Discount.usage_limit),
        )
        .values(usage_count=Discount.usage_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount == 0:
        discount = find_discount(tenant_id, normalized)
        if discount is None:
            raise InvalidCode("Invalid or inactive discount code")
        _check_window(discount, now)
        raise LimitReached(f"Discount code {discount.code} has reached its usage limit")

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    discount = find_discount(tenant_id, normalized, active_only=False)
    db.session.refresh(discount)
    return discount
