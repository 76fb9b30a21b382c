# Overview: Pytest coverage for tax and discount rule evaluation.

import random
from datetime import timedelta
from decimal import Decimal

import pytest

from retailcore.models import Discount, TaxRule
from retailcore.services.rule_resolver import (
    BelowMinimum,
    Expired,
    InvalidCode,
    LimitReached,
    NotYetValid,
    TaxItem,
    compute_tax,
    redeem_discount,
    resolve_tax,
    validate_discount,
)
from retailcore.services.tenant_settings import TenantSettings

from conftest import NOW


def _rule(rule_id, rate, *, priority=0, applies_to="all", label="Tax", product_ids=None, category_ids=None):
    return TaxRule(
        id=rule_id,
        tenant_id=1,
        rate=Decimal(str(rate)),
        label=label,
        applies_to=applies_to,
        priority=priority,
        product_ids=product_ids,
        category_ids=category_ids,
        is_active=True,
    )


REGULAR = [TaxItem(product_id=1, product_type="regular", category_id="food")]


class TestDiscountValidation:

    def test_percentage_code_then_limit_reached(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, code="SAVE10", value=Decimal("10"), usage_limit=1)

        quote = validate_discount(tenant_a.id, "SAVE10", Decimal("100"), now=NOW)
        assert quote.discount_amount == Decimal("10.00")
        assert quote.final_total == Decimal("90.00")

        redeemed = redeem_discount(tenant_a.id, "SAVE10", now=NOW)
        assert redeemed.usage_count == 1

        with pytest.raises(LimitReached) as exc_info:
            validate_discount(tenant_a.id, "SAVE10", Decimal("100"), now=NOW)
        assert exc_info.value.code == "limit_reached"

    def test_validation_has_no_side_effects(self, db_session, tenant_a, make_discount):
        discount = make_discount(tenant_a, usage_limit=1)

        for _ in range(3):
            validate_discount(tenant_a.id, "SAVE10", 100, now=NOW)

        db_session.refresh(discount)
        assert discount.usage_count == 0

    def test_codes_match_case_insensitively(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, code="SUMMER")

        assert validate_discount(tenant_a.id, "  summer ", 50, now=NOW).code == "SUMMER"

    @pytest.mark.parametrize("overrides,error", [
        ({"valid_from": NOW + timedelta(days=1)}, NotYetValid),
        ({"valid_until": NOW - timedelta(seconds=1)}, Expired),
        ({"is_active": False}, InvalidCode),
        ({"min_purchase_amount": Decimal("150")}, BelowMinimum),
        ({"usage_limit": 5, "usage_count": 5}, LimitReached),
    ])
    def test_rejections(self, db_session, tenant_a, make_discount, overrides, error):
        make_discount(tenant_a, **overrides)

        with pytest.raises(error):
            validate_discount(tenant_a.id, "SAVE10", 100, now=NOW)

    @pytest.mark.parametrize("code", ["", "   ", "NOPE"])
    def test_unknown_codes(self, db_session, tenant_a, make_discount, code):
        make_discount(tenant_a)

        with pytest.raises(InvalidCode):
            validate_discount(tenant_a.id, code, 100, now=NOW)

    def test_percentage_capped_by_max_discount(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, code="HALF", value=Decimal("50"), max_discount_amount=Decimal("15"))

        quote = validate_discount(tenant_a.id, "HALF", 100, now=NOW)

        assert quote.discount_amount == Decimal("15.00")
        assert quote.final_total == Decimal("85.00")

    def test_fixed_discount_never_exceeds_subtotal(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, code="FLAT25", type="fixed", value=Decimal("25"))

        quote = validate_discount(tenant_a.id, "FLAT25", Decimal("19.99"), now=NOW)

        assert quote.discount_amount == Decimal("19.99")
        assert quote.final_total == Decimal("0.00")

    def test_percentage_rounds_half_up(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, code="ODD", value=Decimal("12.5"))

        quote = validate_discount(tenant_a.id, "ODD", Decimal("0.99"), now=NOW)

        # 0.12375 -> 0.12
        assert quote.discount_amount == Decimal("0.12")
        assert quote.final_total == Decimal("0.87")

    def test_codes_are_tenant_scoped(self, db_session, tenant_a, tenant_b, make_discount):
        make_discount(tenant_a, code="SAVE10")

        with pytest.raises(InvalidCode):
            validate_discount(tenant_b.id, "SAVE10", 100, now=NOW)
        with pytest.raises(InvalidCode):
            redeem_discount(tenant_b.id, "SAVE10", now=NOW)


class TestRedeemDiscount:

    def test_redeem_never_passes_limit(self, db_session, tenant_a, make_discount):
        discount = make_discount(tenant_a, usage_limit=2)

        redeem_discount(tenant_a.id, "SAVE10", now=NOW)
        redeem_discount(tenant_a.id, "save10", now=NOW)
        with pytest.raises(LimitReached):
            redeem_discount(tenant_a.id, "SAVE10", now=NOW)

        db_session.refresh(discount)
        assert discount.usage_count == 2

    def test_unlimited_code(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, usage_limit=None)

        for _ in range(3):
            discount = redeem_discount(tenant_a.id, "SAVE10", now=NOW)

        assert discount.usage_count == 3

    def test_expired_code_reports_expired(self, db_session, tenant_a, make_discount):
        make_discount(tenant_a, valid_until=NOW - timedelta(hours=1))

        with pytest.raises(Expired):
            redeem_discount(tenant_a.id, "SAVE10", now=NOW)

        assert db_session.query(Discount).one().usage_count == 0


class TestComputeTax:

    def test_highest_priority_rule_wins(self):
        rules = [_rule(1, 5), _rule(2, 8, priority=10, label="VAT")]

        result = compute_tax(rules, REGULAR, Decimal("100"))

        assert result.rule_id == 2
        assert result.rate == Decimal("8")
        assert result.label == "VAT"
        assert result.amount == Decimal("8.00")

    def test_equal_priority_lowest_id_wins_regardless_of_order(self):
        rules = [_rule(3, 9, priority=5), _rule(2, 6, priority=5), _rule(7, 1, priority=5)]

        for _ in range(5):
            random.shuffle(rules)
            assert compute_tax(rules, REGULAR, 100).rule_id == 2

    def test_product_ids_override_applies_to(self):
        exempt = _rule(1, 0, priority=20, applies_to="services", product_ids=[42], label="Exempt")
        general = _rule(2, 10)

        with_exempt = compute_tax([exempt, general], [TaxItem(product_id=42)], 100)
        without = compute_tax([exempt, general], [TaxItem(product_id=7)], 100)

        assert with_exempt.rule_id == 1
        assert with_exempt.amount == Decimal("0.00")
        assert without.rule_id == 2

    def test_category_rules(self):
        food = _rule(1, 2, priority=10, applies_to="categories", category_ids=["food"])
        empty = _rule(2, 50, priority=20, applies_to="categories", category_ids=[])
        general = _rule(3, 10)

        assert compute_tax([food, empty, general], REGULAR, 100).rule_id == 1
        clothing = [TaxItem(product_id=2, category_id="clothing")]
        assert compute_tax([food, empty, general], clothing, 100).rule_id == 3

    def test_service_rule_skips_goods(self):
        services = _rule(1, 15, priority=10, applies_to="services")
        goods = _rule(2, 5, applies_to="products")

        assert compute_tax([services, goods], REGULAR, 100).rule_id == 2
        haircut = [TaxItem(product_id=9, product_type="service")]
        assert compute_tax([services, goods], haircut, 100).rule_id == 1

    def test_inactive_rules_ignored(self):
        inactive = _rule(1, 20, priority=99)
        inactive.is_active = False

        assert compute_tax([inactive, _rule(2, 5)], REGULAR, 100).rule_id == 2

    def test_falls_back_to_tenant_settings(self):
        settings = TenantSettings.from_document({"taxEnabled": True, "taxRate": 7.5, "taxLabel": "GST"})

        result = compute_tax([], REGULAR, Decimal("200"), settings)

        assert result.rule_id is None
        assert result.label == "GST"
        assert result.amount == Decimal("15.00")

    def test_no_tax_when_disabled(self):
        settings = TenantSettings.from_document({"taxEnabled": False, "taxRate": 7.5})

        result = compute_tax([], REGULAR, Decimal("200"), settings)

        assert result.rate == Decimal("0")
        assert result.amount == Decimal("0.00")
        assert result.to_dict()["tax_amount"] == "0.00"


class TestResolveTax:

    def test_loads_only_tenant_rules(self, db_session, tenant_a, tenant_b):
        db_session.add(TaxRule(tenant_id=tenant_a.id, rate=Decimal("10"), label="Sales tax", applies_to="all"))
        db_session.add(TaxRule(tenant_id=tenant_b.id, rate=Decimal("20"), label="VAT", applies_to="all"))
        db_session.commit()

        result = resolve_tax(tenant_a.id, Decimal("50"), [{"productId": 1, "categoryId": "food"}])

        assert result.label == "Sales tax"
        assert result.amount == Decimal("5.00")

    def test_uses_tenant_settings_fallback(self, db_session, tenant_b):
        tenant_b.settings = dict(tenant_b.settings, taxEnabled=True, taxRate=20, taxLabel="VAT")
        db_session.commit()

        result = resolve_tax(tenant_b.id, Decimal("10"), [{"product_id": 1}])

        assert result.label == "VAT"
        assert result.amount == Decimal("2.00")
