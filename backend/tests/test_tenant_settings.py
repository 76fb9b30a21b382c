# Overview: Pytest coverage for tenant settings parsing and tenant lookup helpers.

from datetime import datetime
from decimal import Decimal

import pytest

from retailcore.models import Product, Tenant
from retailcore.services.tenant_service import (
    TenantAccessError,
    TenantNotFound,
    create_tenant,
    get_tenant,
    require_tenant_owns,
    resolve_tenants,
)
from retailcore.services.tenant_settings import TenantSettings, TenantSettingsError


class TestTenantSettings:

    def test_defaults(self):
        settings = TenantSettings.from_document(None)

        assert settings.email_notifications is True
        assert settings.sms_notifications is False
        assert settings.tax_enabled is False
        assert settings.low_stock_threshold is None
        assert (settings.happy_hour_start, settings.happy_hour_end) == (14, 16)
        assert settings.clearance_multiplier == Decimal("0.80")

    def test_camel_case_document(self):
        settings = TenantSettings.from_document({
            "companyName": "Acme Retail",
            "smsNotifications": True,
            "taxEnabled": True,
            "taxRate": 7.5,
            "lowStockThreshold": 4,
            "happyHourStart": 0,
            "happyHourEnd": 24,
            "scarcityMultiplier": "1.25",
            "somethingNew": {"ignored": True},
        })

        assert settings.company_name == "Acme Retail"
        assert settings.sms_notifications is True
        assert settings.tax_rate == Decimal("7.5")
        assert settings.low_stock_threshold == 4
        assert (settings.happy_hour_start, settings.happy_hour_end) == (0, 24)
        assert settings.scarcity_multiplier == Decimal("1.25")

    def test_null_values_use_defaults(self):
        assert TenantSettings.from_document({"emailNotifications": None}).email_notifications is True

    @pytest.mark.parametrize(
        "document,message",
        [
            ({"emailNotifications": "yes"}, "emailNotifications must be a boolean"),
            ({"companyName": 42}, "companyName must be a string"),
            ({"lowStockThreshold": "5"}, "lowStockThreshold must be an integer"),
            ({"lowStockThreshold": True}, "lowStockThreshold must be an integer"),
            ({"lowStockThreshold": -1}, "lowStockThreshold must be >= 0"),
            ({"happyHourEnd": 25}, "happyHourEnd must be an hour between 0 and 24"),
            ({"taxRate": "lots"}, "taxRate must be a number"),
            ({"taxRate": "NaN"}, "taxRate must be a number"),
            ({"taxRate": 150}, "taxRate must be between 0 and 100"),
            ({"timezone": "Mars/Olympus_Mons"}, "timezone must be a valid IANA timezone"),
            ({"timezone": "../etc/passwd"}, "timezone must be a valid IANA timezone"),
            ({"timezone": 5}, "timezone must be a string"),
            (["not", "a", "dict"], "settings must be an object"),
        ],
    )
    def test_rejects_bad_values(self, document, message):
        with pytest.raises(TenantSettingsError) as exc:
            TenantSettings.from_document(document)
        assert str(exc.value) == message

    def test_timezone_and_local_time(self):
        default = TenantSettings.from_document({})
        tokyo = TenantSettings.from_document({"timezone": "Asia/Tokyo"})
        moment = datetime(2025, 6, 16, 13, 30)

        assert default.timezone == "UTC"
        assert default.local_time(moment) == moment
        assert tokyo.local_time(moment) == datetime(2025, 6, 16, 22, 30)

    def test_to_dict_stringifies_decimals(self):
        out = TenantSettings.from_document({"taxRate": 5}).to_dict()

        assert out["tax_rate"] == "5"
        assert out["email_notifications"] is True


class TestTenantService:

    def test_create_tenant(self, db_session):
        tenant = create_tenant(name="  Gamma Goods ", slug="Gamma-Goods", settings={"taxRate": 8})
        db_session.commit()

        assert tenant.id is not None
        assert (tenant.name, tenant.slug, tenant.status) == ("Gamma Goods", "gamma-goods", "active")

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"name": "", "slug": "ok"}, "name is required"),
            ({"name": "Bad", "slug": "no spaces"}, "slug must be lowercase letters, digits or '-'"),
            ({"name": "Bad", "slug": "-leading"}, "slug must be lowercase letters, digits or '-'"),
            ({"name": "Bad", "slug": "bad", "settings": {"taxEnabled": "on"}}, "taxEnabled must be a boolean"),
        ],
    )
    def test_create_tenant_validation(self, db_session, kwargs, message):
        with pytest.raises(ValueError) as exc:
            create_tenant(**kwargs)
        assert str(exc.value) == message
        assert db_session.query(Tenant).count() == 0

    def test_bad_status(self, db_session):
        with pytest.raises(ValueError, match="status must be one of"):
            create_tenant(name="Bad", slug="bad", status="closed")

    def test_duplicate_slug(self, db_session, tenant_a):
        with pytest.raises(ValueError, match="slug 'acme' already in use"):
            create_tenant(name="Other Acme", slug="acme")

    def test_get_tenant_accepts_numeric_strings(self, db_session, tenant_a):
        assert get_tenant(str(tenant_a.id)).id == tenant_a.id

        with pytest.raises(TenantNotFound):
            get_tenant("abc")

    def test_resolve_tenants_skips_suspended(self, db_session, tenant_a, tenant_b):
        tenant_b.status = "suspended"
        db_session.commit()

        assert [t.id for t in resolve_tenants()] == [tenant_a.id]
        with pytest.raises(TenantNotFound, match="is suspended"):
            resolve_tenants(tenant_b.id)

    def test_require_tenant_owns(self, db_session, tenant_a, tenant_b, make_product):
        product = make_product(tenant_a)

        assert require_tenant_owns(product, tenant_a.id) is product
        with pytest.raises(TenantAccessError):
            require_tenant_owns(product, tenant_b.id)
        with pytest.raises(TenantAccessError, match="Entity not found"):
            require_tenant_owns(db_session.get(Product, 99999), tenant_a.id)
