# Overview: Pytest coverage for subscription limits, feature flags and catalog rules.

from datetime import timedelta
from decimal import Decimal

import pytest

from stockcore.errors import LimitExceededError, ValidationError
from stockcore.models import FeatureFlag, SubscriptionPlan, Tenant, TenantSubscription, UnitDefinition
from stockcore.services.catalog_service import (
    add_unit,
    create_location,
    create_tenant_user,
    create_variant,
    delete_location,
    delete_variant,
    list_units,
)
from stockcore.services.limits_service import (
    ResourceKind,
    count_resources,
    get_tenant_limit,
    has_feature_access,
    validate_tenant_limit,
)
from stockcore.services.tenant_service import actor_context
from stockcore.time_utils import utcnow


@pytest.fixture
def small_plan(db_session):
    plan = SubscriptionPlan(name="Free", max_users=1, max_locations=2, max_products=2, features={})
    db_session.add(plan)
    db_session.commit()
    return plan


@pytest.fixture
def small_tenant(db_session, small_plan):
    tenant = Tenant(name="Corner Shop", subdomain="corner", is_active=True)
    db_session.add(tenant)
    db_session.flush()
    db_session.add(TenantSubscription(tenant_id=tenant.id, plan_id=small_plan.id, status="active"))
    db_session.commit()
    with actor_context(tenant_id=tenant.id, actor_id=303, role="admin"):
        yield tenant


class TestLimits:
    def test_locations_capped(self, db_session, small_tenant):
        create_location(small_tenant.id, "Front")
        create_location(small_tenant.id, "Back")

        with pytest.raises(LimitExceededError) as exc:
            create_location(small_tenant.id, "Annex")
        assert exc.value.details["limit"] == 2
        assert exc.value.details["current"] == 2
        assert count_resources(small_tenant.id, ResourceKind.LOCATIONS) == 2

    def test_soft_deleted_rows_free_capacity(self, db_session, small_tenant):
        first = create_location(small_tenant.id, "Front")
        create_location(small_tenant.id, "Back")
        delete_location(small_tenant.id, first.id)

        create_location(small_tenant.id, "Annex")
        assert count_resources(small_tenant.id, ResourceKind.LOCATIONS) == 2

    def test_products_capped(self, db_session, small_tenant):
        create_variant(small_tenant.id, "A-1", "First")
        second = create_variant(small_tenant.id, "A-2", "Second")
        with pytest.raises(LimitExceededError):
            create_variant(small_tenant.id, "A-3", "Third")

        delete_variant(small_tenant.id, second.id)
        create_variant(small_tenant.id, "A-3", "Third")

    def test_users_capped(self, db_session, small_tenant):
        create_tenant_user(small_tenant.id, "Owner@Example.com", "Owner")
        with pytest.raises(LimitExceededError):
            create_tenant_user(small_tenant.id, "clerk@example.com", "Clerk")

    def test_null_cap_is_unlimited(self, db_session, actor_a, tenant_a):
        assert get_tenant_limit(tenant_a.id, ResourceKind.LOCATIONS) is None
        for i in range(5):
            create_location(tenant_a.id, f"Store {i}")
        validate_tenant_limit(tenant_a.id, ResourceKind.LOCATIONS)

    def test_no_subscription(self, db_session):
        tenant = Tenant(name="Lapsed", subdomain="lapsed", is_active=True)
        db_session.add(tenant)
        db_session.commit()
        with actor_context(tenant_id=tenant.id):
            with pytest.raises(LimitExceededError):
                create_location(tenant.id, "Front")

    def test_expired_subscription(self, db_session, small_tenant):
        subscription = TenantSubscription.query.filter_by(tenant_id=small_tenant.id).one()
        subscription.ends_at = utcnow() - timedelta(days=1)
        db_session.commit()

        with pytest.raises(LimitExceededError):
            validate_tenant_limit(small_tenant.id, ResourceKind.USERS)

    def test_cancelled_subscription(self, db_session, small_tenant):
        subscription = TenantSubscription.query.filter_by(tenant_id=small_tenant.id).one()
        subscription.status = "cancelled"
        db_session.commit()

        with pytest.raises(LimitExceededError):
            create_variant(small_tenant.id, "A-1", "First")

    def test_kind_must_be_resource_kind(self, db_session, small_tenant):
        with pytest.raises(TypeError):
            validate_tenant_limit(small_tenant.id, "max_users; DROP TABLE tenants")


class TestFeatureAccess:
    def test_plan_feature(self, db_session, actor_a, tenant_a):
        assert has_feature_access(tenant_a.id, "bundles") is True

    def test_unknown_feature_defaults_false(self, db_session, actor_a, tenant_a):
        assert has_feature_access(tenant_a.id, "loyalty") is False

    def test_flag_overrides_plan(self, db_session, actor_a, tenant_a):
        db_session.add(FeatureFlag(tenant_id=tenant_a.id, feature_key="bundles", is_enabled=False))
        db_session.add(FeatureFlag(tenant_id=tenant_a.id, feature_key="loyalty", is_enabled=True))
        db_session.commit()

        assert has_feature_access(tenant_a.id, "bundles") is False
        assert has_feature_access(tenant_a.id, "loyalty") is True

    def test_plan_without_feature(self, db_session, small_tenant):
        assert has_feature_access(small_tenant.id, "bundles") is False


class TestCatalogRules:
    def test_duplicate_sku(self, db_session, actor_a, tenant_a):
        create_variant(tenant_a.id, "SKU-1", "One")
        with pytest.raises(ValidationError):
            create_variant(tenant_a.id, "SKU-1", "Again")

    def test_sku_reusable_after_delete(self, db_session, actor_a, tenant_a):
        first = create_variant(tenant_a.id, "SKU-1", "One")
        delete_variant(tenant_a.id, first.id)
        again = create_variant(tenant_a.id, "SKU-1", "Again")
        assert again.id != first.id

    def test_add_units(self, db_session, actor_a, tenant_a):
        variant = create_variant(tenant_a.id, "SKU-1", "One")
        add_unit(tenant_a.id, variant.id, "Piece", 1, is_base_unit=True)
        add_unit(tenant_a.id, variant.id, "Pack", "6")

        units = list_units(tenant_a.id, variant.id)
        assert [u.name for u in units] == ["Piece", "Pack"]
        assert units[1].conversion_factor == Decimal("6")

    def test_second_base_unit_rejected(self, db_session, actor_a, tenant_a):
        variant = create_variant(tenant_a.id, "SKU-1", "One")
        add_unit(tenant_a.id, variant.id, "Piece", 1, is_base_unit=True)
        with pytest.raises(ValidationError):
            add_unit(tenant_a.id, variant.id, "Each", 1, is_base_unit=True)
        assert UnitDefinition.query.filter_by(variant_id=variant.id).count() == 1

    def test_base_unit_factor_must_be_one(self, db_session, actor_a, tenant_a):
        variant = create_variant(tenant_a.id, "SKU-1", "One")
        with pytest.raises(ValidationError):
            add_unit(tenant_a.id, variant.id, "Piece", 2, is_base_unit=True)

    @pytest.mark.parametrize("factor", [0, -1, "abc"])
    def test_factor_must_be_positive_number(self, db_session, actor_a, tenant_a, factor):
        variant = create_variant(tenant_a.id, "SKU-1", "One")
        with pytest.raises(ValidationError):
            add_unit(tenant_a.id, variant.id, "Pack", factor)
