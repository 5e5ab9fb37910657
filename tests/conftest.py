"""
Pytest fixtures for stockcore tests.

Provides the test app and database, two tenants on an uncapped plan, an
authenticated actor for tenant A, and a variant with a base unit (Piece) and
a Carton of 12.
"""

from decimal import Decimal

import pytest
from flask import g

from stockcore import create_app
from stockcore.extensions import db
from stockcore.models import (
    Customer,
    Location,
    ProductVariant,
    SubscriptionPlan,
    Tenant,
    TenantSubscription,
    UnitDefinition,
)
from stockcore.services.tenant_service import actor_context


ACTOR_A_ID = 101
ACTOR_B_ID = 202


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_LOCK_TIMEOUT_SECONDS': 2,
        'RESERVATION_TTL_SECONDS': 3600,
        'TRUST_IDENTITY_HEADERS': True,
    })

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
        g.pop('actor', None)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def plan_unlimited(db_session):
    """Plan with no caps and bundles enabled."""
    plan = SubscriptionPlan(name="Enterprise", features={"bundles": True})
    db_session.add(plan)
    db_session.commit()
    return plan


def _make_tenant(db_session, name, subdomain, plan):
    tenant = Tenant(name=name, subdomain=subdomain, is_active=True)
    db_session.add(tenant)
    db_session.flush()
    db_session.add(TenantSubscription(tenant_id=tenant.id, plan_id=plan.id, status="active"))
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_a(db_session, plan_unlimited):
    """Tenant A (first tenant)."""
    return _make_tenant(db_session, "Tenant A - Acme Wholesale", "acme", plan_unlimited)


@pytest.fixture(scope='function')
def tenant_b(db_session, plan_unlimited):
    """Tenant B (second tenant)."""
    return _make_tenant(db_session, "Tenant B - Beta Retail", "beta", plan_unlimited)


@pytest.fixture(scope='function')
def actor_a(tenant_a):
    """Authenticated manager of tenant A for the duration of the test."""
    with actor_context(tenant_id=tenant_a.id, actor_id=ACTOR_A_ID, role="manager") as actor:
        yield actor


@pytest.fixture(scope='function')
def location_a(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Main Store", type_key="store")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_a2(db_session, tenant_a):
    location = Location(tenant_id=tenant_a.id, name="Back Warehouse", type_key="warehouse")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_b(db_session, tenant_b):
    location = Location(tenant_id=tenant_b.id, name="Beta Store", type_key="store")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(tenant_id=tenant_a.id, name="Walk-in Wholesale")
    db_session.add(customer)
    db_session.commit()
    return customer


def make_variant(db_session, tenant_id, sku, *, base_unit=True, carton_factor=None):
    """Create a variant with an optional base Piece unit and an optional Carton unit."""
    variant = ProductVariant(tenant_id=tenant_id, sku=sku, name=f"Variant {sku}", attributes={})
    db_session.add(variant)
    db_session.flush()

    units = {}
    if base_unit:
        units["piece"] = UnitDefinition(
            tenant_id=tenant_id,
            variant_id=variant.id,
            name="Piece",
            conversion_factor=Decimal("1"),
            is_base_unit=True,
        )
    if carton_factor is not None:
        units["carton"] = UnitDefinition(
            tenant_id=tenant_id,
            variant_id=variant.id,
            name="Carton",
            conversion_factor=Decimal(str(carton_factor)),
            is_base_unit=False,
        )
    db_session.add_all(units.values())
    db_session.commit()
    return variant, units


@pytest.fixture(scope='function')
def widget_a(db_session, tenant_a):
    """Tenant A variant: Piece (base) and Carton = 12 pieces."""
    variant, units = make_variant(db_session, tenant_a.id, "WIDGET-A", carton_factor=12)
    return variant, units["piece"], units["carton"]


@pytest.fixture(scope='function')
def gadget_a(db_session, tenant_a):
    """Second tenant A variant with only a base unit."""
    variant, units = make_variant(db_session, tenant_a.id, "GADGET-A")
    return variant, units["piece"]


@pytest.fixture(scope='function')
def widget_b(db_session, tenant_b):
    """Tenant B variant with a base unit."""
    variant, units = make_variant(db_session, tenant_b.id, "WIDGET-B")
    return variant, units["piece"]


def actor_headers(tenant_id: int, actor_id: int = ACTOR_A_ID, role: str = "manager") -> dict:
    """Helper to create trusted gateway identity headers."""
    return {
        'X-Tenant-Id': str(tenant_id),
        'X-Actor-Id': str(actor_id),
        'X-Actor-Role': role,
    }
