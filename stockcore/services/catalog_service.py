# Overview: Catalog maintenance; locations, variants, units, customers, users and bundle composition.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InvalidQuantityError, ValidationError
from ..models import Customer, Location, ProductBundle, ProductVariant, TenantUser, UnitDefinition
from stockcore.time_utils import utcnow
from .concurrency import keyed_lock, lock_key, run_with_retry
from .limits_service import ResourceKind, validate_tenant_limit
from .tenant_service import assert_tenant_ownership, require_location, require_variant
from .unit_service import to_decimal


def _limited_create(tenant_id: int, kind: ResourceKind, build):
    """
    Run a limit check and the insert it guards as one serialized step.

    The (tenant, kind) keyed lock keeps two concurrent creations from both
    passing the check at limit - 1.
    """
    def _op():
        with keyed_lock(lock_key("limit", tenant_id, kind.name)):
            validate_tenant_limit(tenant_id, kind)
            row = build()
            db.session.add(row)
            try:
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                raise ValidationError("Duplicate record") from exc
            return row

    return run_with_retry(_op)


# =============================================================================
# LOCATIONS
# =============================================================================

def create_location(tenant_id: int, name: str, type_key: str = "store") -> Location:
    assert_tenant_ownership(tenant_id)
    if not name or not name.strip():
        raise ValidationError("name is required")
    return _limited_create(
        tenant_id,
        ResourceKind.LOCATIONS,
        lambda: Location(tenant_id=tenant_id, name=name.strip(), type_key=type_key),
    )


def delete_location(tenant_id: int, location_id: int) -> Location:
    """Soft delete; stock history stays, new operations stop seeing the location."""
    assert_tenant_ownership(tenant_id)
    location = require_location(tenant_id, location_id)
    location.deleted_at = utcnow()
    db.session.commit()
    return location


# =============================================================================
# VARIANTS AND UNITS
# =============================================================================

def create_variant(tenant_id: int, sku: str, name: str, attributes: dict | None = None) -> ProductVariant:
    """Create a SKU. SKUs are unique per tenant among non-deleted variants."""
    assert_tenant_ownership(tenant_id)
    sku = (sku or "").strip()
    if not sku:
        raise ValidationError("sku is required")
    if not name:
        raise ValidationError("name is required")

    def _build():
        exists = ProductVariant.query.filter_by(tenant_id=tenant_id, sku=sku, deleted_at=None).first()
        if exists is not None:
            raise ValidationError("SKU already exists", details={"sku": sku})
        return ProductVariant(tenant_id=tenant_id, sku=sku, name=name, attributes=attributes or {})

    return _limited_create(tenant_id, ResourceKind.PRODUCTS, _build)


def delete_variant(tenant_id: int, variant_id: int) -> ProductVariant:
    assert_tenant_ownership(tenant_id)
    variant = require_variant(tenant_id, variant_id)
    variant.deleted_at = utcnow()
    db.session.commit()
    return variant


def add_unit(
    tenant_id: int,
    variant_id: int,
    name: str,
    conversion_factor=1,
    is_base_unit: bool = False,
) -> UnitDefinition:
    """
    Declare a unit for a variant: 1 `name` == conversion_factor base units.

    A variant gets at most one base unit, and the base unit's factor is 1.
    """
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, variant_id)

    factor = to_decimal(conversion_factor, "conversion_factor")
    if factor <= 0:
        raise ValidationError("conversion_factor must be positive", details={"conversion_factor": str(factor)})
    if is_base_unit and factor != Decimal("1"):
        raise ValidationError("base unit must have conversion_factor 1")
    if not name:
        raise ValidationError("name is required")

    if is_base_unit:
        existing = UnitDefinition.query.filter_by(variant_id=variant_id, is_base_unit=True).first()
        if existing is not None:
            raise ValidationError(
                "Variant already has a base unit", details={"variant_id": variant_id, "unit_id": existing.id}
            )

    unit = UnitDefinition(
        tenant_id=tenant_id,
        variant_id=variant_id,
        name=name,
        conversion_factor=factor,
        is_base_unit=is_base_unit,
    )
    db.session.add(unit)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError("Unit name already defined for variant", details={"name": name}) from exc
    return unit


def list_units(tenant_id: int, variant_id: int) -> list[UnitDefinition]:
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, variant_id)
    return UnitDefinition.query.filter_by(variant_id=variant_id).order_by(UnitDefinition.id.asc()).all()


# =============================================================================
# CUSTOMERS AND USERS
# =============================================================================

def create_customer(tenant_id: int, name: str, email: str | None = None, phone: str | None = None) -> Customer:
    assert_tenant_ownership(tenant_id)
    if not name:
        raise ValidationError("name is required")
    customer = Customer(tenant_id=tenant_id, name=name, email=email, phone=phone)
    db.session.add(customer)
    db.session.commit()
    return customer


def create_tenant_user(tenant_id: int, email: str, full_name: str, role: str = "cashier") -> TenantUser:
    assert_tenant_ownership(tenant_id)
    if not email:
        raise ValidationError("email is required")
    return _limited_create(
        tenant_id,
        ResourceKind.USERS,
        lambda: TenantUser(tenant_id=tenant_id, email=email.strip().lower(), full_name=full_name, role=role),
    )


# =============================================================================
# BUNDLES
# =============================================================================

def define_bundle_component(
    tenant_id: int,
    parent_variant_id: int,
    child_variant_id: int,
    quantity,
) -> ProductBundle:
    """Add or replace the parent -> child edge (child units per one parent)."""
    assert_tenant_ownership(tenant_id)
    if parent_variant_id == child_variant_id:
        raise ValidationError("A bundle cannot contain itself")
    qty = to_decimal(quantity)
    if qty <= 0:
        raise InvalidQuantityError("quantity must be positive", details={"quantity": str(qty)})

    require_variant(tenant_id, parent_variant_id)
    require_variant(tenant_id, child_variant_id)

    edge = ProductBundle.query.filter_by(
        tenant_id=tenant_id,
        parent_variant_id=parent_variant_id,
        child_variant_id=child_variant_id,
    ).first()
    if edge is None:
        edge = ProductBundle(
            tenant_id=tenant_id,
            parent_variant_id=parent_variant_id,
            child_variant_id=child_variant_id,
            quantity=qty,
        )
        db.session.add(edge)
    else:
        edge.quantity = qty
    db.session.commit()
    return edge


def get_bundle_components(tenant_id: int, parent_variant_id: int) -> list[ProductBundle]:
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, parent_variant_id)
    return (
        ProductBundle.query.filter_by(tenant_id=tenant_id, parent_variant_id=parent_variant_id)
        .order_by(ProductBundle.id.asc())
        .all()
    )
