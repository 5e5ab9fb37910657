# Overview: Unit-of-measure conversion to a variant's base unit.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..errors import MissingBaseUnitError, NotFoundOrForbiddenError, ValidationError
from ..models import ProductVariant, UnitDefinition
from .tenant_service import assert_tenant_ownership


def to_decimal(value, field: str = "quantity") -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            # str() first so floats like 0.1 do not carry binary noise
            result = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"{field} must be a number", details={field: str(value)})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={field: str(value)})
    return result


def resolve_unit(tenant_id: int, unit_id: int) -> UnitDefinition:
    """
    Look up a unit through its owning variant.

    Missing units, units of deleted variants and units owned by another tenant
    all raise the same NotFoundOrForbiddenError.
    """
    unit = (
        db.session.query(UnitDefinition)
        .join(ProductVariant, UnitDefinition.variant_id == ProductVariant.id)
        .filter(
            UnitDefinition.id == unit_id,
            ProductVariant.tenant_id == tenant_id,
            ProductVariant.deleted_at.is_(None),
        )
        .first()
    )
    if unit is None:
        raise NotFoundOrForbiddenError("Unit not found", details={"unit_id": unit_id})
    return unit


def convert_to_base(unit: UnitDefinition, quantity) -> Decimal:
    return to_decimal(quantity) * to_decimal(unit.conversion_factor)


def base_quantity(tenant_id: int, unit_id: int, quantity) -> Decimal:
    """Return `quantity` expressed in the base unit of the unit's variant."""
    assert_tenant_ownership(tenant_id)
    unit = resolve_unit(tenant_id, unit_id)
    return convert_to_base(unit, quantity)


def find_base_unit(tenant_id: int, variant_id: int) -> UnitDefinition:
    """
    Exactly one base unit for the variant, or MissingBaseUnitError.

    No fallback: guessing a substitute unit would corrupt deduction quantities.
    """
    base_units = (
        db.session.query(UnitDefinition)
        .filter_by(tenant_id=tenant_id, variant_id=variant_id, is_base_unit=True)
        .all()
    )
    if len(base_units) != 1:
        raise MissingBaseUnitError(
            "Variant must have exactly one base unit",
            details={"variant_id": variant_id, "base_units": len(base_units)},
        )
    return base_units[0]


def get_base_unit(tenant_id: int, variant_id: int) -> UnitDefinition:
    assert_tenant_ownership(tenant_id)
    variant = db.session.query(ProductVariant).filter_by(
        id=variant_id, tenant_id=tenant_id, deleted_at=None
    ).first()
    if variant is None:
        raise NotFoundOrForbiddenError("Variant not found", details={"variant_id": variant_id})
    return find_base_unit(tenant_id, variant_id)
