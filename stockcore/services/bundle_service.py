# Overview: Virtual bundle sales expanded into base-unit deductions on child variants.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import BundleNotFoundError, EmptyBundleError, InvalidQuantityError
from ..events import BundleSoldPayload
from ..models import ProductBundle, ProductVariant
from .concurrency import keyed_lock, run_with_retry, stock_lock_key
from .event_service import _record_event
from .inventory_service import MOVEMENT_SALE, _adjust_stock_inner
from .tenant_service import assert_tenant_ownership, require_location, require_order
from .unit_service import find_base_unit, to_decimal


def _bundle_edges(tenant_id: int, parent_variant_id: int) -> list[ProductBundle]:
    return (
        db.session.query(ProductBundle)
        .join(ProductVariant, ProductBundle.child_variant_id == ProductVariant.id)
        .filter(
            ProductBundle.tenant_id == tenant_id,
            ProductBundle.parent_variant_id == parent_variant_id,
            ProductVariant.tenant_id == tenant_id,
        )
        .order_by(ProductBundle.id.asc())
        .all()
    )


def sell_bundle(
    tenant_id: int,
    parent_variant_id: int,
    location_id: int,
    quantity,
    order_id: int | None = None,
) -> list:
    """
    Deduct `edge.quantity * quantity` base units from every child of a bundle.

    This is a direct deduction, not a reservation: the parent sale is assumed
    to have passed its own availability check upstream. Every child must have
    exactly one base unit; that is checked for all children before any stock
    moves, and there is no fallback unit. Emits a single bundle.sold event.

    Returns the child StockMovement rows.
    """
    actor = assert_tenant_ownership(tenant_id)

    qty = to_decimal(quantity)
    if qty <= 0:
        raise InvalidQuantityError("quantity must be positive", details={"quantity": str(qty)})

    parent = db.session.query(ProductVariant).filter_by(
        id=parent_variant_id, tenant_id=tenant_id, deleted_at=None
    ).first()
    if parent is None:
        raise BundleNotFoundError(
            "Bundle not found", details={"parent_variant_id": parent_variant_id}
        )
    require_location(tenant_id, location_id)
    if order_id is not None:
        require_order(tenant_id, order_id)

    edges = _bundle_edges(tenant_id, parent_variant_id)
    if not edges:
        raise EmptyBundleError(
            "Bundle has no child products defined",
            details={"parent_variant_id": parent_variant_id},
        )

    # (child_variant_id, base_unit_id, child base quantity)
    plan: list[tuple[int, int, Decimal]] = []
    for edge in edges:
        base_unit = find_base_unit(tenant_id, edge.child_variant_id)
        plan.append((edge.child_variant_id, base_unit.id, to_decimal(edge.quantity) * qty))

    keys = [stock_lock_key(child_id, location_id) for child_id, _, _ in plan]

    def _op():
        with keyed_lock(*keys):
            movements = []
            for child_id, unit_id, child_qty in plan:
                movements.append(_adjust_stock_inner(
                    tenant_id=tenant_id,
                    variant_id=child_id,
                    location_id=location_id,
                    unit_id=unit_id,
                    quantity_delta=-child_qty,
                    movement_type=MOVEMENT_SALE,
                    reason="Bundle Sale",
                    reference_id=order_id,
                    actor_id=actor.actor_id,
                ))

            _record_event(
                tenant_id,
                BundleSoldPayload.event_type,
                BundleSoldPayload(
                    parent_variant_id=parent_variant_id,
                    location_id=location_id,
                    quantity=qty,
                    order_id=order_id,
                    components=len(plan),
                ),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return movements

    return run_with_retry(_op)
