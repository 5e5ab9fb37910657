# Overview: Stock ledger; per-cell on-hand quantities, the movement log and availability math.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import InvalidQuantityError, ValidationError
from ..events import StockAdjustedPayload
from ..models import StockLevel, StockMovement, StockReservation, UnitDefinition
from stockcore.time_utils import utcnow
from .concurrency import keyed_lock, lock_for_update, run_with_retry, stock_lock_key
from .event_service import _record_event
from .tenant_service import (
    assert_tenant_ownership,
    require_location,
    require_unit_for_variant,
    require_variant,
)
from .unit_service import find_base_unit, to_decimal
"""
Stock Ledger Invariants (authoritative)

Cells:
- A StockLevel cell is keyed by (tenant, variant, location, unit) and holds the
  quantity as recorded in that unit. It is created on the first adjustment and
  updated additively afterwards. No floor at zero.

Availability:
- on-hand (base)   = SUM(cell.quantity * cell.unit.factor) over the variant's cells at the location
- reserved (base)  = SUM(res.quantity * res.unit.factor) over reservations with expires_at > now
- available (base) = on-hand - reserved
- Sums are done on Decimals in Python; SQLite would round SUM() through floats.

Serialization:
- Every check-then-act on a (variant, location) pair runs under
  keyed_lock(stock_lock_key(variant, location)) and commits inside it.

Audit:
- Each adjustment appends exactly one StockMovement whose balance_after is the
  cell balance at that serialization point, plus one stock.adjusted event,
  in the same DB transaction.
"""

MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_PURCHASE = "purchase"
MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_COUNT = "count"

MOVEMENT_TYPES = frozenset({
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_TRANSFER,
    MOVEMENT_COUNT,
})

ZERO = Decimal("0")


def _on_hand_base(tenant_id: int, variant_id: int, location_id: int) -> Decimal:
    rows = (
        db.session.query(StockLevel.quantity, UnitDefinition.conversion_factor)
        .join(UnitDefinition, StockLevel.unit_id == UnitDefinition.id)
        .filter(
            StockLevel.tenant_id == tenant_id,
            StockLevel.variant_id == variant_id,
            StockLevel.location_id == location_id,
        )
        .all()
    )
    return sum((to_decimal(q) * to_decimal(f) for q, f in rows), ZERO)


def _reserved_base(
    tenant_id: int,
    variant_id: int,
    location_id: int,
    *,
    exclude_reservation_ids=(),
) -> Decimal:
    query = (
        db.session.query(StockReservation.quantity, UnitDefinition.conversion_factor)
        .join(UnitDefinition, StockReservation.unit_id == UnitDefinition.id)
        .filter(
            StockReservation.tenant_id == tenant_id,
            StockReservation.variant_id == variant_id,
            StockReservation.location_id == location_id,
            StockReservation.expires_at > utcnow(),
        )
    )
    if exclude_reservation_ids:
        query = query.filter(StockReservation.id.notin_(list(exclude_reservation_ids)))
    return sum((to_decimal(q) * to_decimal(f) for q, f in query.all()), ZERO)


def _available_base(
    tenant_id: int,
    variant_id: int,
    location_id: int,
    *,
    exclude_reservation_ids=(),
) -> Decimal:
    """
    Available base quantity for a (variant, location) pair.

    Must be called while holding the pair's keyed lock whenever the result
    gates a write.
    """
    on_hand = _on_hand_base(tenant_id, variant_id, location_id)
    reserved = _reserved_base(
        tenant_id, variant_id, location_id, exclude_reservation_ids=exclude_reservation_ids
    )
    return on_hand - reserved


def _adjust_stock_inner(
    *,
    tenant_id: int,
    variant_id: int,
    location_id: int,
    unit_id: int,
    quantity_delta: Decimal,
    movement_type: str,
    reason: str | None = None,
    reference_id: int | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """Core adjustment without validation, locking, retry, or commit.

    Called by adjust_stock() and by the order and bundle engines, which hold
    the cell locks themselves and commit once for the whole operation.
    """
    level = lock_for_update(
        db.session.query(StockLevel).filter_by(
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            unit_id=unit_id,
        )
    ).first()

    if level is None:
        balance_before = ZERO
        level = StockLevel(
            tenant_id=tenant_id,
            variant_id=variant_id,
            location_id=location_id,
            unit_id=unit_id,
            quantity=quantity_delta,
        )
        db.session.add(level)
    else:
        balance_before = to_decimal(level.quantity)
        level.quantity = balance_before + quantity_delta
    balance_after = balance_before + quantity_delta

    movement = StockMovement(
        tenant_id=tenant_id,
        variant_id=variant_id,
        location_id=location_id,
        unit_id=unit_id,
        change_quantity=quantity_delta,
        balance_after=balance_after,
        type_key=movement_type,
        reason=reason,
        reference_id=reference_id,
        actor_id=actor_id,
    )
    db.session.add(movement)
    db.session.flush()

    _record_event(
        tenant_id,
        StockAdjustedPayload.event_type,
        StockAdjustedPayload(
            variant_id=variant_id,
            location_id=location_id,
            unit_id=unit_id,
            change=quantity_delta,
            balance_before=balance_before,
            new_balance=balance_after,
            type=movement_type,
            movement_id=movement.id,
            reference_id=reference_id,
        ),
        actor_id=actor_id,
    )
    return movement


def adjust_stock(
    tenant_id: int,
    variant_id: int,
    location_id: int,
    unit_id: int,
    quantity_delta,
    movement_type: str,
    reason: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    """
    Add a signed quantity (in `unit_id`) to a stock cell.

    Upserts the cell, appends a StockMovement and emits stock.adjusted in one
    transaction. Negative results are allowed; callers that must not oversell
    check availability first (reserve_stock / create_order do).
    """
    actor = assert_tenant_ownership(tenant_id)

    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            "Invalid movement type",
            details={"movement_type": movement_type, "allowed": sorted(MOVEMENT_TYPES)},
        )
    delta = to_decimal(quantity_delta, "quantity_delta")
    if delta == 0:
        raise InvalidQuantityError("quantity_delta must be non-zero")

    require_variant(tenant_id, variant_id)
    require_location(tenant_id, location_id)
    require_unit_for_variant(tenant_id, variant_id, unit_id)
    find_base_unit(tenant_id, variant_id)

    def _op():
        with keyed_lock(stock_lock_key(variant_id, location_id)):
            movement = _adjust_stock_inner(
                tenant_id=tenant_id,
                variant_id=variant_id,
                location_id=location_id,
                unit_id=unit_id,
                quantity_delta=delta,
                movement_type=movement_type,
                reason=reason,
                reference_id=reference_id,
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return movement

    return run_with_retry(_op)


def get_stock_balance(tenant_id: int, variant_id: int, location_id: int) -> Decimal:
    """Available quantity in base units: on-hand minus active reservations."""
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, variant_id)
    require_location(tenant_id, location_id)
    return _available_base(tenant_id, variant_id, location_id)


def get_stock_summary(tenant_id: int, variant_id: int, location_id: int) -> dict:
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, variant_id)
    require_location(tenant_id, location_id)

    on_hand = _on_hand_base(tenant_id, variant_id, location_id)
    reserved = _reserved_base(tenant_id, variant_id, location_id)
    cells = (
        db.session.query(StockLevel)
        .filter_by(tenant_id=tenant_id, variant_id=variant_id, location_id=location_id)
        .order_by(StockLevel.unit_id.asc())
        .all()
    )
    return {
        "tenant_id": tenant_id,
        "variant_id": variant_id,
        "location_id": location_id,
        "on_hand": on_hand,
        "reserved": reserved,
        "available": on_hand - reserved,
        "cells": [cell.to_dict() for cell in cells],
    }


def list_stock_movements(
    tenant_id: int,
    variant_id: int,
    location_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    assert_tenant_ownership(tenant_id)
    require_variant(tenant_id, variant_id)

    q = db.session.query(StockMovement).filter_by(tenant_id=tenant_id, variant_id=variant_id)
    if location_id is not None:
        require_location(tenant_id, location_id)
        q = q.filter_by(location_id=location_id)

    return q.order_by(StockMovement.id.desc()).limit(max(1, min(int(limit), 1000))).all()
