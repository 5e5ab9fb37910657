# Overview: Time-bounded stock holds that reduce availability without touching on-hand.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, InvalidQuantityError, NotFoundOrForbiddenError, ValidationError
from ..events import StockReleasedPayload, StockReservedPayload
from ..models import StockReservation
from stockcore.time_utils import utcnow
from .concurrency import keyed_lock, run_with_retry, stock_lock_key
from .event_service import _record_event
from .inventory_service import _available_base
from .tenant_service import (
    assert_tenant_ownership,
    get_current_actor,
    require_location,
    require_system_actor,
    require_unit_for_variant,
    require_variant,
)
from .unit_service import convert_to_base, find_base_unit, to_decimal


def _ttl_seconds(ttl) -> int:
    if ttl is None:
        return int(current_app.config.get("RESERVATION_TTL_SECONDS", 3600))
    if isinstance(ttl, timedelta):
        seconds = int(ttl.total_seconds())
    else:
        seconds = int(ttl)
    if seconds <= 0:
        raise ValidationError("ttl must be positive", details={"ttl": str(ttl)})
    return seconds


def reserve_stock(
    tenant_id: int,
    variant_id: int,
    location_id: int,
    unit_id: int,
    quantity,
    order_ref: str | None = None,
    ttl=None,
) -> StockReservation:
    """
    Place a hold of `quantity` (in `unit_id`) on a (variant, location) pair.

    CONCURRENCY (must stay in this order):
    1. Convert to base units
    2. Take the (variant, location) keyed lock
    3. Compute available = on-hand - active reservations under the lock
    4. Insert the hold and its event, commit, then release the lock

    Two callers can never both see pre-hold availability.
    """
    actor = assert_tenant_ownership(tenant_id)

    qty = to_decimal(quantity)
    if qty <= 0:
        raise InvalidQuantityError("quantity must be positive", details={"quantity": str(qty)})
    ttl_seconds = _ttl_seconds(ttl)

    require_variant(tenant_id, variant_id)
    require_location(tenant_id, location_id)
    unit = require_unit_for_variant(tenant_id, variant_id, unit_id)
    find_base_unit(tenant_id, variant_id)
    requested_base = convert_to_base(unit, qty)

    def _op():
        with keyed_lock(stock_lock_key(variant_id, location_id)):
            available = _available_base(tenant_id, variant_id, location_id)
            if available < requested_base:
                current_app.logger.info(
                    "Reservation rejected: variant=%s location=%s requested=%s available=%s",
                    variant_id, location_id, requested_base, available,
                )
                raise InsufficientStockError(
                    "Insufficient stock",
                    details={
                        "variant_id": variant_id,
                        "location_id": location_id,
                        "requested": str(requested_base),
                        "available": str(available),
                    },
                )

            reservation = StockReservation(
                tenant_id=tenant_id,
                variant_id=variant_id,
                location_id=location_id,
                unit_id=unit_id,
                quantity=qty,
                order_ref=order_ref,
                actor_id=actor.actor_id,
                expires_at=utcnow() + timedelta(seconds=ttl_seconds),
            )
            db.session.add(reservation)
            db.session.flush()

            _record_event(
                tenant_id,
                StockReservedPayload.event_type,
                StockReservedPayload(
                    reservation_id=reservation.id,
                    variant_id=variant_id,
                    location_id=location_id,
                    quantity_base=requested_base,
                    available_before=available,
                    available_after=available - requested_base,
                    order_ref=order_ref,
                ),
                actor_id=actor.actor_id,
            )
            db.session.commit()
            return reservation

    return run_with_retry(_op)


def release_stock(tenant_id: int, reservation_id: int) -> None:
    """Delete a hold and emit stock.released."""
    actor = assert_tenant_ownership(tenant_id)

    reservation = db.session.query(StockReservation).filter_by(
        id=reservation_id, tenant_id=tenant_id
    ).first()
    if reservation is None:
        raise NotFoundOrForbiddenError(
            "Reservation not found", details={"reservation_id": reservation_id}
        )
    variant_id = reservation.variant_id
    location_id = reservation.location_id

    def _op():
        with keyed_lock(stock_lock_key(variant_id, location_id)):
            # Re-read under the lock; a concurrent release or sweep may have won
            row = db.session.query(StockReservation).filter_by(
                id=reservation_id, tenant_id=tenant_id
            ).first()
            if row is None:
                raise NotFoundOrForbiddenError(
                    "Reservation not found", details={"reservation_id": reservation_id}
                )
            db.session.delete(row)
            _record_event(
                tenant_id,
                StockReleasedPayload.event_type,
                StockReleasedPayload(
                    reservation_id=reservation_id,
                    variant_id=variant_id,
                    location_id=location_id,
                ),
                actor_id=actor.actor_id,
            )
            db.session.commit()

    run_with_retry(_op)


def expire_reservations(tenant_id: int | None = None) -> int:
    """
    Delete holds whose expires_at has passed. Returns the number removed.

    With tenant_id: scoped to that tenant (tenant check applies).
    Without: global sweep, system actor only.

    Idempotent; a second run with nothing newly expired removes 0 rows.
    The sweep is housekeeping and emits no events.
    """
    if tenant_id is None:
        require_system_actor()
    else:
        actor = get_current_actor()
        if not actor.is_system:
            assert_tenant_ownership(tenant_id)

    def _op():
        query = db.session.query(StockReservation).filter(StockReservation.expires_at <= utcnow())
        if tenant_id is not None:
            query = query.filter(StockReservation.tenant_id == tenant_id)
        removed = query.delete(synchronize_session=False)
        db.session.commit()
        return removed

    removed = run_with_retry(_op)
    current_app.logger.info(
        "Expired %s reservation(s) (tenant=%s)", removed, tenant_id if tenant_id is not None else "all"
    )
    return removed
