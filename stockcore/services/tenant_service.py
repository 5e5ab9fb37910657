"""
Tenant Validation and Scoping Helpers

WHY: Authentication happens outside the core. The identity collaborator hands
us an already-authenticated actor (tenant, actor id, role); every public
operation must check that the tenant it was asked to act on is the actor's
tenant before touching a row.

SECURITY INVARIANTS:
1. assert_tenant_ownership() is the first call of every public operation
2. Referenced entities are looked up with their tenant_id, never by id alone
3. Missing and foreign entities raise the same NotFoundOrForbiddenError
4. Cross-tenant attempts are logged

USAGE:
    with actor_context(tenant_id=1, actor_id=7, role="cashier"):
        reserve_stock(tenant_id=1, ...)
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass

from flask import g, current_app

from ..extensions import db
from ..errors import AccessDeniedError, NotFoundOrForbiddenError
from ..models import Location, Customer, ProductVariant, UnitDefinition, Order
from .concurrency import lock_for_update

ROLE_SYSTEM = "system"


@dataclass(frozen=True)
class ActorContext:
    tenant_id: int | None
    actor_id: int | None = None
    role: str | None = None

    @property
    def is_system(self) -> bool:
        return self.role == ROLE_SYSTEM


def set_actor(actor: ActorContext) -> None:
    g.actor = actor


def get_current_actor() -> ActorContext:
    """
    Authenticated actor for the current app/request context.

    SECURITY: Raises AccessDeniedError if the identity collaborator never
    established one.
    """
    actor = getattr(g, "actor", None)
    if actor is None:
        raise AccessDeniedError("Actor context not established")
    return actor


def get_current_actor_id() -> int | None:
    actor = getattr(g, "actor", None)
    return actor.actor_id if actor else None


@contextmanager
def actor_context(tenant_id: int | None, actor_id: int | None = None, role: str | None = None):
    """Run a block as the given actor (CLI, background jobs, tests)."""
    previous = getattr(g, "actor", None)
    g.actor = ActorContext(tenant_id=tenant_id, actor_id=actor_id, role=role)
    try:
        yield g.actor
    finally:
        g.actor = previous


def system_context():
    return actor_context(tenant_id=None, role=ROLE_SYSTEM)


def assert_tenant_ownership(tenant_id: int) -> ActorContext:
    """
    Validate that tenant_id is the authenticated actor's tenant.

    CRITICAL: Must run before any read or write in every public operation.
    """
    actor = get_current_actor()
    if tenant_id is None or actor.tenant_id != tenant_id:
        _log_cross_tenant_attempt(
            f"tenant {tenant_id} requested by actor of tenant {actor.tenant_id}",
            actor=actor,
        )
        raise AccessDeniedError(
            "Access denied: tenant_id mismatch",
            details={"tenant_id": tenant_id},
        )
    return actor


def require_system_actor() -> ActorContext:
    actor = get_current_actor()
    if not actor.is_system:
        _log_cross_tenant_attempt("system-only operation requested", actor=actor)
        raise AccessDeniedError("Access denied: system actor required")
    return actor


def require_location(tenant_id: int, location_id: int) -> Location:
    location = db.session.query(Location).filter_by(
        id=location_id, tenant_id=tenant_id, deleted_at=None
    ).first()
    if location is None:
        raise NotFoundOrForbiddenError(
            "Location not found", details={"location_id": location_id}
        )
    return location


def require_customer(tenant_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(
        id=customer_id, tenant_id=tenant_id, deleted_at=None
    ).first()
    if customer is None:
        raise NotFoundOrForbiddenError(
            "Customer not found", details={"customer_id": customer_id}
        )
    return customer


def require_variant(tenant_id: int, variant_id: int) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(
        id=variant_id, tenant_id=tenant_id, deleted_at=None
    ).first()
    if variant is None:
        raise NotFoundOrForbiddenError(
            "Variant not found", details={"variant_id": variant_id}
        )
    return variant


def require_unit_for_variant(tenant_id: int, variant_id: int, unit_id: int) -> UnitDefinition:
    """
    Resolve a unit through its owning variant.

    The join walks unit -> variant -> tenant so a unit id borrowed from another
    tenant, or from another variant of the same tenant, is rejected.
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
    if unit is None or unit.variant_id != variant_id:
        raise NotFoundOrForbiddenError(
            "Unit not found", details={"unit_id": unit_id, "variant_id": variant_id}
        )
    return unit


def require_order(tenant_id: int, order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id, tenant_id=tenant_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundOrForbiddenError("Order not found", details={"order_id": order_id})
    return order


def _log_cross_tenant_attempt(reason: str, actor: ActorContext) -> None:
    """
    SECURITY: Audit trail for cross-tenant probing. These log lines should be
    monitored and alerted on.
    """
    current_app.logger.warning(
        "CROSS_TENANT_ACCESS_DENIED actor_id=%s actor_tenant_id=%s role=%s: %s",
        actor.actor_id,
        actor.tenant_id,
        actor.role,
        reason,
    )
