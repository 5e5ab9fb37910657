# Overview: Subscription limit checks and feature gating hooks.

"""
Subscription Limits and Feature Flags

WHY: Creating users, locations and products is capped by the tenant's plan.
Callers pass a closed ResourceKind; each kind dispatches to a typed counter,
so there is no string-built query to inject into.

RULES:
- The tenant's subscription is the newest row with status 'active' and
  ends_at NULL or in the future. No such row: every limited creation fails.
- A NULL max_* on the plan means that resource is not capped.
- Soft-deleted rows do not count toward a limit.
- Feature access: a FeatureFlag row wins over the plan's features JSON;
  default is False.
"""

from __future__ import annotations

import enum

from sqlalchemy import or_

from ..extensions import db
from ..errors import LimitExceededError
from ..models import FeatureFlag, Location, ProductVariant, TenantSubscription, TenantUser
from stockcore.time_utils import utcnow
from .tenant_service import assert_tenant_ownership


class ResourceKind(enum.Enum):
    USERS = "max_users"
    LOCATIONS = "max_locations"
    PRODUCTS = "max_products"

    @property
    def limit_key(self) -> str:
        return self.value


def _count_users(tenant_id: int) -> int:
    return TenantUser.query.filter_by(tenant_id=tenant_id, deleted_at=None).count()


def _count_locations(tenant_id: int) -> int:
    return Location.query.filter_by(tenant_id=tenant_id, deleted_at=None).count()


def _count_products(tenant_id: int) -> int:
    return ProductVariant.query.filter_by(tenant_id=tenant_id, deleted_at=None).count()


_COUNTERS = {
    ResourceKind.USERS: _count_users,
    ResourceKind.LOCATIONS: _count_locations,
    ResourceKind.PRODUCTS: _count_products,
}


def count_resources(tenant_id: int, kind: ResourceKind) -> int:
    return _COUNTERS[kind](tenant_id)


def get_active_subscription(tenant_id: int) -> TenantSubscription | None:
    return (
        db.session.query(TenantSubscription)
        .filter(
            TenantSubscription.tenant_id == tenant_id,
            TenantSubscription.status == "active",
            or_(TenantSubscription.ends_at.is_(None), TenantSubscription.ends_at > utcnow()),
        )
        .order_by(TenantSubscription.created_at.desc(), TenantSubscription.id.desc())
        .first()
    )


def get_tenant_limit(tenant_id: int, kind: ResourceKind) -> int | None:
    """
    Plan cap for `kind`, or None when uncapped.

    Raises LimitExceededError when the tenant has no active subscription.
    """
    assert_tenant_ownership(tenant_id)
    subscription = get_active_subscription(tenant_id)
    if subscription is None:
        raise LimitExceededError(
            "No active subscription", details={"tenant_id": tenant_id, "limit": kind.limit_key}
        )
    return getattr(subscription.plan, kind.limit_key)


def validate_tenant_limit(tenant_id: int, kind: ResourceKind) -> None:
    """Raise LimitExceededError if creating one more `kind` would pass the plan cap."""
    if not isinstance(kind, ResourceKind):
        raise TypeError("kind must be a ResourceKind")

    limit = get_tenant_limit(tenant_id, kind)
    if limit is None:
        return

    current = count_resources(tenant_id, kind)
    if current >= limit:
        raise LimitExceededError(
            f"Subscription limit exceeded: {kind.limit_key}",
            details={"limit": limit, "current": current, "resource": kind.name.lower()},
        )


def has_feature_access(tenant_id: int, feature_key: str) -> bool:
    assert_tenant_ownership(tenant_id)

    flag = FeatureFlag.query.filter_by(tenant_id=tenant_id, feature_key=feature_key).first()
    if flag is not None:
        return bool(flag.is_enabled)

    subscription = get_active_subscription(tenant_id)
    if subscription is None or subscription.plan is None:
        return False
    return bool((subscription.plan.features or {}).get(feature_key, False))
