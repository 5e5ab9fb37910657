from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class SubscriptionPlan(db.Model):
    """
    SaaS plan with resource limits.

    A NULL max_* column means the plan does not cap that resource.
    """
    __tablename__ = "subscription_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)  # Free, Silver, Gold, Enterprise
    price_monthly = db.Column(db.Numeric(10, 2), nullable=True)
    max_users = db.Column(db.Integer, nullable=True)
    max_locations = db.Column(db.Integer, nullable=True)
    max_products = db.Column(db.Integer, nullable=True)
    features = db.Column(db.JSON, nullable=False, default=dict)  # {"bundles": true}
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_monthly": str(self.price_monthly) if self.price_monthly is not None else None,
            "max_users": self.max_users,
            "max_locations": self.max_locations,
            "max_products": self.max_products,
            "features": self.features or {},
            "is_active": self.is_active,
        }


class TenantSubscription(db.Model):
    __tablename__ = "tenant_subscriptions"
    __table_args__ = (
        db.Index("ix_tenant_subscriptions_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plans.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="active")  # active, suspended, cancelled
    starts_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    plan = db.relationship("SubscriptionPlan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan_id": self.plan_id,
            "status": self.status,
            "starts_at": to_utc_z(self.starts_at),
            "ends_at": to_utc_z(self.ends_at),
        }


class FeatureFlag(db.Model):
    """Per-tenant override of a plan feature."""
    __tablename__ = "feature_flags"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "feature_key", name="uq_feature_flags_tenant_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    feature_key = db.Column(db.String(64), nullable=False)
    is_enabled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
