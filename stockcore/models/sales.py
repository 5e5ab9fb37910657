from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"


def _money(value) -> str | None:
    return str(value) if value is not None else None


class Order(db.Model):
    """
    Order header.

    LIFECYCLE: pending -> completed, pending -> cancelled, completed -> refunded.
    Totals are the sums of the immutable order lines and are written once, at
    the end of order creation.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    net_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)

    # "metadata" is reserved on declarative models
    order_metadata = db.Column("metadata", db.JSON, nullable=False, default=dict)

    actor_id = db.Column(db.Integer, nullable=True)
    status_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "location_id": self.location_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "net_amount": _money(self.net_amount),
            "tax_amount": _money(self.tax_amount),
            "discount_amount": _money(self.discount_amount),
            "total_amount": _money(self.total_amount),
            "metadata": self.order_metadata or {},
            "actor_id": self.actor_id,
            "status_reason": self.status_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Sold line. Immutable once inserted."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit_definitions.id"), nullable=False)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(15, 4), nullable=False)
    discount_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(15, 4), nullable=False, default=0)
    net_amount = db.Column(db.Numeric(15, 4), nullable=False)
    total_price = db.Column(db.Numeric(15, 4), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "unit_id": self.unit_id,
            "quantity": str(self.quantity),
            "unit_price": _money(self.unit_price),
            "discount_amount": _money(self.discount_amount),
            "tax_rate": str(self.tax_rate),
            "tax_amount": _money(self.tax_amount),
            "net_amount": _money(self.net_amount),
            "total_price": _money(self.total_price),
        }


class FinancialTransaction(db.Model):
    """
    Immutable payment or refund record tied to an order.

    The only correction mechanism is a new compensating transaction.
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_financial_transactions_tenant_order", "tenant_id", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    type_key = db.Column(db.String(16), nullable=False)  # payment, refund
    amount = db.Column(db.Numeric(15, 4), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="success")
    note = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_id": self.order_id,
            "type_key": self.type_key,
            "amount": _money(self.amount),
            "payment_method": self.payment_method,
            "status": self.status,
            "note": self.note,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
