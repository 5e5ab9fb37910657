from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class StockLevel(db.Model):
    """
    On-hand quantity for one (tenant, variant, location, unit) cell.

    Quantities are stored per unit as recorded, not normalized to base units.
    Availability math converts each cell by its own unit's factor before
    summing. The balance may go negative; callers that must prevent
    overselling check availability under the cell lock first.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "variant_id", "location_id", "unit_id", name="uq_stock_levels_cell"),
        db.Index("ix_stock_levels_variant_location", "variant_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit_definitions.id"), nullable=False)
    quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    unit = db.relationship("UnitDefinition")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "unit_id": self.unit_id,
            "quantity": str(self.quantity),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one stock adjustment.

    balance_after is the cell balance at the serialization point of the
    adjustment. Rows are never updated or deleted; corrections are new
    compensating movements.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_cell_created", "tenant_id", "variant_id", "location_id", "created_at"),
        db.Index("ix_stock_movements_reference", "tenant_id", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit_definitions.id"), nullable=False)

    change_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    balance_after = db.Column(db.Numeric(18, 4), nullable=False)

    type_key = db.Column(db.String(32), nullable=False, index=True)  # adjustment, sale, return, ...
    reason = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "unit_id": self.unit_id,
            "change_quantity": str(self.change_quantity),
            "balance_after": str(self.balance_after),
            "type_key": self.type_key,
            "reason": self.reason,
            "reference_id": self.reference_id,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockReservation(db.Model):
    """
    Time-bounded soft hold against available stock.

    Reduces available quantity without touching on-hand. Deleted on release,
    on conversion into an order line, or by the expiry sweep.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.Index("ix_stock_reservations_cell", "tenant_id", "variant_id", "location_id"),
        db.Index("ix_stock_reservations_expires", "expires_at"),
        db.CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    unit_id = db.Column(db.Integer, db.ForeignKey("unit_definitions.id"), nullable=False)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    # External cart / quote reference the hold was taken for
    order_ref = db.Column(db.String(64), nullable=True, index=True)
    actor_id = db.Column(db.Integer, nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    unit = db.relationship("UnitDefinition")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "variant_id": self.variant_id,
            "location_id": self.location_id,
            "unit_id": self.unit_id,
            "quantity": str(self.quantity),
            "order_ref": self.order_ref,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
