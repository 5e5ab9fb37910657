from __future__ import annotations

from ..extensions import db
from stockcore.time_utils import to_utc_z


class ProductVariant(db.Model):
    """
    Sellable SKU.

    MULTI-TENANT: Variants are tenant-scoped; SKU uniqueness is checked per
    tenant among non-deleted variants (soft-deleted SKUs may be reused).

    UNITS: A variant must have exactly one base UnitDefinition before any stock
    or bundle operation can succeed against it. This is enforced by the
    services failing with MissingBaseUnitError, not by a schema constraint.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.Index("ix_product_variants_tenant_sku", "tenant_id", "sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    attributes = db.Column(db.JSON, nullable=False, default=dict)  # {"color": "Blue", "size": "M"}

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    units = db.relationship("UnitDefinition", back_populates="variant", lazy=True)

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "attributes": self.attributes or {},
            "created_at": to_utc_z(self.created_at),
        }


class UnitDefinition(db.Model):
    """
    Unit of measure for one variant.

    1 of this unit == conversion_factor base units. The base unit has factor 1.
    """
    __tablename__ = "unit_definitions"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "name", name="uq_unit_definitions_variant_name"),
        db.CheckConstraint("conversion_factor > 0", name="ck_unit_definitions_factor_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)  # Piece, Carton, Kg
    conversion_factor = db.Column(db.Numeric(18, 6), nullable=False, default=1)
    is_base_unit = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("ProductVariant", back_populates="units")

    def __repr__(self) -> str:
        return f"<UnitDefinition id={self.id} name={self.name!r} factor={self.conversion_factor}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "name": self.name,
            "conversion_factor": str(self.conversion_factor),
            "is_base_unit": self.is_base_unit,
        }


class ProductBundle(db.Model):
    """
    One composition edge of a virtual bundle SKU.

    Selling 1 parent deducts `quantity` base units of the child.
    """
    __tablename__ = "product_bundles"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "parent_variant_id", "child_variant_id", name="uq_product_bundles_edge"),
        db.CheckConstraint("quantity > 0", name="ck_product_bundles_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    parent_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    child_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_variant_id": self.parent_variant_id,
            "child_variant_id": self.child_variant_id,
            "quantity": str(self.quantity),
        }
