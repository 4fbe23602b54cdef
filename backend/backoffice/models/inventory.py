from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """Catalog item. Stock lives per location in Stock rows."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_products_org_sku"),
        db.Index("ix_products_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    # "product" tracks stock; "service" lines never touch inventory
    item_type = db.Column(db.String(16), nullable=False, default="product")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def tracks_stock(self) -> bool:
        return self.item_type == "product"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "item_type": self.item_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Stock(db.Model):
    """
    On-hand quantity of a product at a location.

    Contended row: every change goes through inventory_service under a row
    lock and the version counter.
    """
    __tablename__ = "stock"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_product_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_rows", lazy=True))
    location = db.relationship("Location")

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock change.

    quantity_delta is signed: positive adds to the location, negative removes.
    reason: sale | credit_note | purchase | purchase_order | transfer_out |
    transfer_in | transfer_cancelled | adjustment | ecommerce
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_location", "product_id", "location_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
