from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class EcommerceStore(db.Model):
    """
    Connected online store (Tiendanube).

    Stock pushed to the platform is read from location_id, or from the sum
    across locations when no location is configured.
    """
    __tablename__ = "ecommerce_stores"
    __table_args__ = (
        db.UniqueConstraint("platform", "external_store_id", name="uq_ecommerce_stores_platform_external"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    platform = db.Column(db.String(32), nullable=False, default="tiendanube")
    external_store_id = db.Column(db.String(64), nullable=False)
    access_token = db.Column(db.String(255), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    connected_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    disconnected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    mappings = db.relationship("EcommerceProductMap", back_populates="store", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "platform": self.platform,
            "external_store_id": self.external_store_id,
            "location_id": self.location_id,
            "is_active": self.is_active,
            "connected_at": to_utc_z(self.connected_at),
            "disconnected_at": to_utc_z(self.disconnected_at),
            "last_synced_at": to_utc_z(self.last_synced_at),
        }


class EcommerceProductMap(db.Model):
    """Link between a local product and a remote product variant."""
    __tablename__ = "ecommerce_product_maps"
    __table_args__ = (
        db.UniqueConstraint("store_id", "remote_variant_id", name="uq_ecommerce_maps_store_variant"),
        db.Index("ix_ecommerce_maps_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("ecommerce_stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    remote_product_id = db.Column(db.String(64), nullable=False)
    remote_variant_id = db.Column(db.String(64), nullable=False)
    last_pushed_stock = db.Column(db.Integer, nullable=True)

    store = db.relationship("EcommerceStore", back_populates="mappings")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "remote_product_id": self.remote_product_id,
            "remote_variant_id": self.remote_variant_id,
            "last_pushed_stock": self.last_pushed_stock,
        }
