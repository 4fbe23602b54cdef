from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Transfer(db.Model):
    """
    Stock movement between two locations of the same organization.

    Lifecycle: in_transit -> completed | cancelled. A transfer created as
    already received starts (and ends) in completed.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "transfer_number", name="uq_transfers_org_number"),
        db.Index("ix_transfers_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    transfer_number = db.Column(db.String(32), nullable=False)

    source_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    destination_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="in_transit")
    notes = db.Column(db.Text, nullable=True)
    transfer_date = db.Column(db.Date, nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    source_location = db.relationship("Location", foreign_keys=[source_location_id])
    destination_location = db.relationship("Location", foreign_keys=[destination_location_id])
    items = db.relationship(
        "TransferItem",
        back_populates="transfer",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransferItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "transfer_number": self.transfer_number,
            "source_location_id": self.source_location_id,
            "source_location_name": self.source_location.name if self.source_location else None,
            "destination_location_id": self.destination_location_id,
            "destination_location_name": (
                self.destination_location.name if self.destination_location else None
            ),
            "status": self.status,
            "notes": self.notes,
            "transfer_date": to_iso_date(self.transfer_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "total_quantity": sum(i.quantity for i in self.items),
            "total_received": sum(i.quantity_received for i in self.items),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class TransferItem(db.Model):
    """Invariant: 0 <= quantity_received <= quantity."""
    __tablename__ = "transfer_items"
    __table_args__ = (
        db.UniqueConstraint("transfer_id", "product_id", name="uq_transfer_items_transfer_product"),
        db.CheckConstraint("quantity > 0", name="ck_transfer_items_quantity_positive"),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity",
            name="ck_transfer_items_received_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)

    transfer = db.relationship("Transfer", back_populates="items")
    product = db.relationship("Product")

    @property
    def pending_quantity(self) -> int:
        return self.quantity - self.quantity_received

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "product_sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "quantity_received": self.quantity_received,
            "pending_quantity": self.pending_quantity,
        }
