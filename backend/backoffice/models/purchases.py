from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Supplier(db.Model):
    """credit_balance_cents: money paid on account, not yet applied to a purchase."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_org_name", "org_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    tax_id = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "tax_id": self.tax_id,
            "email": self.email,
            "phone": self.phone,
            "credit_balance_cents": self.credit_balance_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Purchase(db.Model):
    """
    Supplier invoice. Stock enters when products_received is set and a
    location is known. payment_status follows amount_paid against total.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("org_id", "purchase_number", name="uq_purchases_org_number"),
        db.Index("ix_purchases_supplier_voucher", "supplier_id", "voucher_type", "voucher_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    purchase_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    voucher_type = db.Column(db.String(16), nullable=False)
    voucher_number = db.Column(db.String(32), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    status = db.Column(db.String(16), nullable=False, default="completed")
    products_received = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    location = db.relationship("Location")
    items = db.relationship(
        "PurchaseItem", back_populates="purchase", lazy=True, cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_cents(self) -> int:
        return max(0, self.total_cents - self.amount_paid_cents)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "location_id": self.location_id,
            "voucher_type": self.voucher_type,
            "voucher_number": self.voucher_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_cents": self.balance_cents,
            "payment_status": self.payment_status,
            "status": self.status,
            "products_received": self.products_received,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    @property
    def tracks_stock(self) -> bool:
        return self.product is not None and self.product.tracks_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class PurchaseOrder(db.Model):
    """
    Order placed with a supplier before invoicing.

    Lifecycle: draft -> confirmed -> partial -> received, or cancelled.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "order_number", name="uq_purchase_orders_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    order_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    order_date = db.Column(db.Date, nullable=False)
    expected_delivery_date = db.Column(db.Date, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    items = db.relationship(
        "PurchaseOrderItem", back_populates="order", lazy=True, cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )
    history = db.relationship(
        "PurchaseOrderHistory", back_populates="order", lazy=True, cascade="all, delete-orphan",
        order_by="PurchaseOrderHistory.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "order_number": self.order_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "location_id": self.location_id,
            "order_date": to_iso_date(self.order_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
            data["history"] = [h.to_dict() for h in self.history]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("PurchaseOrder", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "quantity_received": self.quantity_received,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class PurchaseOrderHistory(db.Model):
    __tablename__ = "purchase_order_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    field_changed = db.Column(db.String(64), nullable=True)
    old_value = db.Column(db.String(255), nullable=True)
    new_value = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    order = db.relationship("PurchaseOrder", back_populates="history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "field_changed": self.field_changed,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
