from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


CREDIT_NOTE_VOUCHER = "CREDIT_NOTE"


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_org_name", "org_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    tax_id = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "tax_id": self.tax_id,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Sale(db.Model):
    """
    Sales voucher (ticket / invoice) or credit note.

    Credit notes reference the sale they reverse (related_sale_id) and store
    a positive total; their sign comes from voucher_type.
    Status: PENDING (balance owed) -> COMPLETED (fully paid), or CANCELLED.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sale_number", name="uq_sales_org_number"),
        db.Index("ix_sales_org_date", "org_id", "sale_date"),
        db.Index("ix_sales_shift", "shift_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    sale_number = db.Column(db.String(32), nullable=False)
    voucher_type = db.Column(db.String(16), nullable=False, default="TICKET")

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True)
    related_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    location = db.relationship("Location")
    related_sale = db.relationship("Sale", remote_side=[id], backref=db.backref("credit_notes", lazy=True))
    items = db.relationship(
        "SaleItem", back_populates="sale", lazy=True, cascade="all, delete-orphan", order_by="SaleItem.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit_note(self) -> bool:
        return self.voucher_type == CREDIT_NOTE_VOUCHER

    @property
    def balance_cents(self) -> int:
        return max(0, self.total_cents - self.amount_paid_cents)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "location_id": self.location_id,
            "sale_number": self.sale_number,
            "voucher_type": self.voucher_type,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "shift_id": self.shift_id,
            "related_sale_id": self.related_sale_id,
            "sale_date": to_utc_z(self.sale_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_cents": self.balance_cents,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class SaleItem(db.Model):
    """product_id is NULL for custom (free text) lines, which never touch stock."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    # Credit note lines point at the sale line they return.
    related_sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True, index=True)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "related_sale_item_id": self.related_sale_item_id,
        }


class CreditNoteApplication(db.Model):
    """Portion of a credit note used to settle another sale of the same customer."""
    __tablename__ = "credit_note_applications"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_note_applications_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=False)

    credit_note = db.relationship("Sale", foreign_keys=[credit_note_id])
    sale = db.relationship("Sale", foreign_keys=[sale_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "applied_by_user_id": self.applied_by_user_id,
            "applied_at": to_utc_z(self.applied_at),
        }
