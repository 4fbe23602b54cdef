from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class PaymentMethod(db.Model):
    """
    Configured tender (cash, bank transfer, cards, checks).

    method_type drives treasury routing: CASH lines hit a cash register shift,
    BANK_TRANSFER / CHECK / card lines hit a bank account.
    Fees: fee_percentage_bps (basis points) plus fee_fixed_cents per use.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_payment_methods_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    method_type = db.Column(db.String(32), nullable=False)

    fee_percentage_bps = db.Column(db.Integer, nullable=False, default=0)
    fee_fixed_cents = db.Column(db.Integer, nullable=False, default=0)
    requires_reference = db.Column(db.Boolean, nullable=False, default=False)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bank_account = db.relationship("BankAccount")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "method_type": self.method_type,
            "fee_percentage_bps": self.fee_percentage_bps,
            "fee_fixed_cents": self.fee_fixed_cents,
            "requires_reference": self.requires_reference,
            "bank_account_id": self.bank_account_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerPayment(db.Model):
    """
    Money received from (collection) or returned to (refund) a customer.

    Allocations settle sales; method lines say how the money moved and into
    which treasury account.
    """
    __tablename__ = "customer_payments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "payment_number", name="uq_customer_payments_org_number"),
        db.Index("ix_customer_payments_org_date", "org_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    payment_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    payment_date = db.Column(db.Date, nullable=False)

    kind = db.Column(db.String(16), nullable=False, default="collection")
    total_amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed")
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    allocations = db.relationship(
        "CustomerPaymentAllocation", back_populates="payment", lazy=True, cascade="all, delete-orphan"
    )
    methods = db.relationship(
        "CustomerPaymentMethod", back_populates="payment", lazy=True, cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def sign(self) -> int:
        return -1 if self.kind == "refund" else 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "payment_number": self.payment_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "payment_date": to_iso_date(self.payment_date),
            "kind": self.kind,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "allocations": [a.to_dict() for a in self.allocations],
            "methods": [m.to_dict() for m in self.methods],
        }


class CustomerPaymentAllocation(db.Model):
    __tablename__ = "customer_payment_allocations"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_customer_allocations_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("customer_payments.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    payment = db.relationship("CustomerPayment", back_populates="allocations")
    sale = db.relationship("Sale")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "sale_id": self.sale_id,
            "sale_number": self.sale.sale_number if self.sale else None,
            "amount_cents": self.amount_cents,
        }


class CustomerPaymentMethod(db.Model):
    __tablename__ = "customer_payment_methods"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_customer_methods_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("customer_payments.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)
    method_name = db.Column(db.String(100), nullable=False)
    method_type = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    fee_cents = db.Column(db.Integer, nullable=False, default=0)
    reference = db.Column(db.String(100), nullable=True)

    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True, index=True)

    payment = db.relationship("CustomerPayment", back_populates="methods")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "payment_method_id": self.payment_method_id,
            "method_name": self.method_name,
            "method_type": self.method_type,
            "amount_cents": self.amount_cents,
            "fee_cents": self.fee_cents,
            "reference": self.reference,
            "cash_register_id": self.cash_register_id,
            "shift_id": self.shift_id,
            "bank_account_id": self.bank_account_id,
        }


class SupplierPayment(db.Model):
    """
    Money paid to a supplier. total = sum(allocations) + on_account_amount;
    the on-account part raises the supplier's credit balance.
    """
    __tablename__ = "supplier_payments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "payment_number", name="uq_supplier_payments_org_number"),
        db.Index("ix_supplier_payments_org_date", "org_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    payment_number = db.Column(db.String(32), nullable=False)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    payment_date = db.Column(db.Date, nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    on_account_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="completed")
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier")
    allocations = db.relationship(
        "SupplierPaymentAllocation", back_populates="payment", lazy=True, cascade="all, delete-orphan"
    )
    methods = db.relationship(
        "SupplierPaymentMethod", back_populates="payment", lazy=True, cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "payment_number": self.payment_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "payment_date": to_iso_date(self.payment_date),
            "total_amount_cents": self.total_amount_cents,
            "on_account_amount_cents": self.on_account_amount_cents,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "allocations": [a.to_dict() for a in self.allocations],
            "methods": [m.to_dict() for m in self.methods],
        }


class SupplierPaymentAllocation(db.Model):
    __tablename__ = "supplier_payment_allocations"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_supplier_allocations_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("supplier_payments.id"), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    payment = db.relationship("SupplierPayment", back_populates="allocations")
    purchase = db.relationship("Purchase")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "purchase_id": self.purchase_id,
            "purchase_number": self.purchase.purchase_number if self.purchase else None,
            "amount_cents": self.amount_cents,
        }


class SupplierPaymentMethod(db.Model):
    __tablename__ = "supplier_payment_methods"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_supplier_methods_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("supplier_payments.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)
    method_name = db.Column(db.String(100), nullable=False)
    method_type = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(100), nullable=True)

    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True, index=True)

    payment = db.relationship("SupplierPayment", back_populates="methods")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "payment_method_id": self.payment_method_id,
            "method_name": self.method_name,
            "method_type": self.method_type,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "cash_register_id": self.cash_register_id,
            "shift_id": self.shift_id,
            "bank_account_id": self.bank_account_id,
        }
