from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class BankAccount(db.Model):
    """
    Bank account tracked in treasury.

    The balance is never stored: it is folded from the account's own
    movements plus the customer/supplier payment lines routed to it.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = (
        db.Index("ix_bank_accounts_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    bank_name = db.Column(db.String(120), nullable=False)
    account_name = db.Column(db.String(120), nullable=False)
    account_number = db.Column(db.String(64), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="ARS")
    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_date = db.Column(db.Date, nullable=True)
    uses_checkbook = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now()
    )

    movements = db.relationship(
        "BankAccountMovement", back_populates="bank_account", lazy=True, order_by="BankAccountMovement.id"
    )

    @property
    def display_name(self) -> str:
        return f"{self.bank_name} - {self.account_name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "account_number": self.account_number,
            "currency": self.currency,
            "initial_balance_cents": self.initial_balance_cents,
            "balance_date": to_iso_date(self.balance_date),
            "uses_checkbook": self.uses_checkbook,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BankAccountMovement(db.Model):
    """
    movement_type: deposit | withdrawal | transfer_in | transfer_out
    source_type: initial | manual | transfer
    Only manual rows can be edited or deleted.
    """
    __tablename__ = "bank_account_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_bank_movements_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(64), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)
    source_type = db.Column(db.String(16), nullable=False, default="manual")
    movement_date = db.Column(db.DateTime(timezone=True), nullable=False)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bank_account = db.relationship("BankAccount", back_populates="movements")

    @property
    def signed_amount_cents(self) -> int:
        if self.movement_type in ("deposit", "transfer_in"):
            return self.amount_cents
        return -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bank_account_id": self.bank_account_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "description": self.description,
            "source_type": self.source_type,
            "movement_date": to_utc_z(self.movement_date),
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SafeBox(db.Model):
    """Back-office safe. Balance = initial + deposits - withdrawals."""
    __tablename__ = "safe_boxes"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_safe_boxes_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    name = db.Column(db.String(120), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="ARS")
    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location")
    movements = db.relationship(
        "SafeBoxMovement", back_populates="safe_box", lazy=True, order_by="SafeBoxMovement.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "name": self.name,
            "currency": self.currency,
            "initial_balance_cents": self.initial_balance_cents,
            "balance_date": to_iso_date(self.balance_date),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class SafeBoxMovement(db.Model):
    """
    movement_type: deposit | withdrawal
    source_type: manual | transfer | shift_deposit | shift_close
    """
    __tablename__ = "safe_box_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_safe_box_movements_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    safe_box_id = db.Column(db.Integer, db.ForeignKey("safe_boxes.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    source_type = db.Column(db.String(16), nullable=False, default="manual")
    source_id = db.Column(db.Integer, nullable=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)
    movement_date = db.Column(db.DateTime(timezone=True), nullable=False)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    safe_box = db.relationship("SafeBox", back_populates="movements")

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.movement_type == "deposit" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "safe_box_id": self.safe_box_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "reference": self.reference,
            "notes": self.notes,
            "movement_date": to_utc_z(self.movement_date),
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
