from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CashRegister(db.Model):
    """Physical cash drawer at a location. Cash only moves through an open shift."""
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_cash_registers_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Shift(db.Model):
    """
    Accounting period of a cash register between opening and closing.

    At most one open shift per register. Once closed, the amounts are frozen:
    expected = opening + cash from sales + cash_in - cash_out,
    discrepancy = counted - expected.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_register_status", "cash_register_id", "status"),
        db.Index(
            "uq_shifts_one_open_per_register",
            "cash_register_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="open")

    opening_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_amount_cents = db.Column(db.Integer, nullable=True)
    counted_amount_cents = db.Column(db.Integer, nullable=True)
    left_in_cash_cents = db.Column(db.Integer, nullable=True)
    discrepancy_cents = db.Column(db.Integer, nullable=True)
    discrepancy_reason = db.Column(db.String(64), nullable=True)
    discrepancy_notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    cash_register = db.relationship("CashRegister", backref=db.backref("shifts", lazy=True))
    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    movements = db.relationship(
        "ShiftMovement", back_populates="shift", lazy=True, order_by="ShiftMovement.id"
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_expected: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "cash_register_id": self.cash_register_id,
            "cash_register_name": self.cash_register.name if self.cash_register else None,
            "opened_by_user_id": self.opened_by_user_id,
            "opened_by_name": self.opened_by.username if self.opened_by else None,
            "closed_by_user_id": self.closed_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "status": self.status,
            "opening_amount_cents": self.opening_amount_cents,
            "counted_amount_cents": self.counted_amount_cents,
            "left_in_cash_cents": self.left_in_cash_cents,
            "discrepancy_reason": self.discrepancy_reason,
            "discrepancy_notes": self.discrepancy_notes,
            "version_id": self.version_id,
        }
        if include_expected:
            data["expected_amount_cents"] = self.expected_amount_cents
            data["discrepancy_cents"] = self.discrepancy_cents
        return data


class ShiftMovement(db.Model):
    """
    Manual cash entering (cash_in) or leaving (cash_out) the drawer during a shift.

    source_type: manual | transfer | safe_box_deposit
    """
    __tablename__ = "shift_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_shift_movements_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    source_type = db.Column(db.String(32), nullable=False, default="manual")

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    shift = db.relationship("Shift", back_populates="movements")

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.movement_type == "cash_in" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "notes": self.notes,
            "reference": self.reference,
            "source_type": self.source_type,
            "performed_by_user_id": self.performed_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
