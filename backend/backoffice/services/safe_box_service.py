# Overview: Safe boxes: CRUD, deposits and withdrawals.

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..models import Location, SafeBox, SafeBoxMovement
from ..time_utils import start_of_day, utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .treasury_ledger import ACCOUNT_SAFE_BOX, account_balance


SAFE_BOX_MOVEMENT_TYPES = ("deposit", "withdrawal")


class SafeBoxError(Exception):
    """Raised when safe box operations fail."""
    pass


class SafeBoxNotFound(SafeBoxError):
    pass


def get_safe_box(safe_box_id: int, org_id: int) -> SafeBox:
    box = db.session.query(SafeBox).filter_by(id=safe_box_id, org_id=org_id).first()
    if not box:
        raise SafeBoxNotFound(f"Safe box {safe_box_id} not found")
    return box


def lock_active_safe_box(safe_box_id: int, org_id: int) -> SafeBox:
    box = lock_for_update(
        db.session.query(SafeBox).filter_by(id=safe_box_id, org_id=org_id)
    ).first()
    if not box:
        raise SafeBoxNotFound(f"Safe box {safe_box_id} not found")
    if box.status != "active":
        raise SafeBoxError(f"Safe box {box.name} is archived")
    return box


def get_balance(box: SafeBox) -> int:
    return account_balance(ACCOUNT_SAFE_BOX, box)


def record_movement(
    box: SafeBox,
    *,
    movement_type: str,
    amount_cents: int,
    source_type: str = "manual",
    source_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
    user_id: int | None = None,
    check_balance: bool = True,
) -> SafeBoxMovement:
    """
    Append a movement. Withdrawals may not exceed the current balance.

    Bumps the box version so concurrent withdrawals against the same box
    conflict instead of both passing the balance check.
    """
    if movement_type not in SAFE_BOX_MOVEMENT_TYPES:
        raise SafeBoxError(f"Invalid movement type: {movement_type}")
    if amount_cents <= 0:
        raise SafeBoxError("Amount must be positive")

    if movement_type == "withdrawal" and check_balance:
        balance = get_balance(box)
        if amount_cents > balance:
            raise SafeBoxError(
                f"Insufficient funds in {box.name}. Balance: {balance}, requested: {amount_cents}"
            )

    movement = SafeBoxMovement(
        safe_box_id=box.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        source_type=source_type,
        source_id=source_id,
        reference=reference,
        notes=notes,
        movement_date=movement_date or utcnow(),
        performed_by_user_id=user_id,
    )
    db.session.add(movement)
    flag_modified(box, "status")
    db.session.flush()
    return movement


def create_safe_box(
    *,
    org_id: int,
    name: str,
    location_id: int | None = None,
    currency: str = "ARS",
    initial_balance_cents: int = 0,
    balance_date: date | None = None,
    user_id: int | None = None,
) -> SafeBox:
    name = (name or "").strip()
    if not name:
        raise SafeBoxError("Safe box name is required")
    if initial_balance_cents < 0:
        raise SafeBoxError("Initial balance cannot be negative")
    if db.session.query(SafeBox.id).filter_by(org_id=org_id, name=name).first():
        raise SafeBoxError(f"A safe box named '{name}' already exists")
    if location_id is not None:
        location = db.session.query(Location).filter_by(id=location_id).first()
        if not location or location.org_id != org_id:
            raise SafeBoxError(f"Location {location_id} not found")

    box = SafeBox(
        org_id=org_id,
        name=name,
        location_id=location_id,
        currency=currency,
        initial_balance_cents=initial_balance_cents,
        balance_date=balance_date,
    )
    db.session.add(box)
    db.session.flush()

    if initial_balance_cents > 0:
        record_movement(
            box,
            movement_type="deposit",
            amount_cents=initial_balance_cents,
            source_type="initial",
            notes="Saldo inicial",
            movement_date=start_of_day(balance_date) if balance_date else None,
            user_id=user_id,
        )

    append_event(
        org_id=org_id,
        location_id=location_id,
        event_type="safe_box.created",
        entity_type="safe_box",
        entity_id=box.id,
        actor_user_id=user_id,
    )
    return box


def update_safe_box(safe_box_id: int, org_id: int, **fields) -> SafeBox:
    box = get_safe_box(safe_box_id, org_id)
    for key, value in fields.items():
        if key not in {"name", "location_id", "currency", "balance_date"}:
            raise SafeBoxError(f"Field not allowed: {key}")
        if key == "name":
            value = (value or "").strip()
            clash = db.session.query(SafeBox.id).filter(
                SafeBox.org_id == org_id, SafeBox.name == value, SafeBox.id != box.id
            ).first()
            if not value or clash:
                raise SafeBoxError("Safe box name is empty or already taken")
        setattr(box, key, value)
    db.session.flush()
    return box


def set_safe_box_status(safe_box_id: int, org_id: int, status: str, *, user_id: int | None = None) -> SafeBox:
    if status not in ("active", "archived"):
        raise SafeBoxError(f"Invalid status: {status}")
    box = get_safe_box(safe_box_id, org_id)
    if box.status == status:
        raise SafeBoxError(f"Safe box is already {status}")
    box.status = status
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="safe_box.archived" if status == "archived" else "safe_box.restored",
        entity_type="safe_box",
        entity_id=box.id,
        actor_user_id=user_id,
    )
    return box


def delete_safe_box(safe_box_id: int, org_id: int, *, user_id: int | None = None) -> None:
    box = get_safe_box(safe_box_id, org_id)
    activity = db.session.query(SafeBoxMovement.id).filter(
        SafeBoxMovement.safe_box_id == box.id,
        SafeBoxMovement.source_type != "initial",
    ).first()
    if activity:
        raise SafeBoxError("Safe box has movements; archive it instead")

    db.session.query(SafeBoxMovement).filter_by(safe_box_id=box.id).delete()
    append_event(
        org_id=org_id,
        event_type="safe_box.deleted",
        entity_type="safe_box",
        entity_id=box.id,
        actor_user_id=user_id,
    )
    db.session.delete(box)
    db.session.flush()


def deposit(
    *,
    safe_box_id: int,
    org_id: int,
    amount_cents: int,
    user_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
) -> SafeBoxMovement:
    def _op():
        box = lock_active_safe_box(safe_box_id, org_id)
        movement = record_movement(
            box,
            movement_type="deposit",
            amount_cents=amount_cents,
            reference=reference,
            notes=notes,
            movement_date=movement_date,
            user_id=user_id,
        )
        append_event(
            org_id=org_id,
            event_type="safe_box.deposit",
            entity_type="safe_box",
            entity_id=box.id,
            actor_user_id=user_id,
            payload={"amount_cents": amount_cents},
        )
        return movement

    return run_with_retry(_op)


def withdraw(
    *,
    safe_box_id: int,
    org_id: int,
    amount_cents: int,
    user_id: int | None = None,
    reference: str | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
) -> SafeBoxMovement:
    def _op():
        box = lock_active_safe_box(safe_box_id, org_id)
        movement = record_movement(
            box,
            movement_type="withdrawal",
            amount_cents=amount_cents,
            reference=reference,
            notes=notes,
            movement_date=movement_date,
            user_id=user_id,
        )
        append_event(
            org_id=org_id,
            event_type="safe_box.withdrawal",
            entity_type="safe_box",
            entity_id=box.id,
            actor_user_id=user_id,
            payload={"amount_cents": amount_cents},
        )
        return movement

    return run_with_retry(_op)


def list_safe_boxes(org_id: int, *, status: str | None = "active") -> list[SafeBox]:
    q = db.session.query(SafeBox).filter(SafeBox.org_id == org_id)
    if status:
        q = q.filter(SafeBox.status == status)
    return q.order_by(SafeBox.name).all()
