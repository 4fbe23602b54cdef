# Overview: Cash registers and their shifts (open, cash in/out, close).

"""
Cash register shifts.

LIFECYCLE: open -> closed. At most one open shift per register (partial
unique index plus a row lock on the register). Every cash flow touching a
register must land in its open shift; a closed shift is immutable.

Closing freezes:
    expected    = opening + cash_from_sales + cash_in - cash_out
    discrepancy = counted - expected
and the cash that does not stay in the drawer (counted - left_in_cash) can
be deposited straight into a safe box.
"""
from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import CashRegister, Location, Shift, ShiftMovement
from ..time_utils import end_of_day, start_of_day, utcnow
from . import safe_box_service
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .shift_summary import compute_shift_summary


SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_CLOSED = "closed"

DISCREPANCY_REASONS = ("counting_error", "missing_change", "theft", "unregistered_sale", "other")


class RegisterError(Exception):
    """Raised when cash register operations fail."""
    pass


class RegisterNotFound(RegisterError):
    pass


class ShiftError(Exception):
    """Raised when shift operations fail."""
    pass


class ShiftNotFound(ShiftError):
    pass


# -- Cash registers --

def get_cash_register(register_id: int, org_id: int) -> CashRegister:
    register = db.session.query(CashRegister).filter_by(id=register_id, org_id=org_id).first()
    if not register:
        raise RegisterNotFound(f"Cash register {register_id} not found")
    return register


def create_cash_register(*, org_id: int, location_id: int, name: str, user_id: int | None = None) -> CashRegister:
    name = (name or "").strip()
    if not name:
        raise RegisterError("Register name is required")
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or location.org_id != org_id:
        raise RegisterError(f"Location {location_id} not found")
    if db.session.query(CashRegister.id).filter_by(org_id=org_id, name=name).first():
        raise RegisterError(f"A register named '{name}' already exists")

    register = CashRegister(org_id=org_id, location_id=location_id, name=name)
    db.session.add(register)
    db.session.flush()

    append_event(
        org_id=org_id,
        location_id=location_id,
        event_type="cash_register.created",
        entity_type="cash_register",
        entity_id=register.id,
        actor_user_id=user_id,
    )
    return register


def update_cash_register(register_id: int, org_id: int, *, name: str | None = None,
                         location_id: int | None = None) -> CashRegister:
    register = get_cash_register(register_id, org_id)
    if name is not None:
        name = name.strip()
        clash = db.session.query(CashRegister.id).filter(
            CashRegister.org_id == org_id, CashRegister.name == name, CashRegister.id != register.id
        ).first()
        if not name or clash:
            raise RegisterError("Register name is empty or already taken")
        register.name = name
    if location_id is not None and location_id != register.location_id:
        if get_active_shift(register.id, org_id):
            raise RegisterError("Cannot move a register with an open shift")
        location = db.session.query(Location).filter_by(id=location_id).first()
        if not location or location.org_id != org_id:
            raise RegisterError(f"Location {location_id} not found")
        register.location_id = location_id
    db.session.flush()
    return register


def toggle_cash_register_status(register_id: int, org_id: int, *, user_id: int | None = None) -> CashRegister:
    register = get_cash_register(register_id, org_id)
    if register.is_active and get_active_shift(register.id, org_id):
        raise RegisterError("Cannot deactivate a register with an open shift")
    register.is_active = not register.is_active
    db.session.flush()

    append_event(
        org_id=org_id,
        location_id=register.location_id,
        event_type="cash_register.activated" if register.is_active else "cash_register.deactivated",
        entity_type="cash_register",
        entity_id=register.id,
        actor_user_id=user_id,
    )
    return register


def delete_cash_register(register_id: int, org_id: int) -> None:
    register = get_cash_register(register_id, org_id)
    if db.session.query(Shift.id).filter_by(cash_register_id=register.id).first():
        raise RegisterError("Register has shift history; deactivate it instead")
    db.session.delete(register)
    db.session.flush()


def list_cash_registers(org_id: int, *, location_id: int | None = None,
                        include_inactive: bool = False) -> list[CashRegister]:
    q = db.session.query(CashRegister).filter(CashRegister.org_id == org_id)
    if location_id is not None:
        q = q.filter(CashRegister.location_id == location_id)
    if not include_inactive:
        q = q.filter(CashRegister.is_active.is_(True))
    return q.order_by(CashRegister.name).all()


# -- Shifts --

def get_shift(shift_id: int, org_id: int) -> Shift:
    shift = db.session.query(Shift).filter_by(id=shift_id, org_id=org_id).first()
    if not shift:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    return shift


def _lock_open_shift(shift_id: int, org_id: int) -> Shift:
    shift = lock_for_update(db.session.query(Shift).filter_by(id=shift_id, org_id=org_id)).first()
    if not shift:
        raise ShiftNotFound(f"Shift {shift_id} not found")
    if shift.status != SHIFT_STATUS_OPEN:
        raise ShiftError("Shift is closed")
    return shift


def get_active_shift(register_id: int, org_id: int) -> Shift | None:
    return db.session.query(Shift).filter_by(
        cash_register_id=register_id, org_id=org_id, status=SHIFT_STATUS_OPEN
    ).first()


def require_open_shift(register_id: int, org_id: int) -> Shift:
    """
    Lock and return the open shift of a register.

    Used by every cash flow that touches a register (payments, treasury
    transfers, safe deposits).
    """
    register = get_cash_register(register_id, org_id)
    shift = lock_for_update(
        db.session.query(Shift).filter_by(cash_register_id=register.id, status=SHIFT_STATUS_OPEN)
    ).first()
    if not shift:
        raise ShiftError(f"Cash register {register.name} has no open shift")
    return shift


def get_user_active_shift(user_id: int, org_id: int) -> Shift | None:
    return (
        db.session.query(Shift)
        .filter_by(opened_by_user_id=user_id, org_id=org_id, status=SHIFT_STATUS_OPEN)
        .order_by(Shift.opened_at.desc())
        .first()
    )


def get_last_closed_shift(register_id: int, org_id: int) -> Shift | None:
    """The suggested opening amount of the next shift is its left_in_cash_cents."""
    get_cash_register(register_id, org_id)
    return (
        db.session.query(Shift)
        .filter_by(cash_register_id=register_id, status=SHIFT_STATUS_CLOSED)
        .order_by(Shift.closed_at.desc(), Shift.id.desc())
        .first()
    )


def open_shift(*, org_id: int, register_id: int, user_id: int, opening_amount_cents: int) -> Shift:
    """
    Open a shift on a register.

    Raises:
        ShiftError: inactive register, negative amount, or a shift already open
    """
    def _op():
        if opening_amount_cents < 0:
            raise ShiftError("Opening amount cannot be negative")

        register = lock_for_update(
            db.session.query(CashRegister).filter_by(id=register_id, org_id=org_id)
        ).first()
        if not register:
            raise RegisterNotFound(f"Cash register {register_id} not found")
        if not register.is_active:
            raise ShiftError(f"Cash register {register.name} is inactive")

        if get_active_shift(register.id, org_id):
            raise ShiftError(f"Cash register {register.name} already has an open shift")

        shift = Shift(
            org_id=org_id,
            cash_register_id=register.id,
            opened_by_user_id=user_id,
            opened_at=utcnow(),
            status=SHIFT_STATUS_OPEN,
            opening_amount_cents=opening_amount_cents,
        )
        db.session.add(shift)
        db.session.flush()

        append_event(
            org_id=org_id,
            location_id=register.location_id,
            event_type="shift.opened",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user_id,
            payload={"opening_amount_cents": opening_amount_cents},
        )
        return shift

    return run_with_retry(_op)


def record_shift_movement(
    shift: Shift,
    *,
    movement_type: str,
    amount_cents: int,
    user_id: int | None,
    notes: str | None = None,
    reference: str | None = None,
    source_type: str = "manual",
) -> ShiftMovement:
    """Append a cash_in / cash_out to a locked open shift. Cash out cannot exceed the drawer."""
    if movement_type not in ("cash_in", "cash_out"):
        raise ShiftError(f"Invalid movement type: {movement_type}")
    if amount_cents <= 0:
        raise ShiftError("Amount must be positive")
    if shift.status != SHIFT_STATUS_OPEN:
        raise ShiftError("Shift is closed")

    if movement_type == "cash_out":
        available = compute_shift_summary(shift)["current_cash_amount_cents"]
        if amount_cents > available:
            raise ShiftError(f"Not enough cash in drawer. Available: {available}, requested: {amount_cents}")

    movement = ShiftMovement(
        shift_id=shift.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        notes=notes,
        reference=reference,
        source_type=source_type,
        performed_by_user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _cash_movement(movement_type: str, shift_id: int, org_id: int, user_id: int,
                   amount_cents: int, notes: str | None) -> ShiftMovement:
    def _op():
        shift = _lock_open_shift(shift_id, org_id)
        movement = record_shift_movement(
            shift,
            movement_type=movement_type,
            amount_cents=amount_cents,
            user_id=user_id,
            notes=notes,
        )
        append_event(
            org_id=org_id,
            event_type=f"shift.{movement_type}",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user_id,
            note=notes,
            payload={"amount_cents": amount_cents},
        )
        return movement

    return run_with_retry(_op)


def add_cash(*, shift_id: int, org_id: int, user_id: int, amount_cents: int,
             notes: str | None = None) -> ShiftMovement:
    return _cash_movement("cash_in", shift_id, org_id, user_id, amount_cents, notes)


def remove_cash(*, shift_id: int, org_id: int, user_id: int, amount_cents: int,
                notes: str | None = None) -> ShiftMovement:
    return _cash_movement("cash_out", shift_id, org_id, user_id, amount_cents, notes)


def get_shift_summary(shift_id: int, org_id: int) -> dict:
    shift = get_shift(shift_id, org_id)
    summary = compute_shift_summary(shift)
    if shift.status == SHIFT_STATUS_CLOSED:
        summary["expected_amount_cents"] = shift.expected_amount_cents
        summary["counted_amount_cents"] = shift.counted_amount_cents
        summary["discrepancy_cents"] = shift.discrepancy_cents
        summary["left_in_cash_cents"] = shift.left_in_cash_cents
    return summary


def close_shift(
    *,
    shift_id: int,
    org_id: int,
    user_id: int,
    counted_amount_cents: int,
    left_in_cash_cents: int = 0,
    discrepancy_reason: str | None = None,
    discrepancy_notes: str | None = None,
    safe_box_id: int | None = None,
) -> Shift:
    """
    Close a shift with a blind count.

    left_in_cash stays in the drawer as the next opening amount; when a
    safe box is given, counted - left_in_cash is deposited into it.
    """
    def _op():
        shift = _lock_open_shift(shift_id, org_id)

        if counted_amount_cents < 0:
            raise ShiftError("Counted amount cannot be negative")
        if left_in_cash_cents < 0 or left_in_cash_cents > counted_amount_cents:
            raise ShiftError("Cash left in drawer must be between 0 and the counted amount")
        if discrepancy_reason is not None and discrepancy_reason not in DISCREPANCY_REASONS:
            raise ShiftError(f"Invalid discrepancy reason: {discrepancy_reason}")

        expected = compute_shift_summary(shift)["current_cash_amount_cents"]

        shift.expected_amount_cents = expected
        shift.counted_amount_cents = counted_amount_cents
        shift.discrepancy_cents = counted_amount_cents - expected
        shift.left_in_cash_cents = left_in_cash_cents
        shift.discrepancy_reason = discrepancy_reason if shift.discrepancy_cents else None
        shift.discrepancy_notes = discrepancy_notes
        shift.status = SHIFT_STATUS_CLOSED
        shift.closed_at = utcnow()
        shift.closed_by_user_id = user_id

        to_deposit = counted_amount_cents - left_in_cash_cents
        if safe_box_id is not None and to_deposit > 0:
            box = safe_box_service.lock_active_safe_box(safe_box_id, org_id)
            safe_box_service.record_movement(
                box,
                movement_type="deposit",
                amount_cents=to_deposit,
                source_type="shift_close",
                source_id=shift.id,
                reference=f"TURNO-{shift.id}",
                notes=f"Cierre de turno {shift.cash_register.name}",
                user_id=user_id,
            )

        db.session.flush()

        append_event(
            org_id=org_id,
            location_id=shift.cash_register.location_id,
            event_type="shift.closed",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user_id,
            note=discrepancy_notes,
            payload={
                "expected_amount_cents": expected,
                "counted_amount_cents": counted_amount_cents,
                "discrepancy_cents": shift.discrepancy_cents,
                "left_in_cash_cents": left_in_cash_cents,
                "safe_box_id": safe_box_id,
            },
        )
        return shift

    return run_with_retry(_op)


def deposit_to_safe_box(
    *,
    shift_id: int,
    safe_box_id: int,
    org_id: int,
    user_id: int,
    amount_cents: int,
    notes: str | None = None,
) -> dict:
    """Move cash from an open shift's drawer into a safe box (cash_out + deposit)."""
    def _op():
        shift = _lock_open_shift(shift_id, org_id)
        box = safe_box_service.lock_active_safe_box(safe_box_id, org_id)
        reference = f"TURNO-{shift.id}"

        shift_movement = record_shift_movement(
            shift,
            movement_type="cash_out",
            amount_cents=amount_cents,
            user_id=user_id,
            notes=notes or f"Deposito en {box.name}",
            reference=reference,
            source_type="safe_box_deposit",
        )
        box_movement = safe_box_service.record_movement(
            box,
            movement_type="deposit",
            amount_cents=amount_cents,
            source_type="shift_deposit",
            source_id=shift.id,
            reference=reference,
            notes=notes or f"Deposito desde {shift.cash_register.name}",
            user_id=user_id,
        )
        append_event(
            org_id=org_id,
            event_type="shift.safe_box_deposit",
            entity_type="shift",
            entity_id=shift.id,
            actor_user_id=user_id,
            payload={"safe_box_id": box.id, "amount_cents": amount_cents},
        )
        return {"shift_movement": shift_movement, "safe_box_movement": box_movement}

    return run_with_retry(_op)


def list_shifts(
    org_id: int,
    *,
    status: str | None = None,
    register_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(Shift).filter(Shift.org_id == org_id)
    if status:
        q = q.filter(Shift.status == status)
    if register_id is not None:
        q = q.filter(Shift.cash_register_id == register_id)
    if date_from:
        q = q.filter(Shift.opened_at >= start_of_day(date_from))
    if date_to:
        q = q.filter(Shift.opened_at <= end_of_day(date_to))
    return q.order_by(Shift.opened_at.desc(), Shift.id.desc())
