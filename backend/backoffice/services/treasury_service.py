# Overview: Treasury views and money moves across bank accounts, safe boxes and cash registers.

"""
Treasury operations.

Balances and movement lists are read through treasury_ledger. Writes here:
- transfers between any two accounts, both legs in one transaction sharing
  one TRF reference
- manual deposits/withdrawals on bank accounts and safe boxes; only rows
  with source_type "manual" can later be edited or deleted
"""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..models import BankAccount, BankAccountMovement, CashRegister, SafeBox, SafeBoxMovement
from ..time_utils import end_of_day, start_of_day, utcnow
from .audit_service import append_event
from .bank_account_service import (
    BankAccountError,
    BankAccountNotFound,
    get_bank_account,
    require_active_bank_account,
)
from .bank_account_service import record_movement as record_bank_movement
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .register_service import (
    RegisterError,
    RegisterNotFound,
    ShiftError,
    get_cash_register,
    record_shift_movement,
    require_open_shift,
)
from .safe_box_service import SafeBoxError, SafeBoxNotFound, get_balance, get_safe_box, lock_active_safe_box
from .safe_box_service import record_movement as record_safe_box_movement
from .treasury_ledger import (
    ACCOUNT_BANK,
    ACCOUNT_CASH_REGISTER,
    ACCOUNT_SAFE_BOX,
    ACCOUNT_TYPES,
    CATEGORIES,
    account_balance,
    entries_for,
    open_shift_for,
)


MANUAL_ACCOUNT_TYPES = (ACCOUNT_BANK, ACCOUNT_SAFE_BOX)
MANUAL_MOVEMENT_TYPES = ("deposit", "withdrawal")
MANUAL_FIELDS = {"movement_type", "amount_cents", "reference", "description", "movement_date"}


class TreasuryError(Exception):
    """Raised when treasury operations fail."""
    pass


class TreasuryNotFound(TreasuryError):
    pass


def _check_account_type(account_type: str, allowed=ACCOUNT_TYPES) -> None:
    if account_type not in allowed:
        raise TreasuryError(f"Invalid account type: {account_type}")


def get_account(org_id: int, account_type: str, account_id: int):
    _check_account_type(account_type)
    try:
        if account_type == ACCOUNT_BANK:
            return get_bank_account(account_id, org_id)
        if account_type == ACCOUNT_SAFE_BOX:
            return get_safe_box(account_id, org_id)
        return get_cash_register(account_id, org_id)
    except (BankAccountNotFound, SafeBoxNotFound, RegisterNotFound) as e:
        raise TreasuryNotFound(str(e))


def _account_summary(account_type: str, account) -> dict:
    data = account.to_dict()
    data["account_type"] = account_type
    data["balance_cents"] = account_balance(account_type, account)
    if account_type == ACCOUNT_CASH_REGISTER:
        shift = open_shift_for(account.id)
        data["open_shift_id"] = shift.id if shift else None
    return data


def _accounts_of(org_id: int, account_type: str, *, active_only: bool = True) -> list:
    if account_type == ACCOUNT_BANK:
        q = db.session.query(BankAccount).filter(BankAccount.org_id == org_id)
        if active_only:
            q = q.filter(BankAccount.status == "active")
        return q.order_by(BankAccount.bank_name, BankAccount.account_name).all()
    if account_type == ACCOUNT_SAFE_BOX:
        q = db.session.query(SafeBox).filter(SafeBox.org_id == org_id)
        if active_only:
            q = q.filter(SafeBox.status == "active")
        return q.order_by(SafeBox.name).all()
    q = db.session.query(CashRegister).filter(CashRegister.org_id == org_id)
    if active_only:
        q = q.filter(CashRegister.is_active.is_(True))
    return q.order_by(CashRegister.name).all()


def get_treasury_overview(org_id: int) -> dict:
    """Active accounts of each type with their balances and per-type totals."""
    overview = {}
    grand_total = 0
    for account_type in ACCOUNT_TYPES:
        accounts = [_account_summary(account_type, a) for a in _accounts_of(org_id, account_type)]
        total = sum(a["balance_cents"] for a in accounts)
        overview[account_type] = {"accounts": accounts, "total_cents": total}
        grand_total += total
    overview["total_treasury_cents"] = grand_total
    return overview


def get_account_detail(org_id: int, account_type: str, account_id: int) -> dict:
    account = get_account(org_id, account_type, account_id)
    entries = entries_for(account_type, account)
    entries.sort(key=lambda e: (e.occurred_at, e.source_id), reverse=True)
    return {
        "account": _account_summary(account_type, account),
        "balance_cents": account_balance(account_type, account),
        "entries": [e.to_dict() for e in entries],
    }


def get_unified_movements(
    org_id: int,
    *,
    account_type: str | None = None,
    category: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """
    Every ledger entry of the organization, newest first, filtered and paged.

    Archived accounts are included so history stays complete.
    """
    if account_type:
        _check_account_type(account_type)
    if category and category not in CATEGORIES:
        raise TreasuryError(f"Invalid category: {category}")

    entries = []
    for kind in ([account_type] if account_type else ACCOUNT_TYPES):
        for account in _accounts_of(org_id, kind, active_only=False):
            entries.extend(entries_for(kind, account))

    if category:
        entries = [e for e in entries if e.category == category]
    if date_from:
        lower = start_of_day(date_from)
        entries = [e for e in entries if e.occurred_at >= lower]
    if date_to:
        upper = end_of_day(date_to)
        entries = [e for e in entries if e.occurred_at <= upper]

    entries.sort(key=lambda e: (e.occurred_at, e.source_id), reverse=True)
    total = len(entries)
    start = (page - 1) * page_size
    return {
        "items": [e.to_dict() for e in entries[start:start + page_size]],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size if page_size else 0,
    }


# -- Transfers --

def _transfer_leg(
    org_id: int,
    account_type: str,
    account_id: int,
    *,
    outgoing: bool,
    amount_cents: int,
    reference: str,
    description: str | None,
    movement_date: datetime | None,
    user_id: int | None,
) -> dict:
    try:
        if account_type == ACCOUNT_BANK:
            account = require_active_bank_account(account_id, org_id)
            movement = record_bank_movement(
                account,
                movement_type="transfer_out" if outgoing else "transfer_in",
                amount_cents=amount_cents,
                source_type="transfer",
                reference=reference,
                description=description,
                movement_date=movement_date,
                user_id=user_id,
            )
            name = account.display_name
        elif account_type == ACCOUNT_SAFE_BOX:
            account = lock_active_safe_box(account_id, org_id)
            movement = record_safe_box_movement(
                account,
                movement_type="withdrawal" if outgoing else "deposit",
                amount_cents=amount_cents,
                source_type="transfer",
                reference=reference,
                notes=description,
                movement_date=movement_date,
                user_id=user_id,
            )
            name = account.name
        else:
            account = get_cash_register(account_id, org_id)
            if not account.is_active:
                raise TreasuryError(f"Cash register {account.name} is inactive")
            shift = require_open_shift(account.id, org_id)
            movement = record_shift_movement(
                shift,
                movement_type="cash_out" if outgoing else "cash_in",
                amount_cents=amount_cents,
                user_id=user_id,
                notes=description,
                reference=reference,
                source_type="transfer",
            )
            name = account.name
    except (BankAccountError, SafeBoxError, RegisterError, ShiftError) as e:
        raise TreasuryError(str(e))

    return {
        "account_type": account_type,
        "account_id": account_id,
        "account_name": name,
        "movement": movement.to_dict(),
    }


def create_treasury_transfer(
    *,
    org_id: int,
    user_id: int | None,
    source_type: str,
    source_id: int,
    destination_type: str,
    destination_id: int,
    amount_cents: int,
    reference: str | None = None,
    description: str | None = None,
    movement_date: datetime | None = None,
) -> dict:
    """
    Move money between two treasury accounts.

    Cash register endpoints need an open shift; the register side is booked
    as a cash_in / cash_out on that shift. Safe boxes refuse to go negative.
    """
    _check_account_type(source_type)
    _check_account_type(destination_type)
    if source_type == destination_type and source_id == destination_id:
        raise TreasuryError("Source and destination must be different accounts")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise TreasuryError("Amount must be a positive integer")

    def _op():
        shared = next_document_number(
            org_id=org_id, document_type="TREASURY_TRANSFER", prefix="TRF", dated_on=utcnow().date()
        )
        text = description or reference
        legs = {
            "source": _transfer_leg(
                org_id, source_type, source_id,
                outgoing=True, amount_cents=amount_cents, reference=shared,
                description=text, movement_date=movement_date, user_id=user_id,
            ),
            "destination": _transfer_leg(
                org_id, destination_type, destination_id,
                outgoing=False, amount_cents=amount_cents, reference=shared,
                description=text, movement_date=movement_date, user_id=user_id,
            ),
        }
        append_event(
            org_id=org_id,
            event_type="treasury.transfer",
            entity_type=source_type,
            entity_id=source_id,
            actor_user_id=user_id,
            note=text,
            payload={
                "reference": shared,
                "amount_cents": amount_cents,
                "destination_type": destination_type,
                "destination_id": destination_id,
            },
        )
        return {"reference": shared, "amount_cents": amount_cents, **legs}

    return run_with_retry(_op)


# -- Manual movements --

def create_manual_movement(
    *,
    org_id: int,
    user_id: int | None,
    account_type: str,
    account_id: int,
    movement_type: str,
    amount_cents: int,
    reference: str | None = None,
    description: str | None = None,
    movement_date: datetime | None = None,
):
    _check_account_type(account_type, MANUAL_ACCOUNT_TYPES)
    if movement_type not in MANUAL_MOVEMENT_TYPES:
        raise TreasuryError(f"Invalid movement type: {movement_type}")

    def _op():
        try:
            if account_type == ACCOUNT_BANK:
                account = require_active_bank_account(account_id, org_id)
                movement = record_bank_movement(
                    account,
                    movement_type=movement_type,
                    amount_cents=amount_cents,
                    source_type="manual",
                    reference=reference,
                    description=description,
                    movement_date=movement_date,
                    user_id=user_id,
                )
            else:
                account = lock_active_safe_box(account_id, org_id)
                movement = record_safe_box_movement(
                    account,
                    movement_type=movement_type,
                    amount_cents=amount_cents,
                    source_type="manual",
                    reference=reference,
                    notes=description,
                    movement_date=movement_date,
                    user_id=user_id,
                )
        except (BankAccountError, SafeBoxError) as e:
            raise TreasuryError(str(e))

        append_event(
            org_id=org_id,
            event_type=f"treasury.manual_{movement_type}",
            entity_type=account_type,
            entity_id=account_id,
            actor_user_id=user_id,
            payload={"movement_id": movement.id, "amount_cents": amount_cents},
        )
        return movement

    return run_with_retry(_op)


def _load_manual_movement(org_id: int, account_type: str, movement_id: int):
    """Lock a movement of this organization; refuses anything not booked by hand."""
    _check_account_type(account_type, MANUAL_ACCOUNT_TYPES)
    if account_type == ACCOUNT_BANK:
        movement = lock_for_update(
            db.session.query(BankAccountMovement)
            .join(BankAccount, BankAccount.id == BankAccountMovement.bank_account_id)
            .filter(BankAccountMovement.id == movement_id, BankAccount.org_id == org_id)
        ).first()
    else:
        movement = lock_for_update(
            db.session.query(SafeBoxMovement)
            .join(SafeBox, SafeBox.id == SafeBoxMovement.safe_box_id)
            .filter(SafeBoxMovement.id == movement_id, SafeBox.org_id == org_id)
        ).first()
    if not movement:
        raise TreasuryNotFound(f"Movement {movement_id} not found")
    if movement.source_type != "manual":
        raise TreasuryError("Only manual movements can be edited or deleted")
    return movement


def _check_safe_box_not_negative(box: SafeBox) -> None:
    flag_modified(box, "status")
    db.session.flush()
    balance = get_balance(box)
    if balance < 0:
        raise TreasuryError(f"Safe box {box.name} would end with a negative balance ({balance})")


def update_manual_movement(*, org_id: int, user_id: int | None, account_type: str, movement_id: int,
                           **fields):
    for key in fields:
        if key not in MANUAL_FIELDS:
            raise TreasuryError(f"Field not allowed: {key}")
    if "movement_type" in fields and fields["movement_type"] not in MANUAL_MOVEMENT_TYPES:
        raise TreasuryError(f"Invalid movement type: {fields['movement_type']}")
    if "amount_cents" in fields:
        amount = fields["amount_cents"]
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise TreasuryError("Amount must be a positive integer")

    def _op():
        movement = _load_manual_movement(org_id, account_type, movement_id)
        for key, value in fields.items():
            if key == "movement_date" and value is None:
                continue
            if key == "description" and account_type == ACCOUNT_SAFE_BOX:
                movement.notes = value
            else:
                setattr(movement, key, value)
        if account_type == ACCOUNT_SAFE_BOX:
            _check_safe_box_not_negative(movement.safe_box)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="treasury.manual_movement_updated",
            entity_type=account_type,
            entity_id=movement.safe_box_id if account_type == ACCOUNT_SAFE_BOX else movement.bank_account_id,
            actor_user_id=user_id,
            payload={"movement_id": movement.id, "fields": sorted(fields)},
        )
        return movement

    return run_with_retry(_op)


def delete_manual_movement(*, org_id: int, user_id: int | None, account_type: str, movement_id: int) -> None:
    def _op():
        movement = _load_manual_movement(org_id, account_type, movement_id)
        account_id = movement.safe_box_id if account_type == ACCOUNT_SAFE_BOX else movement.bank_account_id
        box = movement.safe_box if account_type == ACCOUNT_SAFE_BOX else None

        db.session.delete(movement)
        db.session.flush()
        if box is not None:
            _check_safe_box_not_negative(box)

        append_event(
            org_id=org_id,
            event_type="treasury.manual_movement_deleted",
            entity_type=account_type,
            entity_id=account_id,
            actor_user_id=user_id,
            payload={"movement_id": movement_id},
        )

    return run_with_retry(_op)
