# Overview: Bank accounts and their own movement rows.

from __future__ import annotations

from datetime import date, datetime

from ..extensions import db
from ..models import BankAccount, BankAccountMovement, CustomerPaymentMethod, PaymentMethod, SupplierPaymentMethod
from ..time_utils import start_of_day, utcnow
from .audit_service import append_event


BANK_MOVEMENT_TYPES = ("deposit", "withdrawal", "transfer_in", "transfer_out")


class BankAccountError(Exception):
    """Raised when bank account operations fail."""
    pass


class BankAccountNotFound(BankAccountError):
    pass


def get_bank_account(account_id: int, org_id: int) -> BankAccount:
    account = db.session.query(BankAccount).filter_by(id=account_id, org_id=org_id).first()
    if not account:
        raise BankAccountNotFound(f"Bank account {account_id} not found")
    return account


def require_active_bank_account(account_id: int, org_id: int) -> BankAccount:
    account = get_bank_account(account_id, org_id)
    if account.status != "active":
        raise BankAccountError(f"Bank account {account.display_name} is archived")
    return account


def record_movement(
    account: BankAccount,
    *,
    movement_type: str,
    amount_cents: int,
    source_type: str = "manual",
    reference: str | None = None,
    description: str | None = None,
    movement_date: datetime | None = None,
    user_id: int | None = None,
) -> BankAccountMovement:
    if movement_type not in BANK_MOVEMENT_TYPES:
        raise BankAccountError(f"Invalid movement type: {movement_type}")
    if amount_cents <= 0:
        raise BankAccountError("Amount must be positive")

    movement = BankAccountMovement(
        bank_account_id=account.id,
        movement_type=movement_type,
        amount_cents=amount_cents,
        source_type=source_type,
        reference=reference,
        description=description,
        movement_date=movement_date or utcnow(),
        performed_by_user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _initial_movement(account: BankAccount) -> BankAccountMovement | None:
    return db.session.query(BankAccountMovement).filter_by(
        bank_account_id=account.id, source_type="initial"
    ).first()


def create_bank_account(
    *,
    org_id: int,
    bank_name: str,
    account_name: str,
    account_number: str | None = None,
    currency: str = "ARS",
    initial_balance_cents: int = 0,
    balance_date: date | None = None,
    uses_checkbook: bool = False,
    user_id: int | None = None,
) -> BankAccount:
    """Create an account; a non-zero initial balance is booked as an 'initial' deposit."""
    if not (bank_name or "").strip() or not (account_name or "").strip():
        raise BankAccountError("bank_name and account_name are required")
    if initial_balance_cents < 0:
        raise BankAccountError("Initial balance cannot be negative")

    account = BankAccount(
        org_id=org_id,
        bank_name=bank_name.strip(),
        account_name=account_name.strip(),
        account_number=account_number,
        currency=currency,
        initial_balance_cents=initial_balance_cents,
        balance_date=balance_date,
        uses_checkbook=uses_checkbook,
    )
    db.session.add(account)
    db.session.flush()

    if initial_balance_cents > 0:
        record_movement(
            account,
            movement_type="deposit",
            amount_cents=initial_balance_cents,
            source_type="initial",
            description="Saldo inicial",
            movement_date=start_of_day(balance_date) if balance_date else None,
            user_id=user_id,
        )

    append_event(
        org_id=org_id,
        event_type="bank_account.created",
        entity_type="bank_account",
        entity_id=account.id,
        actor_user_id=user_id,
    )
    return account


def update_bank_account(account_id: int, org_id: int, **fields) -> BankAccount:
    """
    Update descriptive fields. Changing initial_balance_cents rewrites the
    'initial' movement so the ledger stays consistent.
    """
    account = get_bank_account(account_id, org_id)
    allowed = {"bank_name", "account_name", "account_number", "currency", "uses_checkbook", "balance_date"}

    for key, value in fields.items():
        if key == "initial_balance_cents":
            continue
        if key not in allowed:
            raise BankAccountError(f"Field not allowed: {key}")
        setattr(account, key, value)

    if "initial_balance_cents" in fields:
        new_initial = fields["initial_balance_cents"]
        if new_initial < 0:
            raise BankAccountError("Initial balance cannot be negative")
        initial = _initial_movement(account)
        if initial and new_initial == 0:
            db.session.delete(initial)
        elif initial:
            initial.amount_cents = new_initial
        elif new_initial > 0:
            record_movement(
                account,
                movement_type="deposit",
                amount_cents=new_initial,
                source_type="initial",
                description="Saldo inicial",
                movement_date=start_of_day(account.balance_date) if account.balance_date else None,
            )
        account.initial_balance_cents = new_initial

    db.session.flush()
    return account


def set_bank_account_status(account_id: int, org_id: int, status: str, *, user_id: int | None = None) -> BankAccount:
    if status not in ("active", "archived"):
        raise BankAccountError(f"Invalid status: {status}")
    account = get_bank_account(account_id, org_id)
    if account.status == status:
        raise BankAccountError(f"Bank account is already {status}")
    account.status = status
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="bank_account.archived" if status == "archived" else "bank_account.restored",
        entity_type="bank_account",
        entity_id=account.id,
        actor_user_id=user_id,
    )
    return account


def delete_bank_account(account_id: int, org_id: int, *, user_id: int | None = None) -> None:
    """Only accounts without activity beyond the initial deposit can be deleted."""
    account = get_bank_account(account_id, org_id)

    other_movements = db.session.query(BankAccountMovement.id).filter(
        BankAccountMovement.bank_account_id == account.id,
        BankAccountMovement.source_type != "initial",
    ).first()
    used_by_payments = (
        db.session.query(CustomerPaymentMethod.id).filter_by(bank_account_id=account.id).first()
        or db.session.query(SupplierPaymentMethod.id).filter_by(bank_account_id=account.id).first()
    )
    linked_methods = db.session.query(PaymentMethod.id).filter_by(bank_account_id=account.id).first()

    if other_movements or used_by_payments:
        raise BankAccountError("Bank account has movements; archive it instead")
    if linked_methods:
        raise BankAccountError("Bank account is linked to a payment method")

    initial = _initial_movement(account)
    if initial:
        db.session.delete(initial)

    append_event(
        org_id=org_id,
        event_type="bank_account.deleted",
        entity_type="bank_account",
        entity_id=account.id,
        actor_user_id=user_id,
    )
    db.session.delete(account)
    db.session.flush()


def list_bank_accounts(org_id: int, *, status: str | None = "active") -> list[BankAccount]:
    q = db.session.query(BankAccount).filter(BankAccount.org_id == org_id)
    if status:
        q = q.filter(BankAccount.status == status)
    return q.order_by(BankAccount.bank_name, BankAccount.account_name).all()
