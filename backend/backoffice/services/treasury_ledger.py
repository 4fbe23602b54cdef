# Overview: Single fold over every source that moves money in a treasury account.

"""
Treasury ledger.

Every account type (bank account, safe box, cash register) is expressed as a
list of signed LedgerEntry rows gathered from all the tables that move its
money. Balances and detail views are both derived from those rows, so there
is exactly one place that knows what counts toward an account.

Bank account  = sum(own movements, including the initial deposit)
                + completed customer payment lines routed to it (refunds negative)
                - completed supplier payment lines routed to it
Safe box      = sum(own movements, including the initial deposit)
Cash register = running cash of the open shift, or left_in_cash of the last
                closed shift when no shift is open (0 if it never closed one).
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime

from ..extensions import db
from ..models import (
    BankAccount,
    BankAccountMovement,
    CashRegister,
    CustomerPayment,
    CustomerPaymentMethod,
    SafeBox,
    SafeBoxMovement,
    Shift,
    ShiftMovement,
    SupplierPayment,
    SupplierPaymentMethod,
)
from ..time_utils import start_of_day, to_utc_z
from .shift_summary import compute_shift_summary


ACCOUNT_BANK = "bank_account"
ACCOUNT_SAFE_BOX = "safe_box"
ACCOUNT_CASH_REGISTER = "cash_register"
ACCOUNT_TYPES = (ACCOUNT_BANK, ACCOUNT_SAFE_BOX, ACCOUNT_CASH_REGISTER)

CATEGORY_CUSTOMER_COLLECTION = "customer_collection"
CATEGORY_SUPPLIER_PAYMENT = "supplier_payment"
CATEGORY_MANUAL = "manual"
CATEGORY_TRANSFER = "transfer"
CATEGORY_SAFE_BOX_DEPOSIT = "safe_box_deposit"
CATEGORY_CASH_REGISTER = "cash_register"
CATEGORY_INITIAL = "initial"
CATEGORIES = (
    CATEGORY_CUSTOMER_COLLECTION,
    CATEGORY_SUPPLIER_PAYMENT,
    CATEGORY_MANUAL,
    CATEGORY_TRANSFER,
    CATEGORY_SAFE_BOX_DEPOSIT,
    CATEGORY_CASH_REGISTER,
    CATEGORY_INITIAL,
)

_MOVEMENT_CATEGORY = {
    "initial": CATEGORY_INITIAL,
    "manual": CATEGORY_MANUAL,
    "transfer": CATEGORY_TRANSFER,
    "shift_deposit": CATEGORY_SAFE_BOX_DEPOSIT,
    "shift_close": CATEGORY_SAFE_BOX_DEPOSIT,
    "safe_box_deposit": CATEGORY_SAFE_BOX_DEPOSIT,
}

_SHIFT_MOVEMENT_CATEGORY = {
    "manual": CATEGORY_CASH_REGISTER,
    "transfer": CATEGORY_TRANSFER,
    "safe_box_deposit": CATEGORY_SAFE_BOX_DEPOSIT,
}


@dataclass(frozen=True)
class LedgerEntry:
    account_type: str
    account_id: int
    account_name: str
    occurred_at: datetime
    amount_cents: int
    category: str
    entry_type: str
    source_type: str
    source_id: int
    reference: str | None = None
    description: str | None = None
    editable: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["occurred_at"] = to_utc_z(self.occurred_at)
        return data


def _payment_datetime(payment) -> datetime:
    return start_of_day(payment.payment_date) if payment.payment_date else payment.created_at


def bank_account_entries(account: BankAccount) -> list[LedgerEntry]:
    name = account.display_name
    entries = [
        LedgerEntry(
            account_type=ACCOUNT_BANK,
            account_id=account.id,
            account_name=name,
            occurred_at=m.movement_date,
            amount_cents=m.signed_amount_cents,
            category=_MOVEMENT_CATEGORY.get(m.source_type, CATEGORY_MANUAL),
            entry_type=m.movement_type,
            source_type="bank_account_movement",
            source_id=m.id,
            reference=m.reference,
            description=m.description,
            editable=m.source_type == "manual",
        )
        for m in db.session.query(BankAccountMovement).filter_by(bank_account_id=account.id).all()
    ]

    customer_lines = (
        db.session.query(CustomerPaymentMethod, CustomerPayment)
        .join(CustomerPayment, CustomerPayment.id == CustomerPaymentMethod.payment_id)
        .filter(CustomerPaymentMethod.bank_account_id == account.id, CustomerPayment.status == "completed")
        .all()
    )
    for line, payment in customer_lines:
        entries.append(LedgerEntry(
            account_type=ACCOUNT_BANK,
            account_id=account.id,
            account_name=name,
            occurred_at=_payment_datetime(payment),
            amount_cents=payment.sign * line.amount_cents,
            category=CATEGORY_CUSTOMER_COLLECTION,
            entry_type=payment.kind,
            source_type="customer_payment",
            source_id=payment.id,
            reference=line.reference or payment.payment_number,
            description=f"{payment.payment_number} - {line.method_name}",
        ))

    supplier_lines = (
        db.session.query(SupplierPaymentMethod, SupplierPayment)
        .join(SupplierPayment, SupplierPayment.id == SupplierPaymentMethod.payment_id)
        .filter(SupplierPaymentMethod.bank_account_id == account.id, SupplierPayment.status == "completed")
        .all()
    )
    for line, payment in supplier_lines:
        entries.append(LedgerEntry(
            account_type=ACCOUNT_BANK,
            account_id=account.id,
            account_name=name,
            occurred_at=_payment_datetime(payment),
            amount_cents=-line.amount_cents,
            category=CATEGORY_SUPPLIER_PAYMENT,
            entry_type="payment",
            source_type="supplier_payment",
            source_id=payment.id,
            reference=line.reference or payment.payment_number,
            description=f"{payment.payment_number} - {line.method_name}",
        ))
    return entries


def safe_box_entries(box: SafeBox) -> list[LedgerEntry]:
    return [
        LedgerEntry(
            account_type=ACCOUNT_SAFE_BOX,
            account_id=box.id,
            account_name=box.name,
            occurred_at=m.movement_date,
            amount_cents=m.signed_amount_cents,
            category=_MOVEMENT_CATEGORY.get(m.source_type, CATEGORY_MANUAL),
            entry_type=m.movement_type,
            source_type="safe_box_movement",
            source_id=m.id,
            reference=m.reference,
            description=m.notes,
            editable=m.source_type == "manual",
        )
        for m in db.session.query(SafeBoxMovement).filter_by(safe_box_id=box.id).all()
    ]


def cash_register_entries(register: CashRegister, *, shift_id: int | None = None) -> list[LedgerEntry]:
    """Cash movements of a register, optionally limited to one shift."""
    shift_filter = [Shift.cash_register_id == register.id]
    if shift_id is not None:
        shift_filter.append(Shift.id == shift_id)

    entries = []
    movements = (
        db.session.query(ShiftMovement)
        .join(Shift, Shift.id == ShiftMovement.shift_id)
        .filter(*shift_filter)
        .all()
    )
    for m in movements:
        entries.append(LedgerEntry(
            account_type=ACCOUNT_CASH_REGISTER,
            account_id=register.id,
            account_name=register.name,
            occurred_at=m.occurred_at,
            amount_cents=m.signed_amount_cents,
            category=_SHIFT_MOVEMENT_CATEGORY.get(m.source_type, CATEGORY_CASH_REGISTER),
            entry_type=m.movement_type,
            source_type="shift_movement",
            source_id=m.id,
            reference=m.reference,
            description=m.notes,
        ))

    customer_q = (
        db.session.query(CustomerPaymentMethod, CustomerPayment)
        .join(CustomerPayment, CustomerPayment.id == CustomerPaymentMethod.payment_id)
        .filter(
            CustomerPaymentMethod.cash_register_id == register.id,
            CustomerPaymentMethod.method_type == "CASH",
            CustomerPayment.status == "completed",
        )
    )
    if shift_id is not None:
        customer_q = customer_q.filter(CustomerPaymentMethod.shift_id == shift_id)
    for line, payment in customer_q.all():
        entries.append(LedgerEntry(
            account_type=ACCOUNT_CASH_REGISTER,
            account_id=register.id,
            account_name=register.name,
            occurred_at=payment.created_at,
            amount_cents=payment.sign * line.amount_cents,
            category=CATEGORY_CUSTOMER_COLLECTION,
            entry_type=payment.kind,
            source_type="customer_payment",
            source_id=payment.id,
            reference=payment.payment_number,
            description=line.method_name,
        ))

    supplier_q = (
        db.session.query(SupplierPaymentMethod, SupplierPayment)
        .join(SupplierPayment, SupplierPayment.id == SupplierPaymentMethod.payment_id)
        .filter(
            SupplierPaymentMethod.cash_register_id == register.id,
            SupplierPaymentMethod.method_type == "CASH",
            SupplierPayment.status == "completed",
        )
    )
    if shift_id is not None:
        supplier_q = supplier_q.filter(SupplierPaymentMethod.shift_id == shift_id)
    for line, payment in supplier_q.all():
        entries.append(LedgerEntry(
            account_type=ACCOUNT_CASH_REGISTER,
            account_id=register.id,
            account_name=register.name,
            occurred_at=payment.created_at,
            amount_cents=-line.amount_cents,
            category=CATEGORY_SUPPLIER_PAYMENT,
            entry_type="payment",
            source_type="supplier_payment",
            source_id=payment.id,
            reference=payment.payment_number,
            description=line.method_name,
        ))
    return entries


def entries_for(account_type: str, account) -> list[LedgerEntry]:
    if account_type == ACCOUNT_BANK:
        return bank_account_entries(account)
    if account_type == ACCOUNT_SAFE_BOX:
        return safe_box_entries(account)
    if account_type == ACCOUNT_CASH_REGISTER:
        return cash_register_entries(account)
    raise ValueError(f"Unknown account type: {account_type}")


def fold(entries: list[LedgerEntry], opening_cents: int = 0) -> int:
    return opening_cents + sum(e.amount_cents for e in entries)


def open_shift_for(register_id: int) -> Shift | None:
    return db.session.query(Shift).filter_by(cash_register_id=register_id, status="open").first()


def last_closed_shift_for(register_id: int) -> Shift | None:
    return (
        db.session.query(Shift)
        .filter_by(cash_register_id=register_id, status="closed")
        .order_by(Shift.closed_at.desc(), Shift.id.desc())
        .first()
    )


def cash_register_balance(register: CashRegister) -> int:
    shift = open_shift_for(register.id)
    if shift is not None:
        return compute_shift_summary(shift)["current_cash_amount_cents"]
    last = last_closed_shift_for(register.id)
    if last is None:
        return 0
    return last.left_in_cash_cents or 0


def account_balance(account_type: str, account) -> int:
    if account_type == ACCOUNT_CASH_REGISTER:
        return cash_register_balance(account)
    return fold(entries_for(account_type, account))
