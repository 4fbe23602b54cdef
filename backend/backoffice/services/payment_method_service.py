# Overview: Payment method catalogue and tender routing into treasury accounts.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import CustomerPaymentMethod, PaymentMethod, SupplierPaymentMethod
from .bank_account_service import BankAccountError, require_active_bank_account
from .register_service import RegisterError, ShiftError, require_open_shift


METHOD_CASH = "CASH"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_DEBIT_CARD = "DEBIT_CARD"
METHOD_CREDIT_CARD = "CREDIT_CARD"
METHOD_CHECK = "CHECK"
METHOD_OTHER = "OTHER"

METHOD_TYPES = (
    METHOD_CASH,
    METHOD_BANK_TRANSFER,
    METHOD_DEBIT_CARD,
    METHOD_CREDIT_CARD,
    METHOD_CHECK,
    METHOD_OTHER,
)

# Tenders that settle into a bank account; the first two must name one.
BANK_SETTLED = (METHOD_BANK_TRANSFER, METHOD_CHECK, METHOD_DEBIT_CARD, METHOD_CREDIT_CARD)
BANK_REQUIRED = (METHOD_BANK_TRANSFER, METHOD_CHECK)

DEFAULT_METHODS = [
    ("Efectivo", METHOD_CASH),
    ("Transferencia", METHOD_BANK_TRANSFER),
    ("Tarjeta de debito", METHOD_DEBIT_CARD),
    ("Tarjeta de credito", METHOD_CREDIT_CARD),
]


class PaymentMethodError(Exception):
    """Raised when payment method operations fail."""
    pass


class PaymentMethodNotFound(PaymentMethodError):
    pass


@dataclass
class ResolvedTender:
    """A validated payment line, ready to be stored on a payment."""
    payment_method_id: int
    method_name: str
    method_type: str
    amount_cents: int
    fee_cents: int
    reference: str | None
    cash_register_id: int | None
    shift_id: int | None
    bank_account_id: int | None


def calculate_fee(method: PaymentMethod, amount_cents: int) -> int:
    """Percentage fee (basis points, rounded half-up) plus fixed fee."""
    pct = (amount_cents * method.fee_percentage_bps + 5000) // 10000
    return pct + method.fee_fixed_cents


def get_payment_method(method_id: int, org_id: int) -> PaymentMethod:
    method = db.session.query(PaymentMethod).filter_by(id=method_id, org_id=org_id).first()
    if not method:
        raise PaymentMethodNotFound(f"Payment method {method_id} not found")
    return method


def _validate_fields(org_id: int, fields: dict) -> None:
    if "method_type" in fields and fields["method_type"] not in METHOD_TYPES:
        raise PaymentMethodError(f"Invalid method type: {fields['method_type']}")
    if fields.get("fee_percentage_bps", 0) < 0 or fields.get("fee_fixed_cents", 0) < 0:
        raise PaymentMethodError("Fees cannot be negative")
    if fields.get("fee_percentage_bps", 0) > 10000:
        raise PaymentMethodError("Fee percentage cannot exceed 100%")
    if fields.get("bank_account_id") is not None:
        try:
            require_active_bank_account(fields["bank_account_id"], org_id)
        except BankAccountError as e:
            raise PaymentMethodError(str(e))


def create_payment_method(*, org_id: int, name: str, method_type: str, **fields) -> PaymentMethod:
    name = (name or "").strip()
    if not name:
        raise PaymentMethodError("Name is required")
    if db.session.query(PaymentMethod.id).filter_by(org_id=org_id, name=name).first():
        raise PaymentMethodError(f"A payment method named '{name}' already exists")
    _validate_fields(org_id, {"method_type": method_type, **fields})

    method = PaymentMethod(org_id=org_id, name=name, method_type=method_type)
    for key in ("fee_percentage_bps", "fee_fixed_cents", "requires_reference", "bank_account_id"):
        if key in fields:
            setattr(method, key, fields[key])
    db.session.add(method)
    db.session.flush()
    return method


def update_payment_method(method_id: int, org_id: int, **fields) -> PaymentMethod:
    method = get_payment_method(method_id, org_id)
    allowed = {"name", "method_type", "fee_percentage_bps", "fee_fixed_cents",
               "requires_reference", "bank_account_id", "is_active"}
    unknown = set(fields) - allowed
    if unknown:
        raise PaymentMethodError(f"Field not allowed: {', '.join(sorted(unknown))}")
    _validate_fields(org_id, fields)

    if "name" in fields:
        name = (fields["name"] or "").strip()
        clash = db.session.query(PaymentMethod.id).filter(
            PaymentMethod.org_id == org_id, PaymentMethod.name == name, PaymentMethod.id != method.id
        ).first()
        if not name or clash:
            raise PaymentMethodError("Name is empty or already taken")
        fields["name"] = name

    for key, value in fields.items():
        setattr(method, key, value)
    db.session.flush()
    return method


def delete_payment_method(method_id: int, org_id: int) -> bool:
    """
    Delete a method. Methods already used by payments are deactivated instead.

    Returns True when the row was removed, False when it was deactivated.
    """
    method = get_payment_method(method_id, org_id)
    used = (
        db.session.query(CustomerPaymentMethod.id).filter_by(payment_method_id=method.id).first()
        or db.session.query(SupplierPaymentMethod.id).filter_by(payment_method_id=method.id).first()
    )
    if used:
        method.is_active = False
        db.session.flush()
        return False
    db.session.delete(method)
    db.session.flush()
    return True


def list_payment_methods(org_id: int, *, active_only: bool = True,
                         method_type: str | None = None) -> list[PaymentMethod]:
    q = db.session.query(PaymentMethod).filter(PaymentMethod.org_id == org_id)
    if active_only:
        q = q.filter(PaymentMethod.is_active.is_(True))
    if method_type:
        q = q.filter(PaymentMethod.method_type == method_type)
    return q.order_by(PaymentMethod.name).all()


def create_default_payment_methods(org_id: int) -> list[PaymentMethod]:
    methods = []
    for name, method_type in DEFAULT_METHODS:
        method = db.session.query(PaymentMethod).filter_by(org_id=org_id, name=name).first()
        if not method:
            method = create_payment_method(org_id=org_id, name=name, method_type=method_type)
        methods.append(method)
    return methods


def resolve_tenders(org_id: int, lines: list[dict], error_cls=PaymentMethodError) -> list[ResolvedTender]:
    """
    Validate payment lines and route each to its treasury account.

    lines: [{"payment_method_id", "amount_cents", "reference"?,
             "cash_register_id"?, "bank_account_id"?}, ...]

    CASH lines need a cash register with an open shift (the shift row is
    locked); bank-settled lines take the explicit bank account or the
    method's default one.
    """
    if not lines:
        raise error_cls("At least one payment method is required")

    resolved = []
    for line in lines:
        amount = line["amount_cents"]
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise error_cls("Payment method amounts must be positive integers")

        try:
            method = get_payment_method(line["payment_method_id"], org_id)
        except PaymentMethodError as e:
            raise error_cls(str(e))
        if not method.is_active:
            raise error_cls(f"Payment method {method.name} is inactive")

        reference = (line.get("reference") or "").strip() or None
        if method.requires_reference and not reference:
            raise error_cls(f"Payment method {method.name} requires a reference")

        cash_register_id = None
        shift_id = None
        bank_account_id = None

        try:
            if method.method_type == METHOD_CASH:
                register_id = line.get("cash_register_id")
                if register_id is None:
                    raise error_cls(f"Cash payments need a cash register ({method.name})")
                shift = require_open_shift(register_id, org_id)
                cash_register_id = register_id
                shift_id = shift.id
            elif method.method_type in BANK_SETTLED:
                bank_account_id = line.get("bank_account_id") or method.bank_account_id
                if bank_account_id is None and method.method_type in BANK_REQUIRED:
                    raise error_cls(f"Payment method {method.name} needs a bank account")
                if bank_account_id is not None:
                    require_active_bank_account(bank_account_id, org_id)
        except (ShiftError, RegisterError, BankAccountError) as e:
            raise error_cls(str(e))

        resolved.append(ResolvedTender(
            payment_method_id=method.id,
            method_name=method.name,
            method_type=method.method_type,
            amount_cents=amount,
            fee_cents=calculate_fee(method, amount),
            reference=reference,
            cash_register_id=cash_register_id,
            shift_id=shift_id,
            bank_account_id=bank_account_id,
        ))
    return resolved
