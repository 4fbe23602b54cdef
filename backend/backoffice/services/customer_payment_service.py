# Overview: Customer collections and refunds allocated to sales vouchers.

"""
Customer payments.

A payment carries allocations (which vouchers it settles) and method lines
(how the money moved). Invariants:
- sum(method lines) == sum(allocations) == total_amount_cents
- an allocation never exceeds the voucher's open balance
- collections settle sales/invoices; refunds settle credit notes
- cancelling reverts every allocation (clamped at zero) and drops the
  method lines out of treasury balances
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Customer,
    CustomerPayment,
    CustomerPaymentAllocation,
    CustomerPaymentMethod,
    Sale,
)
from ..time_utils import utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .payment_method_service import resolve_tenders


KIND_COLLECTION = "collection"
KIND_REFUND = "refund"

PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_CANCELLED = "cancelled"


class CustomerPaymentError(Exception):
    """Raised when customer payment operations fail."""
    pass


class CustomerPaymentNotFound(CustomerPaymentError):
    pass


def refresh_sale_status(sale: Sale) -> None:
    """COMPLETED once fully paid (or settled, for credit notes), PENDING otherwise."""
    if sale.status == "CANCELLED":
        return
    sale.status = "COMPLETED" if sale.amount_paid_cents >= sale.total_cents else "PENDING"


def _lock_sale(sale_id: int, org_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, org_id=org_id)).first()
    if not sale:
        raise CustomerPaymentError(f"Sale {sale_id} not found")
    return sale


def _merge_allocations(allocations: list[dict]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for alloc in allocations:
        amount = alloc["amount_cents"]
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise CustomerPaymentError("Allocation amounts must be positive integers")
        merged[alloc["sale_id"]] = merged.get(alloc["sale_id"], 0) + amount
    return merged


def apply_customer_payment(
    *,
    org_id: int,
    user_id: int | None,
    customer_id: int | None,
    allocations: list[dict],
    methods: list[dict],
    payment_date: date | None = None,
    notes: str | None = None,
    kind: str = KIND_COLLECTION,
) -> CustomerPayment:
    """Create a payment inside the caller's transaction (no retry wrapper)."""
    if kind not in (KIND_COLLECTION, KIND_REFUND):
        raise CustomerPaymentError(f"Invalid payment kind: {kind}")
    if not allocations:
        raise CustomerPaymentError("At least one allocation is required")

    if customer_id is not None:
        customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
        if not customer:
            raise CustomerPaymentError(f"Customer {customer_id} not found")

    merged = _merge_allocations(allocations)
    tenders = resolve_tenders(org_id, methods, CustomerPaymentError)

    allocated_total = sum(merged.values())
    tendered_total = sum(t.amount_cents for t in tenders)
    if tendered_total != allocated_total:
        raise CustomerPaymentError(
            f"Payment methods total ({tendered_total}) must equal allocations total ({allocated_total})"
        )

    sales = []
    for sale_id in sorted(merged):
        sale = _lock_sale(sale_id, org_id)
        if sale.status == "CANCELLED":
            raise CustomerPaymentError(f"Sale {sale.sale_number} is cancelled")
        if kind == KIND_COLLECTION and sale.is_credit_note:
            raise CustomerPaymentError(f"{sale.sale_number} is a credit note; use a refund")
        if kind == KIND_REFUND and not sale.is_credit_note:
            raise CustomerPaymentError(f"Refunds can only settle credit notes ({sale.sale_number})")
        if customer_id is not None and sale.customer_id not in (None, customer_id):
            raise CustomerPaymentError(f"Sale {sale.sale_number} belongs to another customer")
        if merged[sale_id] > sale.balance_cents:
            raise CustomerPaymentError(
                f"Allocation for {sale.sale_number} ({merged[sale_id]}) exceeds its balance ({sale.balance_cents})"
            )
        sales.append(sale)

    payment = CustomerPayment(
        org_id=org_id,
        payment_number=next_document_number(
            org_id=org_id,
            document_type="CUSTOMER_REFUND" if kind == KIND_REFUND else "CUSTOMER_PAYMENT",
            prefix="DEV" if kind == KIND_REFUND else "REC",
            pad=6,
        ),
        customer_id=customer_id,
        payment_date=payment_date or utcnow().date(),
        kind=kind,
        total_amount_cents=allocated_total,
        notes=notes,
        status=PAYMENT_STATUS_COMPLETED,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(payment)
    db.session.flush()

    for sale in sales:
        amount = merged[sale.id]
        db.session.add(CustomerPaymentAllocation(payment_id=payment.id, sale_id=sale.id, amount_cents=amount))
        sale.amount_paid_cents += amount
        refresh_sale_status(sale)

    for tender in tenders:
        db.session.add(CustomerPaymentMethod(
            payment_id=payment.id,
            payment_method_id=tender.payment_method_id,
            method_name=tender.method_name,
            method_type=tender.method_type,
            amount_cents=tender.amount_cents,
            fee_cents=tender.fee_cents,
            reference=tender.reference,
            cash_register_id=tender.cash_register_id,
            shift_id=tender.shift_id,
            bank_account_id=tender.bank_account_id,
        ))

    db.session.flush()
    db.session.refresh(payment)

    append_event(
        org_id=org_id,
        event_type=f"customer_payment.{kind}",
        entity_type="customer_payment",
        entity_id=payment.id,
        actor_user_id=user_id,
        payload={"total_amount_cents": allocated_total, "sales": sorted(merged)},
    )
    return payment


def create_customer_payment(**kwargs) -> CustomerPayment:
    """
    Record a customer payment.

    Keyword args match apply_customer_payment:
        allocations: [{"sale_id": int, "amount_cents": int}, ...]
        methods: [{"payment_method_id": int, "amount_cents": int,
                   "reference"?, "cash_register_id"?, "bank_account_id"?}, ...]
    """
    return run_with_retry(lambda: apply_customer_payment(**kwargs))


def cancel_customer_payment(*, payment_id: int, org_id: int, user_id: int,
                            reason: str | None = None) -> CustomerPayment:
    def _op():
        payment = lock_for_update(
            db.session.query(CustomerPayment).filter_by(id=payment_id, org_id=org_id)
        ).first()
        if not payment:
            raise CustomerPaymentNotFound(f"Payment {payment_id} not found")
        if payment.status == PAYMENT_STATUS_CANCELLED:
            raise CustomerPaymentError("Payment is already cancelled")

        for alloc in payment.allocations:
            sale = _lock_sale(alloc.sale_id, org_id)
            sale.amount_paid_cents = max(0, sale.amount_paid_cents - alloc.amount_cents)
            refresh_sale_status(sale)

        payment.status = PAYMENT_STATUS_CANCELLED
        payment.cancelled_at = utcnow()
        payment.cancelled_by_user_id = user_id
        if reason:
            payment.notes = f"{payment.notes}\n{reason}" if payment.notes else reason
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="customer_payment.cancelled",
            entity_type="customer_payment",
            entity_id=payment.id,
            actor_user_id=user_id,
            note=reason,
        )
        return payment

    return run_with_retry(_op)


def update_payment_notes(payment_id: int, org_id: int, notes: str | None) -> CustomerPayment:
    payment = get_customer_payment(payment_id, org_id)
    payment.notes = notes
    db.session.flush()
    return payment


def get_customer_payment(payment_id: int, org_id: int) -> CustomerPayment:
    payment = db.session.query(CustomerPayment).filter_by(id=payment_id, org_id=org_id).first()
    if not payment:
        raise CustomerPaymentNotFound(f"Payment {payment_id} not found")
    return payment


def get_pending_sales(org_id: int, customer_id: int) -> list[Sale]:
    """Open (PENDING) sales of a customer with a balance, oldest first."""
    return (
        db.session.query(Sale)
        .filter(
            Sale.org_id == org_id,
            Sale.customer_id == customer_id,
            Sale.status == "PENDING",
            Sale.voucher_type != "CREDIT_NOTE",
            Sale.total_cents > Sale.amount_paid_cents,
        )
        .order_by(Sale.sale_date, Sale.id)
        .all()
    )


def get_payments_by_sale(sale_id: int, org_id: int) -> list[dict]:
    """Allocations of non-cancelled payments to a sale, with their method lines and fees."""
    rows = (
        db.session.query(CustomerPaymentAllocation, CustomerPayment)
        .join(CustomerPayment, CustomerPayment.id == CustomerPaymentAllocation.payment_id)
        .filter(
            CustomerPaymentAllocation.sale_id == sale_id,
            CustomerPayment.org_id == org_id,
            CustomerPayment.status == PAYMENT_STATUS_COMPLETED,
        )
        .order_by(CustomerPayment.payment_date, CustomerPayment.id)
        .all()
    )
    return [
        {
            "payment_id": payment.id,
            "payment_number": payment.payment_number,
            "payment_date": payment.payment_date.isoformat(),
            "kind": payment.kind,
            "allocated_cents": alloc.amount_cents,
            "methods": [m.to_dict() for m in payment.methods],
            "fees_cents": sum(m.fee_cents for m in payment.methods),
        }
        for alloc, payment in rows
    ]


def list_customer_payments(
    org_id: int,
    *,
    search: str | None = None,
    status: str | None = None,
    kind: str | None = None,
    customer_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(CustomerPayment).filter(CustomerPayment.org_id == org_id)
    if status:
        q = q.filter(CustomerPayment.status == status)
    if kind:
        q = q.filter(CustomerPayment.kind == kind)
    if customer_id is not None:
        q = q.filter(CustomerPayment.customer_id == customer_id)
    if date_from:
        q = q.filter(CustomerPayment.payment_date >= date_from)
    if date_to:
        q = q.filter(CustomerPayment.payment_date <= date_to)
    if search:
        like = f"%{search}%"
        q = q.outerjoin(Customer, Customer.id == CustomerPayment.customer_id).filter(
            or_(CustomerPayment.payment_number.ilike(like), Customer.name.ilike(like))
        )
    return q.order_by(CustomerPayment.payment_date.desc(), CustomerPayment.id.desc())
