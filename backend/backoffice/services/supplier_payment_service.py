# Overview: Payments to suppliers, allocated to purchases or kept on account.

"""
Supplier payments.

total_amount_cents = sum(allocations) + on_account_amount_cents, and the
method lines must add up to that total. Allocations raise the purchase's
amount_paid; the on-account part becomes supplier credit. CASH lines take
money out of a register's open shift, bank lines out of a bank account.
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Purchase,
    Shift,
    Supplier,
    SupplierPayment,
    SupplierPaymentAllocation,
    SupplierPaymentMethod,
)
from ..time_utils import utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .payment_method_service import METHOD_CASH, resolve_tenders
from .purchase_service import PURCHASE_STATUS_COMPLETED, refresh_payment_status
from .shift_summary import compute_shift_summary


PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_CANCELLED = "cancelled"


class SupplierPaymentError(Exception):
    """Raised when supplier payment operations fail."""
    pass


class SupplierPaymentNotFound(SupplierPaymentError):
    pass


def _lock_supplier(supplier_id: int, org_id: int) -> Supplier:
    supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id, org_id=org_id)).first()
    if not supplier:
        raise SupplierPaymentError(f"Supplier {supplier_id} not found")
    return supplier


def _lock_purchase(purchase_id: int, org_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id, org_id=org_id)).first()
    if not purchase:
        raise SupplierPaymentError(f"Purchase {purchase_id} not found")
    return purchase


def _check_cash_available(tenders) -> None:
    """Cash lines cannot take more than each drawer currently holds."""
    per_shift: dict[int, int] = {}
    for tender in tenders:
        if tender.method_type == METHOD_CASH:
            per_shift[tender.shift_id] = per_shift.get(tender.shift_id, 0) + tender.amount_cents
    for shift_id, amount in per_shift.items():
        shift = db.session.get(Shift, shift_id)
        available = compute_shift_summary(shift)["current_cash_amount_cents"]
        if amount > available:
            raise SupplierPaymentError(
                f"Not enough cash in drawer. Available: {available}, requested: {amount}"
            )


def create_supplier_payment(
    *,
    org_id: int,
    user_id: int | None,
    supplier_id: int,
    methods: list[dict],
    allocations: list[dict] | None = None,
    on_account_amount_cents: int = 0,
    payment_date: date | None = None,
    notes: str | None = None,
) -> SupplierPayment:
    """
    Pay a supplier.

    Args:
        allocations: [{"purchase_id": int, "amount_cents": int}, ...]
        methods: payment method lines (see resolve_tenders)
        on_account_amount_cents: part of the payment not tied to any purchase

    Raises:
        SupplierPaymentError
    """
    allocations = allocations or []
    if not isinstance(on_account_amount_cents, int) or on_account_amount_cents < 0:
        raise SupplierPaymentError("on_account_amount_cents must be a non-negative integer")

    merged: dict[int, int] = {}
    for alloc in allocations:
        amount = alloc["amount_cents"]
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise SupplierPaymentError("Allocation amounts must be positive integers")
        merged[alloc["purchase_id"]] = merged.get(alloc["purchase_id"], 0) + amount

    total = sum(merged.values()) + on_account_amount_cents
    if total <= 0:
        raise SupplierPaymentError("Payment total must be positive")

    def _op():
        supplier = _lock_supplier(supplier_id, org_id)
        tenders = resolve_tenders(org_id, methods, SupplierPaymentError)
        tendered = sum(t.amount_cents for t in tenders)
        if tendered != total:
            raise SupplierPaymentError(f"Payment methods total ({tendered}) must equal payment total ({total})")
        _check_cash_available(tenders)

        purchases = []
        for purchase_id in sorted(merged):
            purchase = _lock_purchase(purchase_id, org_id)
            if purchase.supplier_id != supplier.id:
                raise SupplierPaymentError(f"Purchase {purchase.purchase_number} belongs to another supplier")
            if purchase.status != PURCHASE_STATUS_COMPLETED:
                raise SupplierPaymentError(f"Purchase {purchase.purchase_number} is not completed")
            if merged[purchase_id] > purchase.balance_cents:
                raise SupplierPaymentError(
                    f"Allocation for {purchase.purchase_number} ({merged[purchase_id]}) "
                    f"exceeds its balance ({purchase.balance_cents})"
                )
            purchases.append(purchase)

        payment = SupplierPayment(
            org_id=org_id,
            payment_number=next_document_number(org_id=org_id, document_type="SUPPLIER_PAYMENT", prefix="OP", pad=6),
            supplier_id=supplier.id,
            payment_date=payment_date or utcnow().date(),
            total_amount_cents=total,
            on_account_amount_cents=on_account_amount_cents,
            notes=notes,
            status=PAYMENT_STATUS_COMPLETED,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        db.session.add(payment)
        db.session.flush()

        for purchase in purchases:
            amount = merged[purchase.id]
            db.session.add(SupplierPaymentAllocation(payment_id=payment.id, purchase_id=purchase.id, amount_cents=amount))
            purchase.amount_paid_cents += amount
            refresh_payment_status(purchase)

        for tender in tenders:
            db.session.add(SupplierPaymentMethod(
                payment_id=payment.id,
                payment_method_id=tender.payment_method_id,
                method_name=tender.method_name,
                method_type=tender.method_type,
                amount_cents=tender.amount_cents,
                reference=tender.reference,
                cash_register_id=tender.cash_register_id,
                shift_id=tender.shift_id,
                bank_account_id=tender.bank_account_id,
            ))

        if on_account_amount_cents:
            supplier.credit_balance_cents += on_account_amount_cents

        db.session.flush()
        db.session.refresh(payment)

        append_event(
            org_id=org_id,
            event_type="supplier_payment.created",
            entity_type="supplier_payment",
            entity_id=payment.id,
            actor_user_id=user_id,
            payload={"total_amount_cents": total, "on_account_amount_cents": on_account_amount_cents},
        )
        return payment

    return run_with_retry(_op)


def cancel_supplier_payment(*, payment_id: int, org_id: int, user_id: int | None,
                            reason: str | None = None) -> SupplierPayment:
    def _op():
        payment = lock_for_update(
            db.session.query(SupplierPayment).filter_by(id=payment_id, org_id=org_id)
        ).first()
        if not payment:
            raise SupplierPaymentNotFound(f"Supplier payment {payment_id} not found")
        if payment.status == PAYMENT_STATUS_CANCELLED:
            raise SupplierPaymentError("Payment is already cancelled")

        for alloc in payment.allocations:
            purchase = _lock_purchase(alloc.purchase_id, org_id)
            purchase.amount_paid_cents = max(0, purchase.amount_paid_cents - alloc.amount_cents)
            refresh_payment_status(purchase)

        if payment.on_account_amount_cents:
            supplier = _lock_supplier(payment.supplier_id, org_id)
            supplier.credit_balance_cents = max(0, supplier.credit_balance_cents - payment.on_account_amount_cents)

        payment.status = PAYMENT_STATUS_CANCELLED
        payment.cancelled_at = utcnow()
        payment.cancelled_by_user_id = user_id
        if reason:
            payment.notes = f"{payment.notes}\n{reason}" if payment.notes else reason
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="supplier_payment.cancelled",
            entity_type="supplier_payment",
            entity_id=payment.id,
            actor_user_id=user_id,
            note=reason,
        )
        return payment

    return run_with_retry(_op)


def get_supplier_payment(payment_id: int, org_id: int) -> SupplierPayment:
    payment = db.session.query(SupplierPayment).filter_by(id=payment_id, org_id=org_id).first()
    if not payment:
        raise SupplierPaymentNotFound(f"Supplier payment {payment_id} not found")
    return payment


def update_payment_notes(payment_id: int, org_id: int, notes: str | None) -> SupplierPayment:
    payment = get_supplier_payment(payment_id, org_id)
    payment.notes = notes
    db.session.flush()
    return payment


def list_supplier_payments(
    org_id: int,
    *,
    search: str | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(SupplierPayment).filter(SupplierPayment.org_id == org_id)
    if supplier_id is not None:
        q = q.filter(SupplierPayment.supplier_id == supplier_id)
    if status:
        q = q.filter(SupplierPayment.status == status)
    if date_from:
        q = q.filter(SupplierPayment.payment_date >= date_from)
    if date_to:
        q = q.filter(SupplierPayment.payment_date <= date_to)
    if search:
        like = f"%{search}%"
        q = q.join(Supplier, Supplier.id == SupplierPayment.supplier_id).filter(
            or_(SupplierPayment.payment_number.ilike(like), Supplier.name.ilike(like))
        )
    return q.order_by(SupplierPayment.payment_date.desc(), SupplierPayment.id.desc())
