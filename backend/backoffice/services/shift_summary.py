# Overview: Cash accounting of a single shift (read-only).

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func

from ..extensions import db
from ..models import (
    CREDIT_NOTE_VOUCHER,
    CustomerPayment,
    CustomerPaymentMethod,
    Sale,
    Shift,
    ShiftMovement,
    SupplierPayment,
    SupplierPaymentMethod,
)

CASH = "CASH"


def _sales_totals(shift_id: int) -> tuple[int, int, int, int]:
    """(gross, refunds, sales_count, credit_note_count) for non-cancelled vouchers."""
    rows = (
        db.session.query(Sale.voucher_type, func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0))
        .filter(Sale.shift_id == shift_id, Sale.status != "CANCELLED")
        .group_by(Sale.voucher_type)
        .all()
    )
    gross = refunds = sales_count = credit_notes = 0
    for voucher_type, count, total in rows:
        if voucher_type == CREDIT_NOTE_VOUCHER:
            refunds += int(total)
            credit_notes += count
        else:
            gross += int(total)
            sales_count += count
    return gross, refunds, sales_count, credit_notes


def _customer_method_lines(shift_id: int):
    return (
        db.session.query(CustomerPaymentMethod, CustomerPayment.kind)
        .join(CustomerPayment, CustomerPayment.id == CustomerPaymentMethod.payment_id)
        .filter(CustomerPaymentMethod.shift_id == shift_id, CustomerPayment.status == "completed")
        .all()
    )


def _supplier_cash_paid(shift_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(SupplierPaymentMethod.amount_cents), 0))
        .join(SupplierPayment, SupplierPayment.id == SupplierPaymentMethod.payment_id)
        .filter(
            SupplierPaymentMethod.shift_id == shift_id,
            SupplierPaymentMethod.method_type == CASH,
            SupplierPayment.status == "completed",
        )
        .scalar()
    )
    return int(total or 0)


def _movement_totals(shift_id: int) -> tuple[int, int]:
    rows = (
        db.session.query(ShiftMovement.movement_type, func.coalesce(func.sum(ShiftMovement.amount_cents), 0))
        .filter(ShiftMovement.shift_id == shift_id)
        .group_by(ShiftMovement.movement_type)
        .all()
    )
    totals = {movement_type: int(amount) for movement_type, amount in rows}
    return totals.get("cash_in", 0), totals.get("cash_out", 0)


def compute_shift_summary(shift: Shift) -> dict:
    """
    Cash position of a shift.

    current_cash_amount = opening + cash_from_sales + cash_in - cash_out, where
    cash_from_sales = cash collections - cash refunds - cash paid to suppliers
    through this shift.
    """
    gross, refunds, sales_count, credit_note_count = _sales_totals(shift.id)

    cash_collected = 0
    cash_refunded = 0
    by_method: dict[str, dict] = defaultdict(lambda: {"method_type": None, "amount_cents": 0, "count": 0})
    for line, kind in _customer_method_lines(shift.id):
        signed = -line.amount_cents if kind == "refund" else line.amount_cents
        entry = by_method[line.method_name]
        entry["method_type"] = line.method_type
        entry["amount_cents"] += signed
        entry["count"] += 1
        if line.method_type == CASH:
            if kind == "refund":
                cash_refunded += line.amount_cents
            else:
                cash_collected += line.amount_cents

    supplier_cash = _supplier_cash_paid(shift.id)
    cash_in, cash_out = _movement_totals(shift.id)

    cash_from_sales = cash_collected - cash_refunded - supplier_cash
    current_cash = shift.opening_amount_cents + cash_from_sales + cash_in - cash_out

    return {
        "shift_id": shift.id,
        "status": shift.status,
        "opening_amount_cents": shift.opening_amount_cents,
        "sales_count": sales_count,
        "credit_note_count": credit_note_count,
        "gross_collections_cents": gross,
        "refunds_cents": refunds,
        "net_collections_cents": gross - refunds,
        "cash_collected_cents": cash_collected,
        "cash_refunded_cents": cash_refunded,
        "supplier_cash_paid_cents": supplier_cash,
        "cash_from_sales_cents": cash_from_sales,
        "cash_in_cents": cash_in,
        "cash_out_cents": cash_out,
        "current_cash_amount_cents": current_cash,
        "by_payment_method": [
            {"method_name": name, **values} for name, values in sorted(by_method.items())
        ],
    }
