# Overview: Sales summary report over a date range.

from __future__ import annotations

from datetime import date

from sqlalchemy import func, select

from ..extensions import db
from ..models import CREDIT_NOTE_VOUCHER, CustomerPayment, CustomerPaymentAllocation, CustomerPaymentMethod, Sale
from ..time_utils import end_of_day, start_of_day, to_iso_date


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def get_sales_summary(
    org_id: int,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    location_id: int | None = None,
) -> dict:
    """
    Totals for non-cancelled vouchers in the range.

    net = gross sales - credit notes. Payment method totals count
    collections positive and refunds negative; pending receivables is the
    open balance of every PENDING sale regardless of range.
    """
    if date_from and date_to and date_from > date_to:
        raise ReportError("date_from must be on or before date_to")

    def _sales_filter(q):
        q = q.filter(Sale.org_id == org_id, Sale.status != "CANCELLED")
        if location_id is not None:
            q = q.filter(Sale.location_id == location_id)
        if date_from:
            q = q.filter(Sale.sale_date >= start_of_day(date_from))
        if date_to:
            q = q.filter(Sale.sale_date <= end_of_day(date_to))
        return q

    rows = _sales_filter(
        db.session.query(
            Sale.voucher_type == CREDIT_NOTE_VOUCHER,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
        )
    ).group_by(Sale.voucher_type == CREDIT_NOTE_VOUCHER).all()

    sales_count = credit_note_count = gross = credit_notes = 0
    for is_credit_note, count, total in rows:
        if is_credit_note:
            credit_note_count, credit_notes = count, int(total)
        else:
            sales_count, gross = count, int(total)

    by_type = _sales_filter(
        db.session.query(Sale.voucher_type, func.count(Sale.id), func.coalesce(func.sum(Sale.total_cents), 0))
    ).group_by(Sale.voucher_type).all()

    payments_q = (
        db.session.query(
            CustomerPaymentMethod.method_name,
            CustomerPaymentMethod.method_type,
            CustomerPayment.kind,
            func.coalesce(func.sum(CustomerPaymentMethod.amount_cents), 0),
            func.coalesce(func.sum(CustomerPaymentMethod.fee_cents), 0),
        )
        .join(CustomerPayment, CustomerPayment.id == CustomerPaymentMethod.payment_id)
        .filter(CustomerPayment.org_id == org_id, CustomerPayment.status == "completed")
    )
    if date_from:
        payments_q = payments_q.filter(CustomerPayment.payment_date >= date_from)
    if date_to:
        payments_q = payments_q.filter(CustomerPayment.payment_date <= date_to)
    if location_id is not None:
        allocated_here = select(Sale.id).where(Sale.location_id == location_id)
        payments_q = payments_q.filter(
            CustomerPayment.id.in_(
                select(CustomerPaymentAllocation.payment_id).where(
                    CustomerPaymentAllocation.sale_id.in_(allocated_here)
                )
            )
        )

    methods: dict[str, dict] = {}
    for name, method_type, kind, amount, fees in payments_q.group_by(
        CustomerPaymentMethod.method_name, CustomerPaymentMethod.method_type, CustomerPayment.kind
    ).all():
        entry = methods.setdefault(name, {
            "method_name": name,
            "method_type": method_type,
            "collected_cents": 0,
            "refunded_cents": 0,
            "fees_cents": 0,
        })
        if kind == "refund":
            entry["refunded_cents"] += int(amount)
        else:
            entry["collected_cents"] += int(amount)
            entry["fees_cents"] += int(fees)
    for entry in methods.values():
        entry["net_cents"] = entry["collected_cents"] - entry["refunded_cents"]

    pending_q = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents - Sale.amount_paid_cents), 0),
    ).filter(
        Sale.org_id == org_id,
        Sale.status == "PENDING",
        Sale.voucher_type != CREDIT_NOTE_VOUCHER,
    )
    if location_id is not None:
        pending_q = pending_q.filter(Sale.location_id == location_id)
    pending_count, pending_total = pending_q.one()

    return {
        "date_from": to_iso_date(date_from),
        "date_to": to_iso_date(date_to),
        "location_id": location_id,
        "sales_count": sales_count,
        "gross_sales_cents": gross,
        "credit_note_count": credit_note_count,
        "credit_notes_cents": credit_notes,
        "net_sales_cents": gross - credit_notes,
        "by_voucher_type": [
            {"voucher_type": vt, "count": count, "total_cents": int(total)} for vt, count, total in by_type
        ],
        "by_payment_method": sorted(methods.values(), key=lambda m: m["method_name"]),
        "pending_receivables": {"count": pending_count, "total_cents": int(pending_total)},
    }
