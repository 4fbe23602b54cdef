# Overview: Sales vouchers, credit notes and credit note applications.

"""
Sales and credit notes.

Stock leaves the sale location when a sale is created and comes back when a
credit note is issued (custom lines and services never touch stock). A
credit note's amount_paid_cents tracks how much of it has been settled,
either refunded through a refund payment or applied to another sale; its
balance is the credit still available to the customer.
"""
from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import CREDIT_NOTE_VOUCHER, CreditNoteApplication, Customer, Product, Sale, SaleItem
from ..time_utils import end_of_day, start_of_day, utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .customer_payment_service import (
    KIND_COLLECTION,
    KIND_REFUND,
    apply_customer_payment,
    refresh_sale_status,
)
from .document_service import next_document_number
from .inventory_service import decrease_stock, increase_stock
from .location_service import LocationError, require_location
from .register_service import RegisterError, ShiftError, get_cash_register, get_user_active_shift, require_open_shift


SALE_VOUCHER_TYPES = ("TICKET", "INVOICE_A", "INVOICE_B", "INVOICE_C")
VOUCHER_PREFIXES = {
    "TICKET": "TK",
    "INVOICE_A": "FA",
    "INVOICE_B": "FB",
    "INVOICE_C": "FC",
    CREDIT_NOTE_VOUCHER: "NC",
}

SALE_STATUS_PENDING = "PENDING"
SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"


class SaleError(Exception):
    """Raised when sale or credit note operations fail."""
    pass


class SaleNotFound(SaleError):
    pass


def _next_sale_number(org_id: int, voucher_type: str) -> str:
    return next_document_number(
        org_id=org_id,
        document_type=f"SALE_{voucher_type}",
        prefix=VOUCHER_PREFIXES[voucher_type],
        pad=8,
    )


def _lock_sale(sale_id: int, org_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, org_id=org_id)).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def _resolve_shift_id(org_id: int, location_id: int, user_id: int, cash_register_id: int | None) -> int | None:
    """
    Shift a voucher belongs to: the given register's open shift, otherwise the
    user's own open shift when its register sits at the voucher location.
    """
    if cash_register_id is not None:
        try:
            register = get_cash_register(cash_register_id, org_id)
            if register.location_id != location_id:
                raise SaleError("Cash register belongs to another location")
            return require_open_shift(register.id, org_id).id
        except (RegisterError, ShiftError) as e:
            raise SaleError(str(e))

    shift = get_user_active_shift(user_id, org_id)
    if shift and shift.cash_register.location_id == location_id:
        return shift.id
    return None


def _build_lines(org_id: int, items: list[dict]) -> list[SaleItem]:
    if not items:
        raise SaleError("Sale must have at least one item")

    lines = []
    for item in items:
        quantity = item["quantity"]
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise SaleError("Item quantities must be positive integers")

        product_id = item.get("product_id")
        if product_id is not None:
            product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
            if not product:
                raise SaleError(f"Product {product_id} not found")
            if not product.is_active:
                raise SaleError(f"Product {product.sku} is inactive")
            description = item.get("description") or product.name
            unit_price = item.get("unit_price_cents", product.price_cents)
        else:
            description = (item.get("description") or "").strip()
            if not description:
                raise SaleError("Custom lines need a description")
            if "unit_price_cents" not in item:
                raise SaleError("Custom lines need unit_price_cents")
            unit_price = item["unit_price_cents"]

        if not isinstance(unit_price, int) or unit_price < 0:
            raise SaleError("unit_price_cents must be a non-negative integer")

        lines.append(SaleItem(
            product_id=product_id,
            description=description,
            quantity=quantity,
            unit_price_cents=unit_price,
            line_total_cents=quantity * unit_price,
        ))
    return lines


def create_sale(
    *,
    org_id: int,
    user_id: int,
    location_id: int,
    items: list[dict],
    voucher_type: str = "TICKET",
    customer_id: int | None = None,
    cash_register_id: int | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    payments: list[dict] | None = None,
    notes: str | None = None,
    sale_date: datetime | None = None,
) -> Sale:
    """
    Create a sale and take its products out of stock.

    Args:
        items: [{"product_id": int | None, "quantity": int,
                 "unit_price_cents"?: int, "description"?: str}, ...]
        payments: optional method lines paid at the counter; they become a
            collection allocated entirely to this sale.

    Raises:
        SaleError, InsufficientStockError, CustomerPaymentError
    """
    if voucher_type not in SALE_VOUCHER_TYPES:
        raise SaleError(f"Invalid voucher type: {voucher_type}")
    if discount_cents < 0 or tax_cents < 0:
        raise SaleError("Discount and tax cannot be negative")

    def _op():
        try:
            require_location(org_id, location_id, active_only=True)
        except LocationError as e:
            raise SaleError(str(e))
        if customer_id is not None:
            if not db.session.query(Customer.id).filter_by(id=customer_id, org_id=org_id).first():
                raise SaleError(f"Customer {customer_id} not found")

        lines = _build_lines(org_id, items)
        subtotal = sum(line.line_total_cents for line in lines)
        total = subtotal - discount_cents + tax_cents
        if total < 0:
            raise SaleError("Discount exceeds the sale subtotal")

        sale = Sale(
            org_id=org_id,
            location_id=location_id,
            sale_number=_next_sale_number(org_id, voucher_type),
            voucher_type=voucher_type,
            customer_id=customer_id,
            shift_id=_resolve_shift_id(org_id, location_id, user_id, cash_register_id),
            sale_date=sale_date or utcnow(),
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            total_cents=total,
            amount_paid_cents=0,
            status=SALE_STATUS_PENDING,
            notes=notes,
            created_by_user_id=user_id,
        )
        sale.items = lines
        db.session.add(sale)
        db.session.flush()

        for line in lines:
            if line.product_id is not None:
                decrease_stock(
                    org_id=org_id,
                    product_id=line.product_id,
                    location_id=location_id,
                    quantity=line.quantity,
                    reason="sale",
                    reference_type="sale",
                    reference_id=sale.id,
                    user_id=user_id,
                )

        if payments:
            apply_customer_payment(
                org_id=org_id,
                user_id=user_id,
                customer_id=customer_id,
                allocations=[{"sale_id": sale.id, "amount_cents": sum(p["amount_cents"] for p in payments)}],
                methods=payments,
                payment_date=sale.sale_date.date(),
                kind=KIND_COLLECTION,
            )
        refresh_sale_status(sale)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="sale.created",
            entity_type="sale",
            entity_id=sale.id,
            actor_user_id=user_id,
            location_id=location_id,
            payload={"sale_number": sale.sale_number, "total_cents": total},
        )
        return sale

    return run_with_retry(_op)


def credited_quantities(sale: Sale) -> dict[int, int]:
    """Quantities already returned through non-cancelled credit notes, by original sale item id."""
    credited: dict[int, int] = {}
    for note in sale.credit_notes:
        if note.status == SALE_STATUS_CANCELLED:
            continue
        for item in note.items:
            key = item.related_sale_item_id
            credited[key] = credited.get(key, 0) + item.quantity
    return credited


def create_credit_note(
    *,
    org_id: int,
    user_id: int,
    sale_id: int,
    items: list[dict],
    refund_methods: list[dict] | None = None,
    reason: str | None = None,
    cash_register_id: int | None = None,
) -> Sale:
    """
    Issue a credit note against a sale and put the returned products back in stock.

    Args:
        items: [{"sale_item_id": int, "quantity": int}, ...]
        refund_methods: optional method lines refunding the credit note now.
    """
    def _op():
        sale = _lock_sale(sale_id, org_id)
        if sale.is_credit_note:
            raise SaleError("Cannot issue a credit note against a credit note")
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleError("Cannot issue a credit note against a cancelled sale")
        if not items:
            raise SaleError("Credit note must have at least one item")

        originals = {item.id: item for item in sale.items}
        credited = credited_quantities(sale)
        requested: dict[int, int] = {}
        for entry in items:
            quantity = entry["quantity"]
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise SaleError("Item quantities must be positive integers")
            if entry["sale_item_id"] not in originals:
                raise SaleError(f"Item {entry['sale_item_id']} does not belong to sale {sale.sale_number}")
            requested[entry["sale_item_id"]] = requested.get(entry["sale_item_id"], 0) + quantity

        lines = []
        for item_id, quantity in requested.items():
            original = originals[item_id]
            available = original.quantity - credited.get(item_id, 0)
            if quantity > available:
                raise SaleError(
                    f"Cannot credit {quantity} of {original.description}; only {available} left to return"
                )
            lines.append(SaleItem(
                product_id=original.product_id,
                related_sale_item_id=original.id,
                description=original.description,
                quantity=quantity,
                unit_price_cents=original.unit_price_cents,
                line_total_cents=quantity * original.unit_price_cents,
            ))

        total = sum(line.line_total_cents for line in lines)
        note = Sale(
            org_id=org_id,
            location_id=sale.location_id,
            sale_number=_next_sale_number(org_id, CREDIT_NOTE_VOUCHER),
            voucher_type=CREDIT_NOTE_VOUCHER,
            customer_id=sale.customer_id,
            shift_id=_resolve_shift_id(org_id, sale.location_id, user_id, cash_register_id),
            related_sale_id=sale.id,
            sale_date=utcnow(),
            subtotal_cents=total,
            total_cents=total,
            amount_paid_cents=0,
            status=SALE_STATUS_PENDING,
            notes=reason,
            created_by_user_id=user_id,
        )
        note.items = lines
        db.session.add(note)
        db.session.flush()

        for line in lines:
            if line.product_id is not None:
                increase_stock(
                    org_id=org_id,
                    product_id=line.product_id,
                    location_id=sale.location_id,
                    quantity=line.quantity,
                    reason="credit_note",
                    reference_type="sale",
                    reference_id=note.id,
                    user_id=user_id,
                )

        if refund_methods:
            apply_customer_payment(
                org_id=org_id,
                user_id=user_id,
                customer_id=sale.customer_id,
                allocations=[{"sale_id": note.id, "amount_cents": sum(m["amount_cents"] for m in refund_methods)}],
                methods=refund_methods,
                kind=KIND_REFUND,
                notes=reason,
            )
        refresh_sale_status(note)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="sale.credit_note_created",
            entity_type="sale",
            entity_id=note.id,
            actor_user_id=user_id,
            location_id=sale.location_id,
            note=reason,
            payload={"related_sale_id": sale.id, "total_cents": total},
        )
        return note

    return run_with_retry(_op)


def cancel_credit_note(*, credit_note_id: int, org_id: int, user_id: int, revert_stock: bool = True) -> Sale:
    """
    Cancel a credit note that has not been applied or refunded.

    With revert_stock the returned products leave stock again.
    """
    def _op():
        note = _lock_sale(credit_note_id, org_id)
        if not note.is_credit_note:
            raise SaleError(f"{note.sale_number} is not a credit note")
        if note.status == SALE_STATUS_CANCELLED:
            raise SaleError("Credit note is already cancelled")
        applied = db.session.query(CreditNoteApplication.id).filter_by(credit_note_id=note.id).first()
        if applied:
            raise SaleError("Credit note has been applied to a sale and cannot be cancelled")
        if note.amount_paid_cents > 0:
            raise SaleError("Credit note has been refunded; cancel the refund first")

        if revert_stock:
            for line in note.items:
                if line.product_id is not None:
                    decrease_stock(
                        org_id=org_id,
                        product_id=line.product_id,
                        location_id=note.location_id,
                        quantity=line.quantity,
                        reason="credit_note_cancelled",
                        reference_type="sale",
                        reference_id=note.id,
                        user_id=user_id,
                    )

        note.status = SALE_STATUS_CANCELLED
        stamp = f"ANULADA {utcnow().strftime('%Y-%m-%d %H:%M')}"
        note.notes = f"{note.notes}\n{stamp}" if note.notes else stamp
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="sale.credit_note_cancelled",
            entity_type="sale",
            entity_id=note.id,
            actor_user_id=user_id,
            location_id=note.location_id,
            payload={"revert_stock": revert_stock},
        )
        return note

    return run_with_retry(_op)


def get_available_credit_notes(org_id: int, customer_id: int) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(
            Sale.org_id == org_id,
            Sale.customer_id == customer_id,
            Sale.voucher_type == CREDIT_NOTE_VOUCHER,
            Sale.status != SALE_STATUS_CANCELLED,
            Sale.total_cents > Sale.amount_paid_cents,
        )
        .order_by(Sale.sale_date, Sale.id)
        .all()
    )


def apply_credit_note_to_sale(
    *, credit_note_id: int, sale_id: int, org_id: int, user_id: int, amount_cents: int
) -> CreditNoteApplication:
    """Use part of a credit note's available credit to pay another sale."""
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise SaleError("Amount must be a positive integer")

    def _op():
        # Lock in id order so concurrent applications cannot deadlock.
        first, second = sorted((credit_note_id, sale_id))
        locked = {first: _lock_sale(first, org_id), second: _lock_sale(second, org_id)}
        note, sale = locked[credit_note_id], locked[sale_id]

        if not note.is_credit_note:
            raise SaleError(f"{note.sale_number} is not a credit note")
        if note.status == SALE_STATUS_CANCELLED:
            raise SaleError("Credit note is cancelled")
        if sale.is_credit_note or sale.status == SALE_STATUS_CANCELLED:
            raise SaleError(f"{sale.sale_number} cannot receive credit")
        if note.customer_id is not None and sale.customer_id != note.customer_id:
            raise SaleError("Credit note and sale belong to different customers")
        if amount_cents > note.balance_cents:
            raise SaleError(f"Amount exceeds available credit ({note.balance_cents})")
        if amount_cents > sale.balance_cents:
            raise SaleError(f"Amount exceeds sale balance ({sale.balance_cents})")

        application = CreditNoteApplication(
            credit_note_id=note.id,
            sale_id=sale.id,
            amount_cents=amount_cents,
            applied_by_user_id=user_id,
            applied_at=utcnow(),
        )
        db.session.add(application)
        note.amount_paid_cents += amount_cents
        sale.amount_paid_cents += amount_cents
        refresh_sale_status(note)
        refresh_sale_status(sale)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="sale.credit_note_applied",
            entity_type="sale",
            entity_id=sale.id,
            actor_user_id=user_id,
            payload={"credit_note_id": note.id, "amount_cents": amount_cents},
        )
        return application

    return run_with_retry(_op)


def get_sale(sale_id: int, org_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found")
    return sale


def update_sale_notes(sale_id: int, org_id: int, notes: str | None) -> Sale:
    sale = get_sale(sale_id, org_id)
    sale.notes = notes
    db.session.flush()
    return sale


def list_sales(
    org_id: int,
    *,
    search: str | None = None,
    statuses: list[str] | None = None,
    voucher_type: str | None = None,
    customer_id: int | None = None,
    location_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(Sale).filter(Sale.org_id == org_id)
    if statuses:
        q = q.filter(Sale.status.in_(statuses))
    if voucher_type:
        q = q.filter(Sale.voucher_type == voucher_type)
    if customer_id is not None:
        q = q.filter(Sale.customer_id == customer_id)
    if location_id is not None:
        q = q.filter(Sale.location_id == location_id)
    if date_from:
        q = q.filter(Sale.sale_date >= start_of_day(date_from))
    if date_to:
        q = q.filter(Sale.sale_date <= end_of_day(date_to))
    if search:
        like = f"%{search}%"
        q = q.outerjoin(Customer, Customer.id == Sale.customer_id).filter(
            or_(Sale.sale_number.ilike(like), Customer.name.ilike(like))
        )
    return q.order_by(Sale.sale_date.desc(), Sale.id.desc())

