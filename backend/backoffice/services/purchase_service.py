# Overview: Supplier invoices (purchases) and the stock they bring in.

from __future__ import annotations

from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem, Supplier, SupplierPayment, SupplierPaymentAllocation
from ..time_utils import utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import decrease_stock, increase_stock
from .location_service import LocationError, require_location


PURCHASE_STATUS_DRAFT = "draft"
PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_CANCELLED = "cancelled"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

UPDATABLE_FIELDS = {
    "voucher_type", "voucher_number", "invoice_date", "due_date", "discount_cents",
    "tax_cents", "notes", "location_id", "status",
}


class PurchaseError(Exception):
    """Raised when purchase operations fail."""
    pass


class PurchaseNotFound(PurchaseError):
    pass


def refresh_payment_status(purchase: Purchase) -> None:
    if purchase.amount_paid_cents >= purchase.total_cents and purchase.total_cents > 0:
        purchase.payment_status = PAYMENT_STATUS_PAID
    elif purchase.amount_paid_cents > 0:
        purchase.payment_status = PAYMENT_STATUS_PARTIAL
    else:
        purchase.payment_status = PAYMENT_STATUS_PENDING


def _lock_purchase(purchase_id: int, org_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id, org_id=org_id)).first()
    if not purchase:
        raise PurchaseNotFound(f"Purchase {purchase_id} not found")
    return purchase


def _has_payments(purchase_id: int, *, active_only: bool = True) -> bool:
    q = (
        db.session.query(SupplierPaymentAllocation.id)
        .join(SupplierPayment, SupplierPayment.id == SupplierPaymentAllocation.payment_id)
        .filter(SupplierPaymentAllocation.purchase_id == purchase_id)
    )
    if active_only:
        q = q.filter(SupplierPayment.status == "completed")
    return q.first() is not None


def _check_location(org_id: int, location_id: int | None) -> None:
    if location_id is None:
        return
    try:
        require_location(org_id, location_id, active_only=True)
    except LocationError as e:
        raise PurchaseError(str(e))


def _build_items(org_id: int, items: list[dict]) -> list[PurchaseItem]:
    if not items:
        raise PurchaseError("Purchase must have at least one item")

    built = []
    for item in items:
        quantity = item["quantity"]
        unit_cost = item["unit_cost_cents"]
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise PurchaseError("Item quantities must be positive integers")
        if not isinstance(unit_cost, int) or isinstance(unit_cost, bool) or unit_cost < 0:
            raise PurchaseError("unit_cost_cents must be a non-negative integer")

        product_id = item.get("product_id")
        if product_id is not None:
            product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
            if not product:
                raise PurchaseError(f"Product {product_id} not found")
            name = item.get("name") or product.name
            sku = item.get("sku") or product.sku
        else:
            name = (item.get("name") or "").strip()
            sku = item.get("sku")
            if not name:
                raise PurchaseError("Custom lines need a name")

        built.append(PurchaseItem(
            product_id=product_id,
            name=name,
            sku=sku,
            quantity=quantity,
            unit_cost_cents=unit_cost,
            subtotal_cents=quantity * unit_cost,
        ))
    return built


def _recompute_totals(purchase: Purchase) -> None:
    purchase.subtotal_cents = sum(i.subtotal_cents for i in purchase.items)
    total = purchase.subtotal_cents - (purchase.discount_cents or 0) + (purchase.tax_cents or 0)
    if total < 0:
        raise PurchaseError("Discount exceeds the purchase subtotal")
    purchase.total_cents = total


def _stock_quantities(items) -> dict[int, int]:
    quantities: dict[int, int] = {}
    for item in items:
        if item.product_id is not None:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    return quantities


def _apply_stock(purchase: Purchase, quantities: dict[int, int], *, sign: int, user_id: int | None,
                 reason: str) -> None:
    for product_id, quantity in sorted(quantities.items()):
        if quantity == 0:
            continue
        helper = increase_stock if quantity * sign > 0 else decrease_stock
        helper(
            org_id=purchase.org_id,
            product_id=product_id,
            location_id=purchase.location_id,
            quantity=abs(quantity),
            reason=reason,
            reference_type="purchase",
            reference_id=purchase.id,
            user_id=user_id,
        )


def check_duplicate_purchase(
    org_id: int, supplier_id: int, voucher_type: str, voucher_number: str, *, exclude_id: int | None = None
) -> Purchase | None:
    """Non-cancelled purchase with the same supplier voucher, if any."""
    q = db.session.query(Purchase).filter(
        Purchase.org_id == org_id,
        Purchase.supplier_id == supplier_id,
        Purchase.voucher_type == voucher_type,
        Purchase.voucher_number == voucher_number,
        Purchase.status != PURCHASE_STATUS_CANCELLED,
    )
    if exclude_id is not None:
        q = q.filter(Purchase.id != exclude_id)
    return q.first()


def create_purchase(
    *,
    org_id: int,
    user_id: int | None,
    supplier_id: int,
    voucher_type: str,
    voucher_number: str,
    invoice_date: date,
    items: list[dict],
    due_date: date | None = None,
    location_id: int | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    products_received: bool = False,
    status: str = PURCHASE_STATUS_COMPLETED,
    notes: str | None = None,
) -> Purchase:
    """
    Register a supplier invoice.

    Raises:
        PurchaseError: duplicate voucher, bad items or unknown supplier/location
    """
    voucher_type = (voucher_type or "").strip().upper()
    voucher_number = (voucher_number or "").strip()
    if not voucher_type or not voucher_number:
        raise PurchaseError("voucher_type and voucher_number are required")
    if status not in (PURCHASE_STATUS_DRAFT, PURCHASE_STATUS_COMPLETED):
        raise PurchaseError(f"Invalid status: {status}")
    if products_received and location_id is None:
        raise PurchaseError("A location is required to receive products")

    def _op():
        supplier = db.session.query(Supplier).filter_by(id=supplier_id, org_id=org_id).first()
        if not supplier:
            raise PurchaseError(f"Supplier {supplier_id} not found")
        _check_location(org_id, location_id)
        if check_duplicate_purchase(org_id, supplier_id, voucher_type, voucher_number):
            raise PurchaseError(f"Voucher {voucher_type} {voucher_number} already registered for this supplier")

        purchase = Purchase(
            org_id=org_id,
            purchase_number=next_document_number(org_id=org_id, document_type="PURCHASE", prefix="C", pad=6),
            supplier_id=supplier_id,
            location_id=location_id,
            voucher_type=voucher_type,
            voucher_number=voucher_number,
            invoice_date=invoice_date,
            due_date=due_date,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            amount_paid_cents=0,
            payment_status=PAYMENT_STATUS_PENDING,
            status=status,
            products_received=bool(products_received),
            notes=notes,
            created_by_user_id=user_id,
        )
        purchase.items = _build_items(org_id, items)
        _recompute_totals(purchase)
        db.session.add(purchase)
        db.session.flush()

        if purchase.products_received:
            _apply_stock(purchase, _stock_quantities(purchase.items), sign=1, user_id=user_id, reason="purchase")

        append_event(
            org_id=org_id,
            event_type="purchase.created",
            entity_type="purchase",
            entity_id=purchase.id,
            actor_user_id=user_id,
            location_id=location_id,
            payload={"total_cents": purchase.total_cents, "products_received": purchase.products_received},
        )
        return purchase

    return run_with_retry(_op)


def update_purchase(purchase_id: int, org_id: int, *, user_id: int | None = None,
                    items: list[dict] | None = None, **fields) -> Purchase:
    """
    Edit a purchase that has no active payments.

    When its products were already received, stock moves by the difference
    between the old and new quantities.
    """
    for key in fields:
        if key not in UPDATABLE_FIELDS:
            raise PurchaseError(f"Field not allowed: {key}")

    def _op():
        purchase = _lock_purchase(purchase_id, org_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise PurchaseError("Cannot edit a cancelled purchase")
        if _has_payments(purchase.id):
            raise PurchaseError("Cannot edit a purchase with payments; cancel them first")
        if "status" in fields and fields["status"] not in (PURCHASE_STATUS_DRAFT, PURCHASE_STATUS_COMPLETED):
            raise PurchaseError(f"Invalid status: {fields['status']}")
        if purchase.products_received and "location_id" in fields and fields["location_id"] != purchase.location_id:
            raise PurchaseError("Cannot change the location of received products")
        if "location_id" in fields:
            _check_location(org_id, fields["location_id"])

        if "voucher_type" in fields:
            fields["voucher_type"] = (fields["voucher_type"] or "").strip().upper()
        voucher_type = fields.get("voucher_type", purchase.voucher_type)
        voucher_number = fields.get("voucher_number", purchase.voucher_number)
        if check_duplicate_purchase(org_id, purchase.supplier_id, voucher_type, voucher_number, exclude_id=purchase.id):
            raise PurchaseError(f"Voucher {voucher_type} {voucher_number} already registered for this supplier")

        for key, value in fields.items():
            setattr(purchase, key, value)

        if items is not None:
            before = _stock_quantities(purchase.items)
            purchase.items = _build_items(org_id, items)
            db.session.flush()
            if purchase.products_received:
                after = _stock_quantities(purchase.items)
                delta = {pid: after.get(pid, 0) - before.get(pid, 0) for pid in set(before) | set(after)}
                _apply_stock(purchase, delta, sign=1, user_id=user_id, reason="purchase_adjustment")

        _recompute_totals(purchase)
        refresh_payment_status(purchase)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="purchase.updated",
            entity_type="purchase",
            entity_id=purchase.id,
            actor_user_id=user_id,
            payload={"fields": sorted(fields), "items_replaced": items is not None},
        )
        return purchase

    return run_with_retry(_op)


def mark_products_received(purchase_id: int, org_id: int, *, location_id: int | None = None,
                           user_id: int | None = None) -> Purchase:
    def _op():
        purchase = _lock_purchase(purchase_id, org_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise PurchaseError("Cannot receive products of a cancelled purchase")
        if purchase.products_received:
            raise PurchaseError("Products already received")

        target = location_id if location_id is not None else purchase.location_id
        if target is None:
            raise PurchaseError("A location is required to receive products")
        _check_location(org_id, target)

        purchase.location_id = target
        purchase.products_received = True
        db.session.flush()
        _apply_stock(purchase, _stock_quantities(purchase.items), sign=1, user_id=user_id, reason="purchase")

        append_event(
            org_id=org_id,
            event_type="purchase.received",
            entity_type="purchase",
            entity_id=purchase.id,
            actor_user_id=user_id,
            location_id=target,
        )
        return purchase

    return run_with_retry(_op)


def cancel_purchase(purchase_id: int, org_id: int, *, user_id: int | None = None) -> Purchase:
    def _op():
        purchase = _lock_purchase(purchase_id, org_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise PurchaseError("Purchase is already cancelled")
        if _has_payments(purchase.id):
            raise PurchaseError("Cannot cancel a purchase with payments; cancel them first")

        if purchase.products_received:
            _apply_stock(purchase, _stock_quantities(purchase.items), sign=-1, user_id=user_id,
                         reason="purchase_cancelled")

        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.cancelled_at = utcnow()
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="purchase.cancelled",
            entity_type="purchase",
            entity_id=purchase.id,
            actor_user_id=user_id,
        )
        return purchase

    return run_with_retry(_op)


def delete_purchase(purchase_id: int, org_id: int, *, user_id: int | None = None) -> None:
    """Remove a purchase outright. Purchases that ever had payments can only be cancelled."""
    def _op():
        purchase = _lock_purchase(purchase_id, org_id)
        if _has_payments(purchase.id, active_only=False):
            raise PurchaseError("Cannot delete a purchase with payments")

        if purchase.products_received and purchase.status != PURCHASE_STATUS_CANCELLED:
            _apply_stock(purchase, _stock_quantities(purchase.items), sign=-1, user_id=user_id,
                         reason="purchase_deleted")

        append_event(
            org_id=org_id,
            event_type="purchase.deleted",
            entity_type="purchase",
            entity_id=purchase.id,
            actor_user_id=user_id,
            payload={"purchase_number": purchase.purchase_number},
        )
        db.session.delete(purchase)
        db.session.flush()

    return run_with_retry(_op)


def get_purchase(purchase_id: int, org_id: int) -> Purchase:
    purchase = db.session.query(Purchase).filter_by(id=purchase_id, org_id=org_id).first()
    if not purchase:
        raise PurchaseNotFound(f"Purchase {purchase_id} not found")
    return purchase


def get_pending_purchases(org_id: int, supplier_id: int) -> list[Purchase]:
    """Completed purchases of a supplier that still have a balance, oldest due first."""
    return (
        db.session.query(Purchase)
        .filter(
            Purchase.org_id == org_id,
            Purchase.supplier_id == supplier_id,
            Purchase.status == PURCHASE_STATUS_COMPLETED,
            Purchase.payment_status != PAYMENT_STATUS_PAID,
            Purchase.total_cents > Purchase.amount_paid_cents,
        )
        .order_by(Purchase.invoice_date, Purchase.id)
        .all()
    )


def list_purchases(
    org_id: int,
    *,
    search: str | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    payment_status: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(Purchase).filter(Purchase.org_id == org_id)
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)
    if status:
        q = q.filter(Purchase.status == status)
    if payment_status:
        q = q.filter(Purchase.payment_status == payment_status)
    if date_from:
        q = q.filter(Purchase.invoice_date >= date_from)
    if date_to:
        q = q.filter(Purchase.invoice_date <= date_to)
    if search:
        like = f"%{search}%"
        q = q.join(Supplier, Supplier.id == Purchase.supplier_id).filter(
            or_(
                Purchase.purchase_number.ilike(like),
                Purchase.voucher_number.ilike(like),
                Supplier.name.ilike(like),
            )
        )
    return q.order_by(Purchase.invoice_date.desc(), Purchase.id.desc())
