# Overview: Purchase orders placed with suppliers and the goods received against them.

from __future__ import annotations

from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import Product, PurchaseOrder, PurchaseOrderHistory, PurchaseOrderItem, Supplier
from ..time_utils import to_iso_date, utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import decrease_stock, increase_stock
from .location_service import LocationError, require_location


ORDER_STATUS_DRAFT = "draft"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_PARTIAL = "partial"
ORDER_STATUS_RECEIVED = "received"
ORDER_STATUS_CANCELLED = "cancelled"

EDITABLE_STATUSES = (ORDER_STATUS_DRAFT, ORDER_STATUS_CONFIRMED)
RECEIVABLE_STATUSES = (ORDER_STATUS_CONFIRMED, ORDER_STATUS_PARTIAL)

UPDATABLE_FIELDS = {"expected_delivery_date", "order_date", "discount_cents", "tax_cents", "notes", "location_id"}


class PurchaseOrderError(Exception):
    """Raised when purchase order operations fail."""
    pass


class PurchaseOrderNotFound(PurchaseOrderError):
    pass


def _history(order: PurchaseOrder, action: str, user_id: int | None, *, field: str | None = None,
             old=None, new=None) -> None:
    def _text(value):
        if value is None:
            return None
        if isinstance(value, date):
            return to_iso_date(value)
        return str(value)[:255]

    db.session.add(PurchaseOrderHistory(
        order_id=order.id,
        action=action,
        field_changed=field,
        old_value=_text(old),
        new_value=_text(new),
        user_id=user_id,
        created_at=utcnow(),
    ))


def _set_status(order: PurchaseOrder, status: str, user_id: int | None) -> None:
    if order.status == status:
        return
    _history(order, "status_changed", user_id, field="status", old=order.status, new=status)
    order.status = status


def _lock_order(order_id: int, org_id: int) -> PurchaseOrder:
    order = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=order_id, org_id=org_id)).first()
    if not order:
        raise PurchaseOrderNotFound(f"Purchase order {order_id} not found")
    return order


def _check_location(org_id: int, location_id: int | None) -> None:
    if location_id is None:
        return
    try:
        require_location(org_id, location_id, active_only=True)
    except LocationError as e:
        raise PurchaseOrderError(str(e))


def _build_items(org_id: int, items: list[dict]) -> list[PurchaseOrderItem]:
    if not items:
        raise PurchaseOrderError("Order must have at least one item")

    built = []
    for item in items:
        quantity = item["quantity"]
        unit_cost = item.get("unit_cost_cents", 0)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise PurchaseOrderError("Item quantities must be positive integers")
        if not isinstance(unit_cost, int) or isinstance(unit_cost, bool) or unit_cost < 0:
            raise PurchaseOrderError("unit_cost_cents must be a non-negative integer")

        product_id = item.get("product_id")
        name = (item.get("name") or "").strip()
        if product_id is not None:
            product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
            if not product:
                raise PurchaseOrderError(f"Product {product_id} not found")
            name = name or product.name
        elif not name:
            raise PurchaseOrderError("Custom lines need a name")

        built.append(PurchaseOrderItem(
            product_id=product_id,
            name=name,
            quantity=quantity,
            quantity_received=0,
            unit_cost_cents=unit_cost,
            subtotal_cents=quantity * unit_cost,
        ))
    return built


def _recompute_totals(order: PurchaseOrder) -> None:
    order.subtotal_cents = sum(i.subtotal_cents for i in order.items)
    total = order.subtotal_cents - (order.discount_cents or 0) + (order.tax_cents or 0)
    if total < 0:
        raise PurchaseOrderError("Discount exceeds the order subtotal")
    order.total_cents = total


def create_purchase_order(
    *,
    org_id: int,
    user_id: int | None,
    supplier_id: int,
    items: list[dict],
    location_id: int | None = None,
    order_date: date | None = None,
    expected_delivery_date: date | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    notes: str | None = None,
) -> PurchaseOrder:
    def _op():
        if not db.session.query(Supplier.id).filter_by(id=supplier_id, org_id=org_id).first():
            raise PurchaseOrderError(f"Supplier {supplier_id} not found")
        _check_location(org_id, location_id)

        order = PurchaseOrder(
            org_id=org_id,
            order_number=next_document_number(org_id=org_id, document_type="PURCHASE_ORDER", prefix="OC", pad=6),
            supplier_id=supplier_id,
            location_id=location_id,
            order_date=order_date or utcnow().date(),
            expected_delivery_date=expected_delivery_date,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            status=ORDER_STATUS_DRAFT,
            notes=notes,
            created_by_user_id=user_id,
        )
        order.items = _build_items(org_id, items)
        _recompute_totals(order)
        db.session.add(order)
        db.session.flush()
        _history(order, "created", user_id)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="purchase_order.created",
            entity_type="purchase_order",
            entity_id=order.id,
            actor_user_id=user_id,
            location_id=location_id,
            payload={"total_cents": order.total_cents},
        )
        return order

    return run_with_retry(_op)


def update_purchase_order(order_id: int, org_id: int, *, user_id: int | None = None,
                          items: list[dict] | None = None, **fields) -> PurchaseOrder:
    """Edit a draft or confirmed order; every changed field leaves a history row."""
    for key in fields:
        if key not in UPDATABLE_FIELDS:
            raise PurchaseOrderError(f"Field not allowed: {key}")

    def _op():
        order = _lock_order(order_id, org_id)
        if order.status not in EDITABLE_STATUSES:
            raise PurchaseOrderError(f"Cannot edit an order with status {order.status}")
        if "location_id" in fields:
            _check_location(org_id, fields["location_id"])

        for key, value in fields.items():
            old = getattr(order, key)
            if old != value:
                _history(order, "updated", user_id, field=key, old=old, new=value)
                setattr(order, key, value)

        if items is not None:
            old_total = order.total_cents
            order.items = _build_items(org_id, items)
            db.session.flush()
            _recompute_totals(order)
            _history(order, "items_replaced", user_id, field="total_cents", old=old_total, new=order.total_cents)
        else:
            _recompute_totals(order)
        db.session.flush()
        return order

    return run_with_retry(_op)


def confirm_purchase_order(order_id: int, org_id: int, *, user_id: int | None = None) -> PurchaseOrder:
    def _op():
        order = _lock_order(order_id, org_id)
        if order.status != ORDER_STATUS_DRAFT:
            raise PurchaseOrderError(f"Only draft orders can be confirmed (status: {order.status})")
        _set_status(order, ORDER_STATUS_CONFIRMED, user_id)
        db.session.flush()
        append_event(
            org_id=org_id,
            event_type="purchase_order.confirmed",
            entity_type="purchase_order",
            entity_id=order.id,
            actor_user_id=user_id,
        )
        return order

    return run_with_retry(_op)


def cancel_purchase_order(order_id: int, org_id: int, *, user_id: int | None = None,
                          reason: str | None = None) -> PurchaseOrder:
    def _op():
        order = _lock_order(order_id, org_id)
        if order.status == ORDER_STATUS_CANCELLED:
            raise PurchaseOrderError("Order is already cancelled")
        if order.status == ORDER_STATUS_RECEIVED:
            raise PurchaseOrderError("Cannot cancel a received order")
        _set_status(order, ORDER_STATUS_CANCELLED, user_id)
        if reason:
            _history(order, "cancel_reason", user_id, new=reason)
        db.session.flush()
        append_event(
            org_id=org_id,
            event_type="purchase_order.cancelled",
            entity_type="purchase_order",
            entity_id=order.id,
            actor_user_id=user_id,
            note=reason,
        )
        return order

    return run_with_retry(_op)


def receive_products(
    order_id: int,
    org_id: int,
    *,
    items: list[dict],
    user_id: int | None = None,
    location_id: int | None = None,
) -> PurchaseOrder:
    """
    Set received quantities on order lines.

    items: [{"item_id": int, "quantity_received": int}, ...] with the new
    cumulative received quantity per line, clamped to [0, quantity]. Stock at
    the order location moves by the difference with what was already
    received. Status becomes received (all lines complete), partial (something
    received) or back to confirmed (nothing received).
    """
    def _op():
        order = _lock_order(order_id, org_id)
        if order.status not in RECEIVABLE_STATUSES:
            raise PurchaseOrderError(f"Cannot receive products for an order with status {order.status}")

        if location_id is not None and location_id != order.location_id:
            _check_location(org_id, location_id)
            _history(order, "updated", user_id, field="location_id", old=order.location_id, new=location_id)
            order.location_id = location_id

        lines = {item.id: item for item in order.items}
        for entry in items:
            line = lines.get(entry["item_id"])
            if line is None:
                raise PurchaseOrderError(f"Item {entry['item_id']} does not belong to order {order.order_number}")

            new_quantity = max(0, min(int(entry["quantity_received"]), line.quantity))
            delta = new_quantity - line.quantity_received
            if delta == 0:
                continue

            if line.product_id is not None:
                if order.location_id is None:
                    raise PurchaseOrderError("A location is required to receive products")
                helper = increase_stock if delta > 0 else decrease_stock
                helper(
                    org_id=org_id,
                    product_id=line.product_id,
                    location_id=order.location_id,
                    quantity=abs(delta),
                    reason="purchase_order_receipt",
                    reference_type="purchase_order",
                    reference_id=order.id,
                    user_id=user_id,
                )

            _history(order, "received", user_id, field=f"item:{line.id}",
                     old=line.quantity_received, new=new_quantity)
            line.quantity_received = new_quantity

        if all(i.quantity_received >= i.quantity for i in order.items):
            _set_status(order, ORDER_STATUS_RECEIVED, user_id)
        elif any(i.quantity_received > 0 for i in order.items):
            _set_status(order, ORDER_STATUS_PARTIAL, user_id)
        else:
            _set_status(order, ORDER_STATUS_CONFIRMED, user_id)
        db.session.flush()

        append_event(
            org_id=org_id,
            event_type="purchase_order.received",
            entity_type="purchase_order",
            entity_id=order.id,
            actor_user_id=user_id,
            location_id=order.location_id,
            payload={"status": order.status},
        )
        return order

    return run_with_retry(_op)


def get_purchase_order(order_id: int, org_id: int) -> PurchaseOrder:
    order = db.session.query(PurchaseOrder).filter_by(id=order_id, org_id=org_id).first()
    if not order:
        raise PurchaseOrderNotFound(f"Purchase order {order_id} not found")
    return order


def list_purchase_orders(
    org_id: int,
    *,
    search: str | None = None,
    supplier_id: int | None = None,
    statuses: list[str] | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
):
    q = db.session.query(PurchaseOrder).filter(PurchaseOrder.org_id == org_id)
    if supplier_id is not None:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    if statuses:
        q = q.filter(PurchaseOrder.status.in_(statuses))
    if date_from:
        q = q.filter(PurchaseOrder.order_date >= date_from)
    if date_to:
        q = q.filter(PurchaseOrder.order_date <= date_to)
    if search:
        like = f"%{search}%"
        q = q.join(Supplier, Supplier.id == PurchaseOrder.supplier_id).filter(
            or_(PurchaseOrder.order_number.ilike(like), Supplier.name.ilike(like))
        )
    return q.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc())
