# Overview: Per-location stock quantities and the stock movement log.

from __future__ import annotations

from functools import partial

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Location, Product, Stock, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, on_commit, run_with_retry
"""
Inventory invariants (authoritative)

- Stock is a mutable quantity per (product, location), guarded by a row lock
  and an optimistic version counter. Every change appends a StockMovement
  carrying the signed delta and the resulting quantity.
- A decrease below zero is refused unless ALLOW_NEGATIVE_STOCK is enabled.
- Service-type products and custom lines never touch stock.
- Helpers here only flush; the caller owns the transaction.
- Every changed product is queued for e-commerce stock sync after commit.
"""


class InventoryError(Exception):
    """Raised when inventory operations fail."""
    pass


class InsufficientStockError(InventoryError):
    def __init__(self, product: Product, location_id: int, available: int, requested: int):
        self.product_id = product.id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product.name} ({product.sku}). "
            f"Available: {available}, requested: {requested}"
        )


def _get_product(org_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product or product.org_id != org_id:
        raise InventoryError(f"Product {product_id} not found")
    return product


def _check_location(org_id: int, location_id: int) -> None:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or location.org_id != org_id:
        raise InventoryError(f"Location {location_id} not found")


def _lock_stock_row(product_id: int, location_id: int) -> Stock:
    stock = lock_for_update(
        db.session.query(Stock).filter_by(product_id=product_id, location_id=location_id)
    ).first()
    if stock is None:
        stock = Stock(product_id=product_id, location_id=location_id, quantity=0)
        db.session.add(stock)
        db.session.flush()
    return stock


def _queue_sync(product_id: int) -> None:
    from .ecommerce import sync_service

    on_commit(f"stock_sync:{product_id}", partial(sync_service.sync_product_stock_safely, product_id))


def _apply_delta(
    *,
    org_id: int,
    product_id: int,
    location_id: int,
    delta: int,
    reason: str,
    reference_type: str | None,
    reference_id: int | None,
    user_id: int | None,
    note: str | None,
    allow_negative: bool | None,
) -> StockMovement | None:
    product = _get_product(org_id, product_id)
    if not product.tracks_stock or delta == 0:
        return None
    _check_location(org_id, location_id)

    if allow_negative is None:
        allow_negative = current_app.config.get("ALLOW_NEGATIVE_STOCK", False)

    stock = _lock_stock_row(product_id, location_id)
    new_quantity = stock.quantity + delta
    if delta < 0 and new_quantity < 0 and not allow_negative:
        raise InsufficientStockError(product, location_id, stock.quantity, -delta)

    stock.quantity = new_quantity

    movement = StockMovement(
        org_id=org_id,
        product_id=product_id,
        location_id=location_id,
        quantity_delta=delta,
        quantity_after=new_quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()

    _queue_sync(product_id)
    return movement


def increase_stock(
    *,
    org_id: int,
    product_id: int,
    location_id: int,
    quantity: int,
    reason: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> StockMovement | None:
    if quantity <= 0:
        raise InventoryError("Quantity must be positive")
    return _apply_delta(
        org_id=org_id,
        product_id=product_id,
        location_id=location_id,
        delta=quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=user_id,
        note=note,
        allow_negative=True,
    )


def decrease_stock(
    *,
    org_id: int,
    product_id: int,
    location_id: int,
    quantity: int,
    reason: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    allow_negative: bool | None = None,
) -> StockMovement | None:
    """Decrease stock; raises InsufficientStockError unless negative stock is allowed."""
    if quantity <= 0:
        raise InventoryError("Quantity must be positive")
    return _apply_delta(
        org_id=org_id,
        product_id=product_id,
        location_id=location_id,
        delta=-quantity,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=user_id,
        note=note,
        allow_negative=allow_negative,
    )


def get_quantity(product_id: int, location_id: int) -> int:
    qty = (
        db.session.query(Stock.quantity)
        .filter_by(product_id=product_id, location_id=location_id)
        .scalar()
    )
    return int(qty or 0)


def get_total_quantity(product_id: int) -> int:
    qty = db.session.query(func.sum(Stock.quantity)).filter(Stock.product_id == product_id).scalar()
    return int(qty or 0)


def get_stock_by_location(product_id: int) -> list[Stock]:
    return (
        db.session.query(Stock)
        .filter(Stock.product_id == product_id)
        .order_by(Stock.location_id)
        .all()
    )


def set_stock(
    *,
    org_id: int,
    product_id: int,
    location_id: int,
    quantity: int,
    user_id: int | None = None,
    note: str | None = None,
    reason: str = "adjustment",
) -> StockMovement | None:
    """Set an absolute count; the change is recorded as a movement with the delta."""
    if quantity < 0:
        raise InventoryError("Quantity cannot be negative")

    def _op():
        _get_product(org_id, product_id)
        _check_location(org_id, location_id)
        current = _lock_stock_row(product_id, location_id).quantity
        return _apply_delta(
            org_id=org_id,
            product_id=product_id,
            location_id=location_id,
            delta=quantity - current,
            reason=reason,
            reference_type=None,
            reference_id=None,
            user_id=user_id,
            note=note,
            allow_negative=True,
        )

    return run_with_retry(_op)


def batch_upsert_stock(
    *,
    org_id: int,
    location_id: int,
    rows: list[dict],
    user_id: int | None = None,
) -> dict:
    """
    Apply absolute counts for many products at one location in one transaction.

    rows: [{"product_id": int, "quantity": int}, ...]
    Returns {"updated": n, "unchanged": n}.
    """
    def _op():
        _check_location(org_id, location_id)
        updated = 0
        unchanged = 0
        for row in rows:
            product_id = row["product_id"]
            quantity = row["quantity"]
            if quantity < 0:
                raise InventoryError(f"Quantity cannot be negative (product {product_id})")
            _get_product(org_id, product_id)
            current = _lock_stock_row(product_id, location_id).quantity
            movement = _apply_delta(
                org_id=org_id,
                product_id=product_id,
                location_id=location_id,
                delta=quantity - current,
                reason="adjustment",
                reference_type="import",
                reference_id=None,
                user_id=user_id,
                note="Bulk update",
                allow_negative=True,
            )
            if movement is None:
                unchanged += 1
            else:
                updated += 1
        return {"updated": updated, "unchanged": unchanged}

    return run_with_retry(_op)


def check_stock_availability(*, org_id: int, location_id: int, items: list[dict]) -> list[dict]:
    """
    Report shortages for a prospective sale.

    items: [{"product_id": int | None, "quantity": int}, ...]; lines without
    product_id (custom lines) and service products are skipped. Quantities of
    repeated products are summed.
    """
    requested: dict[int, int] = {}
    for item in items:
        product_id = item.get("product_id")
        if product_id is None:
            continue
        requested[product_id] = requested.get(product_id, 0) + int(item.get("quantity", 0))

    shortages = []
    for product_id, qty in requested.items():
        product = _get_product(org_id, product_id)
        if not product.tracks_stock:
            continue
        available = get_quantity(product_id, location_id)
        if available < qty:
            shortages.append({
                "product_id": product_id,
                "product_name": product.name,
                "sku": product.sku,
                "requested": qty,
                "available": available,
                "shortage": qty - available,
            })
    return shortages


def get_products_by_location(org_id: int, location_id: int, *, search: str | None = None) -> list[dict]:
    """Active products with a positive quantity at a location (transfer pickers)."""
    q = (
        db.session.query(Product, Stock.quantity)
        .join(Stock, Stock.product_id == Product.id)
        .filter(
            Product.org_id == org_id,
            Product.is_active.is_(True),
            Stock.location_id == location_id,
            Stock.quantity > 0,
        )
    )
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))
    return [
        {**product.to_dict(), "quantity": quantity}
        for product, quantity in q.order_by(Product.name).all()
    ]


def list_movements(
    org_id: int,
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
):
    q = db.session.query(StockMovement).filter(StockMovement.org_id == org_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if location_id is not None:
        q = q.filter(StockMovement.location_id == location_id)
    if reference_type:
        q = q.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        q = q.filter(StockMovement.reference_id == reference_id)
    return q.order_by(StockMovement.id.desc())
