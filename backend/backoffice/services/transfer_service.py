# backend/backoffice/services/transfer_service.py
"""
Inter-location stock transfers.

LIFECYCLE:
1. IN_TRANSIT: created; source stock already decremented for every line
2. COMPLETED: every line fully received at the destination
3. CANCELLED: unreceived quantities returned to the source

A transfer created with mark_as_received goes straight to COMPLETED.
Partial receipts credit the destination line by line; reported totals never
decrease and are clamped to the shipped quantity.

Stock conservation per product:
    shipped = received + returned_on_cancel + still_in_transit
"""
from __future__ import annotations

from datetime import date

from sqlalchemy import or_

from ..extensions import db
from ..models import Location, Transfer, TransferItem
from ..time_utils import utcnow
from .audit_service import append_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import decrease_stock, increase_stock


TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)


class TransferError(Exception):
    """Raised when transfer operations fail."""
    pass


class TransferNotFound(TransferError):
    pass


def _load_locked(transfer_id: int, org_id: int) -> Transfer:
    transfer = lock_for_update(
        db.session.query(Transfer).filter_by(id=transfer_id, org_id=org_id)
    ).first()
    if not transfer:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    return transfer


def _require_location(org_id: int, location_id: int, label: str) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or location.org_id != org_id:
        raise TransferError(f"{label} location {location_id} not found")
    if not location.is_active:
        raise TransferError(f"{label} location {location.name} is inactive")
    return location


def _merge_items(items: list[dict]) -> dict[int, int]:
    """Collapse repeated product lines; quantities must be positive integers."""
    merged: dict[int, int] = {}
    for item in items:
        product_id = item["product_id"]
        quantity = item["quantity"]
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise TransferError(f"Quantity for product {product_id} must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def create_transfer(
    *,
    org_id: int,
    user_id: int,
    source_location_id: int,
    destination_location_id: int,
    items: list[dict],
    notes: str | None = None,
    transfer_date: date | None = None,
    mark_as_received: bool = False,
) -> Transfer:
    """
    Create a transfer and move the stock out of the source location.

    Args:
        items: [{"product_id": int, "quantity": int}, ...]
        mark_as_received: credit the destination immediately and complete

    Raises:
        TransferError: same locations, no items, bad quantities
        InsufficientStockError: source cannot cover a line
    """
    def _op():
        if source_location_id == destination_location_id:
            raise TransferError("Source and destination locations must be different")
        if not items:
            raise TransferError("A transfer needs at least one item")

        _require_location(org_id, source_location_id, "Source")
        _require_location(org_id, destination_location_id, "Destination")
        lines = _merge_items(items)

        effective_date = transfer_date or utcnow().date()
        transfer = Transfer(
            org_id=org_id,
            transfer_number=next_document_number(
                org_id=org_id,
                document_type="TRANSFER",
                prefix="T",
                dated_on=effective_date,
            ),
            source_location_id=source_location_id,
            destination_location_id=destination_location_id,
            status=TRANSFER_STATUS_COMPLETED if mark_as_received else TRANSFER_STATUS_IN_TRANSIT,
            notes=notes,
            transfer_date=effective_date,
            created_by_user_id=user_id,
            completed_at=utcnow() if mark_as_received else None,
        )
        db.session.add(transfer)
        db.session.flush()

        for product_id, quantity in lines.items():
            decrease_stock(
                org_id=org_id,
                product_id=product_id,
                location_id=source_location_id,
                quantity=quantity,
                reason="transfer_out",
                reference_type="transfer",
                reference_id=transfer.id,
                user_id=user_id,
            )
            db.session.add(TransferItem(
                transfer_id=transfer.id,
                product_id=product_id,
                quantity=quantity,
                quantity_received=quantity if mark_as_received else 0,
            ))
            if mark_as_received:
                increase_stock(
                    org_id=org_id,
                    product_id=product_id,
                    location_id=destination_location_id,
                    quantity=quantity,
                    reason="transfer_in",
                    reference_type="transfer",
                    reference_id=transfer.id,
                    user_id=user_id,
                )

        db.session.flush()
        db.session.refresh(transfer)

        append_event(
            org_id=org_id,
            location_id=source_location_id,
            event_type="transfer.created",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=user_id,
            note=notes,
            payload={"status": transfer.status, "lines": len(lines)},
        )
        return transfer

    return run_with_retry(_op)


def receive_transfer(
    *,
    transfer_id: int,
    org_id: int,
    user_id: int,
    received_items: list[dict],
) -> dict:
    """
    Record (partial) receipt at the destination.

    received_items: [{"item_id": int, "quantity_received": int}, ...] where
    quantity_received is the new running total for that line. Totals are
    clamped to the shipped quantity; a total at or below what was already
    received is ignored.

    Returns {"completed": bool, "transfer": Transfer}.
    """
    def _op():
        transfer = _load_locked(transfer_id, org_id)
        if transfer.status != TRANSFER_STATUS_IN_TRANSIT:
            raise TransferError(f"Cannot receive transfer in {transfer.status} status")
        if not received_items:
            raise TransferError("No items to receive")

        items_by_id = {item.id: item for item in transfer.items}
        credited = 0

        for entry in received_items:
            item = items_by_id.get(entry["item_id"])
            if item is None:
                raise TransferError(f"Item {entry['item_id']} does not belong to this transfer")

            reported = entry["quantity_received"]
            if not isinstance(reported, int) or isinstance(reported, bool) or reported < 0:
                raise TransferError("quantity_received must be a non-negative integer")

            new_total = min(reported, item.quantity)
            delta = new_total - item.quantity_received
            if delta <= 0:
                continue

            item.quantity_received = new_total
            increase_stock(
                org_id=org_id,
                product_id=item.product_id,
                location_id=transfer.destination_location_id,
                quantity=delta,
                reason="transfer_in",
                reference_type="transfer",
                reference_id=transfer.id,
                user_id=user_id,
            )
            credited += delta

        completed = all(item.quantity_received >= item.quantity for item in transfer.items)
        if completed:
            transfer.status = TRANSFER_STATUS_COMPLETED
            transfer.completed_at = utcnow()

        db.session.flush()

        append_event(
            org_id=org_id,
            location_id=transfer.destination_location_id,
            event_type="transfer.completed" if completed else "transfer.received",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=user_id,
            payload={"credited": credited},
        )
        return {"completed": completed, "transfer": transfer}

    return run_with_retry(_op)


def cancel_transfer(
    *,
    transfer_id: int,
    org_id: int,
    user_id: int,
    reason: str | None = None,
) -> Transfer:
    """
    Cancel an in-transit transfer, returning what never arrived to the source.

    Completed transfers cannot be cancelled; received quantities stay at the
    destination.
    """
    def _op():
        transfer = _load_locked(transfer_id, org_id)
        if transfer.status == TRANSFER_STATUS_CANCELLED:
            raise TransferError("Transfer is already cancelled")
        if transfer.status == TRANSFER_STATUS_COMPLETED:
            raise TransferError("Completed transfers cannot be cancelled")

        returned = 0
        for item in transfer.items:
            pending = item.quantity - item.quantity_received
            if pending <= 0:
                continue
            increase_stock(
                org_id=org_id,
                product_id=item.product_id,
                location_id=transfer.source_location_id,
                quantity=pending,
                reason="transfer_cancelled",
                reference_type="transfer",
                reference_id=transfer.id,
                user_id=user_id,
            )
            returned += pending

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_at = utcnow()
        transfer.cancelled_by_user_id = user_id
        transfer.cancellation_reason = reason
        db.session.flush()

        append_event(
            org_id=org_id,
            location_id=transfer.source_location_id,
            event_type="transfer.cancelled",
            entity_type="transfer",
            entity_id=transfer.id,
            actor_user_id=user_id,
            note=reason,
            payload={"returned": returned},
        )
        return transfer

    return run_with_retry(_op)


def get_transfer(transfer_id: int, org_id: int) -> Transfer:
    transfer = db.session.query(Transfer).filter_by(id=transfer_id, org_id=org_id).first()
    if not transfer:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    org_id: int,
    *,
    statuses: list[str] | None = None,
    location_id: int | None = None,
    search: str | None = None,
):
    """Query of transfers, newest first. Filtering by location matches either end."""
    q = db.session.query(Transfer).filter(Transfer.org_id == org_id)
    if statuses:
        unknown = [s for s in statuses if s not in TRANSFER_STATUSES]
        if unknown:
            raise TransferError(f"Unknown status: {', '.join(unknown)}")
        q = q.filter(Transfer.status.in_(statuses))
    if location_id is not None:
        q = q.filter(or_(
            Transfer.source_location_id == location_id,
            Transfer.destination_location_id == location_id,
        ))
    if search:
        q = q.filter(or_(
            Transfer.transfer_number.ilike(f"%{search}%"),
            Transfer.notes.ilike(f"%{search}%"),
        ))
    return q.order_by(Transfer.transfer_date.desc(), Transfer.id.desc())
