# Overview: Flask API routes for supplier invoices (purchases).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import inventory_service, purchase_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_cents,
    parse_date,
    parse_document_fields,
    parse_int,
    parse_optional_int,
    require_fields,
)


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")

PURCHASE_ERRORS = (ValidationError, purchase_service.PurchaseError, inventory_service.InventoryError)


@purchases_bp.post("")
@require_auth
@require_permission("purchases:write")
def create_purchase_route():
    """
    Register a supplier invoice.

    Request body:
    {
        "supplier_id": int,
        "voucher_type": str,
        "voucher_number": str,
        "invoice_date": "YYYY-MM-DD",
        "items": [{"product_id": int | null, "name": str, "quantity": int, "unit_cost_cents": int}],
        "due_date": "YYYY-MM-DD" (optional),
        "location_id": int (optional),
        "discount_cents": int (optional),
        "tax_cents": int (optional),
        "products_received": bool (optional),
        "status": "draft" | "completed" (optional),
        "notes": str (optional)
    }

    Returns:
        201: Purchase created
        400: Duplicate voucher or invalid items
    """
    try:
        data = require_fields(
            request.get_json(), "supplier_id", "voucher_type", "voucher_number", "invoice_date", "items"
        )
        purchase = purchase_service.create_purchase(
            org_id=g.org_id,
            user_id=g.current_user.id,
            supplier_id=parse_int(data["supplier_id"], "supplier_id"),
            voucher_type=data["voucher_type"],
            voucher_number=str(data["voucher_number"]),
            invoice_date=parse_date(data["invoice_date"], "invoice_date"),
            items=data["items"],
            due_date=parse_date(data.get("due_date"), "due_date"),
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
            tax_cents=parse_cents(data.get("tax_cents", 0), "tax_cents"),
            products_received=bool(data.get("products_received", False)),
            status=data.get("status") or purchase_service.PURCHASE_STATUS_COMPLETED,
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(purchase.to_dict()), 201

    except PURCHASE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("")
@require_auth
@require_permission("purchases:read")
def list_purchases_route():
    try:
        page, page_size = pagination_args(request.args)
        query = purchase_service.list_purchases(
            g.org_id,
            search=request.args.get("search"),
            supplier_id=parse_optional_int(request.args.get("supplier_id"), "supplier_id"),
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = paginate(query, page, page_size)
    result["items"] = [p.to_dict(include_items=False) for p in result["items"]]
    return jsonify(result), 200


@purchases_bp.get("/check-duplicate")
@require_auth
@require_permission("purchases:read")
def check_duplicate_route():
    """?supplier_id=&voucher_type=&voucher_number=[&exclude_id=]"""
    try:
        supplier_id = parse_int(request.args.get("supplier_id"), "supplier_id")
        exclude_id = parse_optional_int(request.args.get("exclude_id"), "exclude_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    existing = purchase_service.check_duplicate_purchase(
        g.org_id,
        supplier_id,
        (request.args.get("voucher_type") or "").upper(),
        request.args.get("voucher_number") or "",
        exclude_id=exclude_id,
    )
    return jsonify({
        "duplicate": existing is not None,
        "purchase": existing.to_dict(include_items=False) if existing else None,
    }), 200


@purchases_bp.get("/pending")
@require_auth
@require_permission("purchases:read")
def pending_purchases_route():
    try:
        supplier_id = parse_int(request.args.get("supplier_id"), "supplier_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    purchases = purchase_service.get_pending_purchases(g.org_id, supplier_id)
    return jsonify({
        "purchases": [p.to_dict(include_items=False) for p in purchases],
        "total_balance_cents": sum(p.balance_cents for p in purchases),
    }), 200


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_permission("purchases:read")
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id, g.org_id)
        return jsonify(purchase.to_dict()), 200
    except purchase_service.PurchaseNotFound as e:
        return jsonify({"error": str(e)}), 404


@purchases_bp.put("/<int:purchase_id>")
@require_auth
@require_permission("purchases:write")
def update_purchase_route(purchase_id: int):
    """Edit header fields and, when "items" is present, replace the lines."""
    data = request.get_json() or {}

    try:
        purchase = purchase_service.update_purchase(
            purchase_id,
            g.org_id,
            user_id=g.current_user.id,
            items=data.get("items"),
            **parse_document_fields(data, purchase_service.UPDATABLE_FIELDS),
        )
        commit_with_retry()
        return jsonify(purchase.to_dict()), 200

    except purchase_service.PurchaseNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except PURCHASE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/receive")
@require_auth
@require_permission("purchases:write")
def receive_purchase_route(purchase_id: int):
    data = request.get_json(silent=True) or {}

    try:
        purchase = purchase_service.mark_products_received(
            purchase_id,
            g.org_id,
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(purchase.to_dict()), 200

    except purchase_service.PurchaseNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except PURCHASE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase products")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_auth
@require_permission("purchases:write")
def cancel_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.cancel_purchase(purchase_id, g.org_id, user_id=g.current_user.id)
        commit_with_retry()
        return jsonify(purchase.to_dict()), 200

    except purchase_service.PurchaseNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except PURCHASE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
@require_permission("purchases:write")
def delete_purchase_route(purchase_id: int):
    try:
        purchase_service.delete_purchase(purchase_id, g.org_id, user_id=g.current_user.id)
        commit_with_retry()
        return jsonify({"message": "Purchase deleted"}), 200

    except purchase_service.PurchaseNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except PURCHASE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete purchase")
        return jsonify({"error": "Internal server error"}), 500
