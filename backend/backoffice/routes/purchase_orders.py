# Overview: Flask API routes for purchase orders and their receptions.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import inventory_service, purchase_order_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_cents,
    parse_date,
    parse_document_fields,
    parse_int,
    parse_list_arg,
    parse_optional_int,
    require_fields,
)


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")

ORDER_ERRORS = (ValidationError, purchase_order_service.PurchaseOrderError, inventory_service.InventoryError)


@purchase_orders_bp.post("")
@require_auth
@require_permission("orders:write")
def create_purchase_order_route():
    """
    Create a draft purchase order.

    Request body:
    {
        "supplier_id": int,
        "items": [{"product_id": int | null, "name": str, "quantity": int, "unit_cost_cents": int}],
        "location_id": int (optional),
        "order_date": "YYYY-MM-DD" (optional),
        "expected_delivery_date": "YYYY-MM-DD" (optional),
        "discount_cents": int (optional),
        "tax_cents": int (optional),
        "notes": str (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "supplier_id", "items")
        order = purchase_order_service.create_purchase_order(
            org_id=g.org_id,
            user_id=g.current_user.id,
            supplier_id=parse_int(data["supplier_id"], "supplier_id"),
            items=data["items"],
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            order_date=parse_date(data.get("order_date"), "order_date"),
            expected_delivery_date=parse_date(data.get("expected_delivery_date"), "expected_delivery_date"),
            discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
            tax_cents=parse_cents(data.get("tax_cents", 0), "tax_cents"),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(order.to_dict()), 201

    except ORDER_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.get("")
@require_auth
@require_permission("orders:read")
def list_purchase_orders_route():
    try:
        page, page_size = pagination_args(request.args)
        query = purchase_order_service.list_purchase_orders(
            g.org_id,
            search=request.args.get("search"),
            supplier_id=parse_optional_int(request.args.get("supplier_id"), "supplier_id"),
            statuses=parse_list_arg(request.args.get("status")),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = paginate(query, page, page_size)
    result["items"] = [o.to_dict(include_items=False) for o in result["items"]]
    return jsonify(result), 200


@purchase_orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("orders:read")
def get_purchase_order_route(order_id: int):
    try:
        order = purchase_order_service.get_purchase_order(order_id, g.org_id)
    except purchase_order_service.PurchaseOrderNotFound as e:
        return jsonify({"error": str(e)}), 404

    return jsonify(order.to_dict()), 200


@purchase_orders_bp.put("/<int:order_id>")
@require_auth
@require_permission("orders:write")
def update_purchase_order_route(order_id: int):
    data = request.get_json() or {}

    try:
        order = purchase_order_service.update_purchase_order(
            order_id,
            g.org_id,
            user_id=g.current_user.id,
            items=data.get("items"),
            **parse_document_fields(data, purchase_order_service.UPDATABLE_FIELDS),
        )
        commit_with_retry()
        return jsonify(order.to_dict()), 200

    except purchase_order_service.PurchaseOrderNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ORDER_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/confirm")
@require_auth
@require_permission("orders:write")
def confirm_purchase_order_route(order_id: int):
    try:
        order = purchase_order_service.confirm_purchase_order(order_id, g.org_id, user_id=g.current_user.id)
        commit_with_retry()
        return jsonify(order.to_dict()), 200

    except purchase_order_service.PurchaseOrderNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ORDER_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to confirm purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_permission("orders:write")
def cancel_purchase_order_route(order_id: int):
    data = request.get_json(silent=True) or {}

    try:
        order = purchase_order_service.cancel_purchase_order(
            order_id, g.org_id, user_id=g.current_user.id, reason=data.get("reason")
        )
        commit_with_retry()
        return jsonify(order.to_dict()), 200

    except purchase_order_service.PurchaseOrderNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ORDER_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel purchase order")
        return jsonify({"error": "Internal server error"}), 500


@purchase_orders_bp.post("/<int:order_id>/receive")
@require_auth
@require_permission("orders:write")
def receive_purchase_order_route(order_id: int):
    """
    Report cumulative received quantities per line.

    Request body:
    {
        "items": [{"item_id": int, "quantity_received": int}],
        "location_id": int (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "items")
        order = purchase_order_service.receive_products(
            order_id,
            g.org_id,
            items=data["items"],
            user_id=g.current_user.id,
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
        )
        commit_with_retry()
        return jsonify(order.to_dict()), 200

    except purchase_order_service.PurchaseOrderNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ORDER_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive purchase order products")
        return jsonify({"error": "Internal server error"}), 500
