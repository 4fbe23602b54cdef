# Overview: Flask API routes for stock levels, adjustments and movements.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import inventory_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_int,
    parse_optional_int,
    require_fields,
    serialize_page,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/locations/<int:location_id>/products")
@require_auth
@require_permission("inventory:read")
def products_by_location_route(location_id: int):
    """Active products with stock at a location."""
    rows = inventory_service.get_products_by_location(
        g.org_id, location_id, search=request.args.get("search")
    )
    return jsonify({"location_id": location_id, "products": rows}), 200


@inventory_bp.post("/availability")
@require_auth
@require_permission("inventory:read")
def check_availability_route():
    """
    Report shortages for a prospective set of lines.

    Request body:
    {
        "location_id": int,
        "items": [{"product_id": int | null, "quantity": int}]
    }
    """
    try:
        data = require_fields(request.get_json(), "location_id", "items")
        shortages = inventory_service.check_stock_availability(
            org_id=g.org_id,
            location_id=parse_int(data["location_id"], "location_id"),
            items=data["items"],
        )
        return jsonify({"available": not shortages, "shortages": shortages}), 200
    except (ValidationError, inventory_service.InventoryError) as e:
        return jsonify({"error": str(e)}), 400


@inventory_bp.post("/adjust")
@require_auth
@require_permission("inventory:write")
def adjust_stock_route():
    """
    Set the absolute count of one product at one location.

    Request body:
    {
        "product_id": int,
        "location_id": int,
        "quantity": int,
        "note": str (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "product_id", "location_id", "quantity")
        movement = inventory_service.set_stock(
            org_id=g.org_id,
            product_id=parse_int(data["product_id"], "product_id"),
            location_id=parse_int(data["location_id"], "location_id"),
            quantity=parse_int(data["quantity"], "quantity", minimum=0),
            user_id=g.current_user.id,
            note=data.get("note"),
        )
        commit_with_retry()
        return jsonify({"movement": movement.to_dict() if movement else None}), 200

    except (ValidationError, inventory_service.InventoryError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/bulk")
@require_auth
@require_permission("import:write")
def bulk_update_route():
    """
    Absolute counts for many products at one location, applied atomically.

    Request body:
    {
        "location_id": int,
        "rows": [{"product_id": int, "quantity": int}]
    }
    """
    try:
        data = require_fields(request.get_json(), "location_id", "rows")
        rows = [
            {
                "product_id": parse_int(row.get("product_id"), "product_id"),
                "quantity": parse_int(row.get("quantity"), "quantity", minimum=0),
            }
            for row in data["rows"]
        ]
        result = inventory_service.batch_upsert_stock(
            org_id=g.org_id,
            location_id=parse_int(data["location_id"], "location_id"),
            rows=rows,
            user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(result), 200

    except (ValidationError, inventory_service.InventoryError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to apply bulk stock update")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/movements")
@require_auth
@require_permission("inventory:read")
def list_movements_route():
    try:
        page, page_size = pagination_args(request.args)
        query = inventory_service.list_movements(
            g.org_id,
            product_id=parse_optional_int(request.args.get("product_id"), "product_id"),
            location_id=parse_optional_int(request.args.get("location_id"), "location_id"),
            reference_type=request.args.get("reference_type"),
            reference_id=parse_optional_int(request.args.get("reference_id"), "reference_id"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(serialize_page(paginate(query, page, page_size))), 200
