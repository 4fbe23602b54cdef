# Overview: Flask API routes for products, customers and suppliers.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import catalog_service, customer_payment_service, inventory_service, purchase_service, sale_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError, pagination_args, paginate, parse_cents, serialize_page


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


def _money_fields(data: dict) -> dict:
    fields = dict(data)
    for key in ("price_cents", "cost_cents"):
        if key in fields:
            fields[key] = parse_cents(fields[key], key)
    return fields


# Products

@catalog_bp.get("/products")
@require_auth
@require_permission("products:read")
def list_products_route():
    try:
        page, page_size = pagination_args(request.args)
        active_only = request.args.get("active_only", "true").lower() != "false"
        query = catalog_service.list_products(
            g.org_id, search=request.args.get("search"), active_only=active_only
        )
        result = paginate(query, page, page_size)
        result["items"] = [
            {**p.to_dict(), "total_stock": inventory_service.get_total_quantity(p.id)}
            for p in result["items"]
        ]
        return jsonify(result), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@catalog_bp.get("/products/<int:product_id>")
@require_auth
@require_permission("products:read")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id, g.org_id)
    except catalog_service.CatalogNotFound as e:
        return jsonify({"error": str(e)}), 404

    stock = inventory_service.get_stock_by_location(product.id)
    return jsonify({
        **product.to_dict(),
        "stock": [row.to_dict() for row in stock],
        "total_stock": sum(row.quantity for row in stock),
    }), 200


@catalog_bp.post("/products")
@require_auth
@require_permission("products:write")
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "sku": str,
        "name": str,
        "price_cents": int (optional),
        "cost_cents": int (optional),
        "barcode": str (optional),
        "item_type": "product" | "service" (optional)
    }
    """
    data = request.get_json()

    try:
        fields = _money_fields(data)
        product = catalog_service.create_product(
            org_id=g.org_id, sku=fields.pop("sku"), name=fields.pop("name"), **fields
        )
        commit_with_retry()
        return jsonify(product.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (ValidationError, catalog_service.CatalogError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.put("/products/<int:product_id>")
@require_auth
@require_permission("products:write")
def update_product_route(product_id: int):
    data = request.get_json() or {}

    try:
        product = catalog_service.update_product(product_id, g.org_id, **_money_fields(data))
        commit_with_retry()
        return jsonify(product.to_dict()), 200

    except catalog_service.CatalogNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, catalog_service.CatalogError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


# Customers

@catalog_bp.get("/customers")
@require_auth
@require_permission("customers:read")
def list_customers_route():
    try:
        page, page_size = pagination_args(request.args)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    query = catalog_service.list_customers(g.org_id, search=request.args.get("search"))
    return jsonify(serialize_page(paginate(query, page, page_size))), 200


@catalog_bp.post("/customers")
@require_auth
@require_permission("customers:write")
def create_customer_route():
    data = request.get_json()

    try:
        fields = dict(data)
        customer = catalog_service.create_customer(org_id=g.org_id, name=fields.pop("name"), **fields)
        commit_with_retry()
        return jsonify(customer.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except catalog_service.CatalogError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/customers/<int:customer_id>")
@require_auth
@require_permission("customers:read")
def get_customer_route(customer_id: int):
    """Customer with pending sales and unused credit notes."""
    try:
        customer = catalog_service.get_customer(customer_id, g.org_id)
    except catalog_service.CatalogNotFound as e:
        return jsonify({"error": str(e)}), 404

    pending = customer_payment_service.get_pending_sales(g.org_id, customer.id)
    credit_notes = sale_service.get_available_credit_notes(g.org_id, customer.id)
    return jsonify({
        **customer.to_dict(),
        "pending_sales": [s.to_dict(include_items=False) for s in pending],
        "available_credit_notes": [cn.to_dict(include_items=False) for cn in credit_notes],
    }), 200


# Suppliers

@catalog_bp.get("/suppliers")
@require_auth
@require_permission("suppliers:read")
def list_suppliers_route():
    try:
        page, page_size = pagination_args(request.args)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    query = catalog_service.list_suppliers(g.org_id, search=request.args.get("search"))
    return jsonify(serialize_page(paginate(query, page, page_size))), 200


@catalog_bp.post("/suppliers")
@require_auth
@require_permission("suppliers:write")
def create_supplier_route():
    data = request.get_json()

    try:
        fields = dict(data)
        supplier = catalog_service.create_supplier(org_id=g.org_id, name=fields.pop("name"), **fields)
        commit_with_retry()
        return jsonify(supplier.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except catalog_service.CatalogError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/suppliers/<int:supplier_id>")
@require_auth
@require_permission("suppliers:read")
def get_supplier_route(supplier_id: int):
    """Supplier with its unpaid purchases."""
    try:
        supplier = catalog_service.get_supplier(supplier_id, g.org_id)
    except catalog_service.CatalogNotFound as e:
        return jsonify({"error": str(e)}), 404

    pending = purchase_service.get_pending_purchases(g.org_id, supplier.id)
    return jsonify({
        **supplier.to_dict(),
        "pending_purchases": [p.to_dict(include_items=False) for p in pending],
    }), 200
