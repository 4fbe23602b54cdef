# Overview: Flask API routes for sales, credit notes and credit note applications.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import customer_payment_service, inventory_service, sale_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_cents,
    parse_date,
    parse_datetime,
    parse_int,
    parse_list_arg,
    parse_optional_int,
    require_fields,
)


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

# Everything a sale or credit note operation may raise for bad input or state.
SALE_ERRORS = (
    ValidationError,
    sale_service.SaleError,
    inventory_service.InventoryError,
    customer_payment_service.CustomerPaymentError,
)


@sales_bp.post("")
@require_auth
@require_permission("sales:write")
def create_sale_route():
    """
    Create a sale. Stock leaves the location immediately.

    Request body:
    {
        "location_id": int,
        "items": [{"product_id": int | null, "quantity": int,
                   "unit_price_cents": int (optional), "description": str (optional)}],
        "voucher_type": "TICKET" | "INVOICE_A" | "INVOICE_B" | "INVOICE_C" (optional),
        "customer_id": int (optional),
        "cash_register_id": int (optional),
        "discount_cents": int (optional),
        "tax_cents": int (optional),
        "payments": [{"payment_method_id": int, "amount_cents": int, ...}] (optional),
        "notes": str (optional),
        "sale_date": ISO datetime (optional)
    }

    Returns:
        201: Sale created
        400: Invalid request, insufficient stock or payment problem
    """
    data = request.get_json()

    try:
        sale = sale_service.create_sale(
            org_id=g.org_id,
            user_id=g.current_user.id,
            location_id=parse_int(data["location_id"], "location_id"),
            items=data["items"],
            voucher_type=data.get("voucher_type") or "TICKET",
            customer_id=parse_optional_int(data.get("customer_id"), "customer_id"),
            cash_register_id=parse_optional_int(data.get("cash_register_id"), "cash_register_id"),
            discount_cents=parse_cents(data.get("discount_cents", 0), "discount_cents"),
            tax_cents=parse_cents(data.get("tax_cents", 0), "tax_cents"),
            payments=data.get("payments"),
            notes=data.get("notes"),
            sale_date=parse_datetime(data.get("sale_date"), "sale_date"),
        )
        commit_with_retry()
        return jsonify(sale.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except SALE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
@require_permission("sales:read")
def list_sales_route():
    """
    Query params:
        status: comma separated (PENDING,COMPLETED,CANCELLED)
        voucher_type, customer_id, location_id, date_from, date_to, search
        page, page_size
    """
    try:
        page, page_size = pagination_args(request.args)
        query = sale_service.list_sales(
            g.org_id,
            search=request.args.get("search"),
            statuses=parse_list_arg(request.args.get("status")),
            voucher_type=request.args.get("voucher_type"),
            customer_id=parse_optional_int(request.args.get("customer_id"), "customer_id"),
            location_id=parse_optional_int(request.args.get("location_id"), "location_id"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = paginate(query, page, page_size)
    result["items"] = [s.to_dict(include_items=False) for s in result["items"]]
    return jsonify(result), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales:read")
def get_sale_route(sale_id: int):
    try:
        sale = sale_service.get_sale(sale_id, g.org_id)
    except sale_service.SaleNotFound as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        **sale.to_dict(),
        "payments": customer_payment_service.get_payments_by_sale(sale.id, g.org_id),
    }), 200


@sales_bp.patch("/<int:sale_id>/notes")
@require_auth
@require_permission("sales:write")
def update_sale_notes_route(sale_id: int):
    data = request.get_json(silent=True) or {}

    try:
        sale = sale_service.update_sale_notes(sale_id, g.org_id, data.get("notes"))
        commit_with_retry()
        return jsonify(sale.to_dict(include_items=False)), 200

    except sale_service.SaleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update sale notes")
        return jsonify({"error": "Internal server error"}), 500


# Credit notes

@sales_bp.post("/<int:sale_id>/credit-notes")
@require_auth
@require_permission("sales:write")
def create_credit_note_route(sale_id: int):
    """
    Issue a credit note against a sale. Returned products go back to stock.

    Request body:
    {
        "items": [{"sale_item_id": int, "quantity": int}],
        "refund_methods": [{"payment_method_id": int, "amount_cents": int, ...}] (optional),
        "reason": str (optional),
        "cash_register_id": int (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "items")
        note = sale_service.create_credit_note(
            org_id=g.org_id,
            user_id=g.current_user.id,
            sale_id=sale_id,
            items=data["items"],
            refund_methods=data.get("refund_methods"),
            reason=data.get("reason"),
            cash_register_id=parse_optional_int(data.get("cash_register_id"), "cash_register_id"),
        )
        commit_with_retry()
        return jsonify(note.to_dict()), 201

    except sale_service.SaleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except SALE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create credit note")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/credit-notes/<int:credit_note_id>/cancel")
@require_auth
@require_permission("sales:write")
def cancel_credit_note_route(credit_note_id: int):
    data = request.get_json(silent=True) or {}

    try:
        note = sale_service.cancel_credit_note(
            credit_note_id=credit_note_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            revert_stock=bool(data.get("revert_stock", True)),
        )
        commit_with_retry()
        return jsonify(note.to_dict()), 200

    except sale_service.SaleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except SALE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel credit note")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/credit-notes/available")
@require_auth
@require_permission("sales:read")
def available_credit_notes_route():
    try:
        customer_id = parse_int(request.args.get("customer_id"), "customer_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    notes = sale_service.get_available_credit_notes(g.org_id, customer_id)
    return jsonify({"credit_notes": [n.to_dict(include_items=False) for n in notes]}), 200


@sales_bp.post("/credit-notes/<int:credit_note_id>/apply")
@require_auth
@require_permission("sales:write")
def apply_credit_note_route(credit_note_id: int):
    """
    Use a credit note's remaining credit to pay a sale.

    Request body:
    {
        "sale_id": int,
        "amount_cents": int
    }
    """
    try:
        data = require_fields(request.get_json(), "sale_id", "amount_cents")
        application = sale_service.apply_credit_note_to_sale(
            credit_note_id=credit_note_id,
            sale_id=parse_int(data["sale_id"], "sale_id"),
            org_id=g.org_id,
            user_id=g.current_user.id,
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
        )
        commit_with_retry()
        return jsonify(application.to_dict()), 201

    except sale_service.SaleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except SALE_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to apply credit note")
        return jsonify({"error": "Internal server error"}), 500
