# Overview: Flask API routes for payments to suppliers.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import supplier_payment_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_cents,
    parse_date,
    parse_int,
    parse_optional_int,
    require_fields,
    serialize_page,
)


supplier_payments_bp = Blueprint("supplier_payments", __name__, url_prefix="/api/supplier-payments")


@supplier_payments_bp.post("")
@require_auth
@require_permission("suppliers:write")
def create_supplier_payment_route():
    """
    Pay a supplier, allocating to purchases and/or leaving money on account.

    Request body:
    {
        "supplier_id": int,
        "methods": [{"payment_method_id": int, "amount_cents": int,
                     "reference": str, "cash_register_id": int, "bank_account_id": int}],
        "allocations": [{"purchase_id": int, "amount_cents": int}] (optional),
        "on_account_amount_cents": int (optional),
        "payment_date": "YYYY-MM-DD" (optional),
        "notes": str (optional)
    }

    Returns:
        201: Payment recorded
        400: Totals mismatch, allocation over balance, not enough cash in drawer
    """
    try:
        data = require_fields(request.get_json(), "supplier_id", "methods")
        payment = supplier_payment_service.create_supplier_payment(
            org_id=g.org_id,
            user_id=g.current_user.id,
            supplier_id=parse_int(data["supplier_id"], "supplier_id"),
            methods=data["methods"],
            allocations=data.get("allocations"),
            on_account_amount_cents=parse_cents(data.get("on_account_amount_cents", 0), "on_account_amount_cents"),
            payment_date=parse_date(data.get("payment_date"), "payment_date"),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(payment.to_dict()), 201

    except (ValidationError, supplier_payment_service.SupplierPaymentError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create supplier payment")
        return jsonify({"error": "Internal server error"}), 500


@supplier_payments_bp.get("")
@require_auth
@require_permission("suppliers:read")
def list_supplier_payments_route():
    try:
        page, page_size = pagination_args(request.args)
        query = supplier_payment_service.list_supplier_payments(
            g.org_id,
            search=request.args.get("search"),
            supplier_id=parse_optional_int(request.args.get("supplier_id"), "supplier_id"),
            status=request.args.get("status"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(serialize_page(paginate(query, page, page_size))), 200


@supplier_payments_bp.get("/<int:payment_id>")
@require_auth
@require_permission("suppliers:read")
def get_supplier_payment_route(payment_id: int):
    try:
        payment = supplier_payment_service.get_supplier_payment(payment_id, g.org_id)
        return jsonify(payment.to_dict()), 200
    except supplier_payment_service.SupplierPaymentNotFound as e:
        return jsonify({"error": str(e)}), 404


@supplier_payments_bp.post("/<int:payment_id>/cancel")
@require_auth
@require_permission("suppliers:write")
def cancel_supplier_payment_route(payment_id: int):
    data = request.get_json(silent=True) or {}

    try:
        payment = supplier_payment_service.cancel_supplier_payment(
            payment_id=payment_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        commit_with_retry()
        return jsonify(payment.to_dict()), 200

    except supplier_payment_service.SupplierPaymentNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except supplier_payment_service.SupplierPaymentError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel supplier payment")
        return jsonify({"error": "Internal server error"}), 500


@supplier_payments_bp.patch("/<int:payment_id>/notes")
@require_auth
@require_permission("suppliers:write")
def update_supplier_payment_notes_route(payment_id: int):
    data = request.get_json(silent=True) or {}

    try:
        payment = supplier_payment_service.update_payment_notes(payment_id, g.org_id, data.get("notes"))
        commit_with_retry()
        return jsonify(payment.to_dict()), 200

    except supplier_payment_service.SupplierPaymentNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update supplier payment notes")
        return jsonify({"error": "Internal server error"}), 500
