# Overview: Flask API routes for customer collections and refunds.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import customer_payment_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_date,
    parse_int,
    parse_optional_int,
    require_fields,
    serialize_page,
)


customer_payments_bp = Blueprint("customer_payments", __name__, url_prefix="/api/customer-payments")


@customer_payments_bp.post("")
@require_auth
@require_permission("customers:write")
def create_customer_payment_route():
    """
    Collect money from a customer against one or more pending sales.

    Request body:
    {
        "customer_id": int (optional),
        "allocations": [{"sale_id": int, "amount_cents": int}],
        "methods": [{"payment_method_id": int, "amount_cents": int,
                     "reference": str, "cash_register_id": int, "bank_account_id": int}],
        "payment_date": "YYYY-MM-DD" (optional),
        "notes": str (optional)
    }

    Returns:
        201: Payment recorded
        400: Totals mismatch, allocation over balance, register without open shift
    """
    try:
        data = require_fields(request.get_json(), "allocations", "methods")
        payment = customer_payment_service.create_customer_payment(
            org_id=g.org_id,
            user_id=g.current_user.id,
            customer_id=parse_optional_int(data.get("customer_id"), "customer_id"),
            allocations=data["allocations"],
            methods=data["methods"],
            payment_date=parse_date(data.get("payment_date"), "payment_date"),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(payment.to_dict()), 201

    except (ValidationError, customer_payment_service.CustomerPaymentError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer payment")
        return jsonify({"error": "Internal server error"}), 500


@customer_payments_bp.get("")
@require_auth
@require_permission("customers:read")
def list_customer_payments_route():
    try:
        page, page_size = pagination_args(request.args)
        query = customer_payment_service.list_customer_payments(
            g.org_id,
            search=request.args.get("search"),
            status=request.args.get("status"),
            kind=request.args.get("kind"),
            customer_id=parse_optional_int(request.args.get("customer_id"), "customer_id"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(serialize_page(paginate(query, page, page_size))), 200


@customer_payments_bp.get("/pending-sales")
@require_auth
@require_permission("customers:read")
def pending_sales_route():
    try:
        customer_id = parse_int(request.args.get("customer_id"), "customer_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    sales = customer_payment_service.get_pending_sales(g.org_id, customer_id)
    return jsonify({
        "sales": [s.to_dict(include_items=False) for s in sales],
        "total_balance_cents": sum(s.balance_cents for s in sales),
    }), 200


@customer_payments_bp.get("/<int:payment_id>")
@require_auth
@require_permission("customers:read")
def get_customer_payment_route(payment_id: int):
    try:
        payment = customer_payment_service.get_customer_payment(payment_id, g.org_id)
        return jsonify(payment.to_dict()), 200
    except customer_payment_service.CustomerPaymentNotFound as e:
        return jsonify({"error": str(e)}), 404


@customer_payments_bp.post("/<int:payment_id>/cancel")
@require_auth
@require_permission("customers:write")
def cancel_customer_payment_route(payment_id: int):
    """Cancel a payment; allocated sales get their balance back."""
    data = request.get_json(silent=True) or {}

    try:
        payment = customer_payment_service.cancel_customer_payment(
            payment_id=payment_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        commit_with_retry()
        return jsonify(payment.to_dict()), 200

    except customer_payment_service.CustomerPaymentNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except customer_payment_service.CustomerPaymentError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel customer payment")
        return jsonify({"error": "Internal server error"}), 500


@customer_payments_bp.patch("/<int:payment_id>/notes")
@require_auth
@require_permission("customers:write")
def update_customer_payment_notes_route(payment_id: int):
    data = request.get_json(silent=True) or {}

    try:
        payment = customer_payment_service.update_payment_notes(payment_id, g.org_id, data.get("notes"))
        commit_with_retry()
        return jsonify(payment.to_dict()), 200

    except customer_payment_service.CustomerPaymentNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update customer payment notes")
        return jsonify({"error": "Internal server error"}), 500
