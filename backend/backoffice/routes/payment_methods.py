# Overview: Flask API routes for the payment method catalogue.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import payment_method_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError, parse_cents, parse_int, parse_optional_int


payment_methods_bp = Blueprint("payment_methods", __name__, url_prefix="/api/payment-methods")


def _parse_fields(data: dict) -> dict:
    fields = {k: v for k, v in data.items() if k not in ("name", "method_type")}
    if "fee_percentage_bps" in fields:
        fields["fee_percentage_bps"] = parse_int(fields["fee_percentage_bps"], "fee_percentage_bps", minimum=0)
    if "fee_fixed_cents" in fields:
        fields["fee_fixed_cents"] = parse_cents(fields["fee_fixed_cents"], "fee_fixed_cents")
    if "bank_account_id" in fields:
        fields["bank_account_id"] = parse_optional_int(fields["bank_account_id"], "bank_account_id")
    return fields


@payment_methods_bp.get("")
@require_auth
def list_payment_methods_route():
    active_only = request.args.get("active_only", "true").lower() != "false"
    methods = payment_method_service.list_payment_methods(
        g.org_id, active_only=active_only, method_type=request.args.get("method_type")
    )
    return jsonify({"payment_methods": [m.to_dict() for m in methods]}), 200


@payment_methods_bp.post("")
@require_auth
@require_permission("settings:write")
def create_payment_method_route():
    """
    Create a payment method.

    Request body:
    {
        "name": str,
        "method_type": "CASH" | "BANK_TRANSFER" | "DEBIT_CARD" | "CREDIT_CARD" | "CHECK" | "OTHER",
        "fee_percentage_bps": int (optional),
        "fee_fixed_cents": int (optional),
        "requires_reference": bool (optional),
        "bank_account_id": int (optional)
    }
    """
    data = request.get_json()

    try:
        method = payment_method_service.create_payment_method(
            org_id=g.org_id,
            name=data["name"],
            method_type=data["method_type"],
            **_parse_fields(data),
        )
        commit_with_retry()
        return jsonify(method.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (ValidationError, payment_method_service.PaymentMethodError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create payment method")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.put("/<int:method_id>")
@require_auth
@require_permission("settings:write")
def update_payment_method_route(method_id: int):
    data = request.get_json() or {}

    try:
        fields = _parse_fields(data)
        for key in ("name", "method_type"):
            if key in data:
                fields[key] = data[key]
        method = payment_method_service.update_payment_method(method_id, g.org_id, **fields)
        commit_with_retry()
        return jsonify(method.to_dict()), 200

    except payment_method_service.PaymentMethodNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, payment_method_service.PaymentMethodError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update payment method")
        return jsonify({"error": "Internal server error"}), 500


@payment_methods_bp.delete("/<int:method_id>")
@require_auth
@require_permission("settings:write")
def delete_payment_method_route(method_id: int):
    """Delete, or deactivate when payments already reference the method."""
    try:
        removed = payment_method_service.delete_payment_method(method_id, g.org_id)
        commit_with_retry()
        return jsonify({"deleted": removed, "deactivated": not removed}), 200

    except payment_method_service.PaymentMethodNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete payment method")
        return jsonify({"error": "Internal server error"}), 500
