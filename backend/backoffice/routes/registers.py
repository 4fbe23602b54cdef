# Overview: Flask API routes for cash registers and shifts.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import can, require_auth, require_permission
from ..extensions import db
from ..services import register_service, safe_box_service
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
)


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")

# Summary keys that reveal the expected drawer amount before counting.
EXPECTED_CASH_KEYS = ("current_cash_amount_cents", "expected_amount_cents", "discrepancy_cents")


def _shift_dict(shift) -> dict:
    return shift.to_dict(include_expected=can("view_expected_cash"))


def _visible_summary(summary: dict) -> dict:
    if can("view_expected_cash"):
        return summary
    return {k: v for k, v in summary.items() if k not in EXPECTED_CASH_KEYS}


# Registers

@registers_bp.get("")
@require_auth
@require_permission("shifts:read")
def list_registers_route():
    try:
        location_id = parse_optional_int(request.args.get("location_id"), "location_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    registers = register_service.list_cash_registers(
        g.org_id, location_id=location_id, include_inactive=include_inactive
    )
    payload = []
    for register in registers:
        active = register_service.get_active_shift(register.id, g.org_id)
        payload.append({**register.to_dict(), "open_shift_id": active.id if active else None})
    return jsonify({"registers": payload}), 200


@registers_bp.post("")
@require_auth
@require_permission("settings:write")
def create_register_route():
    try:
        data = require_fields(request.get_json(), "location_id", "name")
        register = register_service.create_cash_register(
            org_id=g.org_id,
            location_id=parse_int(data["location_id"], "location_id"),
            name=data["name"],
            user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(register.to_dict()), 201

    except (ValidationError, register_service.RegisterError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.put("/<int:register_id>")
@require_auth
@require_permission("settings:write")
def update_register_route(register_id: int):
    data = request.get_json() or {}

    try:
        register = register_service.update_cash_register(
            register_id,
            g.org_id,
            name=data.get("name"),
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
        )
        commit_with_retry()
        return jsonify(register.to_dict()), 200

    except register_service.RegisterNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, register_service.RegisterError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/<int:register_id>/toggle")
@require_auth
@require_permission("settings:write")
def toggle_register_route(register_id: int):
    try:
        register = register_service.toggle_cash_register_status(
            register_id, g.org_id, user_id=g.current_user.id
        )
        commit_with_retry()
        return jsonify(register.to_dict()), 200

    except register_service.RegisterNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except register_service.RegisterError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to toggle cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.delete("/<int:register_id>")
@require_auth
@require_permission("settings:write")
def delete_register_route(register_id: int):
    try:
        register_service.delete_cash_register(register_id, g.org_id)
        commit_with_retry()
        return jsonify({"message": "Cash register deleted"}), 200

    except register_service.RegisterNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except register_service.RegisterError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>/status")
@require_auth
@require_permission("shifts:read")
def register_status_route(register_id: int):
    """Open shift (if any) and the suggested opening amount from the last close."""
    try:
        register = register_service.get_cash_register(register_id, g.org_id)
    except register_service.RegisterNotFound as e:
        return jsonify({"error": str(e)}), 404

    active = register_service.get_active_shift(register.id, g.org_id)
    last_closed = register_service.get_last_closed_shift(register.id, g.org_id)
    return jsonify({
        "register": register.to_dict(),
        "active_shift": _shift_dict(active) if active else None,
        "suggested_opening_amount_cents": last_closed.left_in_cash_cents or 0 if last_closed else 0,
    }), 200


# Shifts

@registers_bp.post("/<int:register_id>/shifts")
@require_auth
@require_permission("shifts:write")
def open_shift_route(register_id: int):
    """
    Open a shift on a register.

    Request body:
    {
        "opening_amount_cents": int
    }

    Returns:
        201: Shift opened
        400: Register inactive or already has an open shift
    """
    data = request.get_json(silent=True) or {}

    try:
        shift = register_service.open_shift(
            org_id=g.org_id,
            register_id=register_id,
            user_id=g.current_user.id,
            opening_amount_cents=parse_cents(data.get("opening_amount_cents", 0), "opening_amount_cents"),
        )
        commit_with_retry()
        return jsonify(_shift_dict(shift)), 201

    except register_service.RegisterNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, register_service.RegisterError, register_service.ShiftError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/shifts/current")
@require_auth
@require_permission("shifts:read")
def my_active_shift_route():
    shift = register_service.get_user_active_shift(g.current_user.id, g.org_id)
    return jsonify({"shift": _shift_dict(shift) if shift else None}), 200


@registers_bp.get("/shifts")
@require_auth
@require_permission("shifts:read")
def list_shifts_route():
    try:
        page, page_size = pagination_args(request.args)
        query = register_service.list_shifts(
            g.org_id,
            status=request.args.get("status"),
            register_id=parse_optional_int(request.args.get("register_id"), "register_id"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    result = paginate(query, page, page_size)
    result["items"] = [_shift_dict(s) for s in result["items"]]
    return jsonify(result), 200


@registers_bp.get("/shifts/<int:shift_id>")
@require_auth
@require_permission("shifts:read")
def get_shift_route(shift_id: int):
    try:
        shift = register_service.get_shift(shift_id, g.org_id)
    except register_service.ShiftNotFound as e:
        return jsonify({"error": str(e)}), 404

    return jsonify({
        **_shift_dict(shift),
        "movements": [m.to_dict() for m in shift.movements],
    }), 200


@registers_bp.get("/shifts/<int:shift_id>/summary")
@require_auth
@require_permission("shifts:read")
def shift_summary_route(shift_id: int):
    try:
        summary = register_service.get_shift_summary(shift_id, g.org_id)
    except register_service.ShiftNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(_visible_summary(summary)), 200


@registers_bp.post("/shifts/<int:shift_id>/<any(cash_in, cash_out):movement_type>")
@require_auth
@require_permission("shifts:write")
def cash_movement_route(shift_id: int, movement_type: str):
    """
    Put cash into (cash_in) or take it out of (cash_out) the drawer.

    Request body:
    {
        "amount_cents": int,
        "notes": str (optional)
    }
    """
    operation = register_service.add_cash if movement_type == "cash_in" else register_service.remove_cash

    try:
        data = require_fields(request.get_json(), "amount_cents")
        movement = operation(
            shift_id=shift_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(movement.to_dict()), 201

    except register_service.ShiftNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, register_service.ShiftError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/shifts/<int:shift_id>/deposit")
@require_auth
@require_permission("treasury:write")
def deposit_to_safe_box_route(shift_id: int):
    """
    Move cash from an open shift into a safe box.

    Request body:
    {
        "safe_box_id": int,
        "amount_cents": int,
        "notes": str (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "safe_box_id", "amount_cents")
        result = register_service.deposit_to_safe_box(
            shift_id=shift_id,
            safe_box_id=parse_int(data["safe_box_id"], "safe_box_id"),
            org_id=g.org_id,
            user_id=g.current_user.id,
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify({
            "shift_movement": result["shift_movement"].to_dict(),
            "safe_box_movement": result["safe_box_movement"].to_dict(),
        }), 201

    except register_service.ShiftNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, register_service.ShiftError, safe_box_service.SafeBoxError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to deposit shift cash")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/shifts/<int:shift_id>/close")
@require_auth
@require_permission("shifts:write")
def close_shift_route(shift_id: int):
    """
    Close a shift with the counted cash.

    Request body:
    {
        "counted_amount_cents": int,
        "left_in_cash_cents": int (optional, default 0),
        "discrepancy_reason": str (optional),
        "discrepancy_notes": str (optional),
        "safe_box_id": int (optional)
    }

    The response hides expected cash and discrepancy from users without
    the view_expected_cash action.
    """
    try:
        data = require_fields(request.get_json(), "counted_amount_cents")
        shift = register_service.close_shift(
            shift_id=shift_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            counted_amount_cents=parse_cents(data["counted_amount_cents"], "counted_amount_cents"),
            left_in_cash_cents=parse_cents(data.get("left_in_cash_cents", 0), "left_in_cash_cents"),
            discrepancy_reason=data.get("discrepancy_reason"),
            discrepancy_notes=data.get("discrepancy_notes"),
            safe_box_id=parse_optional_int(data.get("safe_box_id"), "safe_box_id"),
        )
        commit_with_retry()
        return jsonify(_shift_dict(shift)), 200

    except register_service.ShiftNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except (ValidationError, register_service.ShiftError, safe_box_service.SafeBoxError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500
