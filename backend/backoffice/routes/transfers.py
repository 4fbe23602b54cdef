# Overview: Flask API routes for inter-location stock transfers.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import inventory_service, transfer_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    paginate,
    parse_date,
    parse_int,
    parse_list_arg,
    parse_optional_int,
    serialize_page,
)


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_auth
@require_permission("inventory:write")
def create_transfer():
    """
    Create a transfer. Source stock leaves immediately.

    Request body:
    {
        "source_location_id": int,
        "destination_location_id": int,
        "items": [{"product_id": int, "quantity": int}],
        "notes": str (optional),
        "transfer_date": "YYYY-MM-DD" (optional),
        "mark_as_received": bool (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request or insufficient stock
        403: Forbidden
    """
    data = request.get_json()

    try:
        transfer = transfer_service.create_transfer(
            org_id=g.org_id,
            user_id=g.current_user.id,
            source_location_id=parse_int(data["source_location_id"], "source_location_id"),
            destination_location_id=parse_int(data["destination_location_id"], "destination_location_id"),
            items=data["items"],
            notes=data.get("notes"),
            transfer_date=parse_date(data.get("transfer_date"), "transfer_date"),
            mark_as_received=bool(data.get("mark_as_received", False)),
        )

        commit_with_retry()

        return jsonify(transfer.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except (ValidationError, transfer_service.TransferError, inventory_service.InventoryError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>/receive", methods=["POST"])
@require_auth
@require_permission("inventory:write")
def receive_transfer(transfer_id: int):
    """
    Report received quantities (running totals per line).

    Request body:
    {
        "items": [{"item_id": int, "quantity_received": int}]
    }

    Returns:
        200: {"completed": bool, "transfer": {...}}
        400: Transfer not in transit, unknown line
        404: Transfer not found
    """
    data = request.get_json()

    try:
        result = transfer_service.receive_transfer(
            transfer_id=transfer_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            received_items=data["items"],
        )

        commit_with_retry()

        return jsonify({
            "completed": result["completed"],
            "transfer": result["transfer"].to_dict(),
        }), 200

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except transfer_service.TransferNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except transfer_service.TransferError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to receive transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_auth
@require_permission("inventory:write")
def cancel_transfer(transfer_id: int):
    """
    Cancel a transfer; unreceived quantities go back to the source.

    Returns:
        200: Transfer cancelled
        400: Already completed or cancelled
        404: Transfer not found
    """
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.cancel_transfer(
            transfer_id=transfer_id,
            org_id=g.org_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )

        commit_with_retry()

        return jsonify(transfer.to_dict()), 200

    except transfer_service.TransferNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except transfer_service.TransferError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_auth
@require_permission("inventory:read")
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id, g.org_id)
        return jsonify(transfer.to_dict()), 200
    except transfer_service.TransferNotFound as e:
        return jsonify({"error": str(e)}), 404


@transfers_bp.route("", methods=["GET"])
@require_auth
@require_permission("inventory:read")
def list_transfers():
    """
    List transfers.

    Query params:
        status: comma separated (in_transit,completed,cancelled)
        location_id: source or destination
        search: transfer number or notes
        page, page_size
    """
    try:
        page, page_size = pagination_args(request.args)
        query = transfer_service.list_transfers(
            g.org_id,
            statuses=parse_list_arg(request.args.get("status")),
            location_id=parse_optional_int(request.args.get("location_id"), "location_id"),
            search=request.args.get("search"),
        )
    except (ValidationError, transfer_service.TransferError) as e:
        return jsonify({"error": str(e)}), 400

    result = paginate(query, page, page_size)
    result["items"] = [t.to_dict(include_items=False) for t in result["items"]]
    return jsonify(result), 200
