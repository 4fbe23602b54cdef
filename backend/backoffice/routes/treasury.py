# Overview: Flask API routes for treasury: balances, transfers, manual movements,
# bank accounts and safe boxes.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..services import bank_account_service, safe_box_service, treasury_service
from ..services.concurrency import commit_with_retry
from ..validation import (
    ValidationError,
    pagination_args,
    parse_cents,
    parse_date,
    parse_datetime,
    parse_int,
    parse_optional_int,
    require_fields,
)


treasury_bp = Blueprint("treasury", __name__, url_prefix="/api/treasury")

NOT_FOUND_ERRORS = (
    treasury_service.TreasuryNotFound,
    bank_account_service.BankAccountNotFound,
    safe_box_service.SafeBoxNotFound,
)
TREASURY_ERRORS = (
    ValidationError,
    treasury_service.TreasuryError,
    bank_account_service.BankAccountError,
    safe_box_service.SafeBoxError,
)


def _treasury_write(action: str, operation, status: int = 200):
    """Run a treasury write, commit, and map failures to HTTP answers."""
    try:
        result = operation()
        commit_with_retry()
        return jsonify(result), status

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except NOT_FOUND_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except TREASURY_ERRORS as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": "Internal server error"}), 500


# Balances

@treasury_bp.get("/overview")
@require_auth
@require_permission("treasury:read")
def overview_route():
    """Accounts per type with balances, and the grand total."""
    return jsonify(treasury_service.get_treasury_overview(g.org_id)), 200


@treasury_bp.get("/accounts/<any(bank_account, safe_box, cash_register):account_type>/<int:account_id>")
@require_auth
@require_permission("treasury:read")
def account_detail_route(account_type: str, account_id: int):
    try:
        return jsonify(treasury_service.get_account_detail(g.org_id, account_type, account_id)), 200
    except treasury_service.TreasuryNotFound as e:
        return jsonify({"error": str(e)}), 404


@treasury_bp.get("/movements")
@require_auth
@require_permission("treasury:read")
def unified_movements_route():
    """
    Query params:
        account_type: bank_account | safe_box | cash_register
        category: customer_collection | supplier_payment | manual | transfer |
                  safe_box_deposit | cash_register
        date_from, date_to, page, page_size
    """
    try:
        page, page_size = pagination_args(request.args)
        result = treasury_service.get_unified_movements(
            g.org_id,
            account_type=request.args.get("account_type"),
            category=request.args.get("category"),
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
            page=page,
            page_size=page_size,
        )
    except (ValidationError, treasury_service.TreasuryError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(result), 200


# Transfers and manual movements

@treasury_bp.post("/transfers")
@require_auth
@require_permission("treasury:write")
def create_transfer_route():
    """
    Move money between two accounts.

    Request body:
    {
        "source_type": "bank_account" | "safe_box" | "cash_register",
        "source_id": int,
        "destination_type": "bank_account" | "safe_box" | "cash_register",
        "destination_id": int,
        "amount_cents": int,
        "reference": str (optional),
        "description": str (optional),
        "movement_date": ISO datetime (optional)
    }
    """
    data = request.get_json() or {}

    def _op():
        require_fields(data, "source_type", "source_id", "destination_type", "destination_id", "amount_cents")
        return treasury_service.create_treasury_transfer(
            org_id=g.org_id,
            user_id=g.current_user.id,
            source_type=data["source_type"],
            source_id=parse_int(data["source_id"], "source_id"),
            destination_type=data["destination_type"],
            destination_id=parse_int(data["destination_id"], "destination_id"),
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
            reference=data.get("reference"),
            description=data.get("description"),
            movement_date=parse_datetime(data.get("movement_date"), "movement_date"),
        )

    return _treasury_write("create treasury transfer", _op, 201)


@treasury_bp.post("/movements")
@require_auth
@require_permission("treasury:write")
def create_manual_movement_route():
    """
    Manual deposit or withdrawal on a bank account or safe box.

    Request body:
    {
        "account_type": "bank_account" | "safe_box",
        "account_id": int,
        "movement_type": "deposit" | "withdrawal",
        "amount_cents": int,
        "reference": str (optional),
        "description": str (optional),
        "movement_date": ISO datetime (optional)
    }
    """
    data = request.get_json() or {}

    def _op():
        require_fields(data, "account_type", "account_id", "movement_type", "amount_cents")
        movement = treasury_service.create_manual_movement(
            org_id=g.org_id,
            user_id=g.current_user.id,
            account_type=data["account_type"],
            account_id=parse_int(data["account_id"], "account_id"),
            movement_type=data["movement_type"],
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
            reference=data.get("reference"),
            description=data.get("description"),
            movement_date=parse_datetime(data.get("movement_date"), "movement_date"),
        )
        return movement.to_dict()

    return _treasury_write("create manual movement", _op, 201)


@treasury_bp.put("/movements/<any(bank_account, safe_box):account_type>/<int:movement_id>")
@require_auth
@require_permission("treasury:write")
def update_manual_movement_route(account_type: str, movement_id: int):
    data = request.get_json() or {}

    def _op():
        fields = {k: v for k, v in data.items() if k in treasury_service.MANUAL_FIELDS}
        if "amount_cents" in fields:
            fields["amount_cents"] = parse_cents(fields["amount_cents"], "amount_cents", allow_zero=False)
        if "movement_date" in fields:
            fields["movement_date"] = parse_datetime(fields["movement_date"], "movement_date")
        movement = treasury_service.update_manual_movement(
            org_id=g.org_id,
            user_id=g.current_user.id,
            account_type=account_type,
            movement_id=movement_id,
            **fields,
        )
        return movement.to_dict()

    return _treasury_write("update manual movement", _op)


@treasury_bp.delete("/movements/<any(bank_account, safe_box):account_type>/<int:movement_id>")
@require_auth
@require_permission("treasury:write")
def delete_manual_movement_route(account_type: str, movement_id: int):
    def _op():
        treasury_service.delete_manual_movement(
            org_id=g.org_id,
            user_id=g.current_user.id,
            account_type=account_type,
            movement_id=movement_id,
        )
        return {"message": "Movement deleted"}

    return _treasury_write("delete manual movement", _op)


# Bank accounts

@treasury_bp.get("/bank-accounts")
@require_auth
@require_permission("treasury:read")
def list_bank_accounts_route():
    status = request.args.get("status", "active")
    accounts = bank_account_service.list_bank_accounts(g.org_id, status=None if status == "all" else status)
    return jsonify({"bank_accounts": [a.to_dict() for a in accounts]}), 200


@treasury_bp.post("/bank-accounts")
@require_auth
@require_permission("treasury:write")
def create_bank_account_route():
    data = request.get_json() or {}

    def _op():
        require_fields(data, "bank_name", "account_name")
        account = bank_account_service.create_bank_account(
            org_id=g.org_id,
            bank_name=data["bank_name"],
            account_name=data["account_name"],
            account_number=data.get("account_number"),
            currency=data.get("currency") or "ARS",
            initial_balance_cents=parse_cents(data.get("initial_balance_cents", 0), "initial_balance_cents"),
            balance_date=parse_date(data.get("balance_date"), "balance_date"),
            uses_checkbook=bool(data.get("uses_checkbook", False)),
            user_id=g.current_user.id,
        )
        return account.to_dict()

    return _treasury_write("create bank account", _op, 201)


@treasury_bp.put("/bank-accounts/<int:account_id>")
@require_auth
@require_permission("treasury:write")
def update_bank_account_route(account_id: int):
    data = request.get_json() or {}

    def _op():
        fields = dict(data)
        if "initial_balance_cents" in fields:
            fields["initial_balance_cents"] = parse_cents(fields["initial_balance_cents"], "initial_balance_cents")
        if "balance_date" in fields:
            fields["balance_date"] = parse_date(fields["balance_date"], "balance_date")
        return bank_account_service.update_bank_account(account_id, g.org_id, **fields).to_dict()

    return _treasury_write("update bank account", _op)


@treasury_bp.post("/bank-accounts/<int:account_id>/<any(archive, restore):action>")
@require_auth
@require_permission("treasury:write")
def bank_account_status_route(account_id: int, action: str):
    status = "archived" if action == "archive" else "active"
    return _treasury_write(
        f"{action} bank account",
        lambda: bank_account_service.set_bank_account_status(
            account_id, g.org_id, status, user_id=g.current_user.id
        ).to_dict(),
    )


@treasury_bp.delete("/bank-accounts/<int:account_id>")
@require_auth
@require_permission("treasury:write")
def delete_bank_account_route(account_id: int):
    def _op():
        bank_account_service.delete_bank_account(account_id, g.org_id, user_id=g.current_user.id)
        return {"message": "Bank account deleted"}

    return _treasury_write("delete bank account", _op)


# Safe boxes

@treasury_bp.get("/safe-boxes")
@require_auth
@require_permission("treasury:read")
def list_safe_boxes_route():
    status = request.args.get("status", "active")
    boxes = safe_box_service.list_safe_boxes(g.org_id, status=None if status == "all" else status)
    return jsonify({
        "safe_boxes": [{**b.to_dict(), "balance_cents": safe_box_service.get_balance(b)} for b in boxes]
    }), 200


@treasury_bp.post("/safe-boxes")
@require_auth
@require_permission("treasury:write")
def create_safe_box_route():
    data = request.get_json() or {}

    def _op():
        require_fields(data, "name")
        box = safe_box_service.create_safe_box(
            org_id=g.org_id,
            name=data["name"],
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            currency=data.get("currency") or "ARS",
            initial_balance_cents=parse_cents(data.get("initial_balance_cents", 0), "initial_balance_cents"),
            balance_date=parse_date(data.get("balance_date"), "balance_date"),
            user_id=g.current_user.id,
        )
        return box.to_dict()

    return _treasury_write("create safe box", _op, 201)


@treasury_bp.put("/safe-boxes/<int:safe_box_id>")
@require_auth
@require_permission("treasury:write")
def update_safe_box_route(safe_box_id: int):
    data = request.get_json() or {}

    def _op():
        fields = dict(data)
        if "location_id" in fields:
            fields["location_id"] = parse_optional_int(fields["location_id"], "location_id")
        if "balance_date" in fields:
            fields["balance_date"] = parse_date(fields["balance_date"], "balance_date")
        return safe_box_service.update_safe_box(safe_box_id, g.org_id, **fields).to_dict()

    return _treasury_write("update safe box", _op)


@treasury_bp.post("/safe-boxes/<int:safe_box_id>/<any(archive, restore):action>")
@require_auth
@require_permission("treasury:write")
def safe_box_status_route(safe_box_id: int, action: str):
    status = "archived" if action == "archive" else "active"
    return _treasury_write(
        f"{action} safe box",
        lambda: safe_box_service.set_safe_box_status(
            safe_box_id, g.org_id, status, user_id=g.current_user.id
        ).to_dict(),
    )


@treasury_bp.delete("/safe-boxes/<int:safe_box_id>")
@require_auth
@require_permission("treasury:write")
def delete_safe_box_route(safe_box_id: int):
    def _op():
        safe_box_service.delete_safe_box(safe_box_id, g.org_id, user_id=g.current_user.id)
        return {"message": "Safe box deleted"}

    return _treasury_write("delete safe box", _op)


@treasury_bp.post("/safe-boxes/<int:safe_box_id>/<any(deposit, withdraw):action>")
@require_auth
@require_permission("treasury:write")
def safe_box_cash_route(safe_box_id: int, action: str):
    """
    Put cash into or take it out of a safe box. Withdrawals cannot exceed the balance.

    Request body:
    {
        "amount_cents": int,
        "reference": str (optional),
        "notes": str (optional),
        "movement_date": ISO datetime (optional)
    }
    """
    data = request.get_json() or {}
    operation = safe_box_service.deposit if action == "deposit" else safe_box_service.withdraw

    def _op():
        require_fields(data, "amount_cents")
        movement = operation(
            safe_box_id=safe_box_id,
            org_id=g.org_id,
            amount_cents=parse_cents(data["amount_cents"], "amount_cents", allow_zero=False),
            user_id=g.current_user.id,
            reference=data.get("reference"),
            notes=data.get("notes"),
            movement_date=parse_datetime(data.get("movement_date"), "movement_date"),
        )
        return movement.to_dict()

    return _treasury_write(f"{action} safe box cash", _op, 201)
