# Overview: Flask API routes for login, logout and the current identity.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..extensions import db
from ..services import auth_service, role_service, session_service
from ..services.concurrency import commit_with_retry


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _identity(user) -> dict:
    return {
        "user": user.to_dict(),
        "permissions": sorted(role_service.get_user_permissions(user)),
        "special_actions": sorted(role_service.get_user_special_actions(user)),
    }


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and open a session.

    Body: {"username": str, "password": str, "org_code"?: str}
    The returned token goes in "Authorization: Bearer <token>".
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")
        if not all([username, password]):
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password, data.get("org_code"))
        if not user:
            db.session.rollback()
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        commit_with_retry()

        return jsonify({
            **_identity(user),
            "token": token,
            "session": session.to_dict(),
            "org_id": session.org_id,
            "location_id": user.location_id,
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.token)
        commit_with_retry()
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({**_identity(g.current_user), "org_id": g.org_id, "location_id": g.location_id}), 200
