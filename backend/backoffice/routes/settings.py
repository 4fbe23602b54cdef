# Overview: Flask API routes for roles, collaborators and locations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..permissions import MODULE_PERMISSIONS, SPECIAL_ACTIONS, STANDALONE_PERMISSIONS
from ..services import auth_service, location_service, role_service
from ..services.concurrency import commit_with_retry
from ..validation import ValidationError, parse_optional_int, require_fields


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


# Permission catalogue

@settings_bp.get("/permissions")
@require_auth
def list_permissions_route():
    return jsonify({
        "permissions": [
            {"code": code, "name": name, "description": description, "module": module}
            for code, name, description, module in MODULE_PERMISSIONS + STANDALONE_PERMISSIONS
        ],
        "special_actions": [
            {"code": code, "name": name, "description": description}
            for code, name, description in SPECIAL_ACTIONS
        ],
    }), 200


# Roles

@settings_bp.get("/roles")
@require_auth
@require_permission("settings:write")
def list_roles_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    rows = role_service.list_roles(
        g.org_id, search=request.args.get("search"), include_inactive=include_inactive
    )
    return jsonify({"roles": [role.to_dict(member_count=count) for role, count in rows]}), 200


@settings_bp.post("/roles")
@require_auth
@require_permission("settings:write")
def create_role_route():
    """
    Create a custom role.

    Request body:
    {
        "name": str,
        "permissions": [str],
        "special_actions": [str] (optional),
        "description": str (optional)
    }
    """
    data = request.get_json()

    try:
        role = role_service.create_role(
            org_id=g.org_id,
            name=data["name"],
            permissions=data.get("permissions") or [],
            special_actions=data.get("special_actions"),
            description=data.get("description"),
            actor_user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(role.to_dict(member_count=0)), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except role_service.RoleError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create role")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.put("/roles/<int:role_id>")
@require_auth
@require_permission("settings:write")
def update_role_route(role_id: int):
    data = request.get_json() or {}

    try:
        role = role_service.update_role(
            role_id,
            g.org_id,
            name=data.get("name"),
            description=data.get("description"),
            permissions=data.get("permissions"),
            special_actions=data.get("special_actions"),
            actor_user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(role.to_dict(member_count=role_service.count_members(role.id))), 200

    except role_service.RoleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except role_service.RoleError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update role")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.delete("/roles/<int:role_id>")
@require_auth
@require_permission("settings:write")
def delete_role_route(role_id: int):
    try:
        role = role_service.delete_role(role_id, g.org_id, actor_user_id=g.current_user.id)
        commit_with_retry()
        return jsonify(role.to_dict()), 200

    except role_service.RoleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except role_service.RoleError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete role")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.post("/roles/<int:role_id>/duplicate")
@require_auth
@require_permission("settings:write")
def duplicate_role_route(role_id: int):
    try:
        role = role_service.duplicate_role(role_id, g.org_id, actor_user_id=g.current_user.id)
        commit_with_retry()
        return jsonify(role.to_dict(member_count=0)), 201

    except role_service.RoleNotFound as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except role_service.RoleError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to duplicate role")
        return jsonify({"error": "Internal server error"}), 500


# Collaborators

@settings_bp.get("/users")
@require_auth
@require_permission("settings:write")
def list_users_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    users = auth_service.list_users(g.org_id, include_inactive=include_inactive)
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@settings_bp.post("/users")
@require_auth
@require_permission("settings:write")
def create_user_route():
    """
    Create a collaborator.

    Request body:
    {
        "username": str,
        "email": str,
        "password": str,
        "role_id": int (optional),
        "location_id": int (optional),
        "full_name": str (optional)
    }
    """
    try:
        data = require_fields(request.get_json(), "username", "email", "password")
        user = auth_service.create_user(
            org_id=g.org_id,
            username=data["username"],
            email=data["email"],
            password=data["password"],
            role_id=parse_optional_int(data.get("role_id"), "role_id"),
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            full_name=data.get("full_name"),
            actor_user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(user.to_dict()), 201

    except (ValidationError, auth_service.UserError, auth_service.PasswordValidationError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.put("/users/<int:user_id>")
@require_auth
@require_permission("settings:write")
def update_user_route(user_id: int):
    data = request.get_json() or {}

    try:
        user = auth_service.update_user(
            user_id,
            g.org_id,
            full_name=data.get("full_name"),
            email=data.get("email"),
            role_id=parse_optional_int(data.get("role_id"), "role_id"),
            location_id=parse_optional_int(data.get("location_id"), "location_id"),
            password=data.get("password"),
        )
        commit_with_retry()
        return jsonify(user.to_dict()), 200

    except (ValidationError, auth_service.UserError, auth_service.PasswordValidationError) as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.post("/users/<int:user_id>/<any(activate, deactivate):action>")
@require_auth
@require_permission("settings:write")
def set_user_active_route(user_id: int, action: str):
    try:
        user = auth_service.set_user_active(
            user_id, g.org_id, action == "activate", actor_user_id=g.current_user.id
        )
        commit_with_retry()
        return jsonify(user.to_dict()), 200

    except auth_service.UserError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change user status")
        return jsonify({"error": "Internal server error"}), 500


# Locations

@settings_bp.get("/locations")
@require_auth
def list_locations_route():
    active_only = request.args.get("active_only", "true").lower() != "false"
    locations = location_service.list_locations(g.org_id, active_only=active_only)
    return jsonify({"locations": [loc.to_dict() for loc in locations]}), 200


@settings_bp.post("/locations")
@require_auth
@require_permission("settings:write")
def create_location_route():
    data = request.get_json()

    try:
        location = location_service.create_location(
            org_id=g.org_id,
            name=data["name"],
            address=data.get("address"),
            is_main=bool(data.get("is_main", False)),
            actor_user_id=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(location.to_dict()), 201

    except KeyError as e:
        db.session.rollback()
        return jsonify({"error": f"Missing required field: {e}"}), 400
    except location_service.LocationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create location")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.put("/locations/<int:location_id>")
@require_auth
@require_permission("settings:write")
def update_location_route(location_id: int):
    data = request.get_json() or {}

    try:
        location = location_service.update_location(
            location_id,
            g.org_id,
            name=data.get("name"),
            address=data.get("address"),
            is_active=data.get("is_active"),
        )
        commit_with_retry()
        return jsonify(location.to_dict()), 200

    except location_service.LocationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update location")
        return jsonify({"error": "Internal server error"}), 500


@settings_bp.post("/locations/<int:location_id>/main")
@require_auth
@require_permission("settings:write")
def set_main_location_route(location_id: int):
    try:
        location = location_service.set_main_location(location_id, g.org_id)
        commit_with_retry()
        return jsonify(location.to_dict()), 200

    except location_service.LocationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set main location")
        return jsonify({"error": "Internal server error"}), 500
