# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import role_service, session_service


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and hasattr(g, "org_id")


def require_auth(f):
    """
    Require a bearer session token and establish tenant context.

    Sets on flask.g:
    - g.current_user: the authenticated User
    - g.org_id: the user's organization (every query is scoped to it)
    - g.location_id: the user's default location, may be None
    - g.session_context: the full SessionContext
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.org_id = context.org_id
        g.location_id = context.location_id
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Answer 403 unless the user's role grants permission_code (use after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not role_service.user_has_permission(g.current_user, permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not any(role_service.user_has_permission(g.current_user, code) for code in permission_codes):
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_codes),
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def can(action: str) -> bool:
    """Special action check for the current user, e.g. can("view_expected_cash")."""
    return _is_authenticated() and role_service.user_has_special_action(g.current_user, action)
