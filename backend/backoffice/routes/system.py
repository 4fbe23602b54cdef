# Overview: System health and version endpoints.

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Location, Organization, Role, SessionToken, User
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Database connectivity plus a count of the core tenancy tables."""
    start_time = time.time()
    try:
        details = {
            "organizations": db.session.query(Organization).count(),
            "locations": db.session.query(Location).count(),
            "users": db.session.query(User).count(),
            "roles": db.session.query(Role).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False), SessionToken.expires_at >= now
        ).count()
        expired = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False), SessionToken.expires_at < now
        ).count()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": {"active_sessions": active, "expired_pending_cleanup": expired},
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Session service error",
        }


def check_ecommerce_config() -> dict:
    # Without a secret, incoming webhooks are accepted unsigned.
    if not current_app.config.get("TIENDANUBE_WEBHOOK_SECRET"):
        return {"status": "degraded", "warning": "TIENDANUBE_WEBHOOK_SECRET is not set"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check of the database, the session table and the e-commerce config.

    Returns:
    - 200: healthy or degraded
    - 503: a dependency is unhealthy
    """
    start_time = time.time()
    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "ecommerce": check_ecommerce_config(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
