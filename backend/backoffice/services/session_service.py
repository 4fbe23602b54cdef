# Overview: Opaque bearer session tokens with absolute and idle timeouts.

"""
Session token management.

Tokens are 32 random bytes (hex encoded) handed to the client once; the
database only keeps their SHA-256 hash. The organization is captured at
login and stays fixed for the lifetime of the session.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import Organization, SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Identity and tenant context resolved from a bearer token."""
    user: User
    session: SessionToken
    org_id: int
    location_id: int | None


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_ABSOLUTE_HOURS", 24))


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config.get("SESSION_IDLE_HOURS", 8))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for high-entropy tokens (unlike passwords)."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user: User,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Create a session for an authenticated user.

    Returns (session_record, plaintext_token).
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        org_id=user.org_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _absolute_timeout(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.flush()
    return session, plaintext_token


def _revoke(session: SessionToken) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token into a SessionContext.

    Returns None (and revokes where it applies) when the token is unknown,
    revoked, expired, idle for too long, or its user or organization has
    been deactivated. Touches last_used_at on success.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > _idle_timeout():
        _revoke(session)
        db.session.commit()
        return None

    user = session.user
    org = db.session.get(Organization, session.org_id)
    if not user or not user.is_active or not org or not org.is_active:
        _revoke(session)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(
        user=user,
        session=session,
        org_id=session.org_id,
        location_id=user.location_id,
    )


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False
    _revoke(session)
    db.session.flush()
    return True


def revoke_all_user_sessions(user_id: int) -> int:
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        _revoke(session)
    db.session.flush()
    return len(sessions)
