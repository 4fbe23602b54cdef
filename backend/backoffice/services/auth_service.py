# Overview: Password hashing, authentication and collaborator accounts.

"""
Authentication and collaborator management.

Passwords are hashed with bcrypt (cost factor 12) after a strength check.
Username and email are unique within an organization; login may be scoped
with the organization code when the same username exists in several tenants.
"""

import re

import bcrypt

from ..extensions import db
from ..models import Location, Organization, Role, User
from ..time_utils import utcnow
from .audit_service import append_event


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserError(Exception):
    """Raised when collaborator operations fail."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    - At least one special character
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt verification. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _check_location(org_id: int, location_id: int | None) -> None:
    if location_id is None:
        return
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location or location.org_id != org_id:
        raise UserError("Location not found")


def _check_role(org_id: int, role_id: int | None) -> None:
    if role_id is None:
        return
    role = db.session.query(Role).filter_by(id=role_id).first()
    if not role or role.org_id != org_id or not role.is_active:
        raise UserError("Role not found")


def create_user(
    *,
    org_id: int,
    username: str,
    email: str,
    password: str,
    role_id: int | None = None,
    location_id: int | None = None,
    full_name: str | None = None,
    actor_user_id: int | None = None,
) -> User:
    """
    Create a collaborator in an organization.

    Raises:
        UserError: org inactive, duplicate username/email, foreign role or location
        PasswordValidationError: weak password
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org or not org.is_active:
        raise UserError("Organization is not active")

    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise UserError("Username and email are required")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email),
    ).first()
    if existing:
        raise UserError("Username or email already exists in this organization")

    _check_role(org_id, role_id)
    _check_location(org_id, location_id)

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        role_id=role_id,
        location_id=location_id,
    )
    db.session.add(user)
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="user.created",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor_user_id,
    )
    return user


def update_user(
    user_id: int,
    org_id: int,
    *,
    full_name: str | None = None,
    email: str | None = None,
    role_id: int | None = None,
    location_id: int | None = None,
    password: str | None = None,
) -> User:
    user = db.session.query(User).filter_by(id=user_id, org_id=org_id).first()
    if not user:
        raise UserError("User not found")

    if email is not None:
        email = email.strip().lower()
        clash = db.session.query(User).filter(
            User.org_id == org_id, User.email == email, User.id != user_id
        ).first()
        if clash:
            raise UserError("Email already exists in this organization")
        user.email = email
    if full_name is not None:
        user.full_name = full_name
    if role_id is not None:
        _check_role(org_id, role_id)
        user.role_id = role_id
    if location_id is not None:
        _check_location(org_id, location_id)
        user.location_id = location_id
    if password:
        user.password_hash = hash_password(password)

    db.session.flush()
    return user


def set_user_active(user_id: int, org_id: int, is_active: bool, *, actor_user_id: int | None = None) -> User:
    user = db.session.query(User).filter_by(id=user_id, org_id=org_id).first()
    if not user:
        raise UserError("User not found")
    if not is_active and actor_user_id == user_id:
        raise UserError("You cannot deactivate your own account")

    user.is_active = is_active
    db.session.flush()

    append_event(
        org_id=org_id,
        event_type="user.activated" if is_active else "user.deactivated",
        entity_type="user",
        entity_id=user.id,
        actor_user_id=actor_user_id,
    )
    return user


def list_users(org_id: int, *, include_inactive: bool = False) -> list[User]:
    q = db.session.query(User).filter(User.org_id == org_id)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.username).all()


def authenticate(username: str, password: str, org_code: str | None = None) -> User | None:
    """
    Authenticate by username (or email) and password.

    Returns None for bad credentials, inactive users, inactive organizations,
    or an ambiguous username spread across tenants without org_code.
    Updates last_login_at on success.
    """
    query = db.session.query(User).join(Organization, Organization.id == User.org_id).filter(
        db.or_(User.username == username, User.email == (username or "").lower()),
        User.is_active.is_(True),
        Organization.is_active.is_(True),
    )
    if org_code:
        query = query.filter(Organization.code == org_code)

    candidates = query.all()
    if len(candidates) != 1:
        return None

    user = candidates[0]
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.flush()
    return user
