from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Role(db.Model):
    """
    Org-scoped role carrying a flat list of "module:action" permission codes.

    special_actions holds capabilities that are not module read/write pairs
    (e.g. "view_expected_cash" to see the expected amount when closing a shift).
    System roles are seeded per organization and cannot be deleted.
    """
    __tablename__ = "roles"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_roles_org_name"),
        db.Index("ix_roles_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    permissions = db.Column(db.JSON, nullable=False, default=list)
    special_actions = db.Column(db.JSON, nullable=False, default=list)

    is_system = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    users = db.relationship("User", back_populates="role", lazy=True)

    def to_dict(self, *, member_count: int | None = None) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "permissions": list(self.permissions or []),
            "special_actions": list(self.special_actions or []),
            "is_system": self.is_system,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
        if member_count is not None:
            data["member_count"] = member_count
        return data


class User(db.Model):
    """
    Collaborator account used for authentication and attribution.

    Username and email are unique within an organization, not globally.
    A collaborator may be pinned to a location (their default store).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        db.UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        db.Index("ix_users_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))
    role = db.relationship("Role", back_populates="users")
    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role_id": self.role_id,
            "role_name": self.role.name if self.role else None,
            "location_id": self.location_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class SessionToken(db.Model):
    """
    Opaque bearer session. Only the SHA-256 hash of the token is stored.

    org_id is captured at login and is the tenant context for every request
    made with the token.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "org_id": self.org_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
