from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Organization(db.Model):
    """
    Multi-tenant root: every business row belongs to exactly one organization.

    All locations, collaborators, products and treasury accounts are scoped
    by org_id; no data may cross organization boundaries.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    A physical point of stock: store, warehouse or depot.

    Exactly one location per organization is flagged as main; it is the
    default stock location for e-commerce sync and imports.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_locations_org_name"),
        db.Index("ix_locations_org_id", "org_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    is_main = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "address": self.address,
            "is_main": self.is_main,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
