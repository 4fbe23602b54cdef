from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail for cross-cutting domain events.

    Written inside the same transaction as the change it records; rows are
    never updated or deleted.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    note = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "location_id": self.location_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }
