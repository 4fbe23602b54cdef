from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """Per-organization counter for document numbers (sales, transfers, payments...)."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_type", name="uq_document_sequences_org_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
        }
