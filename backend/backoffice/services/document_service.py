# Overview: Sequential document numbering per organization.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
    dated_on: date | None = None,
) -> str:
    """
    Atomically allocate the next document number for an org/type.

    The counter is bumped with a single UPDATE so concurrent writers
    serialize on the sequence row. A first-time insert race is settled with
    a savepoint so the caller's transaction survives.

    Format: PREFIX-0001, or PREFIX-YYYYMMDD-0001 when dated_on is given.
    """
    if not org_id:
        raise DocumentSequenceError("org_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(org_id=org_id, document_type=document_type, next_number=2)
                )
            next_num = 1
            return _format(prefix, next_num, pad, dated_on)
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise DocumentSequenceError(f"Could not allocate {document_type} number")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )
    return _format(prefix, current - 1, pad, dated_on)


def _format(prefix: str, number: int, pad: int, dated_on: date | None) -> str:
    if dated_on is not None:
        return f"{prefix}-{dated_on.strftime('%Y%m%d')}-{number:0{pad}d}"
    return f"{prefix}-{number:0{pad}d}"
