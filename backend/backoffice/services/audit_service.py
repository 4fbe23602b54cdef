# Overview: Append-only audit trail writer and reader.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow

"""
Audit invariants

- Append-only: events are never updated or deleted.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_event(
    *,
    org_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    location_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        org_id=org_id,
        location_id=location_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    org_id: int,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent).filter(AuditEvent.org_id == org_id)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if event_type:
        q = q.filter(AuditEvent.event_type == event_type)
    return q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc()).limit(limit).all()
