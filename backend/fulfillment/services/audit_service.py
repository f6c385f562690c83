# Overview: Append-only fulfillment audit log; written in the caller's transaction.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import FulfillmentEvent
from fulfillment.time_utils import utcnow

"""
Fulfillment audit log invariants

- Append-only: no updates or deletes of existing events.
- No domain/business logic here.
- Events are written inside the same DB transaction as the state change they
  record; a rolled-back operation leaves no audit row behind.
"""


def append_fulfillment_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> FulfillmentEvent:
    ev = FulfillmentEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        note=(note[:255] if note else None),
        payload=payload,
    )
    db.session.add(ev)
    return ev


def list_fulfillment_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[FulfillmentEvent]:
    q = db.session.query(FulfillmentEvent)
    if entity_type:
        q = q.filter(FulfillmentEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(FulfillmentEvent.entity_id == entity_id)
    if event_type:
        q = q.filter(FulfillmentEvent.event_type == event_type)

    limit = max(1, min(int(limit), 500))
    return q.order_by(FulfillmentEvent.id.asc()).limit(limit).all()
