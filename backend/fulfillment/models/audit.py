from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z, utcnow


class FulfillmentEvent(db.Model):
    """
    Append-only audit log of lifecycle events.

    One row per published domain event (order.processed, package.ready,
    transport.status_changed, return.processed, inventory.damaged, ...),
    written in the same transaction as the state change it records.
    """
    __tablename__ = "fulfillment_events"
    __table_args__ = (
        db.Index("ix_fulfillment_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    # Optional structured metadata (keep small; do not denormalize domain state)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating document numbers
    (orders, packages, returns).
    """
    __tablename__ = "document_sequences"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
