from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z, utcnow


TRANSPORT_KIND_FORWARD = "forward"
TRANSPORT_KIND_RETURN = "return"

TRANSPORT_STATUS_DISPATCHED = "dispatched"
TRANSPORT_STATUS_IN_TRANSIT = "in_transit"
TRANSPORT_STATUS_DELIVERED = "delivered"


class Transport(db.Model):
    """
    One carrier leg for a package.

    kind=forward carries the package to the customer; kind=return brings it
    back for a Return. Legal edges: dispatched -> in_transit -> delivered.
    Every transition appends a TransportStatusEvent.
    """
    __tablename__ = "transports"
    __table_args__ = (
        db.Index("ix_transports_package_kind", "package_id", "kind"),
        db.Index("ix_transports_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    package_id = db.Column(db.Integer, db.ForeignKey("packages.id"), nullable=False, index=True)
    transporter_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, default=TRANSPORT_KIND_FORWARD)
    tracking_number = db.Column(db.String(32), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default=TRANSPORT_STATUS_DISPATCHED, index=True)

    notes = db.Column(db.Text, nullable=True)
    assigned_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    dispatched_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    package = db.relationship("Package", backref=db.backref("transports", lazy=True, order_by="Transport.id"))
    transporter = db.relationship("Partner")
    status_history = db.relationship(
        "TransportStatusEvent",
        backref="transport",
        lazy=True,
        order_by="TransportStatusEvent.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package_id": self.package_id,
            "package_code": self.package.package_code if self.package else None,
            "transporter_id": self.transporter_id,
            "transporter_name": self.transporter.name if self.transporter else None,
            "kind": self.kind,
            "tracking_number": self.tracking_number,
            "status": self.status,
            "notes": self.notes,
            "assigned_by": self.assigned_by,
            "created_at": to_utc_z(self.created_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "status_history": [event.to_dict() for event in self.status_history],
            "version_id": self.version_id,
        }


class TransportStatusEvent(db.Model):
    """Immutable status history entry for a transport."""
    __tablename__ = "transport_status_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transport_id = db.Column(db.Integer, db.ForeignKey("transports.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "location": self.location,
            "notes": self.notes,
            "updated_by": self.updated_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }
