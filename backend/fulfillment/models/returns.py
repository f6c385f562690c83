from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z, utcnow


RETURN_STATUS_INITIATED = "initiated"
RETURN_STATUS_PICKUP_SCHEDULED = "pickup_scheduled"
RETURN_STATUS_PICKED_UP = "picked_up"
RETURN_STATUS_RECEIVED = "received"
RETURN_STATUS_PROCESSED = "processed"


class Return(db.Model):
    """
    Reverse-logistics document for a delivered package.

    LIFECYCLE (strictly forward, no skipping):
    1. initiated: customer asked to send items back
    2. pickup_scheduled: transporter chosen
    3. picked_up: return-leg Transport created in_transit
    4. received: goods back at the warehouse (no inventory effect yet)
    5. processed: every line restocked into its original batch

    At most one non-processed return exists per package.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_package_status", "package_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RET-000042")
    return_number = db.Column(db.String(64), nullable=False, unique=True)

    package_id = db.Column(db.Integer, db.ForeignKey("packages.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False, default=RETURN_STATUS_INITIATED, index=True)

    return_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    transporter_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=True)
    transport_id = db.Column(db.Integer, db.ForeignKey("transports.id"), nullable=True)

    initiated_by = db.Column(db.Integer, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    pickup_scheduled_at = db.Column(db.DateTime, nullable=True)
    picked_up_at = db.Column(db.DateTime, nullable=True)
    received_at = db.Column(db.DateTime, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    package = db.relationship("Package", backref=db.backref("returns", lazy=True, order_by="Return.id"))
    transport = db.relationship("Transport", foreign_keys=[transport_id])
    lines = db.relationship("ReturnLine", backref="return_doc", lazy=True, order_by="ReturnLine.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "package_id": self.package_id,
            "package_code": self.package.package_code if self.package else None,
            "status": self.status,
            "return_reason": self.return_reason,
            "notes": self.notes,
            "warehouse_id": self.warehouse_id,
            "transporter_id": self.transporter_id,
            "transport_id": self.transport_id,
            "tracking_number": self.transport.tracking_number if self.transport else None,
            "initiated_by": self.initiated_by,
            "processed_by": self.processed_by,
            "returned_items": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
            "pickup_scheduled_at": to_utc_z(self.pickup_scheduled_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "received_at": to_utc_z(self.received_at),
            "processed_at": to_utc_z(self.processed_at),
            "version_id": self.version_id,
        }


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = (
        db.UniqueConstraint("return_id", "batch_id", name="uq_return_lines_return_batch"),
        db.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    batch = db.relationship("Batch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "batch_number": self.batch.batch_number if self.batch else None,
            "quantity": self.quantity,
        }
