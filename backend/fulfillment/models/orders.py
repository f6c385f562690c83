from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z, utcnow


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_PACKAGED = "packaged"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_RETURNED = "returned"
ORDER_STATUS_CANCELLED = "cancelled"

PACKAGE_STATUS_PENDING = "pending"
PACKAGE_STATUS_READY = "ready_for_dispatch"
PACKAGE_STATUS_DISPATCHED = "dispatched"
PACKAGE_STATUS_IN_TRANSIT = "in_transit"
PACKAGE_STATUS_DELIVERED = "delivered"
PACKAGE_STATUS_RETURNED = "returned"
PACKAGE_STATUS_CANCELLED = "cancelled"


class Order(db.Model):
    """
    Customer order document.

    LIFECYCLE:
    1. pending: created, nothing reserved
    2. processing: every line allocated to batches, package created
    3. packaged: package marked ready_for_dispatch
    4. delivered: forward transport delivered
    5. returned: annotation set once a return against its package is processed
    cancelled is reachable from pending/processing/packaged (before dispatch).

    Status is only advanced through order_service; version_id guards against
    two concurrent transitions both succeeding.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "ORD-000123")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    # Client-supplied keys making create/process retries safe
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)
    processing_key = db.Column(db.String(128), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    processed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    packed_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    returned_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Partner")
    lines = db.relationship("OrderLine", backref="order", lazy=True, order_by="OrderLine.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "notes": self.notes,
            "cancel_reason": self.cancel_reason,
            "created_by": self.created_by,
            "processed_by": self.processed_by,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
            "packed_at": to_utc_z(self.packed_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "returned_at": to_utc_z(self.returned_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """Requested product quantity on an order, with the price captured at creation."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "product_id", name="uq_order_lines_order_product"),
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Package(db.Model):
    """
    Physical package built for exactly one order.

    allocated_items (AllocationRecord rows) pin the exact batches that were
    reserved for it; they are what returns restock against.

    Statuses past ready_for_dispatch are driven by transports and returns,
    never requested directly.
    """
    __tablename__ = "packages"
    __table_args__ = (
        db.Index("ix_packages_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    package_code = db.Column(db.String(64), nullable=False, unique=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    status = db.Column(db.String(24), nullable=False, default=PACKAGE_STATUS_PENDING, index=True)

    total_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_weight_grams = db.Column(db.Integer, nullable=False, default=0)
    dimensions = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    packed_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("package", uselist=False))
    allocated_items = db.relationship(
        "AllocationRecord",
        backref="package",
        lazy=True,
        order_by="AllocationRecord.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package_code": self.package_code,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "status": self.status,
            "total_value_cents": self.total_value_cents,
            "total_weight_grams": self.total_weight_grams,
            "dimensions": self.dimensions,
            "notes": self.notes,
            "packed_by": self.packed_by,
            "allocated_items": [record.to_dict() for record in self.allocated_items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
