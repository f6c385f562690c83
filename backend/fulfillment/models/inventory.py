from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_iso_date, to_utc_z, utcnow


MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_RESERVE = "RESERVE"
MOVEMENT_RELEASE = "RELEASE"
MOVEMENT_DAMAGE = "DAMAGE"
MOVEMENT_RESTOCK = "RESTOCK"


class Batch(db.Model):
    """
    A dated lot of one product with its own quantities and expiry.

    QUANTITY INVARIANT (enforced by inventory_ledger only):
        current_quantity + damaged_quantity + allocated_quantity == original_quantity

    - current_quantity: on the shelf, available for allocation
    - damaged_quantity: written off via mark_damaged
    - allocated_quantity: bound to packages and not yet returned

    Quantity columns are only ever changed by conditional UPDATE statements in
    inventory_ledger, never through ORM attribute assignment. Batches are never
    deleted.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("current_quantity >= 0", name="ck_batches_current_nonneg"),
        db.CheckConstraint("damaged_quantity >= 0", name="ck_batches_damaged_nonneg"),
        db.CheckConstraint("allocated_quantity >= 0", name="ck_batches_allocated_nonneg"),
        # FEFO scan: product, then expiry, then batch number
        db.Index("ix_batches_product_exp_number", "product_id", "exp_date", "batch_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_number = db.Column(db.String(64), nullable=False, unique=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)

    original_quantity = db.Column(db.Integer, nullable=False)
    current_quantity = db.Column(db.Integer, nullable=False)
    damaged_quantity = db.Column(db.Integer, nullable=False, default=0)
    allocated_quantity = db.Column(db.Integer, nullable=False, default=0)

    mfg_date = db.Column(db.Date, nullable=False)
    exp_date = db.Column(db.Date, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=True)

    received_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    warehouse = db.relationship("Warehouse")
    supplier = db.relationship("Partner")

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} number={self.batch_number!r} "
            f"current={self.current_quantity} allocated={self.allocated_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "supplier_id": self.supplier_id,
            "original_quantity": self.original_quantity,
            "current_quantity": self.current_quantity,
            "damaged_quantity": self.damaged_quantity,
            "allocated_quantity": self.allocated_quantity,
            "mfg_date": to_iso_date(self.mfg_date),
            "exp_date": to_iso_date(self.exp_date),
            "unit_cost_cents": self.unit_cost_cents,
            "received_at": to_utc_z(self.received_at),
        }


class BatchMovement(db.Model):
    """
    Append-only record of every quantity mutation applied to a batch.

    One row per RECEIVE / RESERVE / RELEASE / DAMAGE / RESTOCK. Quantities are
    always positive; the movement type determines direction. Rows are never
    updated or deleted, which makes the batch history replayable for
    invariant verification.
    """
    __tablename__ = "batch_movements"
    __table_args__ = (
        db.Index("ix_batch_movements_batch_type", "batch_id", "movement_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    package_id = db.Column(db.Integer, db.ForeignKey("packages.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True, index=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    batch = db.relationship("Batch", backref=db.backref("movements", lazy=True, order_by="BatchMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "package_id": self.package_id,
            "return_id": self.return_id,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class AllocationRecord(db.Model):
    """
    Durable evidence that a specific batch quantity satisfied a package line.

    Created in the same transaction as the reservation; never mutated. Returns
    reference these rows to know which batch to restock and how much of a line
    is still returnable.
    """
    __tablename__ = "allocation_records"
    __table_args__ = (
        db.UniqueConstraint("package_id", "batch_id", name="uq_allocation_package_batch"),
        db.CheckConstraint("quantity > 0", name="ck_allocation_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    package_id = db.Column(db.Integer, db.ForeignKey("packages.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    batch = db.relationship("Batch")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package_id": self.package_id,
            "batch_id": self.batch_id,
            "batch_number": self.batch.batch_number if self.batch else None,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }
