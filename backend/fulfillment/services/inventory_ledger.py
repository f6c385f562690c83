# Overview: Batch quantity ledger; the only writer of Batch quantity columns.

from __future__ import annotations

import uuid
from datetime import date

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import InsufficientStock, NotFound, OverRestock
from ..models import AllocationRecord, Batch, BatchMovement, Partner, Product, Warehouse
from ..models.catalog import PARTNER_KIND_SUPPLIER
from ..models.inventory import (
    MOVEMENT_DAMAGE,
    MOVEMENT_RECEIVE,
    MOVEMENT_RELEASE,
    MOVEMENT_RESERVE,
    MOVEMENT_RESTOCK,
)
from ..validation import ValidationError
from .audit_service import append_fulfillment_event
from .concurrency import run_with_retry
"""
Inventory ledger invariants (authoritative)

Quantities:
- For every batch: current + damaged + allocated == original, always.
- No quantity column is ever negative.
- allocated equals SUM(allocation records) - SUM(RELEASE) - SUM(RESTOCK)
  for the batch (verified by check_batch_invariant).

Mutation rules:
- Every change is a single conditional UPDATE whose WHERE clause re-checks
  the precondition (e.g. current_quantity >= qty), so concurrent callers
  are linearized per batch by the database and a lost update is impossible.
- Every change appends one BatchMovement row in the same transaction.
- reserve/release/restock never commit: they run inside the caller's
  transaction (allocation, cancellation, return processing).
- receive_batch and mark_damaged are standalone operations and commit
  unless commit=False.
"""


STOCK_LEVEL_IN_STOCK = "in_stock"
STOCK_LEVEL_LOW = "low"
STOCK_LEVEL_OUT_OF_STOCK = "out_of_stock"


def _require_positive(qty: int, field: str = "quantity") -> None:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError(f"{field} must be a positive integer")


def _apply_conditional(stmt, batch_id: int) -> tuple[int, Batch | None]:
    """Run a guarded UPDATE and return (rowcount, refreshed batch)."""
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    batch = db.session.get(Batch, batch_id)
    if batch is not None:
        db.session.refresh(batch)
    return result.rowcount, batch


def _record_movement(
    batch_id: int,
    movement_type: str,
    quantity: int,
    *,
    package_id: int | None = None,
    return_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> BatchMovement:
    movement = BatchMovement(
        batch_id=batch_id,
        movement_type=movement_type,
        quantity=quantity,
        package_id=package_id,
        return_id=return_id,
        actor_user_id=actor_id,
        note=(note[:255] if note else None),
    )
    db.session.add(movement)
    return movement


# =============================================================================
# SUPPLY
# =============================================================================

def _generate_batch_number(product: Product) -> str:
    return f"B-{product.sku}-{uuid.uuid4().hex[:6].upper()}"


def receive_batch(
    *,
    product_id: int,
    warehouse_id: int,
    supplier_id: int,
    quantity: int,
    mfg_date: date,
    exp_date: date,
    unit_cost_cents: int | None = None,
    batch_number: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
    commit: bool = True,
) -> Batch:
    """
    Register new supply as a batch (current = original = quantity).

    Raises NotFound for unknown product/warehouse/supplier and
    ValidationError for a non-positive quantity, an expiry before the
    manufacturing date, or a batch number already in use.
    """
    def _op():
        _require_positive(quantity)
        if exp_date < mfg_date:
            raise ValidationError("expDate cannot be before mfgDate")

        product = db.session.get(Product, product_id)
        if not product:
            raise NotFound(f"Product {product_id} not found")
        if not db.session.get(Warehouse, warehouse_id):
            raise NotFound(f"Warehouse {warehouse_id} not found")
        supplier = db.session.get(Partner, supplier_id)
        if not supplier or supplier.kind != PARTNER_KIND_SUPPLIER:
            raise NotFound(f"Supplier {supplier_id} not found")

        number = batch_number or _generate_batch_number(product)
        if db.session.query(Batch.id).filter_by(batch_number=number).first():
            raise ValidationError(f"Batch number {number} already exists")

        batch = Batch(
            batch_number=number,
            product_id=product_id,
            warehouse_id=warehouse_id,
            supplier_id=supplier_id,
            original_quantity=quantity,
            current_quantity=quantity,
            damaged_quantity=0,
            allocated_quantity=0,
            mfg_date=mfg_date,
            exp_date=exp_date,
            unit_cost_cents=unit_cost_cents,
        )
        db.session.add(batch)
        db.session.flush()

        _record_movement(batch.id, MOVEMENT_RECEIVE, quantity, actor_id=actor_id, note=notes)
        append_fulfillment_event(
            event_type="inventory.received",
            entity_type="batch",
            entity_id=batch.id,
            actor_user_id=actor_id,
            note=notes,
            payload={"batch_number": number, "quantity": quantity},
        )

        if commit:
            db.session.commit()
        return batch

    if commit:
        return run_with_retry(_op)
    return _op()


# =============================================================================
# ALLOCATION PRIMITIVES (caller's transaction)
# =============================================================================

def reserve(
    product_id: int,
    batch_id: int,
    qty: int,
    *,
    package_id: int | None = None,
    actor_id: int | None = None,
) -> Batch:
    """
    Move qty from current to allocated.

    Raises InsufficientStock if the batch holds less than qty on the shelf,
    NotFound if the batch does not exist or belongs to another product.
    """
    _require_positive(qty)

    stmt = (
        update(Batch)
        .where(
            Batch.id == batch_id,
            Batch.product_id == product_id,
            Batch.current_quantity >= qty,
        )
        .values(
            current_quantity=Batch.current_quantity - qty,
            allocated_quantity=Batch.allocated_quantity + qty,
        )
    )
    rowcount, batch = _apply_conditional(stmt, batch_id)
    if not rowcount:
        if batch is None or batch.product_id != product_id:
            raise NotFound(f"Batch {batch_id} not found for product {product_id}")
        raise InsufficientStock(
            f"Batch {batch.batch_number} has {batch.current_quantity} available, {qty} requested",
            product_id=product_id,
            batch_id=batch_id,
            requested=qty,
            available=batch.current_quantity,
        )

    _record_movement(batch_id, MOVEMENT_RESERVE, qty, package_id=package_id, actor_id=actor_id)
    return batch


def release(
    batch_id: int,
    qty: int,
    *,
    package_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> int:
    """
    Return allocated units to the shelf (compensation or cancellation).

    The amount is capped so current never exceeds original - damaged; the
    amount actually released is returned.
    """
    _require_positive(qty)

    batch = db.session.get(Batch, batch_id)
    if batch is None:
        raise NotFound(f"Batch {batch_id} not found")
    db.session.refresh(batch)

    headroom = batch.original_quantity - batch.damaged_quantity - batch.current_quantity
    amount = min(qty, headroom, batch.allocated_quantity)
    if amount < qty:
        current_app.logger.warning(
            "Release on batch %s capped from %s to %s", batch.batch_number, qty, amount
        )
    if amount <= 0:
        return 0

    stmt = (
        update(Batch)
        .where(
            Batch.id == batch_id,
            Batch.allocated_quantity >= amount,
            Batch.current_quantity + amount <= Batch.original_quantity - Batch.damaged_quantity,
        )
        .values(
            current_quantity=Batch.current_quantity + amount,
            allocated_quantity=Batch.allocated_quantity - amount,
        )
    )
    rowcount, _ = _apply_conditional(stmt, batch_id)
    if not rowcount:
        # Batch changed between read and write; the whole operation is retried
        raise StaleDataError(f"Batch {batch_id} changed during release")

    _record_movement(batch_id, MOVEMENT_RELEASE, amount, package_id=package_id, actor_id=actor_id, note=note)
    return amount


def restock(
    batch_id: int,
    qty: int,
    *,
    return_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> Batch:
    """
    Put returned units back on the shelf of their original batch.

    Raises OverRestock if qty exceeds the batch's allocated (shipped and not
    yet returned) quantity.
    """
    _require_positive(qty)

    stmt = (
        update(Batch)
        .where(Batch.id == batch_id, Batch.allocated_quantity >= qty)
        .values(
            current_quantity=Batch.current_quantity + qty,
            allocated_quantity=Batch.allocated_quantity - qty,
        )
    )
    rowcount, batch = _apply_conditional(stmt, batch_id)
    if not rowcount:
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        raise OverRestock(
            f"Cannot restock {qty} into batch {batch.batch_number}: only "
            f"{batch.allocated_quantity} allocated and not yet returned",
            details={"batch_id": batch_id, "requested": qty, "allocated": batch.allocated_quantity},
        )

    _record_movement(batch_id, MOVEMENT_RESTOCK, qty, return_id=return_id, actor_id=actor_id, note=note)
    return batch


# =============================================================================
# DAMAGE
# =============================================================================

def mark_damaged(
    batch_id: int,
    qty: int,
    reason: str | None = None,
    *,
    actor_id: int | None = None,
    commit: bool = True,
) -> dict:
    """
    Write off qty shelf units of a batch.

    Returns the updated batch and the financial loss (qty x unit cost; 0 when
    the batch has no recorded cost).
    """
    def _op():
        _require_positive(qty)

        stmt = (
            update(Batch)
            .where(Batch.id == batch_id, Batch.current_quantity >= qty)
            .values(
                current_quantity=Batch.current_quantity - qty,
                damaged_quantity=Batch.damaged_quantity + qty,
            )
        )
        rowcount, batch = _apply_conditional(stmt, batch_id)
        if not rowcount:
            if batch is None:
                raise NotFound(f"Batch {batch_id} not found")
            raise InsufficientStock(
                f"Not enough in-stock units in batch {batch.batch_number} to mark damaged",
                product_id=batch.product_id,
                batch_id=batch_id,
                requested=qty,
                available=batch.current_quantity,
            )

        loss_cents = qty * (batch.unit_cost_cents or 0)
        note = reason or "Marked as damaged"
        _record_movement(batch_id, MOVEMENT_DAMAGE, qty, actor_id=actor_id, note=note)
        append_fulfillment_event(
            event_type="inventory.damaged",
            entity_type="batch",
            entity_id=batch_id,
            actor_user_id=actor_id,
            note=note,
            payload={"quantity": qty, "financial_loss_cents": loss_cents},
        )

        if commit:
            db.session.commit()
        return {"batch": batch, "financial_loss_cents": loss_cents}

    if commit:
        return run_with_retry(_op)
    return _op()


# =============================================================================
# READ SIDE
# =============================================================================

def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if not batch:
        raise NotFound(f"Batch {batch_id} not found")
    return batch


def get_batch_by_number(batch_number: str) -> Batch:
    batch = db.session.query(Batch).filter_by(batch_number=batch_number).first()
    if not batch:
        raise NotFound(f"Batch {batch_number} not found")
    return batch


def available_batches(product_id: int, *, warehouse_id: int | None = None) -> list[Batch]:
    """Batches with shelf stock in FEFO order (earliest expiry, then batch number)."""
    q = db.session.query(Batch).filter(
        Batch.product_id == product_id,
        Batch.current_quantity > 0,
    )
    if warehouse_id is not None:
        q = q.filter(Batch.warehouse_id == warehouse_id)
    return q.order_by(Batch.exp_date.asc(), Batch.batch_number.asc()).all()


def stock_level(current_quantity: int, threshold: int) -> str:
    if current_quantity <= 0:
        return STOCK_LEVEL_OUT_OF_STOCK
    if current_quantity <= (threshold or 0):
        return STOCK_LEVEL_LOW
    return STOCK_LEVEL_IN_STOCK


def inventory_status(*, warehouse_id: int | None = None, product_id: int | None = None) -> list[dict]:
    """Per-batch shelf stock with a level against the product's threshold."""
    q = db.session.query(Batch, Product).join(Product, Product.id == Batch.product_id)
    if warehouse_id is not None:
        q = q.filter(Batch.warehouse_id == warehouse_id)
    if product_id is not None:
        q = q.filter(Batch.product_id == product_id)

    rows = []
    for batch, product in q.order_by(Product.name.asc(), Batch.exp_date.asc(), Batch.batch_number.asc()).all():
        rows.append({
            "product_id": product.id,
            "product_name": product.name,
            "sku": product.sku,
            "batch_id": batch.id,
            "batch_number": batch.batch_number,
            "warehouse_id": batch.warehouse_id,
            "warehouse": batch.warehouse.name if batch.warehouse else None,
            "in_stock": batch.current_quantity,
            "allocated": batch.allocated_quantity,
            "damaged": batch.damaged_quantity,
            "threshold_limit": product.threshold_limit,
            "stock_status": stock_level(batch.current_quantity, product.threshold_limit),
            "mfg_date": batch.mfg_date.isoformat(),
            "exp_date": batch.exp_date.isoformat(),
        })
    return rows


def track_batch(batch_number: str) -> dict:
    """Full snapshot of one batch: quantities, references, movement totals, allocations."""
    batch = get_batch_by_number(batch_number)

    movement_totals = dict(
        db.session.query(BatchMovement.movement_type, func.coalesce(func.sum(BatchMovement.quantity), 0))
        .filter(BatchMovement.batch_id == batch.id)
        .group_by(BatchMovement.movement_type)
        .all()
    )
    allocations = (
        db.session.query(AllocationRecord)
        .filter(AllocationRecord.batch_id == batch.id)
        .order_by(AllocationRecord.id.asc())
        .all()
    )

    return {
        "batch": batch.to_dict(),
        "product": batch.product.to_dict() if batch.product else None,
        "warehouse": batch.warehouse.to_dict() if batch.warehouse else None,
        "supplier": batch.supplier.to_dict() if batch.supplier else None,
        "movement_totals": {k: int(v) for k, v in movement_totals.items()},
        "allocations": [a.to_dict() for a in allocations],
        "invariant_problems": check_batch_invariant(batch),
    }


def check_batch_invariant(batch: Batch) -> list[str]:
    """
    Recompute a batch's quantities from its history.

    Returns a list of human-readable problems (empty when consistent).
    """
    problems = []

    for field in ("current_quantity", "damaged_quantity", "allocated_quantity"):
        if getattr(batch, field) < 0:
            problems.append(f"{field} is negative ({getattr(batch, field)})")

    total = batch.current_quantity + batch.damaged_quantity + batch.allocated_quantity
    if total != batch.original_quantity:
        problems.append(
            f"current + damaged + allocated = {total}, expected original {batch.original_quantity}"
        )

    totals = dict(
        db.session.query(BatchMovement.movement_type, func.coalesce(func.sum(BatchMovement.quantity), 0))
        .filter(BatchMovement.batch_id == batch.id)
        .group_by(BatchMovement.movement_type)
        .all()
    )
    reserved = int(totals.get(MOVEMENT_RESERVE, 0))
    expected_allocated = (
        reserved - int(totals.get(MOVEMENT_RELEASE, 0)) - int(totals.get(MOVEMENT_RESTOCK, 0))
    )
    if expected_allocated != batch.allocated_quantity:
        problems.append(
            f"allocated_quantity is {batch.allocated_quantity}, history says {expected_allocated}"
        )
    if int(totals.get(MOVEMENT_DAMAGE, 0)) != batch.damaged_quantity:
        problems.append(
            f"damaged_quantity is {batch.damaged_quantity}, history says {int(totals.get(MOVEMENT_DAMAGE, 0))}"
        )

    # Reservations made for packages must be backed one-to-one by allocation records
    package_reserved = (
        db.session.query(func.coalesce(func.sum(BatchMovement.quantity), 0))
        .filter(
            BatchMovement.batch_id == batch.id,
            BatchMovement.movement_type == MOVEMENT_RESERVE,
            BatchMovement.package_id.isnot(None),
        )
        .scalar()
    )
    recorded = (
        db.session.query(func.coalesce(func.sum(AllocationRecord.quantity), 0))
        .filter(AllocationRecord.batch_id == batch.id)
        .scalar()
    )
    if int(package_reserved) != int(recorded):
        problems.append(f"allocation records total {int(recorded)}, package reservations {int(package_reserved)}")

    return problems


def verify_all_batches() -> dict:
    violations = []
    checked = 0
    for batch in db.session.query(Batch).order_by(Batch.id.asc()).all():
        checked += 1
        problems = check_batch_invariant(batch)
        if problems:
            violations.append({
                "batch_id": batch.id,
                "batch_number": batch.batch_number,
                "problems": problems,
            })
    return {"checked": checked, "violations": violations}
