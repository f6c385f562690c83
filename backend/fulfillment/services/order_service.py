# Overview: Order lifecycle: creation, FEFO allocation into a package, and mirrored states.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import AllocationFailed, InsufficientStock, InvalidTransition, NotFound
from ..events import order_cancelled, order_processed, publish
from ..models import AllocationRecord, Order, OrderLine, Package, Partner, Product
from ..models.catalog import PARTNER_KIND_CUSTOMER
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PACKAGED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_RETURNED,
    PACKAGE_STATUS_READY,
)
from ..models.transport import TRANSPORT_KIND_FORWARD, TRANSPORT_STATUS_DELIVERED
from ..validation import OrderItemInput, ValidationError, parse_order_items
from fulfillment.time_utils import utcnow
from . import inventory_ledger, package_service, transport_service
from .audit_service import append_fulfillment_event
from .batch_allocator import ReservationTransaction, plan_allocation
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_ORDER, next_document_number
from .pagination import paginate
"""
Order lifecycle invariants

- pending -> processing -> packaged -> delivered -> returned; cancelled is
  reachable before the package is dispatched.
- processing an order allocates every line or none: a single line that
  cannot be covered leaves all batches untouched.
- An order has at most one package, created by process_order.
- packaged/delivered/returned are reached through package and transport
  events; pack_order/mark_delivered/mark_returned exist for direct callers.
"""


ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_PACKAGED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_RETURNED,
    ORDER_STATUS_CANCELLED,
)

CANCELLABLE = {ORDER_STATUS_PENDING, ORDER_STATUS_PROCESSING, ORDER_STATUS_PACKAGED}


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFound(f"Order {order_id} not found")
    return order


def _allocation_timeout() -> float:
    return float(current_app.config.get("ALLOCATION_TIMEOUT_SECONDS", 10))


# =============================================================================
# CREATION
# =============================================================================

def create_order(
    *,
    items,
    created_by: int | None = None,
    notes: str | None = None,
    customer_id: int | None = None,
    idempotency_key: str | None = None,
) -> Order:
    """
    Create a pending order with a price snapshot on each line.

    A repeated idempotency_key returns the order created the first time.
    """
    if items and not isinstance(items[0], OrderItemInput):
        items = parse_order_items(items)
    if not items:
        raise ValidationError("items must be a non-empty list")

    def _op():
        if idempotency_key:
            existing = db.session.query(Order).filter_by(idempotency_key=idempotency_key).first()
            if existing:
                return existing

        if customer_id is not None:
            customer = db.session.get(Partner, customer_id)
            if not customer or customer.kind != PARTNER_KIND_CUSTOMER:
                raise NotFound(f"Customer {customer_id} not found")

        products = {}
        for item in items:
            product = db.session.get(Product, item.product_id)
            if not product:
                raise NotFound(f"Product {item.product_id} not found")
            if not product.is_active:
                raise ValidationError(f"Product {item.product_id} is not active")
            products[item.product_id] = product

        order = Order(
            order_number=next_document_number(DOCUMENT_TYPE_ORDER),
            customer_id=customer_id,
            status=ORDER_STATUS_PENDING,
            idempotency_key=idempotency_key,
            notes=notes,
            created_by=created_by,
        )
        db.session.add(order)
        db.session.flush()

        for item in items:
            db.session.add(OrderLine(
                order_id=order.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_cents=products[item.product_id].price_cents,
            ))

        append_fulfillment_event(
            event_type="order.created",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=created_by,
            note=notes,
            payload={"order_number": order.order_number, "lines": len(items)},
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# PROCESSING (allocation)
# =============================================================================

def process_order(
    order_id: int,
    *,
    notes: str | None = None,
    idempotency_key: str | None = None,
    actor_id: int | None = None,
) -> dict:
    """
    pending -> processing: allocate every line (FEFO) and build the package.

    Args:
        order_id: Order to process
        notes: Stored on the package
        idempotency_key: Client key; a retry with the same key after success
            returns the original result instead of failing
        actor_id: Acting user

    Returns:
        {"order": Order, "package": Package}

    Raises:
        NotFound: Unknown order
        InvalidTransition: Order is not pending (and the key does not match)
        AllocationFailed: Any line cannot be covered, the allocation deadline
            expired, storage failed, or every retry found its plan stale;
            no batch is changed
    """
    def _op():
        order = _lock_order(order_id)

        if order.status != ORDER_STATUS_PENDING:
            if idempotency_key and order.processing_key == idempotency_key and order.package is not None:
                return {"order": order, "package": order.package}
            raise InvalidTransition("order", order.id, order.status, ORDER_STATUS_PROCESSING)

        txn = ReservationTransaction(deadline_seconds=_allocation_timeout(), actor_id=actor_id)
        failures: list[InsufficientStock] = []
        for line in order.lines:
            try:
                txn.add(plan_allocation(line.product_id, line.quantity))
            except InsufficientStock as exc:
                failures.append(exc)
        if failures:
            raise AllocationFailed(
                f"{len(failures)} of {len(order.lines)} line(s) cannot be allocated",
                failures=failures,
            )

        package = package_service.create_package_for_order(order, actor_id=actor_id, notes=notes)
        reservations = txn.commit(package_id=package.id)

        order.status = ORDER_STATUS_PROCESSING
        order.processed_at = utcnow()
        order.processed_by = actor_id
        order.processing_key = idempotency_key
        db.session.flush()

        publish(
            order_processed,
            order,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            note=notes,
            payload={
                "package_code": package.package_code,
                "allocations": [
                    {"batch_id": r.batch_id, "product_id": r.product_id, "quantity": r.quantity}
                    for r in reservations
                ],
            },
            package=package,
        )
        db.session.commit()
        return {"order": order, "package": package}

    try:
        return run_with_retry(_op)
    except AllocationFailed as exc:
        current_app.logger.warning("Allocation failed for order %s: %s", order_id, exc.message)
        raise
    except OperationalError as exc:
        current_app.logger.exception("Storage unavailable while processing order %s", order_id)
        raise AllocationFailed("Storage unavailable while reserving stock; nothing was allocated") from exc
    except StaleDataError as exc:
        current_app.logger.warning("Allocation for order %s kept losing races: %s", order_id, exc)
        raise AllocationFailed("Stock kept changing while reserving; nothing was allocated") from exc


# =============================================================================
# MIRRORED TRANSITIONS
# =============================================================================

def _pack_inner(order: Order, package: Package | None, *, notes: str | None = None) -> None:
    if order.status != ORDER_STATUS_PROCESSING:
        raise InvalidTransition("order", order.id, order.status, ORDER_STATUS_PACKAGED)
    if package is None or package.status != PACKAGE_STATUS_READY:
        raise InvalidTransition(
            "order", order.id, order.status, ORDER_STATUS_PACKAGED,
            reason="package is not ready_for_dispatch",
        )
    order.status = ORDER_STATUS_PACKAGED
    order.packed_at = utcnow()
    if notes:
        order.notes = notes
    db.session.flush()


def pack_order(order_id: int, *, notes: str | None = None, actor_id: int | None = None) -> Order:
    """processing -> packaged; only once the order's package is ready_for_dispatch."""
    def _op():
        order = _lock_order(order_id)
        _pack_inner(order, order.package, notes=notes)
        append_fulfillment_event(
            event_type="order.packaged",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_id,
            note=notes,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def _deliver_inner(order: Order) -> None:
    if order.status == ORDER_STATUS_DELIVERED:
        return
    if order.status != ORDER_STATUS_PACKAGED:
        raise InvalidTransition("order", order.id, order.status, ORDER_STATUS_DELIVERED)
    order.status = ORDER_STATUS_DELIVERED
    order.delivered_at = utcnow()
    db.session.flush()


def mark_delivered(order_id: int, *, actor_id: int | None = None) -> Order:
    def _op():
        order = _lock_order(order_id)
        _deliver_inner(order)
        append_fulfillment_event(
            event_type="order.delivered", entity_type="order", entity_id=order.id, actor_user_id=actor_id,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def _return_inner(order: Order) -> None:
    if order.status == ORDER_STATUS_RETURNED:
        return
    if order.status != ORDER_STATUS_DELIVERED:
        raise InvalidTransition("order", order.id, order.status, ORDER_STATUS_RETURNED)
    order.status = ORDER_STATUS_RETURNED
    order.returned_at = utcnow()
    db.session.flush()


def mark_returned(order_id: int, *, actor_id: int | None = None) -> Order:
    def _op():
        order = _lock_order(order_id)
        _return_inner(order)
        append_fulfillment_event(
            event_type="order.returned", entity_type="order", entity_id=order.id, actor_user_id=actor_id,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def on_package_ready(package: Package, *, notes: str | None = None, **kwargs) -> None:
    _pack_inner(package.order, package, notes=notes)


def on_transport_status_changed(transport, *, new_status: str, **kwargs) -> None:
    if transport.kind == TRANSPORT_KIND_FORWARD and new_status == TRANSPORT_STATUS_DELIVERED:
        _deliver_inner(transport.package.order)


def on_return_processed(return_doc, **kwargs) -> None:
    _return_inner(return_doc.package.order)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_order(order_id: int, *, reason: str | None = None, actor_id: int | None = None) -> Order:
    """
    Cancel an order that has not been dispatched.

    Every allocation of its package is released back to the shelf and the
    package is cancelled in the same transaction.
    """
    def _op():
        order = _lock_order(order_id)
        if order.status not in CANCELLABLE:
            raise InvalidTransition("order", order.id, order.status, ORDER_STATUS_CANCELLED)

        released = 0
        package = order.package
        if package is not None:
            package_service.cancel_package(package, actor_id=actor_id, reason=reason)
            records = (
                db.session.query(AllocationRecord)
                .filter_by(package_id=package.id)
                .order_by(AllocationRecord.id.desc())
                .all()
            )
            for record in records:
                released += inventory_ledger.release(
                    record.batch_id,
                    record.quantity,
                    package_id=package.id,
                    actor_id=actor_id,
                    note="order cancelled",
                )

        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancel_reason = reason
        db.session.flush()

        publish(
            order_cancelled,
            order,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            note=reason,
            payload={"released_quantity": released},
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound(f"Order {order_id} not found")
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if not order:
        raise NotFound(f"Order {order_number} not found")
    return order


def list_orders(*, status: str | None = None, page: int = 1, limit: int = 20) -> dict:
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == status)
    return paginate(q.order_by(Order.created_at.desc(), Order.id.desc()), page=page, limit=limit)


def track_order(identifier: str) -> dict:
    """Look an order up by order number or by any of its tracking numbers."""
    identifier = (identifier or "").strip()
    order = db.session.query(Order).filter_by(order_number=identifier).first()
    if order is None:
        transport = transport_service.get_transport_by_tracking_number(identifier)
        if transport is not None:
            order = transport.package.order
    if order is None:
        raise NotFound(f"No order or shipment matches {identifier!r}")

    package = order.package
    return {
        "order": order.to_dict(),
        "package": package.to_dict() if package else None,
        "transports": [t.to_dict() for t in package.transports] if package else [],
    }
