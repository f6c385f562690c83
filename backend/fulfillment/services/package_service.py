# Overview: Package lifecycle; statuses past ready_for_dispatch mirror transports and returns.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFound
from ..events import package_ready, publish
from ..models import Order, Package, Transport
from ..models.orders import (
    PACKAGE_STATUS_CANCELLED,
    PACKAGE_STATUS_DELIVERED,
    PACKAGE_STATUS_DISPATCHED,
    PACKAGE_STATUS_IN_TRANSIT,
    PACKAGE_STATUS_PENDING,
    PACKAGE_STATUS_READY,
    PACKAGE_STATUS_RETURNED,
)
from ..models.transport import (
    TRANSPORT_KIND_FORWARD,
    TRANSPORT_STATUS_DELIVERED,
    TRANSPORT_STATUS_IN_TRANSIT,
)
from ..validation import ValidationError
from .audit_service import append_fulfillment_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_PACKAGE, next_document_number
from .pagination import paginate
from . import transport_service


PACKAGE_STATUSES = (
    PACKAGE_STATUS_PENDING,
    PACKAGE_STATUS_READY,
    PACKAGE_STATUS_DISPATCHED,
    PACKAGE_STATUS_IN_TRANSIT,
    PACKAGE_STATUS_DELIVERED,
    PACKAGE_STATUS_RETURNED,
    PACKAGE_STATUS_CANCELLED,
)

# Statuses a caller may request through update_status; the rest are event-driven
DIRECTLY_REQUESTABLE = {PACKAGE_STATUS_READY}

# Event-driven edges: target status -> statuses it may be reached from
MIRRORED_EDGES = {
    PACKAGE_STATUS_IN_TRANSIT: {PACKAGE_STATUS_DISPATCHED},
    PACKAGE_STATUS_DELIVERED: {PACKAGE_STATUS_DISPATCHED, PACKAGE_STATUS_IN_TRANSIT},
    PACKAGE_STATUS_RETURNED: {PACKAGE_STATUS_DELIVERED},
}


def _lock_package(package_id: int) -> Package:
    package = lock_for_update(db.session.query(Package).filter_by(id=package_id)).first()
    if not package:
        raise NotFound(f"Package {package_id} not found")
    return package


# =============================================================================
# CREATION (called from order processing)
# =============================================================================

def create_package_for_order(order: Order, *, actor_id: int | None = None, notes: str | None = None) -> Package:
    """
    Build the single package for an order, with value and weight totals.

    Caller reserves stock against it and commits.
    """
    total_value = 0
    total_weight = 0
    for line in order.lines:
        total_value += line.quantity * line.unit_price_cents
        total_weight += line.quantity * (line.product.weight_grams or 0)

    package = Package(
        package_code=next_document_number(DOCUMENT_TYPE_PACKAGE),
        order_id=order.id,
        status=PACKAGE_STATUS_PENDING,
        total_value_cents=total_value,
        total_weight_grams=total_weight,
        notes=notes,
        packed_by=actor_id,
    )
    db.session.add(package)
    db.session.flush()
    return package


def cancel_package(package: Package, *, actor_id: int | None = None, reason: str | None = None) -> None:
    """Cancel a package that has not left the warehouse. Caller releases stock and commits."""
    if package.status not in (PACKAGE_STATUS_PENDING, PACKAGE_STATUS_READY):
        raise InvalidTransition(
            "package", package.id, package.status, PACKAGE_STATUS_CANCELLED,
            reason="package has already been dispatched",
        )
    package.status = PACKAGE_STATUS_CANCELLED
    append_fulfillment_event(
        event_type="package.cancelled",
        entity_type="package",
        entity_id=package.id,
        actor_user_id=actor_id,
        note=reason,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================

def mark_ready(package_id: int, *, notes: str | None = None, actor_id: int | None = None) -> Package:
    """
    pending -> ready_for_dispatch.

    Publishes package.ready; the order moves to packaged in the same
    transaction.
    """
    def _op():
        package = _lock_package(package_id)
        if package.status != PACKAGE_STATUS_PENDING:
            raise InvalidTransition("package", package.id, package.status, PACKAGE_STATUS_READY)

        package.status = PACKAGE_STATUS_READY
        if notes:
            package.notes = notes
        db.session.flush()

        publish(
            package_ready,
            package,
            entity_type="package",
            entity_id=package.id,
            actor_id=actor_id,
            note=notes,
            notes=notes,
        )
        db.session.commit()
        return package

    return run_with_retry(_op)


def update_status(package_id: int, status: str, *, notes: str | None = None, actor_id: int | None = None) -> Package:
    """
    Generic status change requested by a client.

    Only ready_for_dispatch may be requested; later statuses are driven by
    transports and returns and are rejected with the package's current status.
    """
    if status not in PACKAGE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PACKAGE_STATUSES)}")

    if status not in DIRECTLY_REQUESTABLE:
        package = get_package(package_id)
        raise InvalidTransition(
            "package", package.id, package.status, status,
            reason="status is driven by transport and return events",
        )
    return mark_ready(package_id, notes=notes, actor_id=actor_id)


def assign_transport(
    package_id: int,
    transporter_id: int,
    *,
    notes: str | None = None,
    actor_id: int | None = None,
) -> dict:
    """
    Hand a ready package to a transporter.

    Creates the forward transport (dispatched, one history entry) and moves
    the package to dispatched.

    Raises NotFound for an unknown package or transporter, InvalidTransition
    unless the package is ready_for_dispatch.
    """
    def _op():
        package = _lock_package(package_id)
        transport_service.get_active_transporter(transporter_id)
        if package.status != PACKAGE_STATUS_READY:
            raise InvalidTransition("package", package.id, package.status, PACKAGE_STATUS_DISPATCHED)

        transport = transport_service.create_transport(
            package,
            transporter_id,
            kind=TRANSPORT_KIND_FORWARD,
            notes=notes,
            actor_id=actor_id,
        )
        package.status = PACKAGE_STATUS_DISPATCHED
        append_fulfillment_event(
            event_type="package.dispatched",
            entity_type="package",
            entity_id=package.id,
            actor_user_id=actor_id,
            note=notes,
            payload={"transport_id": transport.id, "tracking_number": transport.tracking_number},
        )
        db.session.commit()
        return {"transport": transport, "package": package}

    return run_with_retry(_op)


def _mirror(package: Package, target: str) -> None:
    if package.status == target:
        return
    if package.status not in MIRRORED_EDGES[target]:
        raise InvalidTransition("package", package.id, package.status, target)
    package.status = target
    db.session.flush()


# =============================================================================
# EVENT HANDLERS (publisher's transaction; never commit)
# =============================================================================

def on_transport_status_changed(transport: Transport, *, new_status: str, **kwargs) -> None:
    if transport.kind != TRANSPORT_KIND_FORWARD:
        return
    if new_status == TRANSPORT_STATUS_IN_TRANSIT:
        _mirror(transport.package, PACKAGE_STATUS_IN_TRANSIT)
    elif new_status == TRANSPORT_STATUS_DELIVERED:
        _mirror(transport.package, PACKAGE_STATUS_DELIVERED)


def on_return_processed(return_doc, **kwargs) -> None:
    package = return_doc.package
    if package.status == PACKAGE_STATUS_RETURNED:
        # Later partial return against an already returned package
        return
    _mirror(package, PACKAGE_STATUS_RETURNED)
    current_app.logger.info("Package %s marked returned", package.package_code)


# =============================================================================
# QUERIES
# =============================================================================

def get_package(package_id: int) -> Package:
    package = db.session.get(Package, package_id)
    if not package:
        raise NotFound(f"Package {package_id} not found")
    return package


def list_packages(*, status: str | None = None, page: int = 1, limit: int = 20) -> dict:
    q = db.session.query(Package)
    if status:
        q = q.filter(Package.status == status)
    return paginate(q.order_by(Package.created_at.desc(), Package.id.desc()), page=page, limit=limit)


def packages_for_order(order_id: int) -> list[Package]:
    if not db.session.get(Order, order_id):
        raise NotFound(f"Order {order_id} not found")
    return db.session.query(Package).filter_by(order_id=order_id).order_by(Package.id.asc()).all()
