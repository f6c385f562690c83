# Overview: Carrier legs for packages (forward delivery and return pickup).

from __future__ import annotations

from ..extensions import db
from ..errors import InvalidTransition, NotFound
from ..events import publish, transport_status_changed
from ..models import Package, Partner, Transport, TransportStatusEvent
from ..models.catalog import PARTNER_KIND_TRANSPORTER
from ..models.transport import (
    TRANSPORT_KIND_FORWARD,
    TRANSPORT_KIND_RETURN,
    TRANSPORT_STATUS_DELIVERED,
    TRANSPORT_STATUS_DISPATCHED,
    TRANSPORT_STATUS_IN_TRANSIT,
)
from ..validation import ValidationError
from fulfillment.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import new_tracking_number
from .pagination import paginate


TRANSPORT_STATUSES = (
    TRANSPORT_STATUS_DISPATCHED,
    TRANSPORT_STATUS_IN_TRANSIT,
    TRANSPORT_STATUS_DELIVERED,
)
TRANSPORT_KINDS = (TRANSPORT_KIND_FORWARD, TRANSPORT_KIND_RETURN)

# Only forward edges; a delivered transport is final
VALID_TRANSITIONS = {
    TRANSPORT_STATUS_DISPATCHED: {TRANSPORT_STATUS_IN_TRANSIT},
    TRANSPORT_STATUS_IN_TRANSIT: {TRANSPORT_STATUS_DELIVERED},
    TRANSPORT_STATUS_DELIVERED: set(),
}


def get_active_transporter(transporter_id: int) -> Partner:
    transporter = db.session.get(Partner, transporter_id)
    if not transporter or transporter.kind != PARTNER_KIND_TRANSPORTER or not transporter.is_active:
        raise NotFound(f"Transporter {transporter_id} not found")
    return transporter


def create_transport(
    package: Package,
    transporter_id: int,
    *,
    kind: str = TRANSPORT_KIND_FORWARD,
    status: str = TRANSPORT_STATUS_DISPATCHED,
    notes: str | None = None,
    location: str | None = None,
    actor_id: int | None = None,
) -> Transport:
    """
    Create a transport leg with its first history entry. Caller commits.

    Forward legs start dispatched (assigned at the dock); return legs start
    in_transit (created when the carrier has already picked up).
    """
    get_active_transporter(transporter_id)

    now = utcnow()
    transport = Transport(
        package_id=package.id,
        transporter_id=transporter_id,
        kind=kind,
        tracking_number=new_tracking_number(),
        status=status,
        notes=notes,
        assigned_by=actor_id,
        dispatched_at=now,
    )
    db.session.add(transport)
    db.session.flush()

    db.session.add(TransportStatusEvent(
        transport_id=transport.id,
        status=status,
        location=location,
        notes=notes,
        updated_by=actor_id,
        occurred_at=now,
    ))
    db.session.flush()
    return transport


def advance_status(
    transport: Transport,
    new_status: str,
    *,
    notes: str | None = None,
    location: str | None = None,
    actor_id: int | None = None,
) -> str:
    """
    Apply one legal status change to an already-locked transport.

    Runs in the caller's transaction and never commits. Records the status
    event and publishes transport.status_changed. Returns the previous status.
    """
    previous = transport.status
    if new_status not in VALID_TRANSITIONS.get(previous, set()):
        raise InvalidTransition("transport", transport.id, previous, new_status)

    now = utcnow()
    transport.status = new_status
    if new_status == TRANSPORT_STATUS_DELIVERED:
        transport.delivered_at = now
    db.session.add(TransportStatusEvent(
        transport_id=transport.id,
        status=new_status,
        location=location,
        notes=notes,
        updated_by=actor_id,
        occurred_at=now,
    ))
    db.session.flush()

    publish(
        transport_status_changed,
        transport,
        entity_type="transport",
        entity_id=transport.id,
        actor_id=actor_id,
        note=notes,
        payload={"kind": transport.kind, "previous_status": previous, "new_status": new_status},
        previous_status=previous,
        new_status=new_status,
    )
    return previous


def update_status(
    transport_id: int,
    new_status: str,
    *,
    notes: str | None = None,
    location: str | None = None,
    actor_id: int | None = None,
) -> dict:
    """
    Advance a transport along dispatched -> in_transit -> delivered.

    Subscribers mirror the change onto the package and order (forward leg)
    or mark the return received (return leg), in the same transaction.
    """
    if new_status not in TRANSPORT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TRANSPORT_STATUSES)}")

    def _op():
        transport = lock_for_update(db.session.query(Transport).filter_by(id=transport_id)).first()
        if not transport:
            raise NotFound(f"Transport {transport_id} not found")

        previous = advance_status(
            transport, new_status, notes=notes, location=location, actor_id=actor_id
        )
        db.session.commit()
        return {"transport": transport, "previous_status": previous, "new_status": new_status}

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transport(transport_id: int) -> Transport:
    transport = db.session.get(Transport, transport_id)
    if not transport:
        raise NotFound(f"Transport {transport_id} not found")
    return transport


def get_transport_by_tracking_number(tracking_number: str) -> Transport | None:
    return db.session.query(Transport).filter_by(tracking_number=tracking_number).first()


def list_transports(
    *,
    status: str | None = None,
    kind: str | None = None,
    transporter_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    q = db.session.query(Transport)
    if status:
        q = q.filter(Transport.status == status)
    if kind:
        q = q.filter(Transport.kind == kind)
    if transporter_id is not None:
        q = q.filter(Transport.transporter_id == transporter_id)
    return paginate(q.order_by(Transport.created_at.desc(), Transport.id.desc()), page=page, limit=limit)


def transports_for_package(package_id: int) -> list[Transport]:
    if not db.session.get(Package, package_id):
        raise NotFound(f"Package {package_id} not found")
    return (
        db.session.query(Transport)
        .filter_by(package_id=package_id)
        .order_by(Transport.id.asc())
        .all()
    )
