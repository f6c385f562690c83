"""
Return (reverse-logistics) lifecycle service.

WHY: A delivered package can come back in whole or in part. The goods must go
back into the exact batches they were allocated from, so expiry tracking and
the batch quantity invariant stay correct.

DESIGN PRINCIPLES:
- Returns reference the package and, per line, the original batch
- Returnable quantity per (product, batch) = allocated to the package minus
  quantities of earlier processed returns
- At most one open (non-processed) return per package
- Inventory is only touched at processing time (restock), never on receipt
- Immutable audit trail (every transition appends a fulfillment event)

LIFECYCLE:
1. initiated - customer asks to return items
2. pickup_scheduled - transporter chosen
3. picked_up - return-leg transport created in_transit
4. received - goods back at the warehouse (manually, or when the return-leg
   transport is delivered)
5. processed - every line restocked into its batch; package and order
   become returned
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import DuplicateReturn, InvalidQuantity, InvalidTransition, NotFound
from ..events import publish, return_processed, return_received
from ..models import AllocationRecord, Package, Return, ReturnLine, Transport, Warehouse
from ..models.orders import PACKAGE_STATUS_DELIVERED, PACKAGE_STATUS_RETURNED
from ..models.returns import (
    RETURN_STATUS_INITIATED,
    RETURN_STATUS_PICKED_UP,
    RETURN_STATUS_PICKUP_SCHEDULED,
    RETURN_STATUS_PROCESSED,
    RETURN_STATUS_RECEIVED,
)
from ..models.transport import (
    TRANSPORT_KIND_RETURN,
    TRANSPORT_STATUS_DELIVERED,
    TRANSPORT_STATUS_IN_TRANSIT,
)
from ..validation import ReturnItemInput, ValidationError, parse_returned_items
from fulfillment.time_utils import utcnow
from . import inventory_ledger, transport_service
from .audit_service import append_fulfillment_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_RETURN, next_document_number
from .pagination import paginate


RETURN_STATUSES = (
    RETURN_STATUS_INITIATED,
    RETURN_STATUS_PICKUP_SCHEDULED,
    RETURN_STATUS_PICKED_UP,
    RETURN_STATUS_RECEIVED,
    RETURN_STATUS_PROCESSED,
)

RETURNABLE_PACKAGE_STATUSES = {PACKAGE_STATUS_DELIVERED, PACKAGE_STATUS_RETURNED}


def _lock_return(return_id: int) -> Return:
    return_doc = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if not return_doc:
        raise NotFound(f"Return {return_id} not found")
    return return_doc


def _advance(return_doc: Return, expected: str, target: str) -> None:
    if return_doc.status != expected:
        raise InvalidTransition("return", return_doc.id, return_doc.status, target)
    return_doc.status = target


def returnable_quantities(package_id: int) -> dict[tuple[int, int], int]:
    """
    Remaining returnable quantity per (product_id, batch_id) on a package.

    Allocated quantity minus what processed returns already brought back.
    """
    allocated = (
        db.session.query(
            AllocationRecord.product_id,
            AllocationRecord.batch_id,
            func.sum(AllocationRecord.quantity),
        )
        .filter(AllocationRecord.package_id == package_id)
        .group_by(AllocationRecord.product_id, AllocationRecord.batch_id)
        .all()
    )
    returned = (
        db.session.query(
            ReturnLine.product_id,
            ReturnLine.batch_id,
            func.sum(ReturnLine.quantity),
        )
        .join(Return, Return.id == ReturnLine.return_id)
        .filter(Return.package_id == package_id, Return.status == RETURN_STATUS_PROCESSED)
        .group_by(ReturnLine.product_id, ReturnLine.batch_id)
        .all()
    )
    already = {(p, b): int(q) for p, b, q in returned}
    return {(p, b): int(q) - already.get((p, b), 0) for p, b, q in allocated}


# =============================================================================
# INITIATION
# =============================================================================

def initiate_return(
    package_id: int,
    returned_items,
    *,
    reason: str | None = None,
    notes: str | None = None,
    warehouse_id: int | None = None,
    actor_id: int | None = None,
) -> Return:
    """
    Open a return for a delivered package.

    Args:
        package_id: Package the goods were shipped in
        returned_items: [{"productId", "batchId", "quantity"}] or ReturnItemInput list
        reason: Customer's reason for the return
        notes: Free-form notes
        warehouse_id: Warehouse receiving the goods (optional)
        actor_id: Acting user

    Returns:
        Return in initiated status

    Raises:
        NotFound: Unknown package or warehouse
        InvalidTransition: Package was never delivered
        DuplicateReturn: Package already has an open return
        InvalidQuantity: A line exceeds what is still returnable, or names a
            batch that was not allocated to the package
    """
    if returned_items and not isinstance(returned_items[0], ReturnItemInput):
        returned_items = parse_returned_items(returned_items)
    if not returned_items:
        raise ValidationError("returnedItems must be a non-empty list")

    def _op():
        package = lock_for_update(db.session.query(Package).filter_by(id=package_id)).first()
        if not package:
            raise NotFound(f"Package {package_id} not found")

        if package.status not in RETURNABLE_PACKAGE_STATUSES:
            raise InvalidTransition(
                "package", package.id, package.status, PACKAGE_STATUS_RETURNED,
                reason="only delivered packages can be returned",
            )

        open_return = (
            db.session.query(Return)
            .filter(Return.package_id == package.id, Return.status != RETURN_STATUS_PROCESSED)
            .first()
        )
        if open_return:
            raise DuplicateReturn(
                f"Package {package.package_code} already has open return {open_return.return_number}",
                current_status=open_return.status,
                details={"return_id": open_return.id, "return_number": open_return.return_number},
            )

        if warehouse_id is not None and not db.session.get(Warehouse, warehouse_id):
            raise NotFound(f"Warehouse {warehouse_id} not found")

        remaining = returnable_quantities(package.id)
        for item in returned_items:
            key = (item.product_id, item.batch_id)
            if key not in remaining:
                raise InvalidQuantity(
                    f"Batch {item.batch_id} of product {item.product_id} was not allocated to package {package.package_code}",
                    details={"product_id": item.product_id, "batch_id": item.batch_id},
                )
            if item.quantity > remaining[key]:
                raise InvalidQuantity(
                    f"Cannot return {item.quantity} of product {item.product_id} from batch "
                    f"{item.batch_id}: only {remaining[key]} returnable",
                    details={
                        "product_id": item.product_id,
                        "batch_id": item.batch_id,
                        "requested": item.quantity,
                        "returnable": remaining[key],
                    },
                )

        return_doc = Return(
            return_number=next_document_number(DOCUMENT_TYPE_RETURN),
            package_id=package.id,
            status=RETURN_STATUS_INITIATED,
            return_reason=reason,
            notes=notes,
            warehouse_id=warehouse_id,
            initiated_by=actor_id,
        )
        db.session.add(return_doc)
        db.session.flush()

        for item in returned_items:
            db.session.add(ReturnLine(
                return_id=return_doc.id,
                product_id=item.product_id,
                batch_id=item.batch_id,
                quantity=item.quantity,
            ))

        append_fulfillment_event(
            event_type="return.initiated",
            entity_type="return",
            entity_id=return_doc.id,
            actor_user_id=actor_id,
            note=reason,
            payload={"package_id": package.id, "lines": len(returned_items)},
        )
        db.session.commit()
        return return_doc

    return run_with_retry(_op)


# =============================================================================
# PICKUP AND RECEIPT
# =============================================================================

def schedule_pickup(
    return_id: int,
    transporter_id: int,
    *,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Return:
    def _op():
        return_doc = _lock_return(return_id)
        transport_service.get_active_transporter(transporter_id)
        _advance(return_doc, RETURN_STATUS_INITIATED, RETURN_STATUS_PICKUP_SCHEDULED)

        return_doc.transporter_id = transporter_id
        return_doc.pickup_scheduled_at = utcnow()
        if notes:
            return_doc.notes = notes

        append_fulfillment_event(
            event_type="return.pickup_scheduled",
            entity_type="return",
            entity_id=return_doc.id,
            actor_user_id=actor_id,
            note=notes,
            payload={"transporter_id": transporter_id},
        )
        db.session.commit()
        return return_doc

    return run_with_retry(_op)


def mark_picked_up(return_id: int, *, notes: str | None = None, actor_id: int | None = None) -> Return:
    """pickup_scheduled -> picked_up; opens the return-leg transport in_transit."""
    def _op():
        return_doc = _lock_return(return_id)
        _advance(return_doc, RETURN_STATUS_PICKUP_SCHEDULED, RETURN_STATUS_PICKED_UP)

        transport = transport_service.create_transport(
            return_doc.package,
            return_doc.transporter_id,
            kind=TRANSPORT_KIND_RETURN,
            status=TRANSPORT_STATUS_IN_TRANSIT,
            notes=notes,
            actor_id=actor_id,
        )
        return_doc.transport_id = transport.id
        return_doc.picked_up_at = utcnow()

        append_fulfillment_event(
            event_type="return.picked_up",
            entity_type="return",
            entity_id=return_doc.id,
            actor_user_id=actor_id,
            note=notes,
            payload={"transport_id": transport.id, "tracking_number": transport.tracking_number},
        )
        db.session.commit()
        return return_doc

    return run_with_retry(_op)


def _receive_inner(return_doc: Return, *, notes: str | None = None, actor_id: int | None = None) -> None:
    _advance(return_doc, RETURN_STATUS_PICKED_UP, RETURN_STATUS_RECEIVED)
    return_doc.received_at = utcnow()
    if notes:
        return_doc.notes = notes
    db.session.flush()

    publish(
        return_received,
        return_doc,
        entity_type="return",
        entity_id=return_doc.id,
        actor_id=actor_id,
        note=notes,
    )


def mark_received(return_id: int, *, notes: str | None = None, actor_id: int | None = None) -> Return:
    """
    picked_up -> received. No inventory effect.

    Closes the return-leg transport as delivered if the carrier has not
    reported it yet.
    """
    def _op():
        return_doc = _lock_return(return_id)
        _receive_inner(return_doc, notes=notes, actor_id=actor_id)

        transport = return_doc.transport
        if transport is not None and transport.status == TRANSPORT_STATUS_IN_TRANSIT:
            transport_service.advance_status(
                transport,
                TRANSPORT_STATUS_DELIVERED,
                notes="received at warehouse",
                actor_id=actor_id,
            )

        db.session.commit()
        return return_doc

    return run_with_retry(_op)


def on_transport_status_changed(transport: Transport, *, new_status: str, actor_id=None, **kwargs) -> None:
    if transport.kind != TRANSPORT_KIND_RETURN or new_status != TRANSPORT_STATUS_DELIVERED:
        return
    return_doc = db.session.query(Return).filter_by(transport_id=transport.id).first()
    if return_doc is None or return_doc.status != RETURN_STATUS_PICKED_UP:
        # Already received manually
        return
    _receive_inner(return_doc, notes="return transport delivered", actor_id=actor_id)


# =============================================================================
# PROCESSING (restock)
# =============================================================================

def process_return(return_id: int, *, notes: str | None = None, actor_id: int | None = None) -> Return:
    """
    received -> processed: restock every line into its original batch.

    Publishes return.processed, which marks the package and order returned.
    Raises OverRestock if a batch no longer holds enough allocated quantity.
    """
    def _op():
        return_doc = _lock_return(return_id)
        _advance(return_doc, RETURN_STATUS_RECEIVED, RETURN_STATUS_PROCESSED)

        restocked = 0
        for line in return_doc.lines:
            inventory_ledger.restock(
                line.batch_id,
                line.quantity,
                return_id=return_doc.id,
                actor_id=actor_id,
                note=f"return {return_doc.return_number}",
            )
            restocked += line.quantity

        return_doc.processed_at = utcnow()
        return_doc.processed_by = actor_id
        if notes:
            return_doc.notes = notes
        db.session.flush()

        publish(
            return_processed,
            return_doc,
            entity_type="return",
            entity_id=return_doc.id,
            actor_id=actor_id,
            note=notes,
            payload={"restocked_quantity": restocked},
        )
        db.session.commit()
        current_app.logger.info(
            "Return %s processed; %s unit(s) restocked", return_doc.return_number, restocked
        )
        return return_doc

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    return_doc = db.session.get(Return, return_id)
    if not return_doc:
        raise NotFound(f"Return {return_id} not found")
    return return_doc


def list_returns(
    *,
    status: str | None = None,
    package_id: int | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    if status and status not in RETURN_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(RETURN_STATUSES)}")
    q = db.session.query(Return)
    if status:
        q = q.filter(Return.status == status)
    if package_id is not None:
        q = q.filter(Return.package_id == package_id)
    return paginate(q.order_by(Return.created_at.desc(), Return.id.desc()), page=page, limit=limit)
