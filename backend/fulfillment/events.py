# Overview: Domain event signals connecting the lifecycle services.
"""
Lifecycle components never call each other's transitions directly for
mirrored states; they publish a signal and the owning component reacts.

Handlers run synchronously inside the publisher's DB transaction, so a
failing handler rolls back the whole operation, and they must never commit.

Every publication is also appended to the fulfillment audit log.
"""

from __future__ import annotations

from blinker import Namespace

from .services.audit_service import append_fulfillment_event


_signals = Namespace()

order_processed = _signals.signal("order.processed")
order_cancelled = _signals.signal("order.cancelled")
package_ready = _signals.signal("package.ready")
transport_status_changed = _signals.signal("transport.status_changed")
return_received = _signals.signal("return.received")
return_processed = _signals.signal("return.processed")


def publish(signal, sender, *, entity_type: str, entity_id: int, actor_id=None, note=None, payload=None, **kwargs):
    """Record the event in the audit log, then notify receivers."""
    append_fulfillment_event(
        event_type=signal.name,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_id,
        note=note,
        payload=payload,
    )
    return signal.send(sender, actor_id=actor_id, **kwargs)


def connect_handlers() -> None:
    """
    Wire lifecycle reactions. Safe to call more than once (blinker dedupes
    receivers by identity).
    """
    from .services import order_service, package_service, return_service

    package_ready.connect(order_service.on_package_ready)
    transport_status_changed.connect(package_service.on_transport_status_changed)
    transport_status_changed.connect(order_service.on_transport_status_changed)
    transport_status_changed.connect(return_service.on_transport_status_changed)
    return_processed.connect(package_service.on_return_processed)
    return_processed.connect(order_service.on_return_processed)
