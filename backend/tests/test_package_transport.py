# Overview: Pytest coverage for package status rules, transport legs and mirrored states.

import re
from datetime import date

import pytest

from fulfillment.errors import InvalidTransition, NotFound
from fulfillment.models.orders import (
    ORDER_STATUS_PACKAGED,
    PACKAGE_STATUS_DELIVERED,
    PACKAGE_STATUS_DISPATCHED,
    PACKAGE_STATUS_IN_TRANSIT,
    PACKAGE_STATUS_PENDING,
    PACKAGE_STATUS_READY,
)
from fulfillment.models.transport import (
    TRANSPORT_KIND_FORWARD,
    TRANSPORT_STATUS_DELIVERED,
    TRANSPORT_STATUS_DISPATCHED,
    TRANSPORT_STATUS_IN_TRANSIT,
)
from fulfillment.services import order_service, package_service, transport_service
from fulfillment.validation import ValidationError


@pytest.fixture
def processed_package(db_session, product, make_batch, make_order):
    make_batch(product, 20, date(2025, 1, 1))
    order = make_order((product, 3))
    return order_service.process_order(order.id)["package"]


@pytest.fixture
def dispatched(processed_package, transporter):
    package_service.mark_ready(processed_package.id)
    return package_service.assign_transport(processed_package.id, transporter.id)


class TestPackageStatus:
    def test_package_code_format(self, processed_package):
        assert re.fullmatch(r"PKG-\d{6}", processed_package.package_code)

    def test_update_status_to_ready(self, db_session, processed_package):
        package = package_service.update_status(processed_package.id, PACKAGE_STATUS_READY)
        assert package.status == PACKAGE_STATUS_READY
        assert package.order.status == ORDER_STATUS_PACKAGED

    @pytest.mark.parametrize("status", [
        PACKAGE_STATUS_DISPATCHED,
        PACKAGE_STATUS_IN_TRANSIT,
        PACKAGE_STATUS_DELIVERED,
    ])
    def test_event_driven_statuses_cannot_be_requested(self, db_session, processed_package, status):
        with pytest.raises(InvalidTransition) as exc_info:
            package_service.update_status(processed_package.id, status)

        assert exc_info.value.current_status == PACKAGE_STATUS_PENDING
        assert package_service.get_package(processed_package.id).status == PACKAGE_STATUS_PENDING

    def test_unknown_status_rejected(self, db_session, processed_package):
        with pytest.raises(ValidationError):
            package_service.update_status(processed_package.id, "lost")

    def test_ready_twice_rejected(self, db_session, processed_package):
        package_service.mark_ready(processed_package.id)
        with pytest.raises(InvalidTransition) as exc_info:
            package_service.mark_ready(processed_package.id)
        assert exc_info.value.current_status == PACKAGE_STATUS_READY

    def test_unknown_package(self, db_session):
        with pytest.raises(NotFound):
            package_service.update_status(4242, PACKAGE_STATUS_READY)

    def test_packages_for_order(self, db_session, processed_package):
        packages = package_service.packages_for_order(processed_package.order_id)
        assert [p.id for p in packages] == [processed_package.id]


class TestAssignTransport:
    def test_assign_dispatches_package(self, db_session, dispatched, transporter):
        transport = dispatched["transport"]
        package = dispatched["package"]

        assert package.status == PACKAGE_STATUS_DISPATCHED
        assert transport.kind == TRANSPORT_KIND_FORWARD
        assert transport.status == TRANSPORT_STATUS_DISPATCHED
        assert transport.transporter_id == transporter.id
        assert re.fullmatch(r"TRK-[0-9A-F]{8}", transport.tracking_number)
        assert [e.status for e in transport.status_history] == [TRANSPORT_STATUS_DISPATCHED]

    def test_assign_requires_ready_package(self, db_session, processed_package, transporter):
        with pytest.raises(InvalidTransition) as exc_info:
            package_service.assign_transport(processed_package.id, transporter.id)
        assert exc_info.value.current_status == PACKAGE_STATUS_PENDING
        assert transport_service.transports_for_package(processed_package.id) == []

    def test_assign_unknown_transporter(self, db_session, processed_package):
        package_service.mark_ready(processed_package.id)
        with pytest.raises(NotFound):
            package_service.assign_transport(processed_package.id, 999)

    def test_assign_rejects_non_transporter_partner(self, db_session, processed_package, supplier):
        package_service.mark_ready(processed_package.id)
        with pytest.raises(NotFound):
            package_service.assign_transport(processed_package.id, supplier.id)

    def test_assign_unknown_package(self, db_session, transporter):
        with pytest.raises(NotFound):
            package_service.assign_transport(777, transporter.id)


class TestTransportStatus:
    def test_in_transit_mirrors_package(self, db_session, dispatched):
        transport = dispatched["transport"]

        result = transport_service.update_status(transport.id, TRANSPORT_STATUS_IN_TRANSIT, location="Hub A")

        assert result["previous_status"] == TRANSPORT_STATUS_DISPATCHED
        assert result["new_status"] == TRANSPORT_STATUS_IN_TRANSIT
        assert package_service.get_package(dispatched["package"].id).status == PACKAGE_STATUS_IN_TRANSIT

    def test_full_leg_records_history(self, db_session, dispatched):
        transport = dispatched["transport"]
        transport_service.update_status(transport.id, TRANSPORT_STATUS_IN_TRANSIT, location="Hub A")
        transport_service.update_status(transport.id, TRANSPORT_STATUS_DELIVERED, notes="left at door")

        transport = transport_service.get_transport(transport.id)
        history = transport.status_history
        assert [e.status for e in history] == [
            TRANSPORT_STATUS_DISPATCHED,
            TRANSPORT_STATUS_IN_TRANSIT,
            TRANSPORT_STATUS_DELIVERED,
        ]
        assert history[1].location == "Hub A"
        assert history[2].notes == "left at door"
        assert transport.delivered_at is not None
        assert transport.package.status == PACKAGE_STATUS_DELIVERED

    def test_skipping_in_transit_rejected(self, db_session, dispatched):
        transport = dispatched["transport"]
        with pytest.raises(InvalidTransition) as exc_info:
            transport_service.update_status(transport.id, TRANSPORT_STATUS_DELIVERED)
        assert exc_info.value.current_status == TRANSPORT_STATUS_DISPATCHED

    def test_advance_status_stays_in_callers_transaction(self, db_session, dispatched):
        transport = transport_service.get_transport(dispatched["transport"].id)

        previous = transport_service.advance_status(transport, TRANSPORT_STATUS_IN_TRANSIT, location="Hub B")

        assert previous == TRANSPORT_STATUS_DISPATCHED
        assert transport.status_history[-1].location == "Hub B"
        assert package_service.get_package(dispatched["package"].id).status == PACKAGE_STATUS_IN_TRANSIT

        # Nothing was committed: rolling back restores the dispatched leg
        db_session.rollback()
        transport = transport_service.get_transport(transport.id)
        assert transport.status == TRANSPORT_STATUS_DISPATCHED
        assert len(transport.status_history) == 1
        assert package_service.get_package(dispatched["package"].id).status == PACKAGE_STATUS_DISPATCHED

    def test_delivered_is_final(self, db_session, dispatched):
        transport = dispatched["transport"]
        transport_service.update_status(transport.id, TRANSPORT_STATUS_IN_TRANSIT)
        transport_service.update_status(transport.id, TRANSPORT_STATUS_DELIVERED)

        with pytest.raises(InvalidTransition) as exc_info:
            transport_service.update_status(transport.id, TRANSPORT_STATUS_IN_TRANSIT)
        assert exc_info.value.current_status == TRANSPORT_STATUS_DELIVERED
        assert len(transport_service.get_transport(transport.id).status_history) == 3

    def test_unknown_status_value(self, db_session, dispatched):
        with pytest.raises(ValidationError):
            transport_service.update_status(dispatched["transport"].id, "lost")

    def test_unknown_transport(self, db_session):
        with pytest.raises(NotFound):
            transport_service.update_status(31337, TRANSPORT_STATUS_IN_TRANSIT)

    def test_lookup_by_tracking_number(self, db_session, dispatched):
        transport = dispatched["transport"]
        found = transport_service.get_transport_by_tracking_number(transport.tracking_number)
        assert found.id == transport.id
        assert transport_service.get_transport_by_tracking_number("TRK-NOPE") is None

    def test_list_transports_filters(self, db_session, dispatched):
        in_flight = transport_service.list_transports(status=TRANSPORT_STATUS_DISPATCHED)
        delivered = transport_service.list_transports(status=TRANSPORT_STATUS_DELIVERED)
        assert in_flight["total"] == 1
        assert delivered["total"] == 0
