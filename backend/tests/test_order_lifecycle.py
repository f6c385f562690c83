# Overview: Pytest coverage for order creation, FEFO processing, packing and cancellation.

import re
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import DatabaseError, OperationalError

from fulfillment.errors import AllocationFailed, InvalidTransition, NotFound
from fulfillment.models import AllocationRecord, FulfillmentEvent, Order
from fulfillment.models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PACKAGED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    PACKAGE_STATUS_CANCELLED,
    PACKAGE_STATUS_PENDING,
    PACKAGE_STATUS_READY,
)
from fulfillment.services import inventory_ledger, order_service, package_service
from fulfillment.validation import ValidationError
from conftest import assert_batch_consistent


class TestCreateOrder:
    def test_create_snapshots_prices(self, db_session, product):
        order = order_service.create_order(
            items=[{"productId": product.id, "quantity": 4}],
            notes="weekly restock",
        )

        assert order.status == ORDER_STATUS_PENDING
        assert re.fullmatch(r"ORD-\d{6}", order.order_number)
        assert len(order.lines) == 1
        assert order.lines[0].unit_price_cents == 250
        assert order.total_cents == 1000

    def test_order_numbers_are_sequential(self, db_session, product, make_order):
        first = make_order((product, 1))
        second = make_order((product, 1))
        assert int(second.order_number[4:]) == int(first.order_number[4:]) + 1

    def test_repeated_idempotency_key_returns_same_order(self, db_session, product, make_order):
        first = make_order((product, 2), idempotency_key="client-abc")
        second = make_order((product, 2), idempotency_key="client-abc")

        assert first.id == second.id
        assert db_session.query(Order).count() == 1

    def test_unknown_product_rejected(self, db_session):
        with pytest.raises(NotFound):
            order_service.create_order(items=[{"productId": 999, "quantity": 1}])

    def test_inactive_product_rejected(self, db_session, make_product):
        retired = make_product(is_active=False)
        with pytest.raises(ValidationError):
            order_service.create_order(items=[{"productId": retired.id, "quantity": 1}])

    def test_duplicate_product_lines_rejected(self, db_session, product):
        with pytest.raises(ValidationError):
            order_service.create_order(items=[
                {"productId": product.id, "quantity": 1},
                {"productId": product.id, "quantity": 2},
            ])

    def test_non_customer_partner_rejected(self, db_session, product, supplier):
        with pytest.raises(NotFound):
            order_service.create_order(
                items=[{"productId": product.id, "quantity": 1}],
                customer_id=supplier.id,
            )

    def test_create_with_customer(self, db_session, product, customer):
        order = order_service.create_order(
            items=[{"productId": product.id, "quantity": 1}],
            customer_id=customer.id,
        )
        assert order.customer_id == customer.id


class TestProcessOrder:
    def test_process_allocates_fefo_into_one_package(self, db_session, product, make_batch, make_order):
        b2 = make_batch(product, 5, date(2025, 2, 10), batch_number="B2")
        b1 = make_batch(product, 5, date(2025, 1, 10), batch_number="B1")
        order = make_order((product, 7))

        result = order_service.process_order(order.id, actor_id=3)

        order = result["order"]
        package = result["package"]
        assert order.status == ORDER_STATUS_PROCESSING
        assert order.processed_by == 3
        assert package.status == PACKAGE_STATUS_PENDING
        assert package.order_id == order.id
        assert package.total_value_cents == 7 * 250
        assert package.total_weight_grams == 7 * 150
        allocations = sorted((r.batch.batch_number, r.quantity) for r in package.allocated_items)
        assert allocations == [("B1", 5), ("B2", 2)]
        assert inventory_ledger.get_batch(b1.id).current_quantity == 0
        assert inventory_ledger.get_batch(b2.id).current_quantity == 3
        assert_batch_consistent(b1)
        assert_batch_consistent(b2)

    def test_package_allocations_match_order_lines(self, db_session, make_product, make_batch, make_order):
        apples = make_product(name="Apples")
        pears = make_product(name="Pears")
        make_batch(apples, 3, date(2025, 1, 1))
        make_batch(apples, 3, date(2025, 2, 1))
        make_batch(pears, 10, date(2025, 1, 1))
        order = make_order((apples, 5), (pears, 4))

        package = order_service.process_order(order.id)["package"]

        per_product = {}
        for record in package.allocated_items:
            per_product[record.product_id] = per_product.get(record.product_id, 0) + record.quantity
        assert per_product == {apples.id: 5, pears.id: 4}

    def test_one_short_line_leaves_every_batch_untouched(self, db_session, make_product, make_batch, make_order):
        apples = make_product(name="Apples")
        pears = make_product(name="Pears")
        a1 = make_batch(apples, 5, date(2025, 1, 1))
        p1 = make_batch(pears, 2, date(2025, 1, 1))
        order = make_order((apples, 3), (pears, 10))

        with pytest.raises(AllocationFailed) as exc_info:
            order_service.process_order(order.id)

        err = exc_info.value
        assert err.current_status == ORDER_STATUS_PENDING
        assert [f.product_id for f in err.failures] == [pears.id]
        assert err.to_dict()["details"]["lines"][0]["available"] == 2
        assert order_service.get_order(order.id).status == ORDER_STATUS_PENDING
        assert order_service.get_order(order.id).package is None
        assert inventory_ledger.get_batch(a1.id).current_quantity == 5
        assert inventory_ledger.get_batch(p1.id).current_quantity == 2
        assert db_session.query(AllocationRecord).count() == 0

    def test_process_twice_is_invalid_transition(self, db_session, product, make_batch, make_order):
        make_batch(product, 10, date(2025, 1, 1))
        order = make_order((product, 2))
        order_service.process_order(order.id)

        with pytest.raises(InvalidTransition) as exc_info:
            order_service.process_order(order.id)

        assert exc_info.value.current_status == ORDER_STATUS_PROCESSING

    def test_process_retry_with_same_key_returns_original(self, db_session, product, make_batch, make_order):
        batch = make_batch(product, 10, date(2025, 1, 1))
        order = make_order((product, 2))

        first = order_service.process_order(order.id, idempotency_key="proc-1")
        again = order_service.process_order(order.id, idempotency_key="proc-1")

        assert again["package"].id == first["package"].id
        assert inventory_ledger.get_batch(batch.id).current_quantity == 8

        with pytest.raises(InvalidTransition):
            order_service.process_order(order.id, idempotency_key="proc-2")

    def test_process_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            order_service.process_order(12345)

    def test_process_publishes_event(self, db_session, product, make_batch, make_order):
        make_batch(product, 10, date(2025, 1, 1))
        order = make_order((product, 2))
        order_service.process_order(order.id, actor_id=9)

        event = (
            db_session.query(FulfillmentEvent)
            .filter_by(event_type="order.processed", entity_id=order.id)
            .one()
        )
        assert event.actor_user_id == 9
        assert event.payload["allocations"][0]["quantity"] == 2


def drain_after_first_plan(monkeypatch, db_session, batch_id, product_id, qty):
    """
    Make the first FEFO read return a snapshot, then let another flow
    reserve qty from batch_id and commit before the plan is reserved.
    """
    original = inventory_ledger.available_batches
    reads = []

    def _available_batches(pid, **kwargs):
        snapshot = [
            SimpleNamespace(id=b.id, batch_number=b.batch_number, current_quantity=b.current_quantity)
            for b in original(pid, **kwargs)
        ]
        if not reads:
            inventory_ledger.reserve(product_id, batch_id, qty)
            db_session.commit()
        reads.append(pid)
        return snapshot

    monkeypatch.setattr(inventory_ledger, "available_batches", _available_batches)
    return reads


class TestProcessOrderContention:
    def test_drained_batch_is_replanned_from_other_batches(
        self, db_session, monkeypatch, product, make_batch, make_order
    ):
        b1 = make_batch(product, 5, date(2025, 1, 1), batch_number="B1")
        b2 = make_batch(product, 10, date(2025, 2, 1), batch_number="B2")
        b1_id, b2_id = b1.id, b2.id
        order = make_order((product, 5))
        reads = drain_after_first_plan(monkeypatch, db_session, b1_id, product.id, 5)

        result = order_service.process_order(order.id)

        assert len(reads) == 2
        assert result["order"].status == ORDER_STATUS_PROCESSING
        allocations = [(r.batch.batch_number, r.quantity) for r in result["package"].allocated_items]
        assert allocations == [("B2", 5)]
        b1 = inventory_ledger.get_batch(b1_id)
        b2 = inventory_ledger.get_batch(b2_id)
        assert (b1.current_quantity, b1.allocated_quantity) == (0, 5)
        assert (b2.current_quantity, b2.allocated_quantity) == (5, 5)
        assert_batch_consistent(b1)
        assert_batch_consistent(b2)

    def test_replan_with_real_shortfall_fails(self, db_session, monkeypatch, product, make_batch, make_order):
        b1 = make_batch(product, 5, date(2025, 1, 1), batch_number="B1")
        b2 = make_batch(product, 3, date(2025, 2, 1), batch_number="B2")
        b2_id = b2.id
        order = make_order((product, 5))
        drain_after_first_plan(monkeypatch, db_session, b1.id, product.id, 5)

        with pytest.raises(AllocationFailed) as exc_info:
            order_service.process_order(order.id)

        assert exc_info.value.failures[0].available == 3
        assert order_service.get_order(order.id).status == ORDER_STATUS_PENDING
        assert order_service.get_order(order.id).package is None
        assert inventory_ledger.get_batch(b2_id).current_quantity == 3

    @pytest.mark.parametrize("error", [
        OperationalError("UPDATE batches", {}, Exception("database is locked")),
        DatabaseError("UPDATE batches", {}, Exception("disk I/O error")),
    ], ids=["operational", "database"])
    def test_storage_failure_mid_reservation_rolls_back(
        self, app, db_session, monkeypatch, product, make_batch, make_order, error
    ):
        monkeypatch.setitem(app.config, "CONCURRENCY_RETRY_ATTEMPTS", 1)
        b1 = make_batch(product, 3, date(2025, 1, 1), batch_number="B1")
        b2 = make_batch(product, 5, date(2025, 2, 1), batch_number="B2")
        b1_id, b2_id = b1.id, b2.id
        order = make_order((product, 6))
        original_reserve = inventory_ledger.reserve

        def _reserve(product_id, batch_id, qty, **kwargs):
            if batch_id == b2_id:
                raise error
            return original_reserve(product_id, batch_id, qty, **kwargs)

        monkeypatch.setattr(inventory_ledger, "reserve", _reserve)

        with pytest.raises(AllocationFailed):
            order_service.process_order(order.id)

        b1 = inventory_ledger.get_batch(b1_id)
        assert (b1.current_quantity, b1.allocated_quantity) == (3, 0)
        assert inventory_ledger.get_batch(b2_id).current_quantity == 5
        assert order_service.get_order(order.id).status == ORDER_STATUS_PENDING
        assert order_service.get_order(order.id).package is None
        assert db_session.query(AllocationRecord).count() == 0


class TestPackAndDeliver:
    def test_mark_ready_packs_the_order(self, db_session, product, make_batch, make_order):
        make_batch(product, 10, date(2025, 1, 1))
        order = make_order((product, 2))
        package = order_service.process_order(order.id)["package"]

        package_service.mark_ready(package.id, notes="sealed")

        assert package_service.get_package(package.id).status == PACKAGE_STATUS_READY
        assert order_service.get_order(order.id).status == ORDER_STATUS_PACKAGED

    def test_pack_order_requires_ready_package(self, db_session, product, make_batch, make_order):
        make_batch(product, 10, date(2025, 1, 1))
        order = make_order((product, 2))
        order_service.process_order(order.id)

        with pytest.raises(InvalidTransition) as exc_info:
            order_service.pack_order(order.id)

        assert exc_info.value.current_status == ORDER_STATUS_PROCESSING

    def test_mark_delivered_requires_packaged(self, db_session, product, make_order):
        order = make_order((product, 1))
        with pytest.raises(InvalidTransition):
            order_service.mark_delivered(order.id)

    def test_delivery_mirrors_onto_order(self, db_session, product, make_batch, make_order, deliver):
        make_batch(product, 10, date(2025, 1, 1))
        order, package, transport = deliver(make_order((product, 2)))

        assert order.status == ORDER_STATUS_DELIVERED
        assert order.delivered_at is not None

    def test_mark_returned_requires_delivered(self, db_session, product, make_order):
        order = make_order((product, 1))
        with pytest.raises(InvalidTransition):
            order_service.mark_returned(order.id)


class TestCancelOrder:
    def test_cancel_pending_order(self, db_session, product, make_order):
        order = make_order((product, 1))
        cancelled = order_service.cancel_order(order.id, reason="customer changed mind")
        assert cancelled.status == ORDER_STATUS_CANCELLED
        assert cancelled.cancel_reason == "customer changed mind"

    def test_cancel_processing_order_releases_stock(self, db_session, product, make_batch, make_order):
        b1 = make_batch(product, 5, date(2025, 1, 10))
        b2 = make_batch(product, 5, date(2025, 2, 10))
        order = make_order((product, 7))
        package = order_service.process_order(order.id)["package"]

        order_service.cancel_order(order.id)

        assert order_service.get_order(order.id).status == ORDER_STATUS_CANCELLED
        assert package_service.get_package(package.id).status == PACKAGE_STATUS_CANCELLED
        for batch in (b1, b2):
            refreshed = inventory_ledger.get_batch(batch.id)
            assert refreshed.current_quantity == 5
            assert refreshed.allocated_quantity == 0

    def test_cancel_after_dispatch_rejected(self, db_session, product, make_batch, make_order, deliver):
        make_batch(product, 10, date(2025, 1, 1))
        order, _, _ = deliver(make_order((product, 2)))

        with pytest.raises(InvalidTransition) as exc_info:
            order_service.cancel_order(order.id)

        assert exc_info.value.current_status == ORDER_STATUS_DELIVERED


class TestQueries:
    def test_track_by_order_number_and_tracking_number(self, db_session, product, make_batch, make_order, deliver):
        make_batch(product, 10, date(2025, 1, 1))
        order, package, transport = deliver(make_order((product, 2)))

        by_number = order_service.track_order(order.order_number)
        by_tracking = order_service.track_order(transport.tracking_number)

        assert by_number == by_tracking
        assert by_number["package"]["package_code"] == package.package_code
        assert [t["tracking_number"] for t in by_number["transports"]] == [transport.tracking_number]

    def test_track_unknown(self, db_session):
        with pytest.raises(NotFound):
            order_service.track_order("ORD-999999")

    def test_list_orders_filters_by_status(self, db_session, product, make_order):
        make_order((product, 1))
        cancelled = make_order((product, 1))
        order_service.cancel_order(cancelled.id)

        result = order_service.list_orders(status=ORDER_STATUS_CANCELLED)

        assert result["total"] == 1
        assert result["items"][0].id == cancelled.id

    def test_list_orders_rejects_unknown_status(self, db_session):
        with pytest.raises(ValidationError):
            order_service.list_orders(status="shipped")
