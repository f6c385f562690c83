# Overview: Pytest coverage for the batch inventory ledger.

"""
Inventory Ledger Tests

Every mutation keeps current + damaged + allocated == original, writes one
movement row, and refuses to push any quantity below zero.
"""

from datetime import date

import pytest

from fulfillment.errors import InsufficientStock, NotFound, OverRestock
from fulfillment.models import BatchMovement, FulfillmentEvent
from fulfillment.services import inventory_ledger
from fulfillment.validation import ValidationError
from conftest import assert_batch_consistent


class TestReceiveBatch:
    def test_receive_sets_current_equal_to_original(self, db_session, product, make_batch):
        batch = make_batch(product, 40, date(2025, 6, 1), batch_number="B-REC-1")

        assert batch.original_quantity == 40
        assert batch.current_quantity == 40
        assert batch.damaged_quantity == 0
        assert batch.allocated_quantity == 0
        movements = db_session.query(BatchMovement).filter_by(batch_id=batch.id).all()
        assert [(m.movement_type, m.quantity) for m in movements] == [("RECEIVE", 40)]
        assert db_session.query(FulfillmentEvent).filter_by(event_type="inventory.received").count() == 1

    def test_generated_batch_number_uses_sku(self, db_session, product, make_batch):
        batch = make_batch(product, 5, date(2025, 6, 1))
        assert batch.batch_number.startswith(f"B-{product.sku}-")

    def test_expiry_before_manufacture_rejected(self, db_session, product, make_batch):
        with pytest.raises(ValidationError):
            make_batch(product, 5, date(2024, 12, 1), mfg_date=date(2025, 1, 1))

    def test_duplicate_batch_number_rejected(self, db_session, product, make_batch):
        make_batch(product, 5, date(2025, 6, 1), batch_number="B-DUP")
        with pytest.raises(ValidationError):
            make_batch(product, 5, date(2025, 7, 1), batch_number="B-DUP")

    def test_unknown_supplier_rejected(self, db_session, product, warehouse, transporter):
        with pytest.raises(NotFound):
            inventory_ledger.receive_batch(
                product_id=product.id,
                warehouse_id=warehouse.id,
                supplier_id=transporter.id,
                quantity=5,
                mfg_date=date(2025, 1, 1),
                exp_date=date(2025, 6, 1),
            )


class TestReserveAndRelease:
    def test_reserve_moves_current_to_allocated(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))

        inventory_ledger.reserve(product.id, batch.id, 6)
        db_session.commit()

        assert batch.current_quantity == 4
        assert batch.allocated_quantity == 6
        assert_batch_consistent(batch)

    def test_reserve_more_than_current_raises(self, db_session, product, make_batch):
        batch = make_batch(product, 3, date(2025, 6, 1))

        with pytest.raises(InsufficientStock) as exc_info:
            inventory_ledger.reserve(product.id, batch.id, 4)

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 4
        db_session.rollback()
        assert inventory_ledger.get_batch(batch.id).current_quantity == 3

    def test_reserve_wrong_product_is_not_found(self, db_session, make_product, make_batch):
        first = make_product()
        second = make_product()
        batch = make_batch(first, 10, date(2025, 6, 1))

        with pytest.raises(NotFound):
            inventory_ledger.reserve(second.id, batch.id, 1)

    def test_release_returns_units_to_shelf(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        inventory_ledger.reserve(product.id, batch.id, 6)

        released = inventory_ledger.release(batch.id, 6)
        db_session.commit()

        assert released == 6
        assert batch.current_quantity == 10
        assert batch.allocated_quantity == 0
        assert_batch_consistent(batch)

    def test_release_is_capped_at_allocated(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        inventory_ledger.reserve(product.id, batch.id, 2)

        released = inventory_ledger.release(batch.id, 5)
        db_session.commit()

        assert released == 2
        assert batch.current_quantity == 10
        assert_batch_consistent(batch)

    def test_release_with_nothing_allocated_is_noop(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        assert inventory_ledger.release(batch.id, 3) == 0
        assert batch.current_quantity == 10

    def test_non_positive_quantity_rejected(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        with pytest.raises(ValidationError):
            inventory_ledger.reserve(product.id, batch.id, 0)


class TestDamageAndRestock:
    def test_mark_damaged_reports_financial_loss(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1), unit_cost_cents=250)

        result = inventory_ledger.mark_damaged(batch.id, 3, "Crushed pallet")

        assert result["financial_loss_cents"] == 750
        assert result["batch"].current_quantity == 7
        assert result["batch"].damaged_quantity == 3
        assert_batch_consistent(batch)
        event = db_session.query(FulfillmentEvent).filter_by(event_type="inventory.damaged").one()
        assert event.payload["financial_loss_cents"] == 750

    def test_mark_damaged_more_than_current_raises(self, db_session, product, make_batch):
        batch = make_batch(product, 2, date(2025, 6, 1))
        with pytest.raises(InsufficientStock):
            inventory_ledger.mark_damaged(batch.id, 3)
        assert inventory_ledger.get_batch(batch.id).damaged_quantity == 0

    def test_release_never_exceeds_original_minus_damaged(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        inventory_ledger.reserve(product.id, batch.id, 4)
        db_session.commit()
        inventory_ledger.mark_damaged(batch.id, 6)

        released = inventory_ledger.release(batch.id, 10)
        db_session.commit()

        assert released == 4
        assert batch.current_quantity == 4
        assert batch.current_quantity <= batch.original_quantity - batch.damaged_quantity
        assert_batch_consistent(batch)

    def test_restock_beyond_allocated_raises(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        inventory_ledger.reserve(product.id, batch.id, 3)

        with pytest.raises(OverRestock):
            inventory_ledger.restock(batch.id, 4)

    def test_restock_puts_units_back(self, db_session, product, make_batch):
        batch = make_batch(product, 10, date(2025, 6, 1))
        inventory_ledger.reserve(product.id, batch.id, 5)

        inventory_ledger.restock(batch.id, 2)
        db_session.commit()

        assert batch.current_quantity == 7
        assert batch.allocated_quantity == 3
        assert_batch_consistent(batch)


class TestReadSide:
    def test_inventory_status_levels(self, db_session, make_product, make_batch):
        product = make_product(threshold_limit=5)
        make_batch(product, 20, date(2025, 6, 1), batch_number="B-HIGH")
        make_batch(product, 5, date(2025, 7, 1), batch_number="B-LOW")
        empty = make_batch(product, 2, date(2025, 8, 1), batch_number="B-EMPTY")
        inventory_ledger.mark_damaged(empty.id, 2)

        rows = {row["batch_number"]: row for row in inventory_ledger.inventory_status(product_id=product.id)}

        assert rows["B-HIGH"]["stock_status"] == "in_stock"
        assert rows["B-LOW"]["stock_status"] == "low"
        assert rows["B-EMPTY"]["stock_status"] == "out_of_stock"

    def test_track_batch_snapshot(self, db_session, product, make_batch):
        make_batch(product, 12, date(2025, 6, 1), batch_number="B-TRACK")
        snapshot = inventory_ledger.track_batch("B-TRACK")

        assert snapshot["batch"]["current_quantity"] == 12
        assert snapshot["product"]["sku"] == product.sku
        assert snapshot["movement_totals"] == {"RECEIVE": 12}
        assert snapshot["invariant_problems"] == []

    def test_track_unknown_batch(self, db_session):
        with pytest.raises(NotFound):
            inventory_ledger.track_batch("NOPE")

    def test_verify_all_batches_clean(self, db_session, product, make_batch):
        make_batch(product, 10, date(2025, 6, 1))
        make_batch(product, 10, date(2025, 7, 1))
        result = inventory_ledger.verify_all_batches()
        assert result == {"checked": 2, "violations": []}
