# Overview: Threaded concurrency tests for allocation and document numbering.

"""
Concurrency tests run against a temporary file-backed SQLite database so that
each worker thread gets its own connection.
"""
import os
import tempfile
import threading
import unittest
from datetime import date

from fulfillment import create_app
from fulfillment.errors import AllocationFailed, InsufficientStock
from fulfillment.extensions import db
from fulfillment.models import Batch, Partner, Product, Warehouse
from fulfillment.models.catalog import PARTNER_KIND_SUPPLIER
from fulfillment.models.orders import ORDER_STATUS_PROCESSING
from fulfillment.services import inventory_ledger, order_service
from fulfillment.services.concurrency import run_with_retry
from fulfillment.services.document_service import ensure_document_sequences


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LOG_LEVEL": "ERROR",
            "CONCURRENCY_RETRY_ATTEMPTS": 5,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()
            ensure_document_sequences()

            warehouse = Warehouse(code="WH-C", name="Concurrency Warehouse")
            supplier = Partner(kind=PARTNER_KIND_SUPPLIER, name="Concurrent Supplier")
            product = Product(sku="CONCUR-1", name="Concurrent Product", price_cents=1000, weight_grams=100)
            db.session.add_all([warehouse, supplier, product])
            db.session.commit()
            self.product_id = product.id

            batch = inventory_ledger.receive_batch(
                product_id=product.id,
                warehouse_id=warehouse.id,
                supplier_id=supplier.id,
                quantity=10,
                mfg_date=date(2025, 1, 1),
                exp_date=date(2025, 12, 31),
                batch_number="CONCUR-B1",
            )
            self.batch_id = batch.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t, args=a) for t, a in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def _assert_batch_consistent(self):
        with self.app.app_context():
            batch = db.session.get(Batch, self.batch_id)
            self.assertGreaterEqual(batch.current_quantity, 0)
            self.assertEqual(
                batch.current_quantity + batch.allocated_quantity + batch.damaged_quantity,
                batch.original_quantity,
            )
            self.assertEqual(inventory_ledger.check_batch_invariant(batch), [])
            return batch.current_quantity

    def test_concurrent_reserve_never_oversells(self):
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    barrier.wait()

                    def _op():
                        inventory_ledger.reserve(self.product_id, self.batch_id, 6)
                        db.session.commit()

                    run_with_retry(_op)
                    with lock:
                        results.append("ok")
                except InsufficientStock:
                    with lock:
                        results.append("insufficient")
                finally:
                    db.session.remove()

        self._run_threads([(worker, ()), (worker, ())])

        self.assertEqual(sorted(results), ["insufficient", "ok"])
        self.assertEqual(self._assert_batch_consistent(), 4)

    def test_concurrent_process_allocates_once(self):
        with self.app.app_context():
            items = [{"productId": self.product_id, "quantity": 6}]
            order_ids = [
                order_service.create_order(items=items).id,
                order_service.create_order(items=items).id,
            ]

        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker(order_id):
            with self.app.app_context():
                try:
                    barrier.wait()
                    order_service.process_order(order_id)
                    with lock:
                        results.append("processed")
                except AllocationFailed:
                    with lock:
                        results.append("failed")
                finally:
                    db.session.remove()

        self._run_threads([(worker, (oid,)) for oid in order_ids])

        self.assertEqual(results.count("processed"), 1)
        self.assertEqual(results.count("failed"), 1)
        self.assertEqual(self._assert_batch_consistent(), 4)

        with self.app.app_context():
            statuses = sorted(order_service.get_order(oid).status for oid in order_ids)
        self.assertEqual(statuses, sorted(["pending", ORDER_STATUS_PROCESSING]))

    def test_document_numbers_are_unique(self):
        created = []
        errors = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    order = order_service.create_order(
                        items=[{"productId": self.product_id, "quantity": 1}]
                    )
                    with lock:
                        created.append(order.order_number)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([(worker, ()) for _ in range(8)])

        self.assertFalse(errors)
        self.assertEqual(len(created), 8)
        self.assertEqual(len(created), len(set(created)))


if __name__ == "__main__":
    unittest.main()
