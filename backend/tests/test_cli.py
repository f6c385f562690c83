# Overview: Tests for the flask CLI command groups.

from fulfillment.models import Batch, Product
from fulfillment.services import inventory_ledger


class TestCli:
    def test_init_db_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["system", "init-db"])
        second = runner.invoke(args=["system", "init-db"])
        assert first.exit_code == 0
        assert second.exit_code == 0
        assert "Database initialized" in second.output

    def test_seed_demo_then_verify(self, app, db_session):
        runner = app.test_cli_runner()

        seeded = runner.invoke(args=["system", "seed-demo"])
        assert seeded.exit_code == 0, seeded.output
        assert db_session.query(Product).filter(Product.sku.like("DEMO-%")).count() == 2
        assert db_session.query(Batch).count() == 4

        # Re-running skips existing products
        again = runner.invoke(args=["system", "seed-demo"])
        assert again.exit_code == 0
        assert db_session.query(Batch).count() == 4

        verified = runner.invoke(args=["inventory", "verify"])
        assert verified.exit_code == 0
        assert "4 batch(es) consistent" in verified.output

    def test_add_supply_validation(self, app, db_session, product, warehouse, supplier):
        runner = app.test_cli_runner()
        base = [
            "inventory", "add-supply",
            "--product-id", str(product.id),
            "--warehouse-id", str(warehouse.id),
            "--supplier-id", str(supplier.id),
            "--quantity", "12",
            "--mfg-date", "2025-01-01",
        ]

        ok = runner.invoke(args=base + ["--exp-date", "2025-03-01", "--batch-number", "CLI-1"])
        assert ok.exit_code == 0, ok.output
        assert inventory_ledger.get_batch_by_number("CLI-1").original_quantity == 12

        bad = runner.invoke(args=base + ["--exp-date", "2024-03-01"])
        assert bad.exit_code != 0

    def test_orders_list(self, app, db_session, product, make_order):
        make_order((product, 2))
        result = app.test_cli_runner().invoke(args=["orders", "list"])
        assert result.exit_code == 0
        assert "1 of 1 order(s)" in result.output

        rejected = app.test_cli_runner().invoke(args=["orders", "list", "--status", "bogus"])
        assert rejected.exit_code != 0
