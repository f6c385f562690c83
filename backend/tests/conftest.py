"""
Pytest fixtures for fulfillment backend tests.

Provides test database setup, reference data factories, a lifecycle driver
that walks an order to delivery, and the test client.
"""

from datetime import date

import pytest
from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.models import Partner, Product, Warehouse
from fulfillment.models.catalog import PARTNER_KIND_CUSTOMER, PARTNER_KIND_SUPPLIER, PARTNER_KIND_TRANSPORTER
from fulfillment.models.transport import TRANSPORT_STATUS_DELIVERED, TRANSPORT_STATUS_IN_TRANSIT
from fulfillment.services import inventory_ledger, order_service, package_service, transport_service
from fulfillment.services.document_service import ensure_document_sequences


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        ensure_document_sequences()
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def warehouse(db_session):
    wh = Warehouse(code="WH1", name="Main Warehouse")
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def supplier(db_session):
    partner = Partner(kind=PARTNER_KIND_SUPPLIER, name="Fresh Farms", company_name="Fresh Farms Ltd")
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def transporter(db_session):
    partner = Partner(kind=PARTNER_KIND_TRANSPORTER, name="Swift Couriers")
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def customer(db_session):
    partner = Partner(kind=PARTNER_KIND_CUSTOMER, name="Corner Shop")
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products (unique SKU per call)."""
    counter = {"n": 0}

    def _make(name="Product", price_cents=1000, weight_grams=500, threshold_limit=0, is_active=True):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:03d}",
            name=f"{name} {counter['n']}",
            price_cents=price_cents,
            weight_grams=weight_grams,
            threshold_limit=threshold_limit,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(name="Yogurt", price_cents=250, weight_grams=150)


@pytest.fixture(scope='function')
def make_batch(db_session, warehouse, supplier):
    """Factory for batches received through the ledger."""
    def _make(product, quantity, exp_date, batch_number=None, unit_cost_cents=100, mfg_date=date(2025, 1, 1)):
        return inventory_ledger.receive_batch(
            product_id=product.id,
            warehouse_id=warehouse.id,
            supplier_id=supplier.id,
            quantity=quantity,
            mfg_date=mfg_date,
            exp_date=exp_date,
            unit_cost_cents=unit_cost_cents,
            batch_number=batch_number,
        )

    return _make


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory for pending orders: make_order((product, qty), ...)."""
    def _make(*lines, **kwargs):
        items = [{"productId": p.id, "quantity": q} for p, q in lines]
        return order_service.create_order(items=items, **kwargs)

    return _make


@pytest.fixture(scope='function')
def deliver(db_session, transporter):
    """
    Drive a pending order through processing, packing, dispatch and delivery.

    Returns (order, package, transport), all refreshed.
    """
    def _deliver(order):
        result = order_service.process_order(order.id)
        package = result["package"]
        package_service.mark_ready(package.id)
        transport = package_service.assign_transport(package.id, transporter.id)["transport"]
        transport_service.update_status(transport.id, TRANSPORT_STATUS_IN_TRANSIT)
        transport_service.update_status(transport.id, TRANSPORT_STATUS_DELIVERED)
        return (
            order_service.get_order(order.id),
            package_service.get_package(package.id),
            transport_service.get_transport(transport.id),
        )

    return _deliver


def assert_batch_consistent(batch):
    """current + damaged + allocated == original and history agrees."""
    db.session.refresh(batch)
    assert batch.current_quantity + batch.damaged_quantity + batch.allocated_quantity == batch.original_quantity
    assert inventory_ledger.check_batch_invariant(batch) == []


def actor_headers(user_id: int) -> dict:
    """Helper to create the acting-user header set by the auth layer."""
    return {'X-User-Id': str(user_id)}
