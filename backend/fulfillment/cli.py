# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables and document sequences (idempotent).
# - python -m flask system seed-demo
#   Create a demo warehouse, partners, products and batches (idempotent).
#
# Inventory:
# - python -m flask inventory add-supply --product-id 1 --warehouse-id 1 --supplier-id 2 --quantity 50 --mfg-date 2025-01-01 --exp-date 2025-12-31
#   Receive a new batch.
# - python -m flask inventory verify
#   Recompute every batch from its movement history; exits 1 on any violation.
#
# Orders:
# - python -m flask orders list --status pending --limit 20
#   List recent orders.

import sys
from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import FulfillmentError
from .models import Partner, Product, Warehouse
from .models.catalog import PARTNER_KIND_CUSTOMER, PARTNER_KIND_SUPPLIER, PARTNER_KIND_TRANSPORTER
from .services import inventory_ledger, order_service
from .services.document_service import ensure_document_sequences
from .validation import ValidationError, coerce_date
from .time_utils import utcnow


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables and seed document sequences."""
    db.create_all()
    ensure_document_sequences()
    db.session.commit()
    click.echo("PASS Database initialized")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo reference data and stock.

    Creates:
    - Warehouse MAIN
    - Supplier, transporter and customer partners
    - Products DEMO-APPLE and DEMO-MILK with two batches each (different expiry)
    """
    db.create_all()
    ensure_document_sequences()

    warehouse = db.session.query(Warehouse).filter_by(code="MAIN").first()
    if not warehouse:
        warehouse = Warehouse(code="MAIN", name="Main Warehouse")
        db.session.add(warehouse)

    partners = {}
    for kind, name in (
        (PARTNER_KIND_SUPPLIER, "Demo Supplier"),
        (PARTNER_KIND_TRANSPORTER, "Demo Transporter"),
        (PARTNER_KIND_CUSTOMER, "Demo Customer"),
    ):
        partner = db.session.query(Partner).filter_by(kind=kind, name=name).first()
        if not partner:
            partner = Partner(kind=kind, name=name)
            db.session.add(partner)
        partners[kind] = partner
    db.session.commit()

    today = utcnow().date()
    for sku, name, price, weight in (
        ("DEMO-APPLE", "Apples (1kg)", 399, 1000),
        ("DEMO-MILK", "Milk (1L)", 149, 1030),
    ):
        product = db.session.query(Product).filter_by(sku=sku).first()
        if product:
            click.echo(f"WARN  Product {sku} already exists, skipping...")
            continue
        product = Product(sku=sku, name=name, price_cents=price, weight_grams=weight, threshold_limit=5)
        db.session.add(product)
        db.session.commit()

        for offset_days, qty in ((30, 20), (90, 40)):
            batch = inventory_ledger.receive_batch(
                product_id=product.id,
                warehouse_id=warehouse.id,
                supplier_id=partners[PARTNER_KIND_SUPPLIER].id,
                quantity=qty,
                mfg_date=today,
                exp_date=today + timedelta(days=offset_days),
                unit_cost_cents=price // 2,
            )
            click.echo(f"PASS Batch {batch.batch_number}: {qty} x {sku}")

    click.echo(
        f"DONE Demo data ready (warehouse {warehouse.id}, "
        f"transporter {partners[PARTNER_KIND_TRANSPORTER].id}, "
        f"customer {partners[PARTNER_KIND_CUSTOMER].id})"
    )


@click.group('inventory')
def inventory_group():
    """Batch inventory commands."""


@inventory_group.command('add-supply')
@click.option('--product-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--supplier-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--mfg-date', required=True, help='YYYY-MM-DD')
@click.option('--exp-date', required=True, help='YYYY-MM-DD')
@click.option('--unit-cost-cents', type=int, default=None)
@click.option('--batch-number', default=None)
@with_appcontext
def add_supply(product_id, warehouse_id, supplier_id, quantity, mfg_date, exp_date, unit_cost_cents, batch_number):
    """Receive a new batch."""
    try:
        batch = inventory_ledger.receive_batch(
            product_id=product_id,
            warehouse_id=warehouse_id,
            supplier_id=supplier_id,
            quantity=quantity,
            mfg_date=coerce_date(mfg_date, "mfg-date"),
            exp_date=coerce_date(exp_date, "exp-date"),
            unit_cost_cents=unit_cost_cents,
            batch_number=batch_number,
        )
    except (ValidationError, FulfillmentError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created batch {batch.batch_number} (ID: {batch.id}) with {batch.original_quantity} units")


@inventory_group.command('verify')
@with_appcontext
def verify_batches():
    """Check current + damaged + allocated == original and history consistency for every batch."""
    result = inventory_ledger.verify_all_batches()
    if not result["violations"]:
        click.echo(f"PASS {result['checked']} batch(es) consistent")
        return

    for violation in result["violations"]:
        click.echo(f"FAIL Batch {violation['batch_number']} (ID: {violation['batch_id']})")
        for problem in violation["problems"]:
            click.echo(f"     - {problem}")
    sys.exit(1)


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('list')
@click.option('--status', default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_orders(status, limit):
    """List recent orders."""
    try:
        result = order_service.list_orders(status=status, limit=limit)
    except ValidationError as e:
        raise click.ClickException(str(e))

    if not result["items"]:
        click.echo("No orders found")
        return
    for order in result["items"]:
        click.echo(
            f"{order.id:>6}  {order.order_number:<12}  {order.status:<11}  "
            f"{len(order.lines)} line(s)  {order.total_cents / 100:.2f}"
        )
    click.echo(f"\n{len(result['items'])} of {result['total']} order(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
