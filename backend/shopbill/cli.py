# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopbill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shops (tenants):
# - python -m flask shops list
# - python -m flask shops create --name "Corner Store" --code "CORNER"
#
# Catalog / stock:
# - python -m flask products add --shop-id 1 --sku "SKU-1" --name "Rice 1kg" --price 100 --tax-rate 18
# - python -m flask stock receive --shop-id 1 --product-id 1 --quantity 25
#   Goes through the stock ledger and writes a RECEIVE movement.
# - python -m flask stock show --shop-id 1 --product-id 1 [--limit 20]
#
# Invoices:
# - python -m flask invoices verify --shop-id 1
#   Recompute every invoice from its stored lines and report mismatches.
#
# Held carts:
# - python -m flask held-carts purge [--older-than-days 7] [--shop-id 1]

import click
from decimal import Decimal, InvalidOperation
from flask import current_app
from flask.cli import with_appcontext

from .errors import BillingError
from .extensions import db
from .models import Invoice, Product, Shop
from .money import decimal_str
from .services import held_cart_service, invoice_service, stock_ledger


class DecimalParam(click.ParamType):
    name = "decimal"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value))
        except InvalidOperation:
            self.fail(f"{value!r} is not a decimal number", param, ctx)


DECIMAL = DecimalParam()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask shops create' to add a shop.")


@click.group('shops')
def shops_group():
    """Shop (tenant) management commands."""


@shops_group.command('list')
@with_appcontext
def list_shops():
    """List all shops."""
    shops = db.session.query(Shop).order_by(Shop.id).all()

    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Invoices'}")
    click.echo("="*70)

    for shop in shops:
        invoice_count = db.session.query(Invoice).filter_by(shop_id=shop.id).count()
        active_str = "Yes" if shop.is_active else "No"
        click.echo(f"{shop.id:<5} {shop.name:<30} {shop.code or '-':<15} {active_str:<8} {invoice_count}")

    click.echo("="*70 + "\n")


@shops_group.command('create')
@click.option('--name', required=True, help='Shop name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_shop_cli(name, code):
    """Create a new shop (tenant)."""
    existing = db.session.query(Shop).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Shop with code '{code}' already exists")
        return

    shop = Shop(name=name, code=code, is_active=True)
    db.session.add(shop)
    db.session.commit()

    click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}, Code: {shop.code})")


@click.group('products')
def products_group():
    """Minimal catalog bootstrap (full catalog management lives elsewhere)."""


@products_group.command('add')
@click.option('--shop-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', type=DECIMAL, required=True, help='Selling price')
@click.option('--tax-rate', type=DECIMAL, default=Decimal("0"), show_default=True, help='Tax rate in percent')
@click.option('--unit', default='pcs', show_default=True)
@with_appcontext
def add_product_cli(shop_id, sku, name, price, tax_rate, unit):
    """Add a product with zero stock; use 'stock receive' to stock it."""
    if db.session.query(Shop).filter_by(id=shop_id).first() is None:
        raise click.ClickException(f"Shop {shop_id} not found")
    if db.session.query(Product).filter_by(shop_id=shop_id, sku=sku).first():
        raise click.ClickException(f"SKU '{sku}' already exists in shop {shop_id}")

    product = Product(shop_id=shop_id, sku=sku, name=name, unit=unit, selling_price=price, tax_rate=tax_rate)
    db.session.add(product)
    db.session.commit()

    click.echo(f"PASS Created product {product.id}: {sku} {name} @ {price} ({tax_rate}%)")


@click.group('stock')
def stock_group():
    """Stock ledger commands."""


@stock_group.command('receive')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=DECIMAL, required=True)
@click.option('--note', default=None)
@with_appcontext
def receive_stock_cli(shop_id, product_id, quantity, note):
    """Add stock to a product through the ledger."""
    try:
        movement = stock_ledger.receive_stock(shop_id, product_id, quantity, note=note)
    except BillingError as e:
        raise click.ClickException(e.message)

    click.echo(
        f"PASS Product {product_id}: {decimal_str(movement.quantity_before)} -> "
        f"{decimal_str(movement.quantity_after)}"
    )


@stock_group.command('show')
@click.option('--shop-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def show_stock_cli(shop_id, product_id, limit):
    """Show current stock and recent movements for a product."""
    try:
        quantity = stock_ledger.get_stock_quantity(shop_id, product_id)
    except BillingError as e:
        raise click.ClickException(e.message)

    click.echo(f"Product {product_id} stock: {decimal_str(quantity)}")
    movements = stock_ledger.list_movements(shop_id, product_id, limit=limit)
    if not movements:
        click.echo("No movements recorded.")
        return

    click.echo("="*90)
    click.echo(f"{'ID':<6} {'Type':<12} {'Delta':>12} {'Before':>12} {'After':>12}  {'Reference'}")
    click.echo("="*90)
    for m in movements:
        ref = f"{m.reference_type}:{m.reference_id}" if m.reference_type else "-"
        click.echo(
            f"{m.id:<6} {m.movement_type:<12} {decimal_str(m.quantity_delta):>12} "
            f"{decimal_str(m.quantity_before):>12} {decimal_str(m.quantity_after):>12}  {ref}"
        )


@click.group('invoices')
def invoices_group():
    """Invoice inspection commands."""


@invoices_group.command('verify')
@click.option('--shop-id', type=int, required=True)
@with_appcontext
def verify_invoices_cli(shop_id):
    """Recompute every invoice of a shop and report stored totals that disagree."""
    invoices = db.session.query(Invoice).filter_by(shop_id=shop_id).order_by(Invoice.id).all()
    bad = 0
    for invoice in invoices:
        result = invoice_service.verify_invoice_totals(invoice)
        if not result["ok"]:
            bad += 1
            click.echo(f"FAIL {invoice.invoice_number}: {result['mismatches']}")

    click.echo(f"Checked {len(invoices)} invoice(s), {bad} mismatch(es).")
    if bad:
        current_app.logger.warning("Invoice verification found %d mismatch(es) in shop %s", bad, shop_id)
        raise SystemExit(1)


@click.group('held-carts')
def held_carts_group():
    """Held cart maintenance."""


@held_carts_group.command('purge')
@click.option('--older-than-days', type=int, default=None, help='Defaults to HELD_CART_RETENTION_DAYS')
@click.option('--shop-id', type=int, default=None)
@with_appcontext
def purge_held_carts_cli(older_than_days, shop_id):
    """Delete held carts that have not been touched for the retention window."""
    days = older_than_days if older_than_days is not None else current_app.config["HELD_CART_RETENTION_DAYS"]
    removed = held_cart_service.purge_older_than(days, shop_id=shop_id)
    click.echo(f"PASS Removed {removed} held cart(s) older than {days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(held_carts_group)
