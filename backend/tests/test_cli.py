# Overview: Tests for the flask CLI command groups.

from datetime import timedelta
from decimal import Decimal

from conftest import make_cart
from shopbill.extensions import db
from shopbill.models import HeldCart, Invoice, Product, Shop
from shopbill.services import held_cart_service, invoice_service, stock_ledger
from shopbill.time_utils import utcnow


def test_shops_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["shops", "create", "--name", "Corner Store", "--code", "CORNER"])
    assert "PASS Created shop" in result.output
    assert db.session.query(Shop).filter_by(code="CORNER").count() == 1

    duplicate = runner.invoke(args=["shops", "create", "--name", "Other", "--code", "CORNER"])
    assert "already exists" in duplicate.output

    listing = runner.invoke(args=["shops", "list"])
    assert "Corner Store" in listing.output


def test_products_add_and_stock_receive(app, shop_a):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "products", "add", "--shop-id", str(shop_a.id), "--sku", "OIL-1L",
        "--name", "Oil 1L", "--price", "180.50", "--tax-rate", "5",
    ])
    assert result.exit_code == 0, result.output
    product = db.session.query(Product).filter_by(sku="OIL-1L").one()
    assert product.selling_price == Decimal("180.5")

    received = runner.invoke(args=[
        "stock", "receive", "--shop-id", str(shop_a.id), "--product-id", str(product.id), "--quantity", "12",
    ])
    assert received.exit_code == 0, received.output
    assert stock_ledger.get_stock_quantity(shop_a.id, product.id) == Decimal("12")

    shown = runner.invoke(args=["stock", "show", "--shop-id", str(shop_a.id), "--product-id", str(product.id)])
    assert "RECEIVE" in shown.output


def test_stock_receive_rejects_unknown_product(app, shop_a):
    result = app.test_cli_runner().invoke(args=[
        "stock", "receive", "--shop-id", str(shop_a.id), "--product-id", "99999", "--quantity", "1",
    ])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_invoices_verify(app, shop_a, rice, dal, cashier):
    invoice_service.create_invoice(shop_a.id, make_cart((rice.id, "2"), (dal.id, "1")), cashier)
    runner = app.test_cli_runner()

    ok = runner.invoke(args=["invoices", "verify", "--shop-id", str(shop_a.id)])
    assert ok.exit_code == 0
    assert "Checked 1 invoice(s), 0 mismatch(es)." in ok.output

    invoice = db.session.query(Invoice).one()
    invoice.total_amount = Decimal("1")
    db.session.commit()

    bad = runner.invoke(args=["invoices", "verify", "--shop-id", str(shop_a.id)])
    assert bad.exit_code == 1
    assert "FAIL" in bad.output


def test_held_carts_purge(app, shop_a, rice, cashier):
    held = held_cart_service.hold(shop_a.id, cashier, {"schema_version": 2, "items": [{"product_id": rice.id, "quantity": "1"}]})
    db.session.get(HeldCart, held.id).updated_at = utcnow() - timedelta(days=30)
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["held-carts", "purge"])
    assert "Removed 1 held cart(s) older than 7 days." in result.output
    assert db.session.query(HeldCart).count() == 0
