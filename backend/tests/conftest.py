"""
Pytest fixtures for shopbill backend tests.

Provides the application with an in-memory database, per-test table wipe,
two tenant shops with products, actors, and a file-backed application for
tests that need real concurrent connections.
"""

from decimal import Decimal

import pytest

from shopbill import create_app
from shopbill.extensions import db
from shopbill.models import Product, Shop
from shopbill.services.calculator import NO_DISCOUNT
from shopbill.services.cart_schemas import Actor, Cart, CartLine, ROLE_ADMIN, ROLE_CASHIER, ROLE_SUPER_ADMIN
from shopbill.services.edit_policy import register_returns_lookup


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Application on a SQLite file, so every thread gets its own connection.
    (The in-memory database shares one connection and cannot show races.)
    """
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({**TEST_CONFIG, 'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}"})
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def returns_lookup(app):
    """Register a returns lookup backed by a mutable set of invoice ids."""
    invoice_ids = set()
    register_returns_lookup(app, lambda shop_id, invoice_id: invoice_id in invoice_ids)
    yield invoice_ids
    register_returns_lookup(app, None)


# =============================================================================
# Tenants, catalog, actors
# =============================================================================

def make_product(shop, sku, name, price, tax_rate, stock, unit="pcs"):
    product = Product(
        shop_id=shop.id,
        sku=sku,
        name=name,
        unit=unit,
        selling_price=Decimal(price),
        tax_rate=Decimal(tax_rate),
        stock_quantity=Decimal(stock),
    )
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture(scope='function')
def shop_a(db_session):
    """Create Shop A (first tenant)."""
    shop = Shop(name="Shop A - Corner Store", code="SHOPA", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def shop_b(db_session):
    """Create Shop B (second tenant)."""
    shop = Shop(name="Shop B - Market Hall", code="SHOPB", is_active=True)
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture(scope='function')
def rice(shop_a):
    """100.00 at 18%, 10 in stock."""
    return make_product(shop_a, "RICE-1KG", "Rice 1kg", "100", "18", "10")


@pytest.fixture(scope='function')
def dal(shop_a):
    """50.00 at 5%, 20 in stock."""
    return make_product(shop_a, "DAL-500G", "Dal 500g", "50", "5", "20")


@pytest.fixture(scope='function')
def sugar(shop_a):
    """40.00 at 0%, 3 kg in stock (fractional quantities)."""
    return make_product(shop_a, "SUGAR-LOOSE", "Sugar (loose)", "40", "0", "3", unit="kg")


@pytest.fixture(scope='function')
def product_b(shop_b):
    """Product owned by Shop B."""
    return make_product(shop_b, "PROD-B-001", "Product B", "20", "12", "50")


@pytest.fixture
def cashier():
    return Actor(user_id=101, role=ROLE_CASHIER)


@pytest.fixture
def admin():
    return Actor(user_id=201, role=ROLE_ADMIN)


@pytest.fixture
def super_admin():
    return Actor(user_id=301, role=ROLE_SUPER_ADMIN)


def make_cart(*lines, discount=NO_DISCOUNT, include_tax=True, payment_mode="cash", **kwargs) -> Cart:
    """
    make_cart((product_id, "2"), (product_id, "1", {"unit_price": "90"}), ...)
    """
    cart_lines = []
    for entry in lines:
        product_id, quantity = entry[0], entry[1]
        extra = entry[2] if len(entry) > 2 else {}
        cart_lines.append(CartLine(
            product_id=product_id,
            quantity=Decimal(quantity),
            unit_price=Decimal(extra["unit_price"]) if "unit_price" in extra else None,
            line_discount=Decimal(extra.get("line_discount", "0")),
            tax_rate=Decimal(extra["tax_rate"]) if "tax_rate" in extra else None,
        ))
    return Cart(
        lines=tuple(cart_lines),
        discount=discount,
        include_tax=include_tax,
        payment_mode=payment_mode,
        **kwargs,
    )


def tenant_headers(shop_id: int, user_id: int = 101, role: str = "cashier") -> dict:
    """Headers the upstream gateway forwards."""
    return {'X-Shop-Id': str(shop_id), 'X-User-Id': str(user_id), 'X-User-Role': role}
