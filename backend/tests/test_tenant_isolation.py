# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

Two shops with their own catalog, invoices and held carts. Every operation
scoped to Shop A must treat Shop B's rows as not found (never as a
permission error that reveals existence) and must not change them.
"""

from decimal import Decimal

import pytest

from conftest import make_cart
from shopbill.errors import NotFoundError
from shopbill.services import held_cart_service, invoice_service, stock_ledger


D = Decimal


@pytest.fixture
def invoice_b(shop_b, product_b, cashier):
    return invoice_service.create_invoice(shop_b.id, make_cart((product_b.id, "4")), cashier)


class TestInvoiceIsolation:
    def test_cannot_sell_other_shops_product(self, shop_a, shop_b, rice, product_b, cashier):
        with pytest.raises(NotFoundError) as exc_info:
            invoice_service.create_invoice(shop_a.id, make_cart((rice.id, "1"), (product_b.id, "1")), cashier)

        assert exc_info.value.details == {"product_id": product_b.id}
        assert stock_ledger.get_stock_quantity(shop_b.id, product_b.id) == D("50")

    def test_read_is_not_found(self, shop_a, invoice_b):
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(shop_a.id, invoice_b.id)
        with pytest.raises(NotFoundError):
            invoice_service.list_edit_audits(shop_a.id, invoice_b.id)
        with pytest.raises(NotFoundError):
            invoice_service.check_edit(shop_a.id, invoice_b.id, None)

    def test_list_only_shows_own_invoices(self, shop_a, shop_b, rice, invoice_b, cashier):
        own = invoice_service.create_invoice(shop_a.id, make_cart((rice.id, "1")), cashier)

        rows, total = invoice_service.list_invoices(shop_a.id)
        assert total == 1
        assert [row.id for row in rows] == [own.id]

    def test_mutations_are_not_found(self, shop_a, shop_b, rice, product_b, invoice_b, admin):
        with pytest.raises(NotFoundError):
            invoice_service.edit_invoice(shop_a.id, invoice_b.id, make_cart((rice.id, "1")), "x", admin)
        with pytest.raises(NotFoundError):
            invoice_service.cancel_invoice(shop_a.id, invoice_b.id, admin)
        with pytest.raises(NotFoundError):
            invoice_service.lock_invoice(shop_a.id, invoice_b.id, admin)

        untouched = invoice_service.get_invoice(shop_b.id, invoice_b.id)
        assert untouched.status == "completed"
        assert untouched.edit_count == 0
        assert untouched.is_locked is False
        assert stock_ledger.get_stock_quantity(shop_b.id, product_b.id) == D("46")


class TestHeldCartIsolation:
    def test_other_shops_held_cart_is_not_found(self, shop_a, shop_b, product_b, cashier):
        held = held_cart_service.hold(
            shop_b.id, cashier, {"schema_version": 2, "items": [{"product_id": product_b.id, "quantity": "1"}]}
        )

        with pytest.raises(NotFoundError):
            held_cart_service.recall(shop_a.id, held.id)
        with pytest.raises(NotFoundError):
            held_cart_service.discard(shop_a.id, held.id)
        assert held_cart_service.list_held(shop_a.id) == []
        assert len(held_cart_service.list_held(shop_b.id)) == 1
