# Overview: Pytest coverage for the stock ledger primitives.

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_cart, make_product
from shopbill.errors import InsufficientStockError, NotFoundError, ValidationError
from shopbill.extensions import db
from shopbill.models import Product, StockMovement
from shopbill.services import invoice_service, stock_ledger
from shopbill.services.concurrency import unit_of_work


D = Decimal


class TestTryDecrement:
    def test_takes_exact_quantity(self, shop_a, rice):
        with unit_of_work():
            movement = stock_ledger.try_decrement(shop_a.id, rice.id, D("10"), actor_user_id=7)

        assert stock_ledger.get_stock_quantity(shop_a.id, rice.id) == D("0")
        assert movement.movement_type == "SALE"
        assert movement.quantity_before == D("10")
        assert movement.quantity_after == D("0")
        assert movement.created_by_user_id == 7

    def test_never_clamps(self, shop_a, rice):
        with pytest.raises(InsufficientStockError) as exc_info:
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, rice.id, D("10.001"))

        assert exc_info.value.available == D("10")
        assert stock_ledger.get_stock_quantity(shop_a.id, rice.id) == D("10")
        assert db.session.query(StockMovement).count() == 0

    @pytest.mark.parametrize("quantity", ["0", "-1", "0.0004"])
    def test_quantity_must_be_positive(self, shop_a, rice, quantity):
        with pytest.raises(ValidationError):
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, rice.id, D(quantity))

    def test_other_shops_product_is_not_found(self, shop_a, product_b):
        with pytest.raises(NotFoundError):
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, product_b.id, D("1"))
        assert stock_ledger.get_stock_quantity(product_b.shop_id, product_b.id) == D("50")

    def test_rolls_back_with_the_unit(self, shop_a, rice, dal):
        with pytest.raises(InsufficientStockError):
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, rice.id, D("4"))
                stock_ledger.try_decrement(shop_a.id, dal.id, D("21"))

        assert stock_ledger.get_stock_quantity(shop_a.id, rice.id) == D("10")


class TestRestoreAndDelta:
    def test_restore(self, shop_a, rice):
        with unit_of_work():
            movement = stock_ledger.restore(shop_a.id, rice.id, D("2.5"), reference_type="invoice", reference_id=1)

        assert stock_ledger.get_stock_quantity(shop_a.id, rice.id) == D("12.5")
        assert movement.movement_type == "SALE_CANCEL"
        assert movement.quantity_delta == D("2.5")

    def test_apply_delta(self, shop_a, rice):
        with unit_of_work():
            assert stock_ledger.apply_delta(shop_a.id, rice.id, D("0")) is None
            stock_ledger.apply_delta(shop_a.id, rice.id, D("3"), movement_type="SALE_EDIT")
            stock_ledger.apply_delta(shop_a.id, rice.id, D("-1"), movement_type="SALE_EDIT")

        assert stock_ledger.get_stock_quantity(shop_a.id, rice.id) == D("8")
        assert db.session.query(StockMovement).filter_by(movement_type="SALE_EDIT").count() == 2

    def test_receive_stock_commits_its_own_unit(self, shop_a, sugar):
        movement = stock_ledger.receive_stock(shop_a.id, sugar.id, "4.5", actor_user_id=1, note="supplier X")

        assert movement.movement_type == "RECEIVE"
        assert movement.note == "supplier X"
        assert stock_ledger.get_stock_quantity(shop_a.id, sugar.id) == D("7.5")

        history = stock_ledger.list_movements(shop_a.id, sugar.id)
        assert [m.movement_type for m in history] == ["RECEIVE"]


class TestStockConstraint:
    def test_database_refuses_negative_stock(self, shop_a, rice):
        product = db.session.get(Product, rice.id)
        product.stock_quantity = D("-1")

        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


class TestFractionalStock:
    def test_repeated_tenths_drain_to_zero(self, shop_a):
        saffron = make_product(shop_a, "SAF-01", "Saffron", "500", "5", "0.3", unit="kg")

        for _ in range(3):
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, saffron.id, D("0.1"))

        assert stock_ledger.get_stock_quantity(shop_a.id, saffron.id) == D("0")
        with pytest.raises(InsufficientStockError) as exc_info:
            with unit_of_work():
                stock_ledger.try_decrement(shop_a.id, saffron.id, D("0.1"))
        assert exc_info.value.available == D("0")

    def test_fractional_sales_through_invoices(self, shop_a, cashier):
        saffron = make_product(shop_a, "SAF-02", "Saffron", "500", "5", "0.3", unit="kg")

        for _ in range(3):
            invoice_service.create_invoice(shop_a.id, make_cart((saffron.id, "0.1")), cashier)

        assert stock_ledger.get_stock_quantity(shop_a.id, saffron.id) == D("0")
        movements = stock_ledger.list_movements(shop_a.id, saffron.id)
        assert [m.quantity_after for m in movements] == [D("0"), D("0.1"), D("0.2")]

    def test_received_tenths_can_be_sold_whole(self, shop_a):
        saffron = make_product(shop_a, "SAF-03", "Saffron", "500", "5", "0", unit="kg")
        for _ in range(3):
            stock_ledger.receive_stock(shop_a.id, saffron.id, "0.1")

        with unit_of_work():
            stock_ledger.try_decrement(shop_a.id, saffron.id, D("0.3"))

        assert stock_ledger.get_stock_quantity(shop_a.id, saffron.id) == D("0")
