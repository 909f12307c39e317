# Overview: Pytest coverage for audited invoice edits and edit restrictions.

"""
Edit tests

Every edit replaces the invoice's lines, moves stock by the per-product
delta only, and leaves an audit row. Rejected edits (missing reason,
restrictions, stock, stale version) must leave invoice, lines, stock and
audit trail exactly as they were.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_cart
from shopbill.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotEditableError,
    ValidationError,
)
from shopbill.extensions import db
from shopbill.models import Invoice, InvoiceEditAudit, StockMovement
from shopbill.services import invoice_service, stock_ledger
from shopbill.time_utils import utcnow


D = Decimal


@pytest.fixture
def sale(shop_a, rice, dal, cashier):
    """rice x2 (10 -> 8), dal x3 (20 -> 17)."""
    return invoice_service.create_invoice(shop_a.id, make_cart((rice.id, "2"), (dal.id, "3")), cashier)


def stock(shop, product):
    return stock_ledger.get_stock_quantity(shop.id, product.id)


def audit_count():
    return db.session.query(InvoiceEditAudit).count()


def assert_untouched(shop_a, sale_id, rice, dal):
    db.session.expire_all()
    invoice = db.session.get(Invoice, sale_id)
    assert invoice.edit_count == 0
    assert [(line.product_id, line.quantity) for line in invoice.lines] == [(rice.id, D("2")), (dal.id, D("3"))]
    assert invoice.total_amount == D("394")
    assert stock(shop_a, rice) == D("8")
    assert stock(shop_a, dal) == D("17")
    assert audit_count() == 0


class TestEditInvoice:
    def test_stock_moves_by_delta_only(self, shop_a, sale, rice, dal, sugar, cashier):
        cart = make_cart((rice.id, "5"), (sugar.id, "1"))

        invoice_service.edit_invoice(shop_a.id, sale.id, cart, "customer added rice", cashier)

        assert stock(shop_a, rice) == D("5")    # 8 - 3
        assert stock(shop_a, dal) == D("20")    # removed line restored
        assert stock(shop_a, sugar) == D("2")   # new line taken

        edit_moves = (
            db.session.query(StockMovement)
            .filter_by(movement_type="SALE_EDIT", reference_id=sale.id)
            .order_by(StockMovement.product_id)
            .all()
        )
        assert [(m.product_id, m.quantity_delta) for m in edit_moves] == [
            (rice.id, D("-3")),
            (dal.id, D("3")),
            (sugar.id, D("-1")),
        ]

    def test_unchanged_quantity_records_no_movement(self, shop_a, sale, rice, dal, cashier):
        cart = make_cart((rice.id, "2"), (dal.id, "3"), payment_mode="card")

        invoice_service.edit_invoice(shop_a.id, sale.id, cart, "paid by card", cashier)

        assert db.session.query(StockMovement).filter_by(movement_type="SALE_EDIT").count() == 0
        assert stock(shop_a, rice) == D("8")

    def test_header_and_bookkeeping(self, shop_a, sale, rice, cashier, admin):
        number, created_at, version = sale.invoice_number, sale.created_at, sale.version_id

        invoice = invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "wrong qty", admin)

        assert invoice.invoice_number == number
        assert invoice.created_at == created_at
        assert invoice.created_by_user_id == cashier.user_id
        assert invoice.edit_count == 1
        assert invoice.last_edited_by_user_id == admin.user_id
        assert invoice.last_edited_at is not None
        assert invoice.version_id > version
        assert invoice.total_amount == D("118")

    def test_audit_row(self, shop_a, sale, rice, dal, sugar, cashier):
        invoice_service.edit_invoice(
            shop_a.id, sale.id, make_cart((rice.id, "5"), (sugar.id, "1")), "  customer added rice  ", cashier
        )

        audits = invoice_service.list_edit_audits(shop_a.id, sale.id)
        assert len(audits) == 1
        audit = audits[0]
        assert audit.edit_number == 1
        assert audit.edit_reason == "customer added rice"
        assert audit.edited_by_user_id == cashier.user_id
        assert audit.returns_override is False

        items = audit.changes_summary["items"]
        assert [i["product_id"] for i in items["added"]] == [sugar.id]
        assert [i["product_id"] for i in items["removed"]] == [dal.id]
        assert len(items["modified"]) == 1
        assert items["modified"][0]["product_id"] == rice.id
        assert D(items["modified"][0]["delta"]) == D("3")

        totals = audit.changes_summary["totals"]
        assert D(totals["old"]["total_amount"]) == D("394")
        assert D(totals["new"]["total_amount"]) == D("630")

        assert len(audit.original_data["lines"]) == 2
        assert len(audit.new_data["lines"]) == 2

    def test_second_edit_gets_next_number(self, shop_a, sale, rice, cashier):
        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "first", cashier)
        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "4")), "second", cashier)

        audits = invoice_service.list_edit_audits(shop_a.id, sale.id)
        assert [a.edit_number for a in audits] == [1, 2]
        assert stock(shop_a, rice) == D("6")

    def test_existing_lines_keep_invoice_price(self, shop_a, sale, rice, dal, cashier):
        rice.selling_price = D("120")
        db.session.commit()

        invoice = invoice_service.edit_invoice(
            shop_a.id, sale.id, make_cart((rice.id, "3"), (dal.id, "3")), "one more", cashier
        )

        rice_line = next(line for line in invoice.lines if line.product_id == rice.id)
        assert rice_line.unit_price == D("100")

    def test_inactive_product_already_on_invoice(self, shop_a, sale, rice, dal, cashier):
        dal.is_active = False
        db.session.commit()

        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "2"), (dal.id, "1")), "less dal", cashier)
        assert stock(shop_a, dal) == D("19")

    def test_totals_round_trip_after_edit(self, shop_a, sale, rice, sugar, cashier):
        invoice_service.edit_invoice(
            shop_a.id, sale.id, make_cart((rice.id, "1", {"line_discount": "3.3333"}), (sugar.id, "0.125")), "fix", cashier
        )
        db.session.expire_all()
        assert invoice_service.verify_invoice_totals(db.session.get(Invoice, sale.id))["ok"]


class TestRejectedEdits:
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(self, shop_a, sale, rice, dal, cashier, reason):
        with pytest.raises(ValidationError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "9")), reason, cashier)

        assert exc_info.value.details["field"] == "reason"
        assert_untouched(shop_a, sale.id, rice, dal)

    def test_insufficient_stock_rolls_back(self, shop_a, sale, rice, dal, cashier):
        with pytest.raises(InsufficientStockError):
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "11")), "too much", cashier)

        assert_untouched(shop_a, sale.id, rice, dal)

    def test_invalid_cart(self, shop_a, sale, rice, dal, cashier):
        with pytest.raises(ValidationError):
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart(), "empty", cashier)
        assert_untouched(shop_a, sale.id, rice, dal)

    def test_stale_expected_version(self, shop_a, sale, rice, dal, cashier):
        loaded_version = sale.version_id
        invoice_service.edit_invoice(
            shop_a.id, sale.id, make_cart((rice.id, "1"), (dal.id, "3")), "first", cashier,
            expected_version=loaded_version,
        )

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            invoice_service.edit_invoice(
                shop_a.id, sale.id, make_cart((rice.id, "7")), "second", cashier,
                expected_version=loaded_version,
            )

        assert exc_info.value.retryable is True
        assert stock(shop_a, rice) == D("9")
        assert audit_count() == 1

    def test_cancelled_invoice(self, shop_a, sale, rice, cashier):
        invoice_service.cancel_invoice(shop_a.id, sale.id, cashier, "mistake")

        with pytest.raises(NotEditableError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "late", cashier)
        assert exc_info.value.details["status"] == "cancelled"

    def test_locked_invoice(self, shop_a, sale, rice, dal, admin, super_admin):
        invoice_service.lock_invoice(shop_a.id, sale.id, admin, "Filed for October")

        with pytest.raises(NotEditableError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "x", super_admin)
        assert exc_info.value.message == "Filed for October"
        assert exc_info.value.details["is_locked"] is True

        invoice_service.unlock_invoice(shop_a.id, sale.id, super_admin)
        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1"), (dal.id, "3")), "x", super_admin)
        assert stock(shop_a, rice) == D("9")

    def test_cashier_edit_window(self, shop_a, sale, rice, dal, cashier, admin):
        sale.created_at = utcnow() - timedelta(hours=25)
        db.session.commit()

        with pytest.raises(NotEditableError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "x", cashier)
        assert exc_info.value.details["time_restricted"] is True

        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1"), (dal.id, "3")), "x", admin)

    def test_tax_period_lock(self, shop_a, sale, rice, dal, admin, super_admin):
        sale.created_at = utcnow() - timedelta(days=31)
        db.session.commit()

        with pytest.raises(NotEditableError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "x", admin)
        assert exc_info.value.details["tax_period_locked"] is True

        invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1"), (dal.id, "3")), "x", super_admin)

    def test_returns_block_unless_overridden(self, shop_a, sale, rice, dal, admin, returns_lookup):
        returns_lookup.add(sale.id)

        with pytest.raises(NotEditableError) as exc_info:
            invoice_service.edit_invoice(shop_a.id, sale.id, make_cart((rice.id, "1")), "x", admin)
        assert exc_info.value.details["override_required"] is True
        assert stock(shop_a, rice) == D("8")

        invoice_service.edit_invoice(
            shop_a.id, sale.id, make_cart((rice.id, "1"), (dal.id, "3")), "approved by owner", admin,
            allow_with_returns=True,
        )
        audit = invoice_service.list_edit_audits(shop_a.id, sale.id)[0]
        assert audit.returns_override is True


class TestEditCheck:
    def test_editable(self, shop_a, sale, cashier):
        check = invoice_service.check_edit(shop_a.id, sale.id, cashier)
        assert check.can_edit is True
        assert check.to_dict() == {"can_edit": True, "reason": None, "restrictions": {}}

    def test_reports_reason_without_changing_state(self, shop_a, sale, cashier, admin):
        invoice_service.lock_invoice(shop_a.id, sale.id, admin, None)

        check = invoice_service.check_edit(shop_a.id, sale.id, cashier)
        assert check.can_edit is False
        assert check.restrictions == {"is_locked": True}
        assert "locked" in check.reason

    def test_override_is_reported(self, shop_a, sale, admin, returns_lookup):
        returns_lookup.add(sale.id)
        check = invoice_service.check_edit(shop_a.id, sale.id, admin, allow_with_returns=True)
        assert check.can_edit is True
        assert check.restrictions["override_used"] is True
