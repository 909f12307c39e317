"""
Invoice Lifecycle Service - cart -> finalized invoice, audited edits, cancellation

Invariants:
- create/edit/cancel each run in ONE unit_of_work: stock movements, invoice
  header, lines and audit rows commit together or not at all.
- Stock is touched only through stock_ledger, per product, in ascending
  product id order.
- Monetary fields come from calculator.calculate_totals and are stored at
  4 decimal places; verify_invoice_totals re-derives them from the stored
  lines.
- Edits never change invoice_number or created_at, and always leave an
  InvoiceEditAudit row.
- Every lookup is scoped by shop_id; other shops' invoices are "not found".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    BillingError,
    ConcurrencyConflictError,
    NotEditableError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ..extensions import db
from ..models import Invoice, InvoiceEditAudit, InvoiceLine, Shop
from ..models.invoices import INVOICE_STATUS_CANCELLED, INVOICE_STATUS_COMPLETED, PAYMENT_MODES
from ..money import ZERO, quantize_money, quantize_qty
from ..time_utils import day_bounds, utcnow
from .calculator import (
    AmountDiscount,
    CartTotals,
    LineInput,
    NO_DISCOUNT,
    PercentDiscount,
    TaxBreakdownRow,
    calculate_totals,
    compute_line,
    tax_breakdown,
)
from .cart_schemas import Actor, Cart, validate_cart
from .catalog_service import CatalogEntry, lookup_products
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .document_service import next_document_number
from .edit_policy import ensure_editable, evaluate_edit
from . import stock_ledger


DOCUMENT_TYPE = "INVOICE"
REFERENCE_TYPE = "invoice"


@dataclass(frozen=True)
class PricedLine:
    """A cart line resolved against the catalog (or the invoice's own snapshot)."""
    product_id: int
    product_name: str
    sku: str
    unit: str
    quantity: Decimal
    unit_price: Decimal
    line_discount: Decimal
    tax_rate: Decimal

    def as_input(self) -> LineInput:
        return LineInput(
            quantity=self.quantity,
            unit_price=self.unit_price,
            line_discount=self.line_discount,
            tax_rate=self.tax_rate,
        )


# =============================================================================
# Helpers
# =============================================================================

def _execute(op, *, retry_on: tuple, action: str, invoice_id: int | None = None):
    """
    Run a unit of work with retries and translate storage failures into the
    billing error taxonomy. BillingErrors raised by the op pass through.
    """
    try:
        return run_with_retry(op, retry_on=retry_on)
    except BillingError:
        raise
    except StaleDataError as exc:
        current_app.logger.warning("Concurrent %s of invoice %s rejected", action, invoice_id)
        raise ConcurrencyConflictError(
            "Invoice was modified concurrently; reload and retry",
            {"invoice_id": invoice_id},
        ) from exc
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to %s invoice", action)
        raise PersistenceError(
            f"Could not {action} invoice",
            {"invoice_id": invoice_id, "cause": type(exc).__name__},
        ) from exc


def _require_shop(shop_id: int) -> Shop:
    shop = db.session.query(Shop).filter_by(id=shop_id).first()
    if shop is None or not shop.is_active:
        raise NotFoundError("Shop not found", {"shop_id": shop_id})
    return shop


def _load_invoice(shop_id: int, invoice_id: int, *, lock: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id, shop_id=shop_id)
    if lock:
        query = lock_for_update(query)
    invoice = query.first()
    if invoice is None:
        raise NotFoundError("Invoice not found", {"invoice_id": invoice_id})
    return invoice


def _price_lines(
    cart: Cart,
    catalog: dict[int, CatalogEntry],
    previous: dict[int, InvoiceLine] | None = None,
) -> list[PricedLine]:
    previous = previous or {}
    priced = []
    for line in cart.lines:
        entry = catalog[line.product_id]
        prev = previous.get(line.product_id)

        if line.unit_price is not None:
            unit_price = line.unit_price
        else:
            unit_price = Decimal(prev.unit_price) if prev else entry.unit_price

        if line.tax_rate is not None:
            tax_rate = line.tax_rate
        else:
            tax_rate = Decimal(prev.tax_rate) if prev else entry.tax_rate

        priced.append(PricedLine(
            product_id=line.product_id,
            product_name=prev.product_name if prev else entry.name,
            sku=prev.sku if prev else entry.sku,
            unit=prev.unit if prev else entry.unit,
            quantity=quantize_qty(line.quantity),
            unit_price=unit_price,
            line_discount=line.line_discount,
            tax_rate=tax_rate,
        ))
    return priced


def _aggregate_quantities(lines: Iterable) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = {}
    for line in lines:
        totals[line.product_id] = totals.get(line.product_id, ZERO) + Decimal(line.quantity)
    return totals


def _build_lines(priced: list[PricedLine], totals: CartTotals) -> list[InvoiceLine]:
    return [
        InvoiceLine(
            position=i + 1,
            product_id=p.product_id,
            product_name=p.product_name,
            sku=p.sku,
            unit=p.unit,
            quantity=p.quantity,
            unit_price=p.unit_price,
            discount_amount=p.line_discount,
            tax_rate=p.tax_rate,
            line_subtotal=quantize_money(r.line_subtotal),
            taxable_amount=quantize_money(r.taxable_amount),
            tax_amount=quantize_money(r.tax_amount),
            line_total=quantize_money(r.line_total),
        )
        for i, (p, r) in enumerate(zip(priced, totals.lines))
    ]


def _apply_cart_header(invoice: Invoice, cart: Cart) -> None:
    customer = cart.customer
    invoice.customer_name = customer.name
    invoice.customer_phone = customer.phone
    invoice.customer_email = customer.email
    invoice.customer_tax_id = customer.tax_id
    invoice.billing_address = customer.billing_address
    invoice.shipping_address = customer.shipping_address
    invoice.payment_mode = cart.payment_mode
    invoice.payment_details = cart.payment_details
    invoice.notes = cart.notes
    invoice.include_tax = cart.include_tax
    invoice.discount_kind = cart.discount.kind
    invoice.discount_percent = cart.discount.percent if isinstance(cart.discount, PercentDiscount) else None


def _apply_totals(invoice: Invoice, totals: CartTotals) -> None:
    invoice.subtotal = quantize_money(totals.subtotal)
    invoice.line_discount_total = quantize_money(totals.line_discount_total)
    invoice.bill_discount_amount = quantize_money(totals.bill_discount)
    invoice.discount_amount = quantize_money(totals.discount_total)
    invoice.tax_amount = quantize_money(totals.tax_total)
    invoice.round_off = quantize_money(totals.round_off)
    invoice.total_amount = totals.total


def _totals_summary(data: dict) -> dict:
    keys = ("subtotal", "discount_amount", "tax_amount", "round_off", "total_amount")
    return {key: data.get(key) for key in keys}


def _changes_summary(
    original: dict,
    updated: dict,
    old_qty: dict[int, Decimal],
    new_qty: dict[int, Decimal],
) -> dict:
    fields = []
    for key in ("payment_mode", "notes", "include_tax", "discount_kind", "discount_percent", "bill_discount_amount"):
        if original.get(key) != updated.get(key):
            fields.append({"field": key, "old": original.get(key), "new": updated.get(key)})
    for key, old_value in original["customer"].items():
        new_value = updated["customer"].get(key)
        if old_value != new_value:
            fields.append({"field": f"customer.{key}", "old": old_value, "new": new_value})

    added, removed, modified = [], [], []
    for product_id in sorted(set(old_qty) | set(new_qty)):
        before = old_qty.get(product_id)
        after = new_qty.get(product_id)
        if before is None:
            added.append({"product_id": product_id, "quantity": str(after)})
        elif after is None:
            removed.append({"product_id": product_id, "quantity": str(before)})
        elif before != after:
            modified.append({
                "product_id": product_id,
                "old_quantity": str(before),
                "new_quantity": str(after),
                "delta": str(after - before),
            })

    return {
        "fields": fields,
        "items": {"added": added, "removed": removed, "modified": modified},
        "totals": {"old": _totals_summary(original), "new": _totals_summary(updated)},
    }


# =============================================================================
# Read side
# =============================================================================

def get_invoice(shop_id: int, invoice_id: int) -> Invoice:
    return _load_invoice(shop_id, invoice_id)


def list_invoices(
    shop_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    payment_mode: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Invoice], int]:
    """Newest first. Dates are inclusive calendar days (UTC)."""
    if status and status not in (INVOICE_STATUS_COMPLETED, INVOICE_STATUS_CANCELLED):
        raise ValidationError("Invalid status filter", {"field": "status"})
    if payment_mode and payment_mode not in PAYMENT_MODES:
        raise ValidationError("Invalid payment_mode filter", {"field": "payment_mode"})

    query = db.session.query(Invoice).filter(Invoice.shop_id == shop_id)
    if start_date:
        query = query.filter(Invoice.created_at >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(Invoice.created_at < day_bounds(end_date)[1])
    if status:
        query = query.filter(Invoice.status == status)
    if payment_mode:
        query = query.filter(Invoice.payment_mode == payment_mode)

    page = max(page, 1)
    limit = max(1, min(limit, 500))

    total = query.count()
    rows = (
        query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def list_edit_audits(shop_id: int, invoice_id: int) -> list[InvoiceEditAudit]:
    _load_invoice(shop_id, invoice_id)
    return (
        db.session.query(InvoiceEditAudit)
        .filter_by(shop_id=shop_id, invoice_id=invoice_id)
        .order_by(InvoiceEditAudit.edit_number)
        .all()
    )


def _stored_discount(invoice: Invoice):
    if invoice.discount_kind == "amount":
        return AmountDiscount(Decimal(invoice.bill_discount_amount))
    if invoice.discount_kind == "percent":
        return PercentDiscount(Decimal(invoice.discount_percent))
    return NO_DISCOUNT


def _stored_line_inputs(invoice: Invoice) -> list[LineInput]:
    return [
        LineInput(
            quantity=Decimal(line.quantity),
            unit_price=Decimal(line.unit_price),
            line_discount=Decimal(line.discount_amount),
            tax_rate=Decimal(line.tax_rate),
        )
        for line in invoice.lines
    ]


def recompute_totals(invoice: Invoice) -> CartTotals:
    """Re-run the calculator over the persisted lines and discount input."""
    return calculate_totals(_stored_line_inputs(invoice), _stored_discount(invoice), invoice.include_tax)


def verify_invoice_totals(invoice: Invoice) -> dict:
    """Compare stored monetary fields with a fresh recomputation (storage precision)."""
    totals = recompute_totals(invoice)
    expected = {
        "subtotal": quantize_money(totals.subtotal),
        "discount_amount": quantize_money(totals.discount_total),
        "tax_amount": quantize_money(totals.tax_total),
        "round_off": quantize_money(totals.round_off),
        "total_amount": totals.total,
    }
    mismatches = {
        key: {"stored": str(getattr(invoice, key)), "expected": str(value)}
        for key, value in expected.items()
        if Decimal(getattr(invoice, key)) != value
    }

    # the stored columns must balance on their own, whatever the lines say
    stored_total = Decimal(invoice.total_amount)
    balanced = (
        Decimal(invoice.subtotal)
        - Decimal(invoice.discount_amount)
        + Decimal(invoice.tax_amount)
        + Decimal(invoice.round_off)
    )
    if balanced != stored_total or stored_total != stored_total.to_integral_value():
        mismatches["round_off_identity"] = {"stored": str(stored_total), "expected": str(balanced)}

    return {"invoice_id": invoice.id, "ok": not mismatches, "mismatches": mismatches}


def invoice_tax_breakdown(invoice: Invoice) -> list[TaxBreakdownRow]:
    results = [compute_line(line, invoice.include_tax) for line in _stored_line_inputs(invoice)]
    return tax_breakdown(results, invoice.include_tax)


def preview_cart(shop_id: int, cart: Cart) -> tuple[list[PricedLine], CartTotals]:
    """Price and total a cart without touching stock or invoices."""
    validate_cart(cart)
    catalog = lookup_products(shop_id, {line.product_id for line in cart.lines})
    priced = _price_lines(cart, catalog)
    return priced, calculate_totals([p.as_input() for p in priced], cart.discount, cart.include_tax)


# =============================================================================
# Write side
# =============================================================================

def create_invoice(shop_id: int, cart: Cart, actor: Actor) -> Invoice:
    """
    Turn a cart into a completed invoice and decrement stock, atomically.

    Raises ValidationError, NotFoundError (shop/product), InsufficientStockError,
    PersistenceError. On any error nothing is written.
    """
    validate_cart(cart)

    def _op() -> Invoice:
        with unit_of_work():
            _require_shop(shop_id)
            catalog = lookup_products(shop_id, {line.product_id for line in cart.lines})
            priced = _price_lines(cart, catalog)
            totals = calculate_totals([p.as_input() for p in priced], cart.discount, cart.include_tax)

            invoice_number = next_document_number(
                shop_id=shop_id,
                document_type=DOCUMENT_TYPE,
                prefix=current_app.config.get("INVOICE_NUMBER_PREFIX", "INV"),
            )

            invoice = Invoice(
                shop_id=shop_id,
                invoice_number=invoice_number,
                status=INVOICE_STATUS_COMPLETED,
                created_by_user_id=actor.user_id,
                created_at=utcnow(),
                edit_count=0,
            )
            _apply_cart_header(invoice, cart)
            _apply_totals(invoice, totals)
            invoice.lines = _build_lines(priced, totals)
            db.session.add(invoice)
            db.session.flush()

            for product_id, quantity in sorted(_aggregate_quantities(priced).items()):
                stock_ledger.try_decrement(
                    shop_id,
                    product_id,
                    quantity,
                    movement_type=stock_ledger.MOVEMENT_SALE,
                    reference_type=REFERENCE_TYPE,
                    reference_id=invoice.id,
                    note=f"Sale {invoice_number}",
                    actor_user_id=actor.user_id,
                )
        return invoice

    # IntegrityError: two first-of-the-day allocations raced on the sequence row
    invoice = _execute(_op, retry_on=(OperationalError, IntegrityError), action="create")

    current_app.logger.info(
        "Invoice %s created: shop=%s user=%s total=%s",
        invoice.invoice_number, shop_id, actor.user_id, invoice.total_amount,
    )
    return invoice


def edit_invoice(
    shop_id: int,
    invoice_id: int,
    cart: Cart,
    reason: str,
    actor: Actor,
    *,
    expected_version: int | None = None,
    allow_with_returns: bool = False,
) -> Invoice:
    """
    Replace a completed invoice's lines, adjusting stock by the per-product
    delta only, and append an audit row.

    A missing reason or invalid cart is rejected before any state is read or
    written. A stale expected_version, or another edit committing first,
    raises ConcurrencyConflictError.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Edit reason is required", {"field": "reason", "invoice_id": invoice_id})
    validate_cart(cart)

    def _op() -> Invoice:
        with unit_of_work():
            invoice = _load_invoice(shop_id, invoice_id, lock=True)

            if expected_version is not None and invoice.version_id != expected_version:
                raise ConcurrencyConflictError(
                    "Invoice was modified since it was loaded; reload and retry",
                    {
                        "invoice_id": invoice_id,
                        "expected_version": expected_version,
                        "current_version": invoice.version_id,
                    },
                )

            check = ensure_editable(invoice, actor, allow_with_returns=allow_with_returns)

            original = invoice.to_dict(include_lines=True)
            old_lines = list(invoice.lines)
            previous: dict[int, InvoiceLine] = {}
            for line in old_lines:
                previous.setdefault(line.product_id, line)

            catalog = lookup_products(
                shop_id,
                {line.product_id for line in cart.lines},
                allow_inactive=previous.keys(),
            )
            priced = _price_lines(cart, catalog, previous)
            totals = calculate_totals([p.as_input() for p in priced], cart.discount, cart.include_tax)

            old_qty = _aggregate_quantities(old_lines)
            new_qty = _aggregate_quantities(priced)

            _apply_cart_header(invoice, cart)
            _apply_totals(invoice, totals)
            invoice.lines = _build_lines(priced, totals)
            invoice.edit_count = (invoice.edit_count or 0) + 1
            invoice.last_edited_at = utcnow()
            invoice.last_edited_by_user_id = actor.user_id
            # version check happens on this flush
            db.session.flush()

            edit_number = invoice.edit_count
            for product_id in sorted(set(old_qty) | set(new_qty)):
                delta = new_qty.get(product_id, ZERO) - old_qty.get(product_id, ZERO)
                stock_ledger.apply_delta(
                    shop_id,
                    product_id,
                    delta,
                    movement_type=stock_ledger.MOVEMENT_SALE_EDIT,
                    reference_type=REFERENCE_TYPE,
                    reference_id=invoice.id,
                    note=f"Edit #{edit_number} of {invoice.invoice_number}",
                    actor_user_id=actor.user_id,
                )

            updated = invoice.to_dict(include_lines=True)
            db.session.add(InvoiceEditAudit(
                shop_id=shop_id,
                invoice_id=invoice.id,
                edit_number=edit_number,
                edited_by_user_id=actor.user_id,
                edit_reason=reason,
                edited_at=invoice.last_edited_at,
                returns_override=bool(check.restrictions.get("override_used")),
                changes_summary=_changes_summary(original, updated, old_qty, new_qty),
                original_data=original,
                new_data=updated,
            ))
        return invoice

    invoice = _execute(_op, retry_on=(OperationalError,), action="edit", invoice_id=invoice_id)

    current_app.logger.info(
        "Invoice %s edited (#%s): shop=%s user=%s reason=%r",
        invoice.invoice_number, invoice.edit_count, shop_id, actor.user_id, reason,
    )
    return invoice


def cancel_invoice(shop_id: int, invoice_id: int, actor: Actor, reason: str | None = None) -> Invoice:
    """Mark a completed invoice cancelled and restore every line quantity to stock."""
    reason = (reason or "").strip() or None

    def _op() -> Invoice:
        with unit_of_work():
            invoice = _load_invoice(shop_id, invoice_id, lock=True)
            if invoice.status != INVOICE_STATUS_COMPLETED:
                raise NotEditableError(
                    "Only completed invoices can be cancelled",
                    {"invoice_id": invoice_id, "status": invoice.status},
                )

            invoice.status = INVOICE_STATUS_CANCELLED
            invoice.cancelled_at = utcnow()
            invoice.cancelled_by_user_id = actor.user_id
            invoice.cancel_reason = reason
            db.session.flush()

            for product_id, quantity in sorted(_aggregate_quantities(invoice.lines).items()):
                stock_ledger.restore(
                    shop_id,
                    product_id,
                    quantity,
                    movement_type=stock_ledger.MOVEMENT_SALE_CANCEL,
                    reference_type=REFERENCE_TYPE,
                    reference_id=invoice.id,
                    note=f"Cancellation of {invoice.invoice_number}: {reason or 'No reason provided'}",
                    actor_user_id=actor.user_id,
                )
        return invoice

    invoice = _execute(_op, retry_on=(OperationalError,), action="cancel", invoice_id=invoice_id)

    current_app.logger.info(
        "Invoice %s cancelled: shop=%s user=%s", invoice.invoice_number, shop_id, actor.user_id
    )
    return invoice


def lock_invoice(shop_id: int, invoice_id: int, actor: Actor, reason: str | None = None) -> Invoice:
    """Freeze an invoice against edits (e.g. once filed for the tax period)."""
    def _op() -> Invoice:
        with unit_of_work():
            invoice = _load_invoice(shop_id, invoice_id, lock=True)
            if invoice.status != INVOICE_STATUS_COMPLETED:
                raise NotEditableError(
                    "Only completed invoices can be locked",
                    {"invoice_id": invoice_id, "status": invoice.status},
                )
            invoice.is_locked = True
            invoice.locked_reason = (reason or "").strip() or None
            invoice.locked_at = utcnow()
            invoice.locked_by_user_id = actor.user_id
        return invoice

    return _execute(_op, retry_on=(OperationalError,), action="lock", invoice_id=invoice_id)


def unlock_invoice(shop_id: int, invoice_id: int, actor: Actor) -> Invoice:
    def _op() -> Invoice:
        with unit_of_work():
            invoice = _load_invoice(shop_id, invoice_id, lock=True)
            invoice.is_locked = False
            invoice.locked_reason = None
            invoice.locked_at = None
            invoice.locked_by_user_id = None
        return invoice

    invoice = _execute(_op, retry_on=(OperationalError,), action="unlock", invoice_id=invoice_id)
    current_app.logger.info("Invoice %s unlocked by user %s", invoice.invoice_number, actor.user_id)
    return invoice


def check_edit(shop_id: int, invoice_id: int, actor: Actor, *, allow_with_returns: bool = False):
    """Dry-run the edit restrictions for the UI (no state is changed)."""
    invoice = _load_invoice(shop_id, invoice_id)
    return evaluate_edit(invoice, actor, allow_with_returns=allow_with_returns)
