from __future__ import annotations

from ..extensions import db
from ..money import MONEY_PLACES, QTY_PLACES, RATE_PLACES, decimal_str
from ..time_utils import to_utc_z, utcnow


PAYMENT_MODES = ("cash", "electronic_transfer", "card", "mixed")

INVOICE_STATUS_COMPLETED = "completed"
INVOICE_STATUS_CANCELLED = "cancelled"


class Invoice(db.Model):
    """
    Finalized sale with tax-compliant totals.

    Customer fields are a snapshot taken at sale time, not a foreign key, so
    historical invoices never change when the customer record does.

    Monetary invariant (checked by invoice_service.verify_invoice_totals):
        total_amount = round(subtotal - discount_amount + tax_amount)
        round_off    = total_amount - (subtotal - discount_amount + tax_amount)
    where discount_amount = line_discount_total + bill_discount_amount.

    STATUS: completed -> completed (edit, audited) | cancelled (terminal).
    Invoices are never deleted.

    version_id gives optimistic locking: a concurrent edit flushing against
    an old version raises StaleDataError.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "invoice_number", name="uq_invoices_shop_number"),
        db.Index("ix_invoices_shop_status_created", "shop_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    # Human-readable sequence number (e.g., "INV-20261019-0007")
    invoice_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_COMPLETED, index=True)

    # Customer snapshot
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_tax_id = db.Column(db.String(32), nullable=True)
    billing_address = db.Column(db.Text, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)

    payment_mode = db.Column(db.String(32), nullable=False, index=True)
    payment_details = db.Column(db.JSON, nullable=True)
    include_tax = db.Column(db.Boolean, nullable=False, default=True)

    # Bill-level discount input as entered ("amount" | "percent" | None)
    discount_kind = db.Column(db.String(16), nullable=True)
    discount_percent = db.Column(db.Numeric(7, RATE_PLACES), nullable=True)

    subtotal = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)
    line_discount_total = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    bill_discount_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    round_off = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    # Edit bookkeeping
    edit_count = db.Column(db.Integer, nullable=False, default=0)
    last_edited_at = db.Column(db.DateTime, nullable=True)
    last_edited_by_user_id = db.Column(db.Integer, nullable=True)

    # Lock (e.g., after tax filing)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    locked_reason = db.Column(db.String(255), nullable=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    locked_by_user_id = db.Column(db.Integer, nullable=True)

    # Cancellation audit trail
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def customer_dict(self) -> dict:
        return {
            "name": self.customer_name,
            "phone": self.customer_phone,
            "email": self.customer_email,
            "tax_id": self.customer_tax_id,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
        }

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "shop_id": self.shop_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "customer": self.customer_dict(),
            "payment_mode": self.payment_mode,
            "payment_details": self.payment_details,
            "include_tax": self.include_tax,
            "discount_kind": self.discount_kind,
            "discount_percent": decimal_str(self.discount_percent),
            "subtotal": decimal_str(self.subtotal),
            "line_discount_total": decimal_str(self.line_discount_total),
            "bill_discount_amount": decimal_str(self.bill_discount_amount),
            "discount_amount": decimal_str(self.discount_amount),
            "tax_amount": decimal_str(self.tax_amount),
            "round_off": decimal_str(self.round_off),
            "total_amount": decimal_str(self.total_amount),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "edit_count": self.edit_count,
            "last_edited_at": to_utc_z(self.last_edited_at),
            "last_edited_by_user_id": self.last_edited_by_user_id,
            "is_locked": self.is_locked,
            "locked_reason": self.locked_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    One product entry on an invoice.

    name/sku/unit/tax_rate are copied from the catalog at sale time so later
    catalog edits do not rewrite history. quantity > 0 and unit_price >= 0
    are enforced both by validation and by CHECK constraints.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        db.CheckConstraint("unit_price >= 0", name="ck_invoice_lines_unit_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit = db.Column(db.String(16), nullable=False)

    quantity = db.Column(db.Numeric(14, QTY_PLACES), nullable=False)
    unit_price = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)
    discount_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, RATE_PLACES), nullable=False, default=0)

    line_subtotal = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)
    taxable_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)
    tax_amount = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)
    line_total = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False)

    invoice = db.relationship("Invoice", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit": self.unit,
            "quantity": decimal_str(self.quantity),
            "unit_price": decimal_str(self.unit_price),
            "discount_amount": decimal_str(self.discount_amount),
            "tax_rate": decimal_str(self.tax_rate),
            "line_subtotal": decimal_str(self.line_subtotal),
            "taxable_amount": decimal_str(self.taxable_amount),
            "tax_amount": decimal_str(self.tax_amount),
            "line_total": decimal_str(self.line_total),
        }


class InvoiceEditAudit(db.Model):
    """
    Append-only trail of accepted edits on finalized invoices.

    original_data/new_data are full invoice snapshots (header + lines) so any
    edit can be reconstructed; changes_summary is the structured diff shown
    to back-office users.
    """
    __tablename__ = "invoice_edit_audits"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "edit_number", name="uq_invoice_edit_audits_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    edit_number = db.Column(db.Integer, nullable=False)

    edited_by_user_id = db.Column(db.Integer, nullable=False)
    edit_reason = db.Column(db.Text, nullable=False)
    edited_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    returns_override = db.Column(db.Boolean, nullable=False, default=False)

    changes_summary = db.Column(db.JSON, nullable=False)
    original_data = db.Column(db.JSON, nullable=False)
    new_data = db.Column(db.JSON, nullable=False)

    invoice = db.relationship("Invoice", backref=db.backref("edit_audits", lazy=True, order_by="InvoiceEditAudit.edit_number"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "edit_number": self.edit_number,
            "edited_by_user_id": self.edited_by_user_id,
            "edit_reason": self.edit_reason,
            "edited_at": to_utc_z(self.edited_at),
            "returns_override": self.returns_override,
            "changes_summary": self.changes_summary,
            "original_data": self.original_data,
            "new_data": self.new_data,
        }
