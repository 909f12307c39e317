# Overview: Restrictions on editing finalized invoices.

"""
Edit Restrictions (authoritative)

Checked in this order; the first blocking rule wins:
1. cancelled invoices are never editable
2. locked invoices (e.g. after tax filing) are not editable
3. invoices older than EDIT_LOCK_PERIOD_DAYS are closed for the tax
   period; only super_admin may edit them
4. cashiers may only edit within CASHIER_EDIT_WINDOW_HOURS of creation
5. invoices with associated returns are blocked unless the caller passes an
   explicit override (allow_with_returns=True), in which case the override
   is recorded on the audit row

Returns are owned by a separate subsystem; it registers a callable
(shop_id, invoice_id) -> bool with register_returns_lookup. Without one,
no invoice has returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from flask import Flask, current_app

from ..errors import NotEditableError
from ..models import Invoice
from ..models.invoices import INVOICE_STATUS_CANCELLED, INVOICE_STATUS_COMPLETED
from ..time_utils import utcnow
from .cart_schemas import Actor, ROLE_CASHIER, ROLE_SUPER_ADMIN


RETURNS_LOOKUP_KEY = "shopbill.returns_lookup"

ReturnsLookup = Callable[[int, int], bool]


@dataclass(frozen=True)
class EditCheck:
    can_edit: bool
    reason: str | None = None
    restrictions: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "can_edit": self.can_edit,
            "reason": self.reason,
            "restrictions": self.restrictions,
        }


def register_returns_lookup(app: Flask, lookup: ReturnsLookup | None) -> None:
    app.extensions[RETURNS_LOOKUP_KEY] = lookup


def has_associated_returns(shop_id: int, invoice_id: int) -> bool:
    lookup = current_app.extensions.get(RETURNS_LOOKUP_KEY)
    if lookup is None:
        return False
    return bool(lookup(shop_id, invoice_id))


def evaluate_edit(
    invoice: Invoice,
    actor: Actor,
    *,
    now: datetime | None = None,
    allow_with_returns: bool = False,
) -> EditCheck:
    now = now or utcnow()
    config = current_app.config

    if invoice.status == INVOICE_STATUS_CANCELLED:
        return EditCheck(False, "Cannot edit a cancelled invoice", {"status": invoice.status})
    if invoice.status != INVOICE_STATUS_COMPLETED:
        return EditCheck(False, f"Cannot edit invoice with status {invoice.status}", {"status": invoice.status})

    if invoice.is_locked:
        return EditCheck(
            False,
            invoice.locked_reason or "Invoice is locked and cannot be edited",
            {"is_locked": True},
        )

    lock_days = config.get("EDIT_LOCK_PERIOD_DAYS", 30)
    age = now - invoice.created_at
    if age > timedelta(days=lock_days) and actor.role != ROLE_SUPER_ADMIN:
        return EditCheck(
            False,
            f"Invoice is older than {lock_days} days and is locked for tax filing",
            {"tax_period_locked": True},
        )

    window_hours = config.get("CASHIER_EDIT_WINDOW_HOURS", 24)
    if actor.role == ROLE_CASHIER and age > timedelta(hours=window_hours):
        return EditCheck(
            False,
            f"Cashiers can only edit invoices within {window_hours} hours of creation",
            {"time_restricted": True},
        )

    if has_associated_returns(invoice.shop_id, invoice.id):
        if not allow_with_returns:
            return EditCheck(
                False,
                "Invoice has associated returns; pass an explicit override to edit it",
                {"has_returns": True, "override_required": True},
            )
        return EditCheck(
            True,
            "Invoice has associated returns; edited with override",
            {"has_returns": True, "override_used": True},
        )

    return EditCheck(True)


def ensure_editable(invoice: Invoice, actor: Actor, **kwargs) -> EditCheck:
    check = evaluate_edit(invoice, actor, **kwargs)
    if not check.can_edit:
        raise NotEditableError(
            check.reason or "Invoice is not editable",
            {"invoice_id": invoice.id, **check.restrictions},
        )
    return check
