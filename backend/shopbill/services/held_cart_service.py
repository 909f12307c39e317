# Overview: Hold/recall of in-progress carts (typed, versioned snapshots).

"""
Held carts are parked carts a cashier resumes later. They never touch stock
or invoices; a recalled cart goes back through invoice_service.create_invoice,
which re-validates prices and stock at that point.

Held bodies are not stored verbatim. hold() parses them into a DraftSnapshot
and stores its canonical JSON (sorted keys, no whitespace, decimals as
strings); unknown keys are dropped and every item needs a product_id and a
quantity. recall() returns that canonical text byte for byte, so holding a
recalled snapshot again stores the same bytes.

Schema versions:
  1  legacy untyped blob: items[].price|unit_price, discount_amount,
     discount_percent, include_gst, payment_mode "upi", flat customer_* keys
  2  current DraftSnapshot
Older versions are upgraded on read; unknown versions are rejected rather
than guessed at. A body without schema_version is read as version 1 only
when it carries version 1 keys (LEGACY_KEYS, LEGACY_ITEM_KEYS).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BillingError, NotFoundError, PersistenceError, ValidationError
from ..extensions import db
from ..models import HeldCart
from ..money import to_decimal
from ..time_utils import utcnow
from .cart_schemas import Actor
from .concurrency import unit_of_work


CURRENT_SCHEMA_VERSION = 2
LEGACY_SCHEMA_VERSION = 1

DISCOUNT_KINDS = ("amount", "percent")

CUSTOMER_KEYS = ("name", "phone", "email", "tax_id", "billing_address", "shipping_address")

LEGACY_PAYMENT_MODES = {"upi": "electronic_transfer"}

LEGACY_KEYS = frozenset({
    "discount_amount", "discount_percent", "include_gst",
    "customer_name", "customer_phone", "customer_email",
    "customer_gstin", "customer_tax_id", "customer_address",
})
LEGACY_ITEM_KEYS = frozenset({"price", "gst_rate", "discount", "product_name"})


@dataclass(frozen=True)
class DraftItem:
    product_id: int
    quantity: str
    unit_price: str | None = None
    discount_amount: str = "0"
    tax_rate: str | None = None
    name: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount_amount": self.discount_amount,
            "tax_rate": self.tax_rate,
            "name": self.name,
        }


@dataclass(frozen=True)
class DraftSnapshot:
    items: tuple[DraftItem, ...] = ()
    customer: dict = field(default_factory=dict)
    discount_kind: str | None = None
    discount_value: str | None = None
    payment_mode: str | None = None
    include_tax: bool = True
    notes: str | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    def to_dict(self) -> dict:
        return {
            "schema_version": self.schema_version,
            "items": [item.to_dict() for item in self.items],
            "customer": {key: self.customer.get(key) for key in CUSTOMER_KEYS},
            "discount": (
                {"kind": self.discount_kind, "value": self.discount_value}
                if self.discount_kind else None
            ),
            "payment_mode": self.payment_mode,
            "include_tax": self.include_tax,
            "notes": self.notes,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def to_cart_payload(self) -> dict:
        """Body accepted by cart_schemas.parse_cart, for resubmission."""
        payload = self.to_dict()
        payload.pop("schema_version")
        if payload["discount"] is None:
            payload.pop("discount")
        return payload


@dataclass(frozen=True)
class RecalledCart:
    held: HeldCart
    snapshot: DraftSnapshot
    raw: str


# =============================================================================
# Parsing / upgrading
# =============================================================================

def _decimal_text(value: Any, field_name: str, *, required: bool = False) -> str | None:
    """Keep numbers as text, but refuse things that are not numbers at all."""
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field_name} is required", {"field": field_name})
        return None
    try:
        to_decimal(value, field=field_name)
    except ValueError as exc:
        raise ValidationError(str(exc), {"field": field_name})
    return str(value).strip()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_item(raw: Any, index: int) -> DraftItem:
    prefix = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix} must be an object", {"field": prefix})
    product_id = raw.get("product_id")
    if isinstance(product_id, bool) or not isinstance(product_id, int):
        raise ValidationError(f"{prefix}.product_id must be an integer", {"field": f"{prefix}.product_id"})
    return DraftItem(
        product_id=product_id,
        quantity=_decimal_text(raw.get("quantity"), f"{prefix}.quantity", required=True),
        unit_price=_decimal_text(raw.get("unit_price"), f"{prefix}.unit_price"),
        discount_amount=_decimal_text(raw.get("discount_amount"), f"{prefix}.discount_amount") or "0",
        tax_rate=_decimal_text(raw.get("tax_rate"), f"{prefix}.tax_rate"),
        name=_optional_text(raw.get("name")),
    )


def _parse_current(data: dict) -> DraftSnapshot:
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list", {"field": "items"})

    customer = data.get("customer") or {}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object", {"field": "customer"})

    discount_kind = discount_value = None
    discount = data.get("discount")
    if discount is not None:
        if not isinstance(discount, dict) or discount.get("kind") not in DISCOUNT_KINDS:
            raise ValidationError(
                "discount must be {kind: amount|percent, value}", {"field": "discount"}
            )
        discount_kind = discount["kind"]
        discount_value = _decimal_text(discount.get("value"), "discount.value", required=True)

    include_tax = data.get("include_tax", True)
    if not isinstance(include_tax, bool):
        raise ValidationError("include_tax must be a boolean", {"field": "include_tax"})

    return DraftSnapshot(
        items=tuple(_parse_item(raw, i) for i, raw in enumerate(items)),
        customer={key: _optional_text(customer.get(key)) for key in CUSTOMER_KEYS},
        discount_kind=discount_kind,
        discount_value=discount_value,
        payment_mode=_optional_text(data.get("payment_mode")),
        include_tax=include_tax,
        notes=_optional_text(data.get("notes")),
    )


def _upgrade_legacy(data: dict) -> dict:
    """Rewrite a schema 1 blob into the schema 2 shape."""
    items = []
    for raw in data.get("items") or []:
        if not isinstance(raw, dict):
            items.append(raw)
            continue
        product_id = raw.get("product_id")
        if isinstance(product_id, str) and product_id.strip().isdigit():
            product_id = int(product_id)
        items.append({
            "product_id": product_id,
            "quantity": raw.get("quantity"),
            "unit_price": raw.get("unit_price", raw.get("price")),
            "discount_amount": raw.get("discount_amount", raw.get("discount")),
            "tax_rate": raw.get("tax_rate", raw.get("gst_rate")),
            "name": raw.get("name", raw.get("product_name")),
        })

    customer = data.get("customer")
    if not isinstance(customer, dict):
        customer = {
            "name": data.get("customer_name"),
            "phone": data.get("customer_phone"),
            "email": data.get("customer_email"),
            "tax_id": data.get("customer_gstin", data.get("customer_tax_id")),
            "billing_address": data.get("billing_address", data.get("customer_address")),
            "shipping_address": data.get("shipping_address"),
        }

    # the old screen sent both fields; a non-zero amount took precedence
    discount = None
    amount = data.get("discount_amount")
    percent = data.get("discount_percent")
    if amount not in (None, "", 0, "0") and to_decimal(amount, field="discount_amount") != 0:
        discount = {"kind": "amount", "value": amount}
    elif percent not in (None, "", 0, "0") and to_decimal(percent, field="discount_percent") != 0:
        discount = {"kind": "percent", "value": percent}
    elif isinstance(data.get("discount"), dict):
        discount = data["discount"]

    payment_mode = data.get("payment_mode")
    payment_mode = LEGACY_PAYMENT_MODES.get(payment_mode, payment_mode)

    include_tax = data.get("include_gst", data.get("include_tax", True))

    return {
        "schema_version": CURRENT_SCHEMA_VERSION,
        "items": items,
        "customer": customer,
        "discount": discount,
        "payment_mode": payment_mode,
        "include_tax": bool(include_tax),
        "notes": data.get("notes"),
    }


def _infer_schema_version(data: dict) -> int:
    if LEGACY_KEYS.intersection(data):
        return LEGACY_SCHEMA_VERSION
    for raw in data.get("items") or []:
        if isinstance(raw, dict) and LEGACY_ITEM_KEYS.intersection(raw):
            return LEGACY_SCHEMA_VERSION
    return CURRENT_SCHEMA_VERSION


def parse_snapshot(data: Any) -> DraftSnapshot:
    """
    Build a DraftSnapshot from a JSON object. Without a schema_version the
    version is inferred from the body's keys.
    """
    if isinstance(data, DraftSnapshot):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Cart snapshot must be a JSON object", {"field": "snapshot"})

    version = data.get("schema_version")
    if version is None:
        version = _infer_schema_version(data)
    if version == LEGACY_SCHEMA_VERSION:
        try:
            data = _upgrade_legacy(data)
        except ValueError as exc:
            raise ValidationError(str(exc), {"field": "snapshot"})
    elif version != CURRENT_SCHEMA_VERSION:
        raise ValidationError(
            f"Unsupported held cart schema_version {version!r}",
            {"field": "schema_version", "schema_version": version},
        )
    return _parse_current(data)


def load_snapshot(held: HeldCart) -> DraftSnapshot:
    try:
        data = json.loads(held.snapshot)
    except ValueError as exc:
        raise ValidationError("Held cart snapshot is corrupt", {"held_cart_id": held.id}) from exc
    if isinstance(data, dict):
        data.setdefault("schema_version", held.schema_version)
    return parse_snapshot(data)


# =============================================================================
# Store operations
# =============================================================================

def _write(op, action: str, held_id: int | None = None):
    try:
        with unit_of_work():
            return op()
    except BillingError:
        raise
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to %s held cart", action)
        raise PersistenceError(f"Could not {action} held cart", {"held_cart_id": held_id}) from exc


def _get(shop_id: int, held_id: int) -> HeldCart:
    held = db.session.query(HeldCart).filter_by(id=held_id, shop_id=shop_id).first()
    if held is None:
        raise NotFoundError("Held cart not found", {"held_cart_id": held_id})
    return held


def hold(shop_id: int, actor: Actor, snapshot, label: str | None = None) -> HeldCart:
    """Park a cart. No catalog or stock checks: staleness is expected."""
    draft = parse_snapshot(snapshot)

    def _op() -> HeldCart:
        held = HeldCart(
            shop_id=shop_id,
            created_by_user_id=actor.user_id,
            label=_optional_text(label),
            schema_version=draft.schema_version,
            snapshot=draft.to_json(),
        )
        db.session.add(held)
        db.session.flush()
        return held

    held = _write(_op, "hold")
    current_app.logger.info("Held cart %s saved: shop=%s user=%s", held.id, shop_id, actor.user_id)
    return held


def list_held(shop_id: int, actor_user_id: int | None = None) -> list[HeldCart]:
    query = db.session.query(HeldCart).filter(HeldCart.shop_id == shop_id)
    if actor_user_id is not None:
        query = query.filter(HeldCart.created_by_user_id == actor_user_id)
    return query.order_by(HeldCart.updated_at.desc(), HeldCart.id.desc()).all()


def recall(shop_id: int, held_id: int) -> RecalledCart:
    """Return the held snapshot. The row is kept; call discard() once it is used."""
    held = _get(shop_id, held_id)
    snapshot = load_snapshot(held)
    raw = held.snapshot if held.schema_version == CURRENT_SCHEMA_VERSION else snapshot.to_json()
    return RecalledCart(held=held, snapshot=snapshot, raw=raw)


def update_held(shop_id: int, held_id: int, snapshot, label: str | None = None) -> HeldCart:
    draft = parse_snapshot(snapshot)

    def _op() -> HeldCart:
        held = _get(shop_id, held_id)
        held.snapshot = draft.to_json()
        held.schema_version = draft.schema_version
        if label is not None:
            held.label = _optional_text(label)
        held.updated_at = utcnow()
        return held

    return _write(_op, "update", held_id)


def discard(shop_id: int, held_id: int) -> None:
    def _op() -> None:
        db.session.delete(_get(shop_id, held_id))

    _write(_op, "discard", held_id)
    current_app.logger.info("Held cart %s discarded: shop=%s", held_id, shop_id)


def purge_older_than(days: int, shop_id: int | None = None) -> int:
    """Delete held carts not touched in `days` days. Returns the count removed."""
    if days < 0:
        raise ValidationError("days must not be negative", {"field": "days"})
    cutoff = utcnow() - timedelta(days=days)

    def _op() -> int:
        query = db.session.query(HeldCart).filter(HeldCart.updated_at < cutoff)
        if shop_id is not None:
            query = query.filter(HeldCart.shop_id == shop_id)
        return query.delete(synchronize_session=False)

    removed = _write(_op, "purge")
    current_app.logger.info("Purged %d held cart(s) older than %d days", removed, days)
    return removed
