# Overview: Typed, validated request structs for the billing engine.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ..errors import ValidationError
from ..models.invoices import PAYMENT_MODES
from ..money import (
    HUNDRED,
    MONEY_PLACES,
    QTY_PLACES,
    RATE_PLACES,
    ZERO,
    has_at_most_places,
    to_decimal,
)
from .calculator import AmountDiscount, DiscountInput, NO_DISCOUNT, PercentDiscount, resolve_discount


ROLE_CASHIER = "cashier"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_CASHIER, ROLE_ADMIN, ROLE_SUPER_ADMIN)


@dataclass(frozen=True)
class Actor:
    """Authenticated user as resolved by the (external) auth layer."""
    user_id: int
    role: str = ROLE_CASHIER


@dataclass(frozen=True)
class CustomerSnapshot:
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    tax_id: str | None = None
    billing_address: str | None = None
    shipping_address: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "tax_id": self.tax_id,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
        }


@dataclass(frozen=True)
class CartLine:
    """
    One requested line. unit_price/tax_rate left as None are filled from
    the catalog (or from the invoice's own snapshot on edit).
    """
    product_id: int
    quantity: Decimal
    unit_price: Decimal | None = None
    line_discount: Decimal = ZERO
    tax_rate: Decimal | None = None


@dataclass(frozen=True)
class Cart:
    lines: tuple[CartLine, ...]
    discount: DiscountInput = NO_DISCOUNT
    include_tax: bool = True
    payment_mode: str = "cash"
    customer: CustomerSnapshot = field(default_factory=CustomerSnapshot)
    notes: str | None = None
    payment_details: dict | None = None


# =============================================================================
# Coercion helpers
# =============================================================================

def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", {"field": field_name})
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field_name} must be an integer", {"field": field_name})


def _to_decimal(value: Any, field_name: str, *, places: int, default: Decimal | None = None) -> Decimal | None:
    if value is None or value == "":
        return default
    try:
        result = to_decimal(value, field=field_name)
    except ValueError as exc:
        raise ValidationError(str(exc), {"field": field_name})
    if not has_at_most_places(result, places):
        raise ValidationError(
            f"{field_name} allows at most {places} decimal places",
            {"field": field_name},
        )
    return result


def _to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# =============================================================================
# Parsing (JSON payload -> Cart)
# =============================================================================

def parse_customer(data: dict[str, Any] | None) -> CustomerSnapshot:
    data = data or {}
    return CustomerSnapshot(
        name=_to_text(data.get("name")),
        phone=_to_text(data.get("phone")),
        email=_to_text(data.get("email")),
        tax_id=_to_text(data.get("tax_id")),
        billing_address=_to_text(data.get("billing_address")),
        shipping_address=_to_text(data.get("shipping_address")),
    )


def parse_cart_line(raw: Any, index: int) -> CartLine:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object", {"field": f"items[{index}]"})
    prefix = f"items[{index}]"
    if raw.get("product_id") is None:
        raise ValidationError(f"{prefix}.product_id is required", {"field": f"{prefix}.product_id"})
    if raw.get("quantity") is None:
        raise ValidationError(f"{prefix}.quantity is required", {"field": f"{prefix}.quantity"})
    return CartLine(
        product_id=_to_int(raw.get("product_id"), f"{prefix}.product_id"),
        quantity=_to_decimal(raw.get("quantity"), f"{prefix}.quantity", places=QTY_PLACES),
        unit_price=_to_decimal(raw.get("unit_price"), f"{prefix}.unit_price", places=MONEY_PLACES),
        line_discount=_to_decimal(
            raw.get("discount_amount"), f"{prefix}.discount_amount", places=MONEY_PLACES, default=ZERO
        ),
        tax_rate=_to_decimal(raw.get("tax_rate"), f"{prefix}.tax_rate", places=RATE_PLACES),
    )


def parse_discount(payload: dict[str, Any]) -> DiscountInput:
    """
    Accepts either {"discount": {"kind": "amount"|"percent", "value": x}} or
    the legacy pair discount_amount / discount_percent (amount wins).
    """
    tagged = payload.get("discount")
    if isinstance(tagged, dict):
        kind = tagged.get("kind")
        value = _to_decimal(tagged.get("value"), "discount.value", places=MONEY_PLACES, default=ZERO)
        if kind == "amount":
            return AmountDiscount(value)
        if kind == "percent":
            return PercentDiscount(value)
        if kind in (None, "none"):
            return NO_DISCOUNT
        raise ValidationError("discount.kind must be 'amount' or 'percent'", {"field": "discount.kind"})

    amount = _to_decimal(payload.get("discount_amount"), "discount_amount", places=MONEY_PLACES)
    percent = _to_decimal(payload.get("discount_percent"), "discount_percent", places=RATE_PLACES)
    return resolve_discount(amount, percent)


def parse_cart(payload: dict[str, Any] | None) -> Cart:
    """Coerce a loosely-typed JSON body into a Cart. Business rules are checked by validate_cart."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    items = payload.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list", {"field": "items"})

    customer = payload.get("customer")
    if customer is None:
        # flat legacy fields: customer_name, customer_phone, ...
        customer = {
            key[len("customer_"):]: payload.get(key)
            for key in ("customer_name", "customer_phone", "customer_email", "customer_tax_id")
        }
        customer["billing_address"] = payload.get("billing_address")
        customer["shipping_address"] = payload.get("shipping_address")
    elif not isinstance(customer, dict):
        raise ValidationError("customer must be an object", {"field": "customer"})

    payment_details = payload.get("payment_details")
    if payment_details is not None and not isinstance(payment_details, dict):
        raise ValidationError("payment_details must be an object", {"field": "payment_details"})

    return Cart(
        lines=tuple(parse_cart_line(raw, i) for i, raw in enumerate(items)),
        discount=parse_discount(payload),
        include_tax=_to_bool(payload.get("include_tax"), True),
        payment_mode=_to_text(payload.get("payment_mode")) or "",
        customer=parse_customer(customer),
        notes=_to_text(payload.get("notes")),
        payment_details=payment_details,
    )


# =============================================================================
# Business validation (shared by create and edit)
# =============================================================================

def validate_cart(cart: Cart) -> None:
    if not cart.lines:
        raise ValidationError("At least one item is required", {"field": "items"})

    for i, line in enumerate(cart.lines):
        prefix = f"items[{i}]"
        if line.quantity is None or line.quantity <= ZERO:
            raise ValidationError(
                f"{prefix}.quantity must be greater than zero",
                {"field": f"{prefix}.quantity", "product_id": line.product_id},
            )
        if line.unit_price is not None and line.unit_price < ZERO:
            raise ValidationError(
                f"{prefix}.unit_price must not be negative",
                {"field": f"{prefix}.unit_price", "product_id": line.product_id},
            )
        if line.line_discount < ZERO:
            raise ValidationError(
                f"{prefix}.discount_amount must not be negative",
                {"field": f"{prefix}.discount_amount", "product_id": line.product_id},
            )
        if line.tax_rate is not None and not (ZERO <= line.tax_rate <= HUNDRED):
            raise ValidationError(
                f"{prefix}.tax_rate must be between 0 and 100",
                {"field": f"{prefix}.tax_rate", "product_id": line.product_id},
            )

    if cart.payment_mode not in PAYMENT_MODES:
        raise ValidationError(
            f"payment_mode must be one of: {', '.join(PAYMENT_MODES)}",
            {"field": "payment_mode"},
        )

    if isinstance(cart.discount, AmountDiscount) and cart.discount.amount < ZERO:
        raise ValidationError("discount amount must not be negative", {"field": "discount_amount"})
    if isinstance(cart.discount, PercentDiscount) and not (ZERO <= cart.discount.percent <= HUNDRED):
        raise ValidationError("discount percent must be between 0 and 100", {"field": "discount_percent"})
