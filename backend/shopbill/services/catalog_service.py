# Overview: Read-only catalog lookup consumed by invoice create/edit.

"""
Catalog boundary of the billing engine.

Catalog CRUD is owned by another part of the system; billing only needs a
tenant-scoped snapshot of price, tax rate, unit and stock. A product owned
by another shop is indistinguishable from a missing one.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..errors import NotFoundError
from ..extensions import db
from ..models import Product


@dataclass(frozen=True)
class CatalogEntry:
    product_id: int
    name: str
    sku: str
    unit: str
    unit_price: Decimal
    tax_rate: Decimal
    stock_quantity: Decimal
    is_active: bool


def _entry(product: Product) -> CatalogEntry:
    return CatalogEntry(
        product_id=product.id,
        name=product.name,
        sku=product.sku,
        unit=product.unit,
        unit_price=Decimal(product.selling_price),
        tax_rate=Decimal(product.tax_rate),
        stock_quantity=Decimal(product.stock_quantity),
        is_active=product.is_active,
    )


def lookup_product(shop_id: int, product_id: int, *, require_active: bool = True) -> CatalogEntry:
    product = (
        db.session.query(Product)
        .filter_by(id=product_id, shop_id=shop_id)
        .first()
    )
    if product is None or (require_active and not product.is_active):
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return _entry(product)


def lookup_products(
    shop_id: int,
    product_ids: Iterable[int],
    *,
    allow_inactive: Iterable[int] = (),
) -> dict[int, CatalogEntry]:
    """
    Batch lookup. Every id must exist in the shop; inactive products are
    only accepted when listed in allow_inactive (e.g. already on the invoice
    being edited).
    """
    wanted = set(product_ids)
    if not wanted:
        return {}
    inactive_ok = set(allow_inactive)

    products = (
        db.session.query(Product)
        .filter(Product.shop_id == shop_id, Product.id.in_(wanted))
        .all()
    )
    found = {p.id: p for p in products}

    for product_id in sorted(wanted):
        product = found.get(product_id)
        if product is None or (not product.is_active and product_id not in inactive_ok):
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})

    return {pid: _entry(p) for pid, p in found.items()}
