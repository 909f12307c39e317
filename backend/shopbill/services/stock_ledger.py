# Overview: Inventory ledger; the only code allowed to mutate product stock.

"""
Inventory Ledger Invariants (authoritative)

- products.stock_quantity is mutated ONLY through try_decrement / restore.
- try_decrement is a single conditional UPDATE:
      UPDATE products SET stock_quantity = stock_quantity - :q
      WHERE id = :id AND shop_id = :shop AND stock_quantity >= :q
  The database serializes writers on the row, so concurrent callers can
  never commit a negative stock, and a failed decrement changes nothing.
- Primitives flush but never commit; they run inside the caller's
  unit_of_work, so a rolled-back invoice leaves stock untouched.
- Every mutation appends a StockMovement with before/after quantities.
- Multi-product callers process product ids in ascending order to keep
  row-lock acquisition deadlock-free.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..money import QTY_PLACES, ZERO, quantize_qty
from .concurrency import run_with_retry, unit_of_work


MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_EDIT = "SALE_EDIT"
MOVEMENT_SALE_CANCEL = "SALE_CANCEL"
MOVEMENT_RECEIVE = "RECEIVE"


def _rounded(expr):
    # SQLite keeps NUMERIC as REAL; snap back to the 3-place grid on every
    # comparison and write so repeated fractional sales never drift
    return func.round(expr, QTY_PLACES, type_=Product.stock_quantity.type)


def _current_quantity(shop_id: int, product_id: int) -> Decimal | None:
    value = (
        db.session.query(Product.stock_quantity)
        .filter_by(id=product_id, shop_id=shop_id)
        .scalar()
    )
    return Decimal(value) if value is not None else None


def _require_positive(quantity) -> Decimal:
    quantity = quantize_qty(Decimal(quantity))
    if quantity <= ZERO:
        raise ValidationError("quantity must be greater than zero", {"quantity": str(quantity)})
    return quantity


def _record_movement(
    *,
    shop_id: int,
    product_id: int,
    movement_type: str,
    delta: Decimal,
    after: Decimal,
    reference_type: str | None,
    reference_id: int | None,
    note: str | None,
    actor_user_id: int | None,
) -> StockMovement:
    movement = StockMovement(
        shop_id=shop_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity_delta=quantize_qty(delta),
        quantity_before=quantize_qty(after - delta),
        quantity_after=quantize_qty(after),
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def get_stock_quantity(shop_id: int, product_id: int) -> Decimal:
    quantity = _current_quantity(shop_id, product_id)
    if quantity is None:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return quantity


def try_decrement(
    shop_id: int,
    product_id: int,
    quantity,
    *,
    movement_type: str = MOVEMENT_SALE,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """
    Decrement stock by quantity or raise InsufficientStockError.

    Must run inside the caller's transaction. Never clamps: either the whole
    quantity is taken or nothing is.
    """
    quantity = _require_positive(quantity)

    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.shop_id == shop_id,
            _rounded(Product.stock_quantity) >= quantity,
        )
        .values(stock_quantity=_rounded(Product.stock_quantity - quantity))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount != 1:
        available = _current_quantity(shop_id, product_id)
        if available is None:
            raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
        current_app.logger.warning(
            "Stock decrement rejected: shop=%s product=%s requested=%s available=%s",
            shop_id, product_id, quantity, available,
        )
        raise InsufficientStockError(product_id, quantity, available)

    return _record_movement(
        shop_id=shop_id,
        product_id=product_id,
        movement_type=movement_type,
        delta=-quantity,
        after=get_stock_quantity(shop_id, product_id),
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        actor_user_id=actor_user_id,
    )


def restore(
    shop_id: int,
    product_id: int,
    quantity,
    *,
    movement_type: str = MOVEMENT_SALE_CANCEL,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """Put quantity back on stock. Must run inside the caller's transaction."""
    quantity = _require_positive(quantity)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.shop_id == shop_id)
        .values(stock_quantity=_rounded(Product.stock_quantity + quantity))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})

    return _record_movement(
        shop_id=shop_id,
        product_id=product_id,
        movement_type=movement_type,
        delta=quantity,
        after=get_stock_quantity(shop_id, product_id),
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        actor_user_id=actor_user_id,
    )


def apply_delta(shop_id: int, product_id: int, delta: Decimal, **kwargs) -> StockMovement | None:
    """
    Apply a signed *consumption* delta: positive takes more stock, negative
    gives stock back, zero is a no-op.
    """
    if delta > ZERO:
        return try_decrement(shop_id, product_id, delta, **kwargs)
    if delta < ZERO:
        return restore(shop_id, product_id, -delta, **kwargs)
    return None


def receive_stock(
    shop_id: int,
    product_id: int,
    quantity,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """Standalone stock intake (its own transaction), used by seeding and the CLI."""
    def _op():
        with unit_of_work():
            return restore(
                shop_id,
                product_id,
                quantity,
                movement_type=MOVEMENT_RECEIVE,
                note=note or "Stock received",
                actor_user_id=actor_user_id,
            )

    return run_with_retry(_op)


def list_movements(shop_id: int, product_id: int, limit: int = 50) -> list[StockMovement]:
    limit = max(1, min(limit, 500))
    return (
        db.session.query(StockMovement)
        .filter_by(shop_id=shop_id, product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
