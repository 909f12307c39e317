from __future__ import annotations

from ..extensions import db
from ..money import QTY_PLACES, decimal_str
from ..time_utils import to_utc_z, utcnow


class StockMovement(db.Model):
    """
    Append-only journal of every stock mutation made through the ledger.

    MOVEMENT TYPES:
    - SALE: invoice created (negative delta)
    - SALE_EDIT: invoice edited (delta of new minus old quantity, negated)
    - SALE_CANCEL: invoice cancelled (positive delta)
    - RECEIVE: stock received from outside the billing engine

    quantity_before/quantity_after are read inside the same transaction as the
    update, so consecutive rows for a product chain without gaps.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Numeric(14, QTY_PLACES), nullable=False)
    quantity_before = db.Column(db.Numeric(14, QTY_PLACES), nullable=False)
    quantity_after = db.Column(db.Numeric(14, QTY_PLACES), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": decimal_str(self.quantity_delta),
            "quantity_before": decimal_str(self.quantity_before),
            "quantity_after": decimal_str(self.quantity_after),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
