from __future__ import annotations

from ..extensions import db
from ..money import MONEY_PLACES, QTY_PLACES, RATE_PLACES, decimal_str
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Catalog entry as seen by the billing engine.

    Catalog CRUD lives outside the engine; billing only reads price, tax rate
    and unit from here, and stock_quantity is written exclusively by
    services.stock_ledger.

    The CHECK constraint backs the ledger: no committed state can hold
    negative stock even if a caller bypasses the ledger.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "sku", name="uq_products_shop_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_shop_active", "shop_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    selling_price = db.Column(db.Numeric(14, MONEY_PLACES), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, RATE_PLACES), nullable=False, default=0)

    stock_quantity = db.Column(db.Numeric(14, QTY_PLACES), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} shop_id={self.shop_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "selling_price": decimal_str(self.selling_price),
            "tax_rate": decimal_str(self.tax_rate),
            "stock_quantity": decimal_str(self.stock_quantity),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
