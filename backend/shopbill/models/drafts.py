from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class HeldCart(db.Model):
    """
    Parked, unsubmitted cart ("hold bill").

    snapshot is the canonical JSON text written by held_cart_service; it is
    stored as text, not JSON, so recall returns exactly the bytes that were
    held. schema_version tells the reader how to interpret it.

    Held carts never touch stock or invoices and are not financial data.
    """
    __tablename__ = "held_carts"
    __table_args__ = (
        db.Index("ix_held_carts_shop_user", "shop_id", "created_by_user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=False)

    label = db.Column(db.String(120), nullable=True)
    schema_version = db.Column(db.Integer, nullable=False)
    snapshot = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self, include_snapshot: bool = False) -> dict:
        data = {
            "id": self.id,
            "shop_id": self.shop_id,
            "created_by_user_id": self.created_by_user_id,
            "label": self.label,
            "schema_version": self.schema_version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_snapshot:
            data["snapshot"] = self.snapshot
        return data
