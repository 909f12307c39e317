from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Per-shop, per-period counter for human-readable document numbers.

    One row per (shop_id, document_type, period); next_number is bumped with
    a single UPDATE so concurrent allocations never hand out the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "document_type", "period", name="uq_document_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    period = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
