# Overview: Atomic allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import business_day_key


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    shop_id: int,
    document_type: str,
    prefix: str,
    period: str | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next number for (shop, type, period) inside the caller's
    transaction, e.g. INV-20261019-0001.

    The counter is bumped with a single UPDATE, so the row lock serializes
    concurrent callers. The first allocation of a period inserts the row; if
    another transaction inserted it first, the unique constraint raises
    IntegrityError and the caller's retry loop replays the whole unit.
    """
    if not shop_id:
        raise DocumentSequenceError("shop_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    period = period or business_day_key()

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.shop_id == shop_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(shop_id=shop_id, document_type=document_type, period=period)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(shop_id=shop_id, document_type=document_type, period=period, next_number=2)
        db.session.add(seq)
        db.session.flush()
        next_num = 1

    return f"{prefix}-{period}-{next_num:0{pad}d}"
