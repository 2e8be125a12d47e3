# Overview: Service-layer operations for document numbers; atomic per-period sequence allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    period: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a type within a period.

    Must run inside the caller's transaction: the increment is a guarded
    in-place UPDATE, so two writers never receive the same number, and the
    number is released again if the caller rolls back.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not period:
        raise DocumentSequenceError("period is required")

    stmt = (
        update(DocumentSequence)
        .where(
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
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        next_num = current - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(
                    DocumentSequence(document_type=document_type, period=period, next_number=2)
                )
            next_num = 1
        except IntegrityError:
            # Another writer created the period row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type, period=period)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{period}-{next_num:0{pad}d}"
