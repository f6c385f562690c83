# Overview: Human-readable document numbers (ORD-, PKG-, RET-) from atomic sequences.

from __future__ import annotations

import uuid

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_TYPE_ORDER = "ORDER"
DOCUMENT_TYPE_PACKAGE = "PACKAGE"
DOCUMENT_TYPE_RETURN = "RETURN"

DOCUMENT_PREFIXES = {
    DOCUMENT_TYPE_ORDER: "ORD",
    DOCUMENT_TYPE_PACKAGE: "PKG",
    DOCUMENT_TYPE_RETURN: "RET",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def ensure_document_sequences() -> None:
    """
    Create the sequence row for every known document type.

    Called by `flask system init-db` and test setup so that numbering never
    has to insert a sequence row in the middle of a lifecycle transaction.
    Caller commits.
    """
    existing = {
        row.document_type
        for row in db.session.query(DocumentSequence.document_type).all()
    }
    for document_type in DOCUMENT_PREFIXES:
        if document_type not in existing:
            db.session.add(DocumentSequence(document_type=document_type, next_number=1))
    db.session.flush()


def next_document_number(document_type: str, *, pad: int = 6) -> str:
    """
    Allocate the next document number for a type within the caller's transaction.

    Increments with a single UPDATE so two concurrent callers never get the
    same number. Does not commit and does not retry; the enclosing operation
    owns both.
    """
    prefix = DOCUMENT_PREFIXES.get(document_type)
    if not prefix:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        # First number ever issued for this type (sequences not seeded)
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"


def new_tracking_number() -> str:
    return f"TRK-{uuid.uuid4().hex[:8].upper()}"
