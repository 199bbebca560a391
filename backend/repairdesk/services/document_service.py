# Overview: Per-location human-readable numbers for repair orders and inventory sessions.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrentModificationError, ValidationError
from ..extensions import db
from ..models import DocumentSequence

DOC_REPAIR_ORDER = "REPAIR_ORDER"
DOC_INVENTORY_SESSION = "INVENTORY_SESSION"

PREFIXES = {
    DOC_REPAIR_ORDER: "R",
    DOC_INVENTORY_SESSION: "INV",
}


def next_document_number(
    *,
    location_id: int,
    document_type: str,
    pad: int = 5,
) -> str:
    """
    Allocate the next document number for a location/type, e.g. "R-001-00042".

    Runs inside the caller's transaction: the number is only consumed if the
    document that uses it commits. The UPDATE takes the row lock on
    (location_id, document_type); a lost race on the very first allocation
    surfaces as ConcurrentModificationError.
    """
    if not location_id:
        raise ValidationError("location_id is required")
    prefix = PREFIXES.get(document_type)
    if prefix is None:
        raise ValidationError(f"Unknown document type '{document_type}'")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.location_id == location_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(location_id=location_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(location_id=location_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrentModificationError(
                "Document sequence was created concurrently; retry"
            ) from exc
        next_num = 1

    return f"{prefix}-{location_id:03d}-{next_num:0{pad}d}"
