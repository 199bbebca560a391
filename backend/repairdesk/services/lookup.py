from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from .concurrency import lock_for_update


def get_or_404(model, ref, *, lock: bool = False, label: str | None = None):
    """
    Resolve `ref` (a model instance or a primary key) to a row.

    With lock=True the row is re-read FOR UPDATE even when an instance is
    passed in.
    """
    name = label or model.__name__
    if isinstance(ref, model):
        if not lock:
            return ref
        ref = ref.id

    if ref is None or isinstance(ref, bool):
        raise ValidationError(f"{name} id is required")
    try:
        pk = int(ref)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} id must be an integer")

    query = db.session.query(model).filter(model.id == pk)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is None:
        raise NotFoundError(f"{name} {pk} not found")
    return row
