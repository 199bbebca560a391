from __future__ import annotations

from sqlalchemy import event

from ..errors import ImmutableRecordError


def append_only(model):
    """Refuse ORM updates and deletes on a history/ledger model."""

    @event.listens_for(model, "before_update")
    def _refuse_update(mapper, connection, target):
        raise ImmutableRecordError(f"{model.__tablename__} rows cannot be modified")

    @event.listens_for(model, "before_delete")
    def _refuse_delete(mapper, connection, target):
        raise ImmutableRecordError(f"{model.__tablename__} rows cannot be deleted")

    return model
