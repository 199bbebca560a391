# Overview: Domain error taxonomy for the repair workflow engine.

"""
Every workflow operation either commits completely or raises one of these.

Each error carries the HTTP status the routes answer with. None of them is
retried by the engine itself: the caller decides whether to reload and retry
(ConcurrentModificationError) or to surface the message to a person.
"""

from __future__ import annotations


class WorkflowError(ValueError):
    """Base class for all domain errors raised by the services."""

    status_code = 400

    def to_dict(self) -> dict:
        return {"error": str(self), "type": type(self).__name__}


class ValidationError(WorkflowError):
    """Missing or malformed input; fixable by the caller."""


class NotFoundError(WorkflowError):
    status_code = 404


class PermissionDeniedError(WorkflowError):
    """The actor's role does not allow the operation."""

    status_code = 403


class InvalidStateTransitionError(WorkflowError):
    """Operation is not legal from the entity's current state."""

    status_code = 409


class TerminalStateError(WorkflowError):
    """Attempted mutation of an order in a terminal status."""

    status_code = 409


class JustificationRequiredError(WorkflowError):
    """Backward status moves need a human-readable note."""


class MissingReasonError(WorkflowError):
    """A mandatory reason is absent. `rows` lists offending items, if any."""

    def __init__(self, message: str, rows: list[dict] | None = None):
        super().__init__(message)
        self.rows = rows or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.rows:
            data["rows"] = self.rows
        return data


class PreconditionFailedError(WorkflowError):
    status_code = 409


class InsufficientStockError(WorkflowError):
    status_code = 409

    def __init__(self, part_id: int, requested: int, available: int):
        super().__init__(
            f"Part {part_id}: requested {requested}, only {available} on hand"
        )
        self.part_id = part_id
        self.requested = requested
        self.available = available


class NegativeStockError(WorkflowError):
    status_code = 409


class ImmutableRecordError(WorkflowError):
    """History and ledger rows are append-only."""

    status_code = 409


class ConcurrentModificationError(WorkflowError):
    """Lost a race on a row version or uniqueness invariant; reload and retry."""

    status_code = 409
