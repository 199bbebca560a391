# Overview: Closed status types and the single ordering table the order state machine derives from.

"""
Repair Order Lifecycle

================================================================================
STATE MACHINE (canonical order)
================================================================================

    SUBMITTED (B2B mail-in only)
        -> RECEIVED
        -> DIAGNOSING
        -> AWAITING_PART_OR_APPROVAL
        -> REPAIRING
        -> READY_FOR_PICKUP
        -> PICKED_UP | RETURNED_TO_PARTNER | RETURNED_TO_END_CUSTOMER   (terminal)

    CANCELLED (terminal) is reachable from every non-terminal status.

RULES:
1. Terminal statuses accept no transition at all.
2. A move to a later rank, or to CANCELLED, is forward.
3. Every other move is backward and needs a non-blank note.
4. SUBMITTED and the return-shipment terminals exist only for B2B orders.

Gates hold for every target at or above their rank, so a forward jump
cannot skip them:
- READY_FOR_PICKUP and beyond: quality checklist complete
- REPAIRING and beyond: cost estimate approved, when one is required
The gate checks need database state and live in services/order_service.py;
everything here is pure.
================================================================================
"""

from __future__ import annotations

from enum import Enum

from .errors import (
    InvalidStateTransitionError,
    JustificationRequiredError,
    TerminalStateError,
    ValidationError,
)


class OrderStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    RECEIVED = "RECEIVED"
    DIAGNOSING = "DIAGNOSING"
    AWAITING_PART_OR_APPROVAL = "AWAITING_PART_OR_APPROVAL"
    REPAIRING = "REPAIRING"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    PICKED_UP = "PICKED_UP"
    RETURNED_TO_PARTNER = "RETURNED_TO_PARTNER"
    RETURNED_TO_END_CUSTOMER = "RETURNED_TO_END_CUSTOMER"
    CANCELLED = "CANCELLED"

    def __str__(self) -> str:
        return self.value


# CANCELLED has no rank on purpose: it is always a forward move.
STATUS_RANK = {
    OrderStatus.SUBMITTED: 0,
    OrderStatus.RECEIVED: 1,
    OrderStatus.DIAGNOSING: 2,
    OrderStatus.AWAITING_PART_OR_APPROVAL: 3,
    OrderStatus.REPAIRING: 4,
    OrderStatus.READY_FOR_PICKUP: 5,
    OrderStatus.PICKED_UP: 6,
    OrderStatus.RETURNED_TO_PARTNER: 6,
    OrderStatus.RETURNED_TO_END_CUSTOMER: 6,
}

# Lowest rank each gate applies to
CHECKLIST_GATE = OrderStatus.READY_FOR_PICKUP
ESTIMATE_GATE = OrderStatus.REPAIRING

TERMINAL_STATUSES = frozenset({
    OrderStatus.PICKED_UP,
    OrderStatus.RETURNED_TO_PARTNER,
    OrderStatus.RETURNED_TO_END_CUSTOMER,
    OrderStatus.CANCELLED,
})

B2B_ONLY_STATUSES = frozenset({
    OrderStatus.SUBMITTED,
    OrderStatus.RETURNED_TO_PARTNER,
    OrderStatus.RETURNED_TO_END_CUSTOMER,
})


class EstimateType(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"
    UP_TO = "UP_TO"


class EstimateStatus(str, Enum):
    DRAFT = "DRAFT"
    CREATED = "CREATED"
    SENT = "SENT"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    QUESTION = "QUESTION"
    EXPIRED = "EXPIRED"


ESTIMATE_SENDABLE = frozenset({EstimateStatus.DRAFT, EstimateStatus.CREATED})
ESTIMATE_DECIDABLE = frozenset({
    EstimateStatus.SENT,
    EstimateStatus.AWAITING_RESPONSE,
    EstimateStatus.QUESTION,
})
ESTIMATE_OPEN = frozenset({EstimateStatus.SENT, EstimateStatus.AWAITING_RESPONSE})


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REMOVED = "REMOVED"


class SessionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def coerce_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Must be one of: {', '.join(s.value for s in OrderStatus)}"
        )


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def reaches(target: OrderStatus, gate: OrderStatus) -> bool:
    """True when entering `target` means passing `gate`."""
    if target is OrderStatus.CANCELLED:
        return False
    return STATUS_RANK[target] >= STATUS_RANK[gate]


def is_forward(current: OrderStatus, target: OrderStatus) -> bool:
    if target is OrderStatus.CANCELLED:
        return True
    return STATUS_RANK[target] > STATUS_RANK[current]


def check_transition(
    current: OrderStatus,
    target: OrderStatus,
    *,
    is_b2b: bool,
    note: str | None = None,
) -> bool:
    """
    Validate a status move against the table above.

    Returns True for a forward move, False for a justified backward move.

    Raises:
        TerminalStateError: current status is terminal
        InvalidStateTransitionError: no-op move, or B2B-only status on a regular order
        JustificationRequiredError: backward move without a note
    """
    if is_terminal(current):
        raise TerminalStateError(f"Order is {current.value}; no further transitions allowed")

    if target == current:
        raise InvalidStateTransitionError(f"Order is already {current.value}")

    if target in B2B_ONLY_STATUSES and not is_b2b:
        raise InvalidStateTransitionError(f"{target.value} is only valid for B2B orders")

    forward = is_forward(current, target)
    if not forward and not (note and note.strip()):
        raise JustificationRequiredError(
            f"Moving back from {current.value} to {target.value} requires a note"
        )
    return forward


def path_is_valid(steps: list[tuple[OrderStatus | None, OrderStatus, str | None]], *, is_b2b: bool) -> bool:
    """
    Re-walk a recorded status path: (old_status, new_status, note) per step.

    The first step must start from nothing; each following step must start
    where the previous one ended and pass check_transition.
    """
    if not steps:
        return False
    first_old, first_new, _ = steps[0]
    if first_old is not None:
        return False
    if first_new not in (OrderStatus.RECEIVED, OrderStatus.SUBMITTED):
        return False
    if first_new is OrderStatus.SUBMITTED and not is_b2b:
        return False

    current = first_new
    for old, new, note in steps[1:]:
        if old != current:
            return False
        try:
            check_transition(current, new, is_b2b=is_b2b, note=note)
        except (InvalidStateTransitionError, JustificationRequiredError, TerminalStateError):
            return False
        current = new
    return True
