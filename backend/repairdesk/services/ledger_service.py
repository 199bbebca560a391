# Overview: Stock ledger; the only code path that changes a part's on-hand quantity.

"""
Stock Ledger Invariants (authoritative)

- Part.on_hand is a cached balance; the ledger is the record. For every part,
  on_hand == SUM(stock_movements.quantity_delta).
- Every change to on_hand appends exactly one StockMovement in the same
  database transaction. Movements are never updated or deleted.
- on_hand may never go below zero, except through an inventory-correction
  movement (a physical count is the ground truth, whatever it says).
- Each movement records the balance before and after it, so the history of a
  part can be read without re-summing.

apply_movement() never commits; it runs inside the caller's atomic() block so
the movement lands together with the reservation/session change that caused it.
"""

from __future__ import annotations

from sqlalchemy import func

from ..errors import NegativeStockError, ValidationError
from ..extensions import db
from ..models import Part, StockMovement
from ..permissions import Actor
from ..time_utils import now
from .lookup import get_or_404

REASON_CONSUMPTION = "consumption"
REASON_REVERSAL = "reversal"
REASON_INVENTORY_CORRECTION = "inventory-correction"
REASON_PURCHASE = "purchase"
REASON_INITIAL_STOCK = "initial-stock"
REASON_MANUAL_OUT = "manual-out"
REASON_WRITE_OFF = "write-off"

MOVEMENT_REASONS = {
    REASON_CONSUMPTION,
    REASON_REVERSAL,
    REASON_INVENTORY_CORRECTION,
    REASON_PURCHASE,
    REASON_INITIAL_STOCK,
    REASON_MANUAL_OUT,
    REASON_WRITE_OFF,
}

# Reasons allowed to drive on-hand below zero
NEGATIVE_ALLOWED = {REASON_INVENTORY_CORRECTION}


def apply_movement(
    part,
    delta: int,
    reason: str,
    actor: Actor,
    *,
    order=None,
    reservation=None,
    session=None,
    reason_text: str | None = None,
) -> StockMovement:
    """
    Change a part's on-hand quantity and record the movement.

    Args:
        part: Part instance or id (re-read FOR UPDATE)
        delta: Signed, non-zero quantity change
        reason: One of MOVEMENT_REASONS
        actor: Who caused the movement
        order / reservation / session: Optional links for traceability
        reason_text: Free-text explanation

    Returns:
        The new StockMovement (flushed, not committed)

    Raises:
        ValidationError: Zero/non-integer delta or unknown reason
        NegativeStockError: Resulting on-hand below zero for a reason that
            does not allow it
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("quantity delta must be an integer")
    if delta == 0:
        raise ValidationError("quantity delta cannot be zero")
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(
            f"Invalid movement reason '{reason}'. Must be one of: {', '.join(sorted(MOVEMENT_REASONS))}"
        )

    part = get_or_404(Part, part, lock=True)

    before = part.on_hand
    after = before + delta
    if after < 0 and reason not in NEGATIVE_ALLOWED:
        raise NegativeStockError(
            f"Part {part.id} ({part.sku}): movement of {delta} would leave {after} on hand"
        )

    part.on_hand = after
    movement = StockMovement(
        part_id=part.id,
        quantity_delta=delta,
        reason=reason,
        reason_text=reason_text,
        stock_before=before,
        balance_after=after,
        actor_id=actor.id,
        order_id=order.id if order is not None else None,
        reservation_id=reservation.id if reservation is not None else None,
        inventory_session_id=session.id if session is not None else None,
        created_at=now(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def verify_ledger(part_id: int | None = None) -> list[dict]:
    """
    Compare every part's on_hand against the sum of its movements.

    Returns one dict per mismatching part (empty list when consistent).
    """
    sums = (
        db.session.query(
            StockMovement.part_id.label("part_id"),
            func.coalesce(func.sum(StockMovement.quantity_delta), 0).label("total"),
        )
        .group_by(StockMovement.part_id)
        .subquery()
    )

    q = db.session.query(
        Part.id,
        Part.sku,
        Part.on_hand,
        func.coalesce(sums.c.total, 0),
    ).outerjoin(sums, sums.c.part_id == Part.id)
    if part_id is not None:
        q = q.filter(Part.id == part_id)

    discrepancies = []
    for pid, sku, on_hand, total in q.order_by(Part.id).all():
        total = int(total or 0)
        if on_hand != total:
            discrepancies.append({
                "part_id": pid,
                "sku": sku,
                "on_hand": on_hand,
                "ledger_total": total,
                "difference": on_hand - total,
            })
    return discrepancies


def list_movements(
    part_id: int | None = None,
    *,
    order_id: int | None = None,
    reason: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    """Newest-first movement listing with total count for pagination."""
    q = db.session.query(StockMovement)
    if part_id is not None:
        q = q.filter(StockMovement.part_id == part_id)
    if order_id is not None:
        q = q.filter(StockMovement.order_id == order_id)
    if reason:
        if reason not in MOVEMENT_REASONS:
            raise ValidationError(f"Invalid movement reason '{reason}'")
        q = q.filter(StockMovement.reason == reason)

    total = q.count()
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total
