# Overview: Part usage bookings against repair orders, their approval, and candidate part search.

"""
Part Usage Lifecycle

    book()    -> PENDING    stock taken out (consumption, -qty)
    approve() -> APPROVED   no stock change
    reject()  -> REJECTED   stock put back (reversal, +qty)
    remove()  -> REMOVED    stock put back only if the reservation still holds it

Reservations are soft-removed; the row and its movements stay for audit.
Once the order is closed (terminal) its reservations are frozen: book, reject
and remove all raise TerminalStateError, and any stock difference is settled
through an inventory session.
Stock is always touched through ledger_service.apply_movement in the same
transaction as the status change.
"""

from __future__ import annotations

from sqlalchemy import func, or_

from ..errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    MissingReasonError,
    TerminalStateError,
    ValidationError,
)
from ..extensions import db
from ..models import Part, PartUsageReservation, RepairOrder
from ..permissions import Actor, require_permission
from ..time_utils import now
from ..validation import clean_str, to_int
from ..workflow import OrderStatus, ReservationStatus, is_terminal
from .concurrency import atomic, run_with_retry
from .ledger_service import REASON_CONSUMPTION, REASON_REVERSAL, apply_movement
from .lookup import get_or_404

# Statuses whose quantity is currently out of stock on behalf of the order
HOLDING_STOCK = {ReservationStatus.PENDING.value, ReservationStatus.APPROVED.value}


def _ensure_order_open(order_row: RepairOrder, action: str) -> None:
    if is_terminal(OrderStatus(order_row.status)):
        raise TerminalStateError(
            f"Order {order_row.order_number} is {order_row.status}; parts cannot be {action}"
        )


def book(order, part, quantity, reason, actor: Actor) -> PartUsageReservation:
    """
    Book part usage on an order.

    Args:
        order: RepairOrder instance or id (must not be terminal)
        part: Part instance or id (must be active)
        quantity: Positive integer
        reason: Optional booking note
        actor: Booking user

    Returns:
        The new PENDING reservation

    Raises:
        ValidationError: Bad quantity or inactive part
        TerminalStateError: Order is closed
        InsufficientStockError: quantity > on_hand
    """
    require_permission(actor, "BOOK_PARTS")
    quantity = to_int(quantity, field="quantity", min_value=1)
    reason = clean_str(reason, field="reason")

    def _op() -> PartUsageReservation:
        with atomic():
            order_row = get_or_404(RepairOrder, order, label="Order")
            _ensure_order_open(order_row, "booked")

            part_row = get_or_404(Part, part, lock=True)
            if not part_row.is_active:
                raise ValidationError(f"Part {part_row.sku} is inactive")
            if quantity > part_row.on_hand:
                raise InsufficientStockError(part_row.id, quantity, part_row.on_hand)

            reservation = PartUsageReservation(
                order_id=order_row.id,
                part_id=part_row.id,
                quantity=quantity,
                unit_purchase_cents=part_row.purchase_price_cents,
                unit_sale_cents=part_row.sale_price_cents,
                status=ReservationStatus.PENDING.value,
                reason=reason,
                booked_by=actor.id,
                booked_at=now(),
            )
            db.session.add(reservation)
            db.session.flush()

            apply_movement(
                part_row,
                -quantity,
                REASON_CONSUMPTION,
                actor,
                order=order_row,
                reservation=reservation,
                reason_text=reason,
            )
            return reservation

    return run_with_retry(_op)


def approve(reservation, approver: Actor) -> PartUsageReservation:
    require_permission(approver, "APPROVE_PART_USAGE")

    def _op() -> PartUsageReservation:
        with atomic():
            row = get_or_404(PartUsageReservation, reservation, lock=True, label="Reservation")
            if row.status != ReservationStatus.PENDING.value:
                raise InvalidStateTransitionError(
                    f"Reservation {row.id} is {row.status}; only PENDING can be approved"
                )
            row.status = ReservationStatus.APPROVED.value
            row.decided_by = approver.id
            row.decided_at = now()
            return row

    return run_with_retry(_op)


def reject(reservation, approver: Actor, reason) -> PartUsageReservation:
    """Reject a pending booking and put its quantity back on the shelf."""
    require_permission(approver, "APPROVE_PART_USAGE")
    reason = clean_str(reason, field="reason")
    if not reason:
        raise MissingReasonError("A rejection reason is required")

    def _op() -> PartUsageReservation:
        with atomic():
            row = get_or_404(PartUsageReservation, reservation, lock=True, label="Reservation")
            if row.status != ReservationStatus.PENDING.value:
                raise InvalidStateTransitionError(
                    f"Reservation {row.id} is {row.status}; only PENDING can be rejected"
                )
            _ensure_order_open(row.order, "rejected")
            row.status = ReservationStatus.REJECTED.value
            row.decided_by = approver.id
            row.decided_at = now()
            row.rejection_reason = reason
            db.session.flush()

            apply_movement(
                row.part_id,
                row.quantity,
                REASON_REVERSAL,
                approver,
                order=row.order,
                reservation=row,
                reason_text=f"Rejected: {reason}",
            )
            return row

    return run_with_retry(_op)


def remove(reservation, actor: Actor) -> PartUsageReservation:
    """
    Soft-remove a reservation.

    PENDING and REJECTED may be removed by anyone allowed to book; APPROVED
    needs the privileged permission. A REJECTED reservation already had its
    stock reversed, so no second movement is written for it.
    """
    def _op() -> PartUsageReservation:
        with atomic():
            row = get_or_404(PartUsageReservation, reservation, lock=True, label="Reservation")
            if row.status == ReservationStatus.REMOVED.value:
                raise InvalidStateTransitionError(f"Reservation {row.id} is already removed")
            _ensure_order_open(row.order, "removed")
            if row.status == ReservationStatus.APPROVED.value:
                require_permission(actor, "REMOVE_APPROVED_PART_USAGE")
            else:
                require_permission(actor, "BOOK_PARTS")

            held = row.status in HOLDING_STOCK
            row.status = ReservationStatus.REMOVED.value
            row.removed_by = actor.id
            row.removed_at = now()
            db.session.flush()

            if held:
                apply_movement(
                    row.part_id,
                    row.quantity,
                    REASON_REVERSAL,
                    actor,
                    order=row.order,
                    reservation=row,
                    reason_text="Part usage removed",
                )
            return row

    return run_with_retry(_op)


def list_for_order(order_id: int, *, include_removed: bool = False) -> list[PartUsageReservation]:
    q = db.session.query(PartUsageReservation).filter_by(order_id=order_id)
    if not include_removed:
        q = q.filter(PartUsageReservation.status != ReservationStatus.REMOVED.value)
    return q.order_by(PartUsageReservation.id.asc()).all()


def reserved_sale_total_cents(order_id: int) -> int:
    """Sale value of everything currently booked on the order (snapshotted prices)."""
    total = (
        db.session.query(
            func.coalesce(
                func.sum(PartUsageReservation.quantity * PartUsageReservation.unit_sale_cents), 0
            )
        )
        .filter(
            PartUsageReservation.order_id == order_id,
            PartUsageReservation.status.in_(HOLDING_STOCK),
        )
        .scalar()
    )
    return int(total or 0)


def find_candidate_parts(
    manufacturer: str | None,
    model: str | None,
    *,
    search: str | None = None,
    only_available: bool = False,
    location_id: int | None = None,
) -> dict[str, list[Part]]:
    """
    Parts that fit a device, in three disjoint priority groups:

    - "model": made for exactly this manufacturer + model
    - "manufacturer": fits any device of the manufacturer
    - "generic": no scope at all

    Matching ignores case. Each group is ordered by name, then id.
    """
    manufacturer = (manufacturer or "").strip() or None
    model = (model or "").strip() or None

    base = db.session.query(Part).filter(Part.is_active.is_(True))
    if location_id is not None:
        base = base.filter(Part.location_id == location_id)
    if only_available:
        base = base.filter(Part.on_hand > 0)
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        base = base.filter(or_(func.lower(Part.name).like(pattern), func.lower(Part.sku).like(pattern)))

    order = (Part.name.asc(), Part.id.asc())

    model_parts: list[Part] = []
    manufacturer_parts: list[Part] = []
    if manufacturer:
        if model:
            model_parts = (
                base.filter(
                    func.lower(Part.manufacturer) == manufacturer.lower(),
                    func.lower(Part.device_model) == model.lower(),
                )
                .order_by(*order)
                .all()
            )
        manufacturer_parts = (
            base.filter(
                func.lower(Part.manufacturer) == manufacturer.lower(),
                Part.device_model.is_(None),
            )
            .order_by(*order)
            .all()
        )

    generic_parts = (
        base.filter(Part.manufacturer.is_(None), Part.device_model.is_(None))
        .order_by(*order)
        .all()
    )

    return {
        "model": model_parts,
        "manufacturer": manufacturer_parts,
        "generic": generic_parts,
    }
